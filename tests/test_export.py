from __future__ import annotations

import io
import json
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np
import pytest
from PIL import Image

import rgbd_cropper.export.bundle as bundle_mod
from rgbd_cropper.codec.npy import NumericArray, decode
from rgbd_cropper.errors import ExportError, ValidationBlockedError
from rgbd_cropper.export.bundle import ExportBundle, export_bundle, folder_name_for, iso_timestamp
from rgbd_cropper.export.writer import write_directory, write_zip
from rgbd_cropper.geometry.rect import Rect
from rgbd_cropper.validation.report import ValidationReport, validate

W, H = 64, 48
NOW = datetime(2026, 10, 16, 12, 34, 56, 789000, tzinfo=timezone.utc)


def _make_rgb(w: int = W, h: int = H, fmt: str = "PNG") -> bytes:
    arr = np.zeros((h, w, 3), dtype=np.uint8)
    arr[..., 0] = (np.arange(w) % 256)[None, :]
    arr[..., 1] = (np.arange(h) % 256)[:, None]
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format=fmt)
    return buf.getvalue()


def _make_depth(w: int = W, h: int = H) -> bytes:
    buf = io.BytesIO()
    np.save(buf, np.arange(w * h, dtype=np.float64).reshape(h, w))
    return buf.getvalue()


def _export(
    rect: Rect, rgb: bytes | None = None, **kwargs: Any
) -> tuple[ExportBundle, NumericArray, ValidationReport]:
    depth = decode(_make_depth())
    report = validate(W, H, depth, rect)
    return export_bundle(rgb or _make_rgb(), depth, rect, report, now=NOW, **kwargs), depth, report


def test_timestamp_and_folder_name() -> None:
    stamp = iso_timestamp(NOW)
    assert stamp == "2026-10-16T12:34:56.789Z"
    assert folder_name_for(stamp) == "rgbd_crop_2026-10-16T12-34-56"
    assert folder_name_for(stamp, "scene7") == "scene7_2026-10-16T12-34-56"


def test_export_slices_raster_and_depth_on_the_same_window() -> None:
    rect = Rect(10.5, 20.25, 30, 15)
    bundle, depth, report = _export(rect)

    assert (bundle.window.width, bundle.window.height) == (30, 15)
    assert report.details["croppedDimensions"] == {"width": 30, "height": 15}

    crop_img = Image.open(io.BytesIO(bundle.crop.files["rgb.png"]))
    assert crop_img.format == "PNG"
    assert crop_img.size == (30, 15)
    assert crop_img.getpixel((0, 0))[:2] == (10, 20)
    assert crop_img.getpixel((29, 14))[:2] == (39, 34)

    cropped = decode(bundle.crop.files["depth.npy"])
    assert cropped.dtype == "float32"
    assert cropped.shape == (15, 30)
    expected = depth.as_grid()[20:35, 10:40].astype(np.float32)
    np.testing.assert_array_equal(cropped.as_grid(), expected)
    # Row-major gather: dst[y*cw + x] == src[(sy+y)*W + (sx+x)]
    assert cropped.data[1 * 30 + 2] == depth.data[21 * W + 12]


def test_original_group_keeps_assets() -> None:
    rgb = _make_rgb()
    bundle, depth, _ = _export(Rect(0, 0, 32, 32), rgb=rgb)

    assert bundle.original.files["rgb.png"] == rgb
    original = decode(bundle.original.files["depth.npy"])
    assert original.dtype == "float32"
    assert original.shape == depth.shape
    np.testing.assert_array_equal(original.data, depth.data.astype(np.float32))


def test_non_png_original_is_reencoded_losslessly() -> None:
    bmp = _make_rgb(fmt="BMP")
    bundle, _, _ = _export(Rect(0, 0, 32, 32), rgb=bmp)

    original = bundle.original.files["rgb.png"]
    assert original.startswith(b"\x89PNG")
    a = np.asarray(Image.open(io.BytesIO(original)))
    b = np.asarray(Image.open(io.BytesIO(bmp)))
    np.testing.assert_array_equal(a, b)


def test_metadata_record() -> None:
    bundle, _, _ = _export(Rect(10.5, 20.25, 30, 15))
    meta = json.loads(bundle.crop.files["crop_metadata.json"])

    assert meta["originalDimensions"] == {"width": 64, "height": 48}
    assert meta["cropBox"] == {"x": 11, "y": 20, "width": 30, "height": 15, "right": 41, "bottom": 35}
    assert meta["croppedFrom"] == {"top": 20, "right": 24, "bottom": 13, "left": 11}
    assert meta["remainingArea"] == {"widthPercent": 0.47, "heightPercent": 0.31, "areaPercent": 14.65}
    assert meta["timestamp"] == "2026-10-16T12:34:56.789Z"
    assert meta["folderName"] == "rgbd_crop_2026-10-16T12-34-56"
    assert bundle.folder_name == meta["folderName"]
    assert bundle.metadata.crop_box.width == 30


def test_bundle_layout_and_zip() -> None:
    bundle, _, _ = _export(Rect(4, 4, 20, 20))
    assert sorted(bundle.files()) == [
        "crop/crop_metadata.json",
        "crop/depth.npy",
        "crop/rgb.png",
        "original/depth.npy",
        "original/rgb.png",
    ]
    with zipfile.ZipFile(io.BytesIO(bundle.to_zip())) as zf:
        assert sorted(zf.namelist()) == sorted(bundle.files())
        assert zf.read("crop/depth.npy") == bundle.crop.files["depth.npy"]


def test_invalid_report_blocks_before_encoding(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(*_: Any, **__: Any) -> bytes:
        raise AssertionError("encode must not run for a blocked export")

    monkeypatch.setattr(bundle_mod, "encode", boom)
    monkeypatch.setattr(bundle_mod, "open_raster", boom)

    depth = decode(_make_depth())
    rect = Rect(-5, 0, 10, 10)
    report = validate(W, H, depth, rect)
    with pytest.raises(ValidationBlockedError) as exc:
        export_bundle(b"", depth, rect, report)
    assert "Crop coordinates are negative" in exc.value.issues
    assert "Export blocked" in str(exc.value)


def test_stale_report_blocks() -> None:
    depth = decode(_make_depth())
    report = validate(W, H, depth, Rect(0, 0, 10, 10))
    with pytest.raises(ValidationBlockedError, match="stale"):
        export_bundle(_make_rgb(), depth, Rect(0, 0, 20, 20), report, now=NOW)

    with pytest.raises(ValidationBlockedError, match="stale"):
        export_bundle(_make_rgb(w=32), depth, Rect(0, 0, 10, 10), report, now=NOW)


def test_encoding_failure_surfaces_as_export_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_encode(*_: Any, **__: Any) -> bytes:
        raise ValueError("disk full of zeros")

    monkeypatch.setattr(bundle_mod, "encode", failing_encode)
    with pytest.raises(ExportError, match="disk full of zeros"):
        _export(Rect(0, 0, 10, 10))


@pytest.mark.parametrize(
    "rect",
    [Rect(0, 0, 64, 48), Rect(0.4, 0.6, 10.5, 9.5), Rect(33.9, 12.1, 20.2, 30.7), Rect(63, 47, 1, 1)],
)
def test_export_window_matches_report(rect: Rect) -> None:
    bundle, _, report = _export(rect)
    assert report.details["croppedDimensions"] == {
        "width": bundle.window.width,
        "height": bundle.window.height,
    }
    assert Image.open(io.BytesIO(bundle.crop.files["rgb.png"])).size == (
        bundle.window.width,
        bundle.window.height,
    )


def test_write_zip_and_directory(tmp_path: Path) -> None:
    bundle, _, _ = _export(Rect(4, 4, 20, 20))

    archive = write_zip(bundle, tmp_path / "zips")
    assert archive.name == "rgbd_crop_2026-10-16T12-34-56.zip"
    with zipfile.ZipFile(archive) as zf:
        assert "crop/crop_metadata.json" in zf.namelist()
    with pytest.raises(FileExistsError):
        write_zip(bundle, tmp_path / "zips")

    folder = write_directory(bundle, tmp_path / "dirs")
    assert (folder / "original" / "rgb.png").read_bytes() == bundle.original.files["rgb.png"]
    assert (folder / "crop" / "depth.npy").is_file()
    assert not (tmp_path / "dirs" / f".{bundle.folder_name}.partial").exists()
    with pytest.raises(FileExistsError):
        write_directory(bundle, tmp_path / "dirs")


def test_failed_directory_write_removes_staging(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    bundle, _, _ = _export(Rect(4, 4, 20, 20))
    real_write_bytes = Path.write_bytes
    calls = {"n": 0}

    def flaky_write_bytes(self: Path, data: bytes) -> int:
        calls["n"] += 1
        if calls["n"] == 2:
            raise OSError("disk full")
        return real_write_bytes(self, data)

    monkeypatch.setattr(Path, "write_bytes", flaky_write_bytes)
    with pytest.raises(OSError, match="disk full"):
        write_directory(bundle, tmp_path)
    assert not (tmp_path / f".{bundle.folder_name}.partial").exists()
    assert not (tmp_path / bundle.folder_name).exists()

    folder = write_directory(bundle, tmp_path)
    assert (folder / "crop" / "crop_metadata.json").is_file()
