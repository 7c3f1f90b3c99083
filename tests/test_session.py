from __future__ import annotations

import io
import json
from datetime import datetime, timezone

import numpy as np
import pytest
from PIL import Image

from rgbd_cropper.assets import classify_asset, probe_raster
from rgbd_cropper.config import CropperConfig, ValidationThresholds
from rgbd_cropper.errors import FormatError, ValidationBlockedError
from rgbd_cropper.geometry.interaction import Mode, PointerDown, PointerMove, PointerUp
from rgbd_cropper.geometry.rect import Rect
from rgbd_cropper.session import CropSession
from rgbd_cropper.validation.report import NOT_READY_ISSUE


def _png(w: int, h: int) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (w, h), color=(12, 34, 56)).save(buf, format="PNG")
    return buf.getvalue()


def _npy(w: int, h: int) -> bytes:
    buf = io.BytesIO()
    np.save(buf, np.ones((h, w), dtype=np.float32))
    return buf.getvalue()


def _select(session: CropSession, x0: float, y0: float, x1: float, y1: float) -> None:
    session.apply(PointerDown(x0, y0))
    session.apply(PointerMove(x1, y1))
    session.apply(PointerUp())


def test_classify_asset_by_extension() -> None:
    assert classify_asset("scene/RGB.PNG") == "raster"
    assert classify_asset("frame.jpeg") == "raster"
    assert classify_asset("depth.npy") == "depth"
    assert classify_asset("notes.txt") is None
    assert classify_asset("frame.tif", raster_extensions=(".tif",)) == "raster"


def test_probe_raster_rejects_garbage() -> None:
    info = probe_raster(_png(7, 5))
    assert (info.width, info.height, info.format) == (7, 5, "PNG")
    with pytest.raises(FormatError):
        probe_raster(b"not an image")


def test_session_revalidates_after_every_change() -> None:
    session = CropSession()
    assert session.report.issues == (NOT_READY_ISSUE,)
    assert session.apply(PointerDown(1, 1)) is False

    assert session.load_file("rgb.png", _png(40, 30)) == "raster"
    assert session.report.issues == (NOT_READY_ISSUE,)
    assert session.load_file("depth.npy", _npy(40, 30)) == "depth"

    session.apply(PointerDown(5, 5))
    assert session.geometry is not None
    assert session.geometry.mode is Mode.CREATING
    assert not session.can_export  # zero-size while creating

    session.apply(PointerMove(25, 20))
    assert session.can_export
    session.apply(PointerUp())
    assert session.rect == Rect(5, 5, 20, 15)
    assert session.report.details["croppedDimensions"] == {"width": 20, "height": 15}

    # Drag the selection against the bottom-right corner.
    _select(session, 10, 10, 100, 100)
    assert session.rect == Rect(20, 15, 20, 15)
    assert session.can_export

    session.clear_crop()
    assert session.rect is None
    assert session.report.issues == (NOT_READY_ISSUE,)


def test_session_export() -> None:
    session = CropSession(CropperConfig(folder_prefix="scene"))
    session.load_raster(_png(40, 30))
    session.load_depth(_npy(40, 30))
    _select(session, 2, 3, 12, 9)

    bundle = session.export(now=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
    assert bundle.folder_name == "scene_2026-01-02T03-04-05"
    meta = json.loads(bundle.crop.files["crop_metadata.json"])
    assert meta["cropBox"]["width"] == 10
    assert meta["cropBox"]["height"] == 6


def test_session_mismatched_assets_block_export() -> None:
    session = CropSession()
    session.load_raster(_png(40, 30))
    session.load_depth(_npy(20, 30))
    _select(session, 2, 3, 12, 9)

    assert not session.can_export
    assert any("dimensions do not match" in s for s in session.report.issues)
    with pytest.raises(ValidationBlockedError):
        session.export()


def test_session_uses_configured_thresholds() -> None:
    config = CropperConfig(thresholds=ValidationThresholds(area_min_percent=50.0))
    session = CropSession(config)
    session.load_raster(_png(40, 30))
    session.load_depth(_npy(40, 30))
    _select(session, 0, 0, 10, 10)
    assert session.can_export
    assert any("very small (< 50%)" in w for w in session.report.warnings)


def test_session_rejects_unknown_files_and_resets() -> None:
    session = CropSession()
    with pytest.raises(FormatError, match="Unsupported file type"):
        session.load_file("depth.csv", b"1,2,3")
    with pytest.raises(FormatError):
        session.load_file("depth.npy", b"garbage")

    session.load_raster(_png(8, 8))
    session.load_depth(_npy(8, 8))
    _select(session, 0, 0, 4, 4)
    assert session.can_export

    session.reset_all()
    assert session.raster_info is None
    assert session.depth is None
    assert session.rect is None
    assert not session.can_export


def test_session_export_without_selection_is_blocked() -> None:
    session = CropSession()
    session.load_raster(_png(16, 16))
    session.load_depth(_npy(16, 16))
    assert session.rect is None
    with pytest.raises(ValidationBlockedError) as exc:
        session.export()
    assert exc.value.issues == (NOT_READY_ISSUE,)
