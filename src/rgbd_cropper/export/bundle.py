"""Export bundle: original assets, cropped assets and a crop metadata record.

The bundle is built entirely in memory; writing it out is the caller's job
(see `rgbd_cropper.export.writer`).
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Final

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from rgbd_cropper.assets import img_to_png_bytes, open_raster
from rgbd_cropper.codec.npy import NumericArray, encode
from rgbd_cropper.config import DEFAULT_FOLDER_PREFIX
from rgbd_cropper.errors import ExportError, FormatError, ValidationBlockedError
from rgbd_cropper.geometry.rect import CropWindow, Rect, crop_window, round2, round_half_up
from rgbd_cropper.validation.report import ValidationReport

LOG = logging.getLogger(__name__)

RGB_NAME: Final[str] = "rgb.png"
DEPTH_NAME: Final[str] = "depth.npy"
METADATA_NAME: Final[str] = "crop_metadata.json"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Dimensions(_CamelModel):
    width: int
    height: int


class CropBox(_CamelModel):
    x: int
    y: int
    width: int
    height: int
    right: int
    bottom: int


class Margins(_CamelModel):
    top: int
    right: int
    bottom: int
    left: int


class RemainingArea(_CamelModel):
    width_percent: float
    height_percent: float
    area_percent: float


class CropMetadata(_CamelModel):
    """Metadata record stored next to the cropped assets (serialized camelCase)."""

    original_dimensions: Dimensions
    crop_box: CropBox
    cropped_from: Margins
    remaining_area: RemainingArea
    timestamp: str
    folder_name: str

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


@dataclass(frozen=True)
class BundleGroup:
    """A named folder of the bundle mapping file names to content."""

    name: str
    files: dict[str, bytes] = field(default_factory=dict)


@dataclass(frozen=True)
class ExportBundle:
    """Everything produced by one export."""

    folder_name: str
    original: BundleGroup
    crop: BundleGroup
    metadata: CropMetadata
    window: CropWindow

    def files(self) -> dict[str, bytes]:
        """Flatten the groups to {"original/rgb.png": ..., "crop/depth.npy": ...}."""
        return {
            f"{group.name}/{name}": data
            for group in (self.original, self.crop)
            for name, data in group.files.items()
        }

    def to_zip(self) -> bytes:
        """Pack the bundle as a ZIP archive with `original/` and `crop/` at its root."""
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for arcname, data in self.files().items():
                zf.writestr(arcname, data)
        return buf.getvalue()


def iso_timestamp(now: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a `Z` suffix."""
    utc = now.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def folder_name_for(timestamp: str, prefix: str = DEFAULT_FOLDER_PREFIX) -> str:
    """Filesystem-safe folder name, e.g. rgbd_crop_2026-10-16T12-34-56."""
    return f"{prefix}_{re.sub(r'[:.]', '-', timestamp)[:19]}"


def build_metadata(
    rect: Rect,
    window: CropWindow,
    raster_width: int,
    raster_height: int,
    timestamp: str,
    folder_name: str,
) -> CropMetadata:
    """Describe where the window sits in the original raster."""
    x = round_half_up(rect.x)
    y = round_half_up(rect.y)
    cw, ch = window.width, window.height
    return CropMetadata(
        original_dimensions=Dimensions(width=raster_width, height=raster_height),
        crop_box=CropBox(x=x, y=y, width=cw, height=ch, right=x + cw, bottom=y + ch),
        cropped_from=Margins(
            top=y,
            right=round_half_up(raster_width - (rect.x + cw)),
            bottom=round_half_up(raster_height - (rect.y + ch)),
            left=x,
        ),
        remaining_area=RemainingArea(
            width_percent=round2(cw / raster_width),
            height_percent=round2(ch / raster_height),
            area_percent=round2(cw * ch / (raster_width * raster_height) * 100),
        ),
        timestamp=timestamp,
        folder_name=folder_name,
    )


def _stale(report: ValidationReport, window: CropWindow, raster_size: tuple[int, int]) -> list[str]:
    problems: list[str] = []
    cropped = report.details.get("croppedDimensions")
    if cropped != {"width": window.width, "height": window.height}:
        problems.append(
            f"Report is stale: it describes a {cropped} crop, export window is "
            f"{window.width}x{window.height}"
        )
    original = report.details.get("originalDimensions")
    if original != {"width": raster_size[0], "height": raster_size[1]}:
        problems.append(
            f"Report is stale: it describes a {original} raster, got "
            f"{raster_size[0]}x{raster_size[1]}"
        )
    return problems


def export_bundle(
    raster_bytes: bytes,
    depth: NumericArray,
    rect: Rect,
    report: ValidationReport,
    *,
    now: datetime | None = None,
    folder_prefix: str = DEFAULT_FOLDER_PREFIX,
) -> ExportBundle:
    """Build the export bundle for a validated crop.

    Args:
        raster_bytes: Encoded RGB image exactly as loaded.
        depth: Decoded depth array matching the raster size.
        rect: Crop rectangle the report was computed for.
        report: Result of `validate` for the same inputs.
        now: Export time; defaults to the current UTC time.
        folder_prefix: Prefix of the bundle folder name.

    Raises:
        ValidationBlockedError: If the report is invalid or does not describe
            these inputs. Nothing is decoded or encoded in that case.
        ExportError: If slicing or encoding fails; no partial bundle is returned.
    """
    if not report.is_valid:
        raise ValidationBlockedError(report.issues)

    dims = report.details["originalDimensions"]
    raster_w, raster_h = int(dims["width"]), int(dims["height"])
    window = crop_window(rect, raster_w, raster_h)

    try:
        with open_raster(raster_bytes) as img:
            stale = _stale(report, window, img.size)
            if stale:
                raise ValidationBlockedError(stale)

            original_rgb = raster_bytes if img.format == "PNG" else img_to_png_bytes(img)
            cropped_rgb = img_to_png_bytes(img.crop(window.as_box()))

        grid = depth.as_grid()
        cropped_depth = grid[window.start_y : window.end_y, window.start_x : window.end_x]
        original_npy = encode(depth.data, depth.shape)
        cropped_npy = encode(cropped_depth, (window.height, window.width))

        stamp = iso_timestamp(now or datetime.now(timezone.utc))
        folder_name = folder_name_for(stamp, folder_prefix)
        metadata = build_metadata(rect, window, raster_w, raster_h, stamp, folder_name)
        metadata_json = metadata.to_json().encode("utf-8")
    except (FormatError, OSError, ValueError) as e:
        raise ExportError(f"Error creating export bundle: {e}") from e

    LOG.info(
        "Exported %dx%d crop at (%d, %d) as %s",
        window.width,
        window.height,
        window.start_x,
        window.start_y,
        folder_name,
    )
    return ExportBundle(
        folder_name=folder_name,
        original=BundleGroup("original", {RGB_NAME: original_rgb, DEPTH_NAME: original_npy}),
        crop=BundleGroup(
            "crop",
            {RGB_NAME: cropped_rgb, DEPTH_NAME: cropped_npy, METADATA_NAME: metadata_json},
        ),
        metadata=metadata,
        window=window,
    )
