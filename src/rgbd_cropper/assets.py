"""Input asset handling: extension sniffing and raster probing."""

from __future__ import annotations

import io
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import PurePath
from typing import Literal

from PIL import Image, UnidentifiedImageError

from rgbd_cropper.config import DEFAULT_DEPTH_EXTENSIONS, DEFAULT_RASTER_EXTENSIONS
from rgbd_cropper.errors import FormatError

AssetKind = Literal["raster", "depth"]

# Modes PNG can store without conversion.
PNG_MODES = frozenset({"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"})


@dataclass(frozen=True)
class RasterInfo:
    """Size and codec of a raster, as reported by Pillow."""

    width: int
    height: int
    format: str | None
    mode: str


def classify_asset(
    name: str,
    raster_extensions: Iterable[str] = DEFAULT_RASTER_EXTENSIONS,
    depth_extensions: Iterable[str] = DEFAULT_DEPTH_EXTENSIONS,
) -> AssetKind | None:
    """Decide what a file is from its extension only (content is not inspected)."""
    suffix = PurePath(name).suffix.lower()
    if suffix in set(raster_extensions):
        return "raster"
    if suffix in set(depth_extensions):
        return "depth"
    return None


def open_raster(data: bytes) -> Image.Image:
    """Decode raster bytes with Pillow.

    Raises:
        FormatError: If Pillow cannot identify or decode the image.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise FormatError(f"Could not decode raster image: {e}") from e
    return img


def probe_raster(data: bytes) -> RasterInfo:
    """Return the raster size without keeping the decoded image around."""
    with open_raster(data) as img:
        w, h = img.size
        return RasterInfo(width=w, height=h, format=img.format, mode=img.mode)


def img_to_png_bytes(img: Image.Image) -> bytes:
    """Encode an image losslessly as PNG, converting modes PNG cannot hold to RGB."""
    if img.mode not in PNG_MODES:
        img = img.convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
