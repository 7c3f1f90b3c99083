"""Caller-side orchestration of one crop: assets, selection, validation, export.

Every mutation (asset load, pointer event, reset) is followed by a call to
`validate`, so `report` always describes the current inputs.
"""

from __future__ import annotations

import logging
from datetime import datetime

from rgbd_cropper.assets import AssetKind, RasterInfo, classify_asset, probe_raster
from rgbd_cropper.codec.npy import NumericArray, decode_depth
from rgbd_cropper.config import CropperConfig
from rgbd_cropper.errors import FormatError, ValidationBlockedError
from rgbd_cropper.export.bundle import ExportBundle, export_bundle
from rgbd_cropper.geometry.interaction import Clear, CropGeometry, PointerEvent
from rgbd_cropper.geometry.rect import Rect
from rgbd_cropper.validation.report import ValidationReport, validate

LOG = logging.getLogger(__name__)


class CropSession:
    """State of one RGB/depth pair being cropped."""

    def __init__(self, config: CropperConfig | None = None) -> None:
        self.config = config or CropperConfig()
        self._raster: bytes | None = None
        self._raster_info: RasterInfo | None = None
        self._depth: NumericArray | None = None
        self._geometry: CropGeometry | None = None
        self._report = ValidationReport(is_valid=False)
        self._revalidate()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def raster_info(self) -> RasterInfo | None:
        return self._raster_info

    @property
    def depth(self) -> NumericArray | None:
        return self._depth

    @property
    def rect(self) -> Rect | None:
        return self._geometry.rect if self._geometry is not None else None

    @property
    def geometry(self) -> CropGeometry | None:
        return self._geometry

    @property
    def report(self) -> ValidationReport:
        return self._report

    @property
    def can_export(self) -> bool:
        return self._report.is_valid

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def load_raster(self, data: bytes) -> RasterInfo:
        """Load the RGB image; an existing selection is kept and re-validated against the new size."""
        info = probe_raster(data)
        self._raster = bytes(data)
        self._raster_info = info
        if self._geometry is None:
            self._geometry = CropGeometry(info.width, info.height)
        else:
            self._geometry.resize_canvas(info.width, info.height)
        LOG.info("Loaded raster %dx%d (%s)", info.width, info.height, info.format)
        self._revalidate()
        return info

    def load_depth(self, data: bytes) -> NumericArray:
        """Decode and load the depth array."""
        depth = decode_depth(data)
        self._depth = depth
        LOG.info("Loaded depth array %s %s", depth.dtype, depth.shape)
        self._revalidate()
        return depth

    def load_file(self, name: str, data: bytes) -> AssetKind:
        """Load a dropped or picked file, dispatching on its extension.

        Raises:
            FormatError: If the extension is not an accepted raster or depth type,
                or the content cannot be decoded.
        """
        kind = classify_asset(name, self.config.raster_extensions, self.config.depth_extensions)
        if kind == "raster":
            self.load_raster(data)
        elif kind == "depth":
            self.load_depth(data)
        else:
            raise FormatError(f"Unsupported file type: {name}")
        return kind

    def apply(self, event: PointerEvent) -> bool:
        """Feed a pointer event to the crop geometry; ignored until a raster is loaded."""
        if self._geometry is None:
            return False
        changed = self._geometry.handle(event)
        if changed:
            self._revalidate()
        return changed

    def clear_crop(self) -> None:
        """Discard the selection, keeping the loaded assets."""
        self.apply(Clear())

    def reset_all(self) -> None:
        """Discard assets and selection."""
        self._raster = None
        self._raster_info = None
        self._depth = None
        self._geometry = None
        self._revalidate()

    # ------------------------------------------------------------------
    # Validation / export
    # ------------------------------------------------------------------

    def _revalidate(self) -> None:
        info = self._raster_info
        if info is None:
            self._report = validate(0, 0, None, None, thresholds=self.config.thresholds)
            return
        self._report = validate(
            info.width,
            info.height,
            self._depth,
            self.rect,
            thresholds=self.config.thresholds,
        )

    def export(self, now: datetime | None = None) -> ExportBundle:
        """Export the current crop.

        Raises:
            ValidationBlockedError: If the current report is not valid.
            ExportError: If slicing or encoding fails.
        """
        rect = self.rect
        if not self._report.is_valid or self._raster is None or self._depth is None or rect is None:
            raise ValidationBlockedError(self._report.issues)
        return export_bundle(
            self._raster,
            self._depth,
            rect,
            self._report,
            now=now,
            folder_prefix=self.config.folder_prefix,
        )
