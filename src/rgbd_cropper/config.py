"""Runtime configuration: validation thresholds, export naming, accepted file types."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

LOG = logging.getLogger(__name__)

CONFIG_ENV: Final[str] = "RGBD_CROPPER_CONFIG"
DEFAULT_FOLDER_PREFIX: Final[str] = "rgbd_crop"
DEFAULT_RASTER_EXTENSIONS: Final[tuple[str, ...]] = (".png", ".jpg", ".jpeg")
DEFAULT_DEPTH_EXTENSIONS: Final[tuple[str, ...]] = (".npy",)


@dataclass(frozen=True)
class ValidationThresholds:
    """Limits used by `validate`.

    Attributes:
        area_min_percent: Warn when the crop covers less of the raster than this.
        area_max_percent: Warn when the crop covers more of the raster than this.
        border_tolerance_px: Largest rounding difference between the rectangle
            and the integer window that is only a warning.
        min_valid_depth_percent: Warn when fewer depth samples are finite.
    """

    area_min_percent: float = 1.0
    area_max_percent: float = 95.0
    border_tolerance_px: int = 1
    min_valid_depth_percent: float = 90.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.area_min_percent <= self.area_max_percent <= 100.0:
            raise ValueError(
                "Expected 0 <= area_min_percent <= area_max_percent <= 100, got "
                f"{self.area_min_percent} / {self.area_max_percent}"
            )
        if self.border_tolerance_px < 0:
            raise ValueError(f"border_tolerance_px must be >= 0, got {self.border_tolerance_px}")
        if not 0.0 <= self.min_valid_depth_percent <= 100.0:
            raise ValueError(
                f"min_valid_depth_percent must be in [0, 100], got {self.min_valid_depth_percent}"
            )


@dataclass(frozen=True)
class CropperConfig:
    """Top-level configuration for sessions and the CLI."""

    thresholds: ValidationThresholds = field(default_factory=ValidationThresholds)
    folder_prefix: str = DEFAULT_FOLDER_PREFIX
    raster_extensions: tuple[str, ...] = DEFAULT_RASTER_EXTENSIONS
    depth_extensions: tuple[str, ...] = DEFAULT_DEPTH_EXTENSIONS

    def __post_init__(self) -> None:
        if not self.folder_prefix or any(c in self.folder_prefix for c in '/\\:*?"<>|'):
            raise ValueError(f"folder_prefix must be a non-empty file name, got {self.folder_prefix!r}")
        overlap = set(self.raster_extensions) & set(self.depth_extensions)
        if overlap:
            raise ValueError(f"Extensions cannot be both raster and depth: {sorted(overlap)}")

    @classmethod
    def from_yaml(cls, path: Path) -> CropperConfig:
        """Load a configuration file.

        Raises:
            ValueError: If the file is not YAML or does not match the expected schema.
        """
        with path.open("r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid cropper config {path}: {e}") from e
        try:
            parsed = _ConfigFile.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Invalid cropper config {path}:\n{e}") from e

        LOG.info("Loaded cropper config from %s", path)
        return cls(
            thresholds=ValidationThresholds(**parsed.thresholds.model_dump()),
            folder_prefix=parsed.folder_prefix,
            raster_extensions=tuple(parsed.raster_extensions),
            depth_extensions=tuple(parsed.depth_extensions),
        )

    @classmethod
    def from_env(cls) -> CropperConfig:
        """Load the file named by $RGBD_CROPPER_CONFIG, or return defaults."""
        raw = os.environ.get(CONFIG_ENV)
        if not raw:
            return cls()
        path = Path(raw).expanduser()
        if not path.is_file():
            raise FileNotFoundError(f"{CONFIG_ENV} points to a missing file: {path}")
        return cls.from_yaml(path)


class _ThresholdsFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    area_min_percent: float = Field(default=1.0, ge=0.0, le=100.0)
    area_max_percent: float = Field(default=95.0, ge=0.0, le=100.0)
    border_tolerance_px: int = Field(default=1, ge=0)
    min_valid_depth_percent: float = Field(default=90.0, ge=0.0, le=100.0)


class _ConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    thresholds: _ThresholdsFile = Field(default_factory=_ThresholdsFile)
    folder_prefix: str = DEFAULT_FOLDER_PREFIX
    raster_extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_RASTER_EXTENSIONS))
    depth_extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_DEPTH_EXTENSIONS))

    @model_validator(mode="after")
    def _normalize_extensions(self) -> _ConfigFile:
        def norm(exts: list[str]) -> list[str]:
            out = []
            for e in exts:
                e = e.strip().lower()
                if e and not e.startswith("."):
                    e = "." + e
                if e:
                    out.append(e)
            return out

        self.raster_extensions = norm(self.raster_extensions)
        self.depth_extensions = norm(self.depth_extensions)
        return self
