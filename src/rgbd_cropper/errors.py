"""Error taxonomy for decoding, validation and export."""

from __future__ import annotations

from collections.abc import Sequence


class CropperError(Exception):
    """Base class for every error raised by the cropper core."""


class FormatError(CropperError, ValueError):
    """Raised when an input asset (depth array or raster) cannot be decoded."""


class UnsupportedShapeError(CropperError, ValueError):
    """Raised when a depth array is neither (H, W) nor (H, W, 1)."""

    def __init__(self, shape: Sequence[int]) -> None:
        self.shape = tuple(shape)
        super().__init__(f"Unsupported depth data format: shape {self.shape}")


class DimensionMismatchError(CropperError):
    """RGB and depth sizes disagree.

    Validation never raises this; it renders it into a report issue so that the
    message stays identical wherever the mismatch is reported.
    """

    def __init__(self, rgb_size: tuple[int, int], depth_size: tuple[int, int]) -> None:
        self.rgb_size = rgb_size
        self.depth_size = depth_size
        super().__init__(
            "RGB and Depth dimensions do not match: "
            f"RGB ({rgb_size[0]}x{rgb_size[1]}) vs Depth ({depth_size[0]}x{depth_size[1]})"
        )


class ValidationBlockedError(CropperError):
    """Raised when export is attempted against an invalid or stale report."""

    def __init__(self, issues: Sequence[str]) -> None:
        self.issues = tuple(issues)
        super().__init__(self.summary())

    def summary(self, max_items: int = 8) -> str:
        """Return a short human-readable list of the blocking issues."""
        lines = ["Export blocked by validation:"]
        lines.extend(f"  - {issue}" for issue in self.issues[:max_items])
        if len(self.issues) > max_items:
            lines.append(f"  ... and {len(self.issues) - max_items} more")
        return "\n".join(lines)


class ExportError(CropperError):
    """Raised when slicing or encoding fails while building an export bundle."""
