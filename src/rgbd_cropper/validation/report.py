"""Crop validation: a pure check of raster, depth array and rectangle consistency.

`validate` never raises for bad data. Blocking problems go to `issues`, soft
ones to `warnings`, and the computed numbers to `details` so the shell can
display them. The report is rebuilt from scratch on every call.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from rgbd_cropper.codec.npy import NumericArray, depth_dimensions
from rgbd_cropper.config import ValidationThresholds
from rgbd_cropper.errors import DimensionMismatchError, UnsupportedShapeError
from rgbd_cropper.geometry.rect import Rect, crop_window, round2, round_half_up

NOT_READY_ISSUE = "No crop area defined or data not loaded"
NON_FINITE_ISSUE = "Crop coordinates are not finite numbers"


@dataclass(frozen=True)
class ValidationReport:
    """Result of `validate`.

    Attributes:
        is_valid: True when `issues` is empty.
        issues: Blocking problems, in check order.
        warnings: Non-blocking remarks, in check order.
        details: Computed metrics keyed as the shell expects them (camelCase).
    """

    is_valid: bool
    issues: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)

    # details is a plain dict, so reports compare by value but are not hashable.
    __hash__ = None  # type: ignore[assignment]

    def summary(self) -> str:
        """Render issues and warnings as text lines."""
        lines = ["VALID" if self.is_valid else "INVALID"]
        lines.extend(f"  issue: {s}" for s in self.issues)
        lines.extend(f"  warning: {s}" for s in self.warnings)
        return "\n".join(lines)


def _border_check(
    axis: str,
    expected: int,
    actual: int,
    tolerance: int,
    issues: list[str],
    warnings: list[str],
) -> None:
    diff = abs(expected - actual)
    if diff > tolerance:
        issues.append(
            f"Critical {axis} mismatch: expected {expected}, got {actual} ({diff}px difference)"
        )
    elif diff > 0:
        warnings.append(f"Border adjusted by {diff}px on {axis} ({expected} -> {actual})")


def _valid_sample_percent(depth: NumericArray) -> tuple[int, float]:
    total = depth.size
    if total == 0:
        return 0, 0.0
    valid = int(np.count_nonzero(np.isfinite(depth.data)))
    return valid, valid / total * 100


def validate(
    raster_width: int,
    raster_height: int,
    depth: NumericArray | None,
    rect: Rect | None,
    *,
    thresholds: ValidationThresholds | None = None,
) -> ValidationReport:
    """Check that `rect` can be exported from a raster/depth pair.

    Args:
        raster_width, raster_height: Size of the decoded RGB raster.
        depth: Decoded depth array, or None if not loaded yet.
        rect: Current crop rectangle, or None if nothing is selected.
        thresholds: Warning limits; defaults to `ValidationThresholds()`.

    Returns:
        A fresh `ValidationReport`.
    """
    if depth is None or rect is None:
        return ValidationReport(is_valid=False, issues=(NOT_READY_ISSUE,))

    th = thresholds or ValidationThresholds()
    issues: list[str] = []
    warnings: list[str] = []
    details: dict[str, Any] = {}

    # 1. Depth shape
    depth_w: int | None = None
    depth_h: int | None = None
    try:
        depth_w, depth_h = depth_dimensions(depth.shape)
    except UnsupportedShapeError:
        issues.append("Unsupported depth data format")

    details["originalDimensions"] = {"width": raster_width, "height": raster_height}
    details["depthDimensions"] = {"width": depth_w, "height": depth_h}

    # 2. Raster / depth agreement
    dims_match = (raster_width, raster_height) == (depth_w, depth_h)
    if depth_w is not None and depth_h is not None and not dims_match:
        issues.append(str(DimensionMismatchError((raster_width, raster_height), (depth_w, depth_h))))
    details["dimensionsMatch"] = dims_match

    if not all(math.isfinite(v) for v in (rect.x, rect.y, rect.width, rect.height)):
        issues.append(NON_FINITE_ISSUE)
        return ValidationReport(is_valid=False, issues=tuple(issues), warnings=tuple(warnings), details=details)

    # 3. Float rectangle bounds
    details["cropBox"] = {
        "x": round_half_up(rect.x),
        "y": round_half_up(rect.y),
        "width": round_half_up(rect.width),
        "height": round_half_up(rect.height),
        "right": round_half_up(rect.right),
        "bottom": round_half_up(rect.bottom),
    }
    if rect.x < 0 or rect.y < 0:
        issues.append("Crop coordinates are negative")
    if rect.right > raster_width or rect.bottom > raster_height:
        issues.append("Crop extends beyond image boundaries")
    if rect.width <= 0 or rect.height <= 0:
        issues.append("Crop dimensions are invalid (zero or negative)")

    # 4. Coverage
    raster_area = raster_width * raster_height
    if raster_area > 0:
        area_percent = rect.area() / raster_area * 100
        details["areaPercent"] = round2(area_percent)
        if area_percent < th.area_min_percent:
            warnings.append(f"Crop area is very small (< {th.area_min_percent:g}%)")
        elif area_percent > th.area_max_percent:
            warnings.append(f"Crop area is very large (> {th.area_max_percent:g}%)")
    else:
        details["areaPercent"] = 0.0
        issues.append(f"Raster dimensions are invalid: {raster_width}x{raster_height}")

    # 5. Integer window, the ground truth for export
    window = crop_window(rect, raster_width, raster_height)
    details["croppedDimensions"] = {"width": window.width, "height": window.height}

    # 6. Rounding vs flooring
    expected_w = round_half_up(rect.width)
    expected_h = round_half_up(rect.height)
    details["borderValidation"] = {
        "expected": {"width": expected_w, "height": expected_h},
        "actual": {"width": window.width, "height": window.height},
        "widthDiff": abs(expected_w - window.width),
        "heightDiff": abs(expected_h - window.height),
    }
    _border_check("width", expected_w, window.width, th.border_tolerance_px, issues, warnings)
    _border_check("height", expected_h, window.height, th.border_tolerance_px, issues, warnings)

    # 7. Integer window re-check; overlaps step 3 on purpose
    if window.width <= 0 or window.height <= 0:
        issues.append(f"Invalid cropped dimensions: {window.width} x {window.height}")
    if window.width > raster_width or window.height > raster_height:
        issues.append("Cropped dimensions exceed original image bounds")
    if (
        window.start_x < 0
        or window.start_y < 0
        or window.end_x > raster_width
        or window.end_y > raster_height
    ):
        issues.append("Crop window extends beyond image boundaries")

    # 8. Depth sample quality
    valid, valid_percent = _valid_sample_percent(depth)
    details["dataQuality"] = {
        "totalPixels": depth.size,
        "validPixels": valid,
        "validPercentage": round2(valid_percent),
    }
    if valid_percent < th.min_valid_depth_percent:
        warnings.append(f"Low depth data quality: {valid_percent:.1f}% valid pixels")

    details["dtypeRecognized"] = depth.dtype_recognized
    if not depth.dtype_recognized:
        warnings.append(f"Unrecognized depth dtype {depth.descr!r} was read as float32")

    return ValidationReport(
        is_valid=not issues,
        issues=tuple(issues),
        warnings=tuple(warnings),
        details=details,
    )
