"""Crop rectangle value type and the integer crop window shared by validation and export."""

from __future__ import annotations

import math
from dataclasses import dataclass


def round_half_up(v: float) -> int:
    """Round to the nearest integer, halves toward +inf (2.5 -> 3, -2.5 -> -2)."""
    return math.floor(v + 0.5)


def round2(v: float) -> float:
    """Round to two decimals with `round_half_up` semantics."""
    return round_half_up(v * 100) / 100


@dataclass(frozen=True)
class Rect:
    """Floating-point crop rectangle in raster pixel space.

    Attributes:
        x, y: Top-left corner.
        width, height: Extent; zero while a rectangle is being created.
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def area(self) -> float:
        """Return the rectangle area in pixels squared."""
        return self.width * self.height

    def contains(self, px: float, py: float) -> bool:
        """Return True if the point lies inside the rectangle, edges included."""
        return self.x <= px <= self.right and self.y <= py <= self.bottom

    def moved_to(self, x: float, y: float) -> Rect:
        return Rect(x=x, y=y, width=self.width, height=self.height)

    @classmethod
    def spanning(cls, ax: float, ay: float, bx: float, by: float) -> Rect:
        """Axis-aligned rectangle spanning two corner points, in any order."""
        return cls(x=min(ax, bx), y=min(ay, by), width=abs(bx - ax), height=abs(by - ay))


@dataclass(frozen=True)
class CropWindow:
    """Pixel-aligned window actually extracted at export time (end-exclusive)."""

    start_x: int
    start_y: int
    end_x: int
    end_y: int

    @property
    def width(self) -> int:
        return self.end_x - self.start_x

    @property
    def height(self) -> int:
        return self.end_y - self.start_y

    def as_box(self) -> tuple[int, int, int, int]:
        """Return (left, upper, right, lower) as expected by `PIL.Image.crop`."""
        return self.start_x, self.start_y, self.end_x, self.end_y


def crop_window(rect: Rect, raster_width: int, raster_height: int) -> CropWindow:
    """Floor the rectangle to pixels, clamping the far edges to the raster.

    Validation and export must both go through this function so that the
    previewed and exported crops can never disagree.
    """
    start_x = math.floor(rect.x)
    start_y = math.floor(rect.y)
    end_x = min(math.floor(rect.x + rect.width), raster_width)
    end_y = min(math.floor(rect.y + rect.height), raster_height)
    return CropWindow(start_x=start_x, start_y=start_y, end_x=end_x, end_y=end_y)
