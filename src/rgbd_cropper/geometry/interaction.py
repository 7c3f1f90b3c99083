"""Pointer-driven crop rectangle state machine.

Pressing outside the current rectangle (or when there is none) starts a new
one; pressing inside it drags it around. Moves are clamped to the canvas,
creation is not, so an out-of-bounds rectangle is possible and left for
validation to report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Literal

from .rect import Rect

LOG = logging.getLogger(__name__)


class Mode(Enum):
    IDLE = "idle"
    CREATING = "creating"
    MOVING = "moving"


@dataclass(frozen=True)
class PointerDown:
    x: float
    y: float


@dataclass(frozen=True)
class PointerMove:
    x: float
    y: float


@dataclass(frozen=True)
class PointerUp:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Clear:
    pass


PointerEvent = PointerDown | PointerMove | PointerUp | Reset | Clear


@dataclass(frozen=True)
class CropGeometryState:
    """Immutable snapshot of the crop interaction.

    Attributes:
        canvas_width, canvas_height: Raster size used to clamp moves.
        mode: Current interaction mode.
        rect: Current rectangle, or None when nothing is selected.
        anchor: Creation start point (CREATING) or pointer offset from the
            rectangle origin (MOVING).
    """

    canvas_width: int
    canvas_height: int
    mode: Mode = Mode.IDLE
    rect: Rect | None = None
    anchor: tuple[float, float] = (0.0, 0.0)

    @classmethod
    def initial(cls, canvas_width: int, canvas_height: int) -> CropGeometryState:
        return cls(canvas_width=canvas_width, canvas_height=canvas_height)


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(v, hi))


def apply_pointer_event(state: CropGeometryState, event: PointerEvent) -> CropGeometryState:
    """Return the state that follows `event`; unmatched events return `state` unchanged."""
    if isinstance(event, (Reset, Clear)):
        return replace(state, mode=Mode.IDLE, rect=None, anchor=(0.0, 0.0))

    if isinstance(event, PointerDown):
        rect = state.rect
        if rect is not None and rect.contains(event.x, event.y):
            return replace(state, mode=Mode.MOVING, anchor=(event.x - rect.x, event.y - rect.y))
        return replace(
            state,
            mode=Mode.CREATING,
            rect=Rect(x=event.x, y=event.y, width=0.0, height=0.0),
            anchor=(event.x, event.y),
        )

    if isinstance(event, PointerMove):
        if state.mode is Mode.CREATING:
            ax, ay = state.anchor
            return replace(state, rect=Rect.spanning(ax, ay, event.x, event.y))
        if state.mode is Mode.MOVING and state.rect is not None:
            rect = state.rect
            ox, oy = state.anchor
            x = _clamp(event.x - ox, 0.0, state.canvas_width - rect.width)
            y = _clamp(event.y - oy, 0.0, state.canvas_height - rect.height)
            return replace(state, rect=rect.moved_to(x, y))
        return state

    if isinstance(event, PointerUp) and state.mode is not Mode.IDLE:
        return replace(state, mode=Mode.IDLE)

    return state


def cursor_hint(state: CropGeometryState, x: float, y: float) -> Literal["move", "crosshair"]:
    """Cursor the shell should show with the pointer at (x, y)."""
    if state.mode is Mode.MOVING:
        return "move"
    if state.mode is Mode.CREATING:
        return "crosshair"
    if state.rect is not None and state.rect.contains(x, y):
        return "move"
    return "crosshair"


class CropGeometry:
    """Mutable holder around `CropGeometryState` for callers that keep one selection.

    Not reentrant: feed events in arrival order from a single thread.
    """

    def __init__(self, canvas_width: int, canvas_height: int) -> None:
        self._state = CropGeometryState.initial(canvas_width, canvas_height)

    @property
    def state(self) -> CropGeometryState:
        return self._state

    @property
    def rect(self) -> Rect | None:
        return self._state.rect

    @property
    def mode(self) -> Mode:
        return self._state.mode

    def handle(self, event: PointerEvent) -> bool:
        """Apply `event`; return True if the state changed."""
        new_state = apply_pointer_event(self._state, event)
        if new_state is self._state:
            LOG.debug("Ignoring %s in mode %s", type(event).__name__, self._state.mode.value)
            return False
        self._state = new_state
        return True

    def resize_canvas(self, canvas_width: int, canvas_height: int) -> None:
        """Change the clamp bounds (e.g. after loading another raster); the selection is kept."""
        self._state = replace(self._state, canvas_width=canvas_width, canvas_height=canvas_height)
