"""Viewport state for an interactive Mandelbrot session."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

DEFAULT_MIN_X = -2.2
DEFAULT_MAX_X = 0.75
DEFAULT_MIN_Y = -1.2
DEFAULT_MAX_Y = 1.2
DEFAULT_MAX_ITERATIONS = 50
PAN_FACTOR = 0.05
ZOOM_FACTOR = 1.01


class ViewportError(ValueError):
    """Raised when a viewport would become degenerate or inverted."""


class PanDirection(Enum):
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"


class ZoomDirection(Enum):
    IN = "in"
    OUT = "out"


@dataclass(frozen=True)
class FrameDimensions:
    """Pixel size of a frame buffer."""

    width: int
    height: int

    def __post_init__(self) -> None:
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise ValueError(f"Frame dimensions must be positive, got {self.width}x{self.height}.")

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def byte_length(self) -> int:
        return self.pixel_count * 4

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


DEFAULT_DIMENSIONS = FrameDimensions(1280, 720)


@dataclass(frozen=True)
class ViewportSnapshot:
    """Immutable copy of the bounds and iteration cap used for one render pass."""

    min_x: float
    max_x: float
    min_y: float
    max_y: float
    max_iterations: int


def _check_bounds(min_x: float, max_x: float, min_y: float, max_y: float) -> None:
    if not all(math.isfinite(v) for v in (min_x, max_x, min_y, max_y)):
        raise ViewportError("Viewport bounds must be finite.")
    if not min_x < max_x:
        raise ViewportError(f"min_x ({min_x!r}) must be less than max_x ({max_x!r}).")
    if not min_y < max_y:
        raise ViewportError(f"min_y ({min_y!r}) must be less than max_y ({max_y!r}).")


@dataclass
class Viewport:
    """Visible rectangle of the complex plane plus the escape-time cap.

    Every mutation marks the viewport dirty; the caller clears the flag with
    :meth:`mark_rendered` once a frame built from the current state has been
    drawn.
    """

    min_x: float = DEFAULT_MIN_X
    max_x: float = DEFAULT_MAX_X
    min_y: float = DEFAULT_MIN_Y
    max_y: float = DEFAULT_MAX_Y
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    pan_factor: float = PAN_FACTOR
    zoom_factor: float = ZOOM_FACTOR
    _dirty: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.min_x = float(self.min_x)
        self.max_x = float(self.max_x)
        self.min_y = float(self.min_y)
        self.max_y = float(self.max_y)
        _check_bounds(self.min_x, self.max_x, self.min_y, self.max_y)
        if int(self.max_iterations) < 1:
            raise ViewportError("max_iterations must be at least 1.")
        self.max_iterations = int(self.max_iterations)
        if not self.pan_factor > 0:
            raise ViewportError("pan_factor must be positive.")
        if not self.zoom_factor > 1:
            raise ViewportError("zoom_factor must be greater than 1.")

    @property
    def span(self) -> tuple[float, float]:
        return self.max_x - self.min_x, self.max_y - self.min_y

    @property
    def center(self) -> tuple[float, float]:
        return (self.min_x + self.max_x) / 2.0, (self.min_y + self.max_y) / 2.0

    def snapshot(self) -> ViewportSnapshot:
        return ViewportSnapshot(
            min_x=self.min_x,
            max_x=self.max_x,
            min_y=self.min_y,
            max_y=self.max_y,
            max_iterations=self.max_iterations,
        )

    def _set_bounds(self, min_x: float, max_x: float, min_y: float, max_y: float) -> None:
        _check_bounds(min_x, max_x, min_y, max_y)
        self.min_x, self.max_x, self.min_y, self.max_y = min_x, max_x, min_y, max_y
        self._dirty = True

    def pan(self, direction: PanDirection) -> None:
        """Shift the rectangle by ``pan_factor`` of its span along one axis."""

        direction = PanDirection(direction)
        min_x, max_x, min_y, max_y = self.min_x, self.max_x, self.min_y, self.max_y
        if direction in (PanDirection.LEFT, PanDirection.RIGHT):
            delta = self.pan_factor * abs(max_x - min_x)
            if direction is PanDirection.LEFT:
                delta = -delta
            min_x, max_x = min_x + delta, max_x + delta
        else:
            delta = self.pan_factor * abs(max_y - min_y)
            if direction is PanDirection.UP:
                delta = -delta
            min_y, max_y = min_y + delta, max_y + delta
        self._set_bounds(min_x, max_x, min_y, max_y)

    def pan_left(self) -> None:
        self.pan(PanDirection.LEFT)

    def pan_right(self) -> None:
        self.pan(PanDirection.RIGHT)

    def pan_up(self) -> None:
        self.pan(PanDirection.UP)

    def pan_down(self) -> None:
        self.pan(PanDirection.DOWN)

    def zoom(self, direction: ZoomDirection) -> None:
        """Scale the rectangle about its current centre by ``zoom_factor``."""

        direction = ZoomDirection(direction)
        center_x, center_y = self.center
        bounds = (
            self.min_x - center_x,
            self.max_x - center_x,
            self.min_y - center_y,
            self.max_y - center_y,
        )
        if direction is ZoomDirection.IN:
            bounds = tuple(b / self.zoom_factor for b in bounds)
        else:
            bounds = tuple(b * self.zoom_factor for b in bounds)
        self._set_bounds(
            bounds[0] + center_x,
            bounds[1] + center_x,
            bounds[2] + center_y,
            bounds[3] + center_y,
        )

    def zoom_in(self) -> None:
        self.zoom(ZoomDirection.IN)

    def zoom_out(self) -> None:
        self.zoom(ZoomDirection.OUT)

    def adjust_iterations(self, delta: int) -> None:
        self.max_iterations = max(1, self.max_iterations + int(delta))
        self._dirty = True

    def reset_iterations(self) -> None:
        self.max_iterations = DEFAULT_MAX_ITERATIONS
        self._dirty = True

    def reset_pan_and_zoom(self) -> None:
        self._set_bounds(DEFAULT_MIN_X, DEFAULT_MAX_X, DEFAULT_MIN_Y, DEFAULT_MAX_Y)

    def reset(self) -> None:
        self.reset_pan_and_zoom()
        self.reset_iterations()

    def needs_re_render(self) -> bool:
        return self._dirty

    def mark_rendered(self) -> None:
        self._dirty = False
