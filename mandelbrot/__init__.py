"""Public API for Mandelbrot rendering utilities."""

from .colours import INSIDE_COLOUR, PALETTES, colourize, pixel_colour
from .renderer import (
    allocate_buffer,
    available_parallelism,
    escape_time,
    escape_time_grid,
    partition,
    pixel_to_complex,
    render_frame,
)
from .viewport import (
    DEFAULT_DIMENSIONS,
    FrameDimensions,
    PanDirection,
    Viewport,
    ViewportError,
    ViewportSnapshot,
    ZoomDirection,
)

__all__ = [
    "DEFAULT_DIMENSIONS",
    "FrameDimensions",
    "INSIDE_COLOUR",
    "PALETTES",
    "PanDirection",
    "Viewport",
    "ViewportError",
    "ViewportSnapshot",
    "ZoomDirection",
    "allocate_buffer",
    "available_parallelism",
    "colourize",
    "escape_time",
    "escape_time_grid",
    "partition",
    "pixel_colour",
    "pixel_to_complex",
    "render_frame",
]
