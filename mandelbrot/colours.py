"""Colour policies mapping escape-time counts to RGBA pixels."""

from __future__ import annotations

import numpy as np
from matplotlib.colors import hsv_to_rgb

INSIDE_COLOUR = (0, 0, 0, 255)

# Red, orange, yellow, green, blue, indigo, violet.
BAND_PALETTE = np.array(
    [
        (255, 0, 0),
        (255, 127, 0),
        (255, 255, 0),
        (0, 255, 0),
        (0, 0, 255),
        (75, 0, 130),
        (148, 0, 211),
    ],
    dtype=np.uint8,
)

PALETTES = ("hsl", "bands")


def _hsl_sweep(iterations: np.ndarray, max_iterations: int) -> np.ndarray:
    hue = 360.0 * iterations.astype(np.float64) / float(max_iterations)
    # HSL with full saturation and 50% lightness is HSV(h, 1, 1).
    hsv = np.stack((hue / 360.0 % 1.0, np.ones_like(hue), np.ones_like(hue)), axis=-1)
    rgb = hsv_to_rgb(hsv)
    return np.uint8(np.clip(rgb * 255, 0, 255))


def _bands(iterations: np.ndarray, max_iterations: int) -> np.ndarray:
    bucket = (iterations.astype(np.int64) * len(BAND_PALETTE)) // int(max_iterations)
    bucket = np.clip(bucket, 0, len(BAND_PALETTE) - 1)
    return BAND_PALETTE[bucket]


def colourize(iterations, max_iterations: int, palette: str = "hsl") -> np.ndarray:
    """Map an array of iteration counts to an ``(n, 4)`` uint8 RGBA array.

    Counts equal to ``max_iterations`` never escaped and get :data:`INSIDE_COLOUR`.
    """

    if palette not in PALETTES:
        raise ValueError(f"Unknown palette '{palette}'. Valid choices: {', '.join(PALETTES)}.")
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1.")

    iterations = np.asarray(iterations).reshape(-1)
    rgba = np.empty((iterations.size, 4), dtype=np.uint8)
    if palette == "hsl":
        rgba[:, :3] = _hsl_sweep(iterations, max_iterations)
    else:
        rgba[:, :3] = _bands(iterations, max_iterations)
    rgba[:, 3] = 255

    inside = iterations >= max_iterations
    rgba[inside] = INSIDE_COLOUR
    return rgba


def pixel_colour(iteration: int, max_iterations: int, palette: str = "hsl") -> tuple[int, int, int, int]:
    r, g, b, a = colourize(np.array([iteration]), max_iterations, palette)[0]
    return int(r), int(g), int(b), int(a)
