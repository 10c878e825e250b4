import sys
from pathlib import Path

import numpy as np
import pytest

# Add repo root to path
ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from mandelbrot.colours import BAND_PALETTE, INSIDE_COLOUR, colourize, pixel_colour


@pytest.mark.parametrize("palette", ["hsl", "bands"])
@pytest.mark.parametrize("max_iterations", [1, 35, 1000])
def test_never_escaped_is_black(palette, max_iterations):
    assert pixel_colour(max_iterations, max_iterations, palette) == (0, 0, 0, 255)
    assert INSIDE_COLOUR == (0, 0, 0, 255)


def test_hsl_sweep_hues():
    # Hue 0 is red, 90 is chartreuse, 180 is cyan.
    assert pixel_colour(0, 50) == (255, 0, 0, 255)
    assert pixel_colour(1, 4) == (127, 255, 0, 255)
    assert pixel_colour(25, 50) == (0, 255, 255, 255)


def test_escaped_points_are_never_black():
    colours = colourize(np.arange(50), 50)
    assert not np.any(np.all(colours[:, :3] == 0, axis=1))


def test_bands_bucket_escape_speed():
    assert pixel_colour(0, 50, "bands") == (255, 0, 0, 255)
    assert pixel_colour(49, 50, "bands") == (*BAND_PALETTE[-1], 255)
    colours = colourize(np.arange(7), 7, "bands")
    np.testing.assert_array_equal(colours[:, :3], BAND_PALETTE)


@pytest.mark.parametrize("palette", ["hsl", "bands"])
def test_alpha_is_opaque(palette):
    colours = colourize(np.arange(101), 100, palette)
    assert colours.shape == (101, 4)
    assert colours.dtype == np.uint8
    assert np.all(colours[:, 3] == 255)


def test_scalar_matches_vectorised():
    iterations = np.arange(36)
    colours = colourize(iterations, 35)
    for iteration, expected in zip(iterations, colours):
        assert pixel_colour(int(iteration), 35) == tuple(int(v) for v in expected)


def test_invalid_arguments():
    with pytest.raises(ValueError):
        colourize([1, 2], 10, "viridis")
    with pytest.raises(ValueError):
        pixel_colour(0, 0)
