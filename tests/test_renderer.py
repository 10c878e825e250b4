import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
import pytest

# Add repo root to path
ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from mandelbrot import (
    FrameDimensions,
    Viewport,
    allocate_buffer,
    escape_time,
    escape_time_grid,
    partition,
    pixel_colour,
    pixel_to_complex,
    render_frame,
)


def render(dimensions, viewport, threads, **kwargs):
    buffer = allocate_buffer(dimensions)
    render_frame(buffer, dimensions, viewport, threads, **kwargs)
    return buffer


def test_transform_corners():
    viewport = Viewport()
    dimensions = FrameDimensions(4, 4)
    assert pixel_to_complex(0, 0, dimensions, viewport) == (-2.2, -1.2)
    real, imag = pixel_to_complex(2, 2, dimensions, viewport)
    assert real == pytest.approx(-2.2 + 2 * 2.95 / 4)
    assert imag == pytest.approx(0.0)


def test_transform_is_affine_and_monotonic():
    viewport = Viewport()
    dimensions = FrameDimensions(17, 11)
    x_step = (viewport.max_x - viewport.min_x) / dimensions.width
    y_step = (viewport.max_y - viewport.min_y) / dimensions.height
    for x in range(dimensions.width - 1):
        for y in range(dimensions.height - 1):
            real, imag = pixel_to_complex(x, y, dimensions, viewport)
            next_real, _ = pixel_to_complex(x + 1, y, dimensions, viewport)
            _, next_imag = pixel_to_complex(x, y + 1, dimensions, viewport)
            assert next_real - real == pytest.approx(x_step, abs=1e-12)
            assert next_imag - imag == pytest.approx(y_step, abs=1e-12)


def test_transform_arrays_match_scalars():
    viewport = Viewport()
    dimensions = FrameDimensions(7, 5)
    xs = np.arange(7)
    ys = np.full(7, 3)
    reals, imags = pixel_to_complex(xs, ys, dimensions, viewport)
    for x in range(7):
        assert (reals[x], imags[x]) == pixel_to_complex(x, 3, dimensions, viewport)


@pytest.mark.parametrize("max_iterations", [1, 2, 35, 1000])
def test_origin_never_escapes(max_iterations):
    assert escape_time(0j, max_iterations) == max_iterations


@pytest.mark.parametrize("max_iterations", [1, 2, 35, 1000])
def test_far_point_escapes_on_first_check(max_iterations):
    assert escape_time(3 + 0j, max_iterations) == 1


def test_known_orbits():
    # 1 -> 1, 2, 5; 0.5 leaves the disc after five steps; -1 cycles forever.
    assert escape_time(1 + 0j, 100) == 3
    assert escape_time(0.5 + 0j, 100) == 5
    assert escape_time(-1 + 0j, 100) == 100
    assert escape_time(1j, 100) == 100


def test_grid_matches_scalar():
    points = [0j, 3 + 0j, 1 + 0j, 0.5 + 0j, -1 + 0j, 1j, -0.75 + 0.1j, 0.3 - 0.5j, -2.2 - 1.2j]
    reals = [p.real for p in points]
    imags = [p.imag for p in points]
    for max_iterations in (1, 7, 100):
        counts = escape_time_grid(reals, imags, max_iterations)
        assert counts.tolist() == [escape_time(p, max_iterations) for p in points]


def test_grid_rejects_mismatched_inputs():
    with pytest.raises(ValueError):
        escape_time_grid([0.0, 1.0], [0.0], 10)


@pytest.mark.parametrize("length", [4, 60, 64, 4 * 37, 1280 * 720 * 4])
@pytest.mark.parametrize("threads", range(1, 17))
def test_partition_is_pixel_aligned_and_complete(length, threads):
    chunks = partition(length, threads)
    assert 1 <= len(chunks) <= threads
    assert chunks[0][0] == 0
    assert chunks[-1][1] == length
    chunk_size = chunks[0][1] - chunks[0][0]
    assert chunk_size % 4 == 0
    assert chunk_size * threads >= length
    for (start, stop), (next_start, _) in zip(chunks, chunks[1:]):
        assert stop == next_start
        assert stop - start == chunk_size
    for start, stop in chunks:
        assert start % 4 == 0 and stop % 4 == 0 and stop > start


def test_partition_examples():
    assert partition(64, 4) == [(0, 16), (16, 32), (32, 48), (48, 64)]
    assert partition(64, 5) == [(0, 16), (16, 32), (32, 48), (48, 64)]
    assert partition(60, 7) == [(0, 12), (12, 24), (24, 36), (36, 48), (48, 60)]
    assert partition(4, 16) == [(0, 4)]


def test_partition_rejects_bad_input():
    with pytest.raises(ValueError):
        partition(64, 0)
    with pytest.raises(ValueError):
        partition(6, 1)


def test_render_rejects_contract_violations():
    dimensions = FrameDimensions(4, 4)
    viewport = Viewport()

    buffer = bytearray(b"\x07" * 64)
    with pytest.raises(ValueError):
        render_frame(buffer, dimensions, viewport, 0)
    assert buffer == bytearray(b"\x07" * 64)

    with pytest.raises(ValueError):
        render_frame(bytearray(60), dimensions, viewport, 1)
    with pytest.raises(ValueError):
        render_frame(bytes(64), dimensions, viewport, 1)
    with pytest.raises(ValueError):
        render_frame(np.zeros(64, dtype=np.float32), dimensions, viewport, 1)
    with pytest.raises(ValueError):
        render_frame(bytearray(64), dimensions, viewport, 1, palette="viridis")


def test_render_matches_per_pixel_pipeline():
    viewport = Viewport()
    dimensions = FrameDimensions(9, 5)
    frame = render(dimensions, viewport, 3).reshape(dimensions.height, dimensions.width, 4)
    for y in range(dimensions.height):
        for x in range(dimensions.width):
            c = complex(*pixel_to_complex(x, y, dimensions, viewport))
            expected = pixel_colour(escape_time(c, viewport.max_iterations), viewport.max_iterations)
            assert tuple(int(v) for v in frame[y, x]) == expected


def test_render_is_independent_of_thread_count():
    viewport = Viewport()
    viewport.zoom_in()
    viewport.pan_right()
    dimensions = FrameDimensions(13, 7)
    reference = render(dimensions, viewport, 1)
    for threads in range(2, 17):
        np.testing.assert_array_equal(render(dimensions, viewport, threads), reference)
    np.testing.assert_array_equal(render(dimensions, viewport, 1), reference)


def test_default_view_end_to_end():
    viewport = Viewport()
    dimensions = FrameDimensions(4, 4)
    single = render(dimensions, viewport, 1)
    parallel = render(dimensions, viewport, 4)
    assert single.size == 64
    np.testing.assert_array_equal(single, parallel)

    corner = tuple(int(v) for v in single[:4])
    assert corner == pixel_colour(1, 50)
    assert corner != (0, 0, 0, 255)
    assert corner[0] == 255 and corner[2] == 0

    viewport.adjust_iterations(-1000)
    assert viewport.max_iterations == 1
    capped = render(dimensions, viewport, 4).reshape(-1, 4)
    assert np.all(capped == np.array([0, 0, 0, 255], dtype=np.uint8))


def test_render_accepts_bytearray_and_shaped_arrays():
    viewport = Viewport()
    dimensions = FrameDimensions(6, 4)
    reference = render(dimensions, viewport, 2)

    raw = bytearray(dimensions.byte_length)
    render_frame(raw, dimensions, viewport, 2)
    np.testing.assert_array_equal(np.frombuffer(raw, dtype=np.uint8), reference)

    shaped = np.zeros((4, 6, 4), dtype=np.uint8)
    render_frame(shaped, dimensions, viewport, 5)
    np.testing.assert_array_equal(shaped.reshape(-1), reference)


def test_render_reads_snapshot_and_leaves_dirty_flag():
    viewport = Viewport()
    viewport.pan_left()
    dimensions = FrameDimensions(5, 5)
    from_viewport = render(dimensions, viewport, 2)
    assert viewport.needs_re_render()
    np.testing.assert_array_equal(render(dimensions, viewport.snapshot(), 2), from_viewport)


def test_render_bands_palette():
    from mandelbrot.colours import BAND_PALETTE

    viewport = Viewport()
    dimensions = FrameDimensions(12, 8)
    frame = render(dimensions, viewport, 4, palette="bands").reshape(-1, 4)
    allowed = {tuple(int(v) for v in colour) for colour in BAND_PALETTE} | {(0, 0, 0)}
    assert {tuple(int(v) for v in pixel[:3]) for pixel in frame} <= allowed
    assert np.all(frame[:, 3] == 255)


def test_render_reuses_caller_executor():
    viewport = Viewport()
    dimensions = FrameDimensions(11, 6)
    reference = render(dimensions, viewport, 3)

    with ThreadPoolExecutor(max_workers=3) as pool:
        first = render(dimensions, viewport, 3, executor=pool)
        viewport.zoom_in()
        second = render(dimensions, viewport, 3, executor=pool)
        assert pool.submit(sum, [1, 2]).result() == 3

    np.testing.assert_array_equal(first, reference)
    np.testing.assert_array_equal(second, render(dimensions, viewport, 3))
