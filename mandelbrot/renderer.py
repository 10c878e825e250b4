"""Rendering primitives for Mandelbrot frames."""

from __future__ import annotations

import os
from concurrent.futures import Executor, ThreadPoolExecutor

import numpy as np
import tensorflow as tf

from .colours import PALETTES, colourize
from .viewport import FrameDimensions, Viewport, ViewportSnapshot

HORIZON_SQUARED = 4.0


def available_parallelism() -> int:
    """Number of workers to fan a render out to on this host."""

    return max(1, os.cpu_count() or 1)


def allocate_buffer(dimensions: FrameDimensions) -> np.ndarray:
    return np.zeros(dimensions.byte_length, dtype=np.uint8)


def pixel_to_complex(x, y, dimensions: FrameDimensions, viewport: Viewport | ViewportSnapshot):
    """Map pixel indices (scalars or arrays) onto the viewport's complex plane."""

    real = viewport.min_x + x * (viewport.max_x - viewport.min_x) / dimensions.width
    imag = viewport.min_y + y * (viewport.max_y - viewport.min_y) / dimensions.height
    return real, imag


def escape_time(c: complex, max_iterations: int) -> int:
    """Count iterations of ``z = z**2 + c`` until ``|z| > 2`` or the cap is reached."""

    c_real, c_imag = c.real, c.imag
    x = y = x_sq = y_sq = 0.0
    iteration = 0
    while x_sq + y_sq <= HORIZON_SQUARED and iteration < max_iterations:
        y = 2.0 * x * y + c_imag
        x = x_sq - y_sq + c_real
        x_sq = x * x
        y_sq = y * y
        iteration += 1
    return iteration


@tf.function(
    input_signature=(
        tf.TensorSpec(shape=[None], dtype=tf.float64),
        tf.TensorSpec(shape=[None], dtype=tf.float64),
        tf.TensorSpec(shape=[], dtype=tf.int32),
    )
)
def _escape_time_run(c_real: tf.Tensor, c_imag: tf.Tensor, max_iterations: tf.Tensor) -> tf.Tensor:
    """Iterate every point with a TensorFlow while loop, freezing points once they escape."""

    horizon = tf.constant(HORIZON_SQUARED, dtype=tf.float64)
    two = tf.constant(2.0, dtype=tf.float64)
    zeros = tf.zeros_like(c_real)
    counts = tf.zeros_like(c_real, dtype=tf.int32)
    i = tf.constant(0, dtype=tf.int32)

    def cond(i, x, y, x_sq, y_sq, counts):
        return tf.logical_and(tf.less(i, max_iterations), tf.reduce_any(x_sq + y_sq <= horizon))

    def body(i, x, y, x_sq, y_sq, counts):
        active = x_sq + y_sq <= horizon
        new_y = two * x * y + c_imag
        new_x = x_sq - y_sq + c_real
        y = tf.where(active, new_y, y)
        x = tf.where(active, new_x, x)
        counts = counts + tf.cast(active, tf.int32)
        return i + 1, x, y, x * x, y * y, counts

    _, _, _, _, _, counts = tf.while_loop(cond, body, (i, zeros, zeros, zeros, zeros, counts))
    return counts


def escape_time_grid(reals, imags, max_iterations: int) -> np.ndarray:
    """Vectorised :func:`escape_time` over matching arrays of real and imaginary parts."""

    reals = np.asarray(reals, dtype=np.float64).reshape(-1)
    imags = np.asarray(imags, dtype=np.float64).reshape(-1)
    if reals.shape != imags.shape:
        raise ValueError("reals and imags must have the same number of elements.")

    with tf.device("/CPU:0"):
        counts = _escape_time_run(
            tf.convert_to_tensor(reals, dtype=tf.float64),
            tf.convert_to_tensor(imags, dtype=tf.float64),
            tf.constant(int(max_iterations), dtype=tf.int32),
        )
    return counts.numpy()


def partition(length: int, threads: int) -> list[tuple[int, int]]:
    """Split ``length`` bytes into at most ``threads`` contiguous, pixel-aligned ranges."""

    if threads < 1:
        raise ValueError(f"threads must be at least 1, got {threads}.")
    if length % 4:
        raise ValueError(f"Buffer length {length} is not a whole number of RGBA pixels.")

    chunk_size = -(-length // threads)
    chunk_size = max(4, -(-chunk_size // 4) * 4)
    return [(start, min(start + chunk_size, length)) for start in range(0, length, chunk_size)]


def _as_byte_view(buffer) -> np.ndarray:
    if isinstance(buffer, np.ndarray):
        if buffer.dtype != np.uint8 or not buffer.flags.c_contiguous:
            raise ValueError("Frame buffers must be C-contiguous uint8 arrays.")
        view = buffer.reshape(-1)
    else:
        view = np.frombuffer(buffer, dtype=np.uint8)
    if not view.flags.writeable:
        raise ValueError("Frame buffer is read-only.")
    return view


def _render_chunk(
    chunk: np.ndarray,
    chunk_index: int,
    chunk_pixels: int,
    dimensions: FrameDimensions,
    snapshot: ViewportSnapshot,
    palette: str,
) -> None:
    flat_index = chunk_index * chunk_pixels + np.arange(chunk.size // 4, dtype=np.int64)
    xs = flat_index % dimensions.width
    ys = flat_index // dimensions.width
    reals, imags = pixel_to_complex(xs, ys, dimensions, snapshot)
    iterations = escape_time_grid(reals, imags, snapshot.max_iterations)
    chunk.reshape(-1, 4)[:] = colourize(iterations, snapshot.max_iterations, palette)


def render_frame(
    buffer,
    dimensions: FrameDimensions,
    viewport: Viewport | ViewportSnapshot,
    threads: int,
    *,
    palette: str = "hsl",
    executor: Executor | None = None,
) -> None:
    """Fill ``buffer`` (row-major RGBA8) with the Mandelbrot set seen through ``viewport``.

    The buffer is split into ``threads`` pixel-aligned chunks that are coloured
    in parallel and joined before returning. Pass a long-lived ``executor`` to
    reuse its workers across frames; otherwise a pool of ``threads`` workers is
    created for this call. The viewport is only read, so the caller is
    responsible for :meth:`Viewport.mark_rendered`.
    """

    if threads < 1:
        raise ValueError(f"threads must be at least 1, got {threads}.")
    pixels = _as_byte_view(buffer)
    if pixels.size != dimensions.byte_length:
        raise ValueError(
            f"Buffer holds {pixels.size} bytes but a {dimensions} frame needs {dimensions.byte_length}."
        )
    if palette not in PALETTES:
        raise ValueError(f"Unknown palette '{palette}'. Valid choices: {', '.join(PALETTES)}.")

    snapshot = viewport.snapshot() if isinstance(viewport, Viewport) else viewport
    chunks = partition(pixels.size, threads)
    chunk_pixels = (chunks[0][1] - chunks[0][0]) // 4

    if executor is None:
        with ThreadPoolExecutor(max_workers=threads) as pool:
            _dispatch(pool, pixels, chunks, chunk_pixels, dimensions, snapshot, palette)
    else:
        _dispatch(executor, pixels, chunks, chunk_pixels, dimensions, snapshot, palette)


def _dispatch(executor, pixels, chunks, chunk_pixels, dimensions, snapshot, palette) -> None:
    futures = [
        executor.submit(
            _render_chunk,
            pixels[start:stop],
            chunk_index,
            chunk_pixels,
            dimensions,
            snapshot,
            palette,
        )
        for chunk_index, (start, stop) in enumerate(chunks)
    ]
    for future in futures:
        future.result()
