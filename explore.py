import os
import sys
import time
import warnings
from argparse import ArgumentParser
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

_VERBOSE_FLAGS = {"--verbose", "-v"}
_cli_verbose = any(arg in _VERBOSE_FLAGS for arg in sys.argv[1:])
_env_log_level = os.environ.get("TF_CPP_MIN_LOG_LEVEL")
_suppress_messages = (not _cli_verbose) and _env_log_level != "0"

if _suppress_messages and _env_log_level is None:
    os.environ["TF_CPP_MIN_LOG_LEVEL"] = "3"

if _suppress_messages:
    warnings.filterwarnings(
        "ignore",
        message=r"Protobuf gencode version .* is exactly one major version older than the runtime version .*",
        category=UserWarning,
        module="google.protobuf",
    )

VERBOSE = _cli_verbose


def log(message, *args, **kwargs):
    if VERBOSE:
        print(message, *args, **kwargs)


import numpy as np
import tensorflow as tf

if _suppress_messages:
    tf.get_logger().setLevel("ERROR")
    for handler in tf.get_logger().handlers:
        handler.setLevel("ERROR")

import PIL.Image
import imageio

from mandelbrot import (
    PALETTES,
    FrameDimensions,
    PanDirection,
    Viewport,
    ViewportError,
    ZoomDirection,
    allocate_buffer,
    available_parallelism,
    render_frame,
)
from mandelbrot.viewport import DEFAULT_DIMENSIONS, DEFAULT_MAX_ITERATIONS, PAN_FACTOR, ZOOM_FACTOR

OUTPUT_DIR = Path("img")

# Chosen once per process; frames never re-measure it.
THREADS = available_parallelism()
log("Found available parallelism of %d" % THREADS)


@dataclass(frozen=True)
class Action:
    name: str
    amount: int = 1


_PAN_ACTIONS = {direction.value for direction in PanDirection}
_ZOOM_ACTIONS = {direction.value for direction in ZoomDirection}
_PLAIN_ACTIONS = _PAN_ACTIONS | _ZOOM_ACTIONS | {"reset", "reset-view", "reset-iter", "save", "step"}


def parse_action(token: str) -> Action:
    """Parse an action token such as ``left``, ``in*20``, ``iter+10`` or ``iter-5*2``."""

    text = token.strip().lower()
    name, star, count = text.partition("*")
    repeat = 1
    if star:
        try:
            repeat = int(count)
        except ValueError:
            raise ValueError(f"Invalid repeat count in action '{token}'.") from None
        if repeat < 1:
            raise ValueError(f"Repeat count must be positive in action '{token}'.")

    if name.startswith("iter") and name[4:5] in ("+", "-") and len(name) > 5:
        try:
            delta = int(name[4:])
        except ValueError:
            raise ValueError(f"Invalid iteration delta in action '{token}'.") from None
        return Action("iter", delta * repeat)

    if name not in _PLAIN_ACTIONS:
        raise ValueError(f"Unknown action '{token}'. Valid choices: {', '.join(sorted(_PLAIN_ACTIONS))}, iter+N, iter-N.")
    return Action(name, repeat)


def parse_actions(script: str | None) -> tuple[Action, ...]:
    if not script:
        return ()
    return tuple(parse_action(token) for token in script.split(",") if token.strip())


def _new_filename() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H-%M-%S")


def frame_array(buffer, dimensions: FrameDimensions) -> np.ndarray:
    """View an RGBA8 frame buffer as a ``(height, width, 4)`` array."""

    return np.frombuffer(buffer, dtype=np.uint8).reshape(dimensions.height, dimensions.width, 4)


def save_image(buffer, dimensions: FrameDimensions, output_dir: Path = OUTPUT_DIR) -> Path:
    """Write ``buffer`` to a timestamped PNG inside ``output_dir``."""

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    stem = _new_filename()
    file_path = output_dir / f"{stem}.png"
    suffix = 1
    while file_path.exists():
        file_path = output_dir / f"{stem}-{suffix}.png"
        suffix += 1

    log("Saving image to %s" % file_path)
    image = PIL.Image.fromarray(np.array(frame_array(buffer, dimensions), copy=True))
    image.save(str(file_path), format="PNG")
    return file_path


@dataclass
class GifRecorder:
    """Append every presented frame to an animated GIF.

    A GIF has one frame size, so recording stops at the first frame whose
    shape differs from the first recorded one (e.g. after a window resize).
    """

    path: Path
    duration: float = 0.1

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.frames = 0
        self.stopped = False
        self._shape: tuple[int, ...] | None = None
        self._writer = imageio.get_writer(str(self.path), mode='I', duration=self.duration, loop=0)

    def __call__(self, frame: np.ndarray) -> None:
        if self.stopped:
            return
        if self._writer is None:
            raise RuntimeError(f"Recorder for {self.path} is already closed.")
        rgb = np.ascontiguousarray(frame[..., :3])
        if self._shape is None:
            self._shape = rgb.shape
        elif rgb.shape != self._shape:
            warnings.warn(
                f"Frame size changed from {self._shape[1]}x{self._shape[0]} to "
                f"{rgb.shape[1]}x{rgb.shape[0]}; stopped recording {self.path} after {self.frames} frame(s).",
                stacklevel=2,
            )
            self.stopped = True
            self.close()
            return
        self._writer.append_data(rgb)
        self.frames += 1

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None


class ExplorerSession:
    """Own the viewport and frame buffer, and re-render only when the view changed."""

    def __init__(
        self,
        viewport: Viewport,
        dimensions: FrameDimensions,
        threads: int = THREADS,
        palette: str = "hsl",
        output_dir: Path = OUTPUT_DIR,
    ):
        if threads < 1:
            raise ValueError("threads must be at least 1.")
        self.viewport = viewport
        self.dimensions = dimensions
        self.threads = threads
        self.palette = palette
        self.output_dir = Path(output_dir)
        self.buffer = allocate_buffer(dimensions)
        self.frames_rendered = 0
        self.saved: list[Path] = []
        self._presenters: list[Callable[[np.ndarray], None]] = []
        self._force = True
        self._executor = ThreadPoolExecutor(max_workers=threads, thread_name_prefix="render")

    def add_presenter(self, presenter: Callable[[np.ndarray], None]) -> None:
        self._presenters.append(presenter)

    def frame(self) -> np.ndarray:
        return frame_array(self.buffer, self.dimensions)

    def apply(self, action) -> None:
        if isinstance(action, str):
            action = parse_action(action)

        viewport = self.viewport
        if action.name == "iter":
            viewport.adjust_iterations(action.amount)
            log("New max iterations: %d (changed by %+d)" % (viewport.max_iterations, action.amount))
        elif action.name in _PAN_ACTIONS:
            for _ in range(action.amount):
                viewport.pan(PanDirection(action.name))
        elif action.name in _ZOOM_ACTIONS:
            for _ in range(action.amount):
                viewport.zoom(ZoomDirection(action.name))
        elif action.name == "reset":
            viewport.reset()
        elif action.name == "reset-view":
            viewport.reset_pan_and_zoom()
        elif action.name == "reset-iter":
            viewport.reset_iterations()
        elif action.name == "save":
            self.save()
        elif action.name == "step":
            self._force = True
        else:
            raise ValueError(f"Unknown action '{action.name}'.")

    def refresh(self, force: bool = False) -> bool:
        """Render and present a frame if forced or if the viewport is dirty."""

        if not (force or self._force or self.viewport.needs_re_render()):
            return False

        start_time = time.perf_counter()
        render_frame(
            self.buffer,
            self.dimensions,
            self.viewport,
            self.threads,
            palette=self.palette,
            executor=self._executor,
        )
        self.viewport.mark_rendered()
        self._force = False
        self.frames_rendered += 1
        elapsed = int((time.perf_counter() - start_time) * 1000)
        log("Rendering for %s took %dms" % (self.dimensions, elapsed))

        frame = self.frame()
        for presenter in self._presenters:
            presenter(frame)
        return True

    def resize(self, dimensions: FrameDimensions) -> None:
        if dimensions == self.dimensions:
            return
        self.dimensions = dimensions
        self.buffer = allocate_buffer(dimensions)
        self._force = True

    def save(self) -> Path:
        path = save_image(self.buffer, self.dimensions, self.output_dir)
        self.saved.append(path)
        return path

    def close(self) -> None:
        self._executor.shutdown(wait=True)


@dataclass
class SessionConfig:
    dimensions: FrameDimensions
    viewport: Viewport
    threads: int
    palette: str
    actions: tuple[Action, ...] = ()
    save: bool = False
    output_dir: Path = OUTPUT_DIR
    record_path: Path | None = None
    interactive: bool = False
    start_paused: bool = True
    scroll_step: int = 1


def build_parser():
    parser = ArgumentParser(description="Explore the Mandelbrot set.")

    parser.add_argument('--width', type=int, dest='width', metavar='WIDTH',
                        help='width of the frame buffer in pixels', default=DEFAULT_DIMENSIONS.width)

    parser.add_argument('--height', type=int, dest='height', metavar='HEIGHT',
                        help='height of the frame buffer in pixels', default=DEFAULT_DIMENSIONS.height)

    parser.add_argument('--max-iterations', type=int, dest='max_iterations', metavar='MAX_ITERATIONS',
                        help='escape-time iteration cap', default=DEFAULT_MAX_ITERATIONS)

    parser.add_argument('--pan-factor', type=float, dest='pan_factor', metavar='PAN_FACTOR',
                        help='fraction of the visible span moved by one pan step', default=PAN_FACTOR)

    parser.add_argument('--zoom-factor', type=float, dest='zoom_factor', metavar='ZOOM_FACTOR',
                        help='factor by which one zoom step scales the view (> 1)', default=ZOOM_FACTOR)

    parser.add_argument('--threads', type=int, dest='threads', metavar='THREADS',
                        help='number of parallel render workers (default: available parallelism)', default=None)

    parser.add_argument('--palette', choices=PALETTES, default='hsl',
                        help='"hsl" sweeps the hue with escape speed; "bands" uses a fixed 7-colour palette.')

    parser.add_argument('--actions', type=str, dest='actions', metavar='ACTIONS',
                        help='comma-separated actions applied in order, e.g. "in*40,left*3,iter+25,save". '
                             'Valid: left, right, up, down, in, out, iter+N, iter-N, reset, reset-view, reset-iter, save, step. '
                             'Append *N to repeat.')

    parser.add_argument('--save', action='store_true',
                        help='save the final frame as a PNG in the output directory')

    parser.add_argument('--output-dir', type=str, dest='output_dir', metavar='OUTPUT_DIR', default=str(OUTPUT_DIR),
                        help='directory for saved PNG frames')

    parser.add_argument('--record', type=str, dest='record', metavar='GIF_PATH',
                        help='append every rendered frame to this animated GIF')

    parser.add_argument('--scroll-step', type=int, dest='scroll_step', metavar='STEP', default=1,
                        help='iteration change per mouse-wheel notch in the interactive window')

    parser.add_argument('--interactive', action='store_true',
                        help='open an interactive window (arrows pan, z/x zoom, wheel iterations, r reset, s save, p pause, space step)')

    run_state = parser.add_mutually_exclusive_group()
    run_state.add_argument('--paused', dest='paused', action='store_true', default=True,
                           help='only redraw the interactive window when the view changes (default)')
    run_state.add_argument('--running', dest='paused', action='store_false',
                           help='redraw the interactive window continuously')

    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose logging, including render timings and TensorFlow diagnostics.')

    return parser


def resolve_session_config(opt, parser: ArgumentParser) -> SessionConfig:
    if opt.width <= 0 or opt.height <= 0:
        parser.error("--width and --height must be positive.")
    if opt.max_iterations < 1:
        parser.error("--max-iterations must be at least 1.")
    if opt.scroll_step < 1:
        parser.error("--scroll-step must be at least 1.")

    threads = THREADS if opt.threads is None else opt.threads
    if threads < 1:
        parser.error("--threads must be at least 1.")

    try:
        viewport = Viewport(
            max_iterations=opt.max_iterations,
            pan_factor=opt.pan_factor,
            zoom_factor=opt.zoom_factor,
        )
    except ViewportError as exc:
        parser.error(str(exc))

    try:
        actions = parse_actions(opt.actions)
    except ValueError as exc:
        parser.error(str(exc))

    record_path: Path | None = None
    if opt.record:
        record_path = Path(opt.record).expanduser()
        if record_path.suffix:
            if record_path.suffix.lower() != ".gif":
                parser.error("--record outputs must end with .gif.")
        else:
            record_path = record_path.with_suffix(".gif")
        record_path = record_path.resolve()
        if not actions and not opt.interactive:
            warnings.warn("--record without --actions or --interactive records a single frame.", stacklevel=2)

    return SessionConfig(
        dimensions=FrameDimensions(opt.width, opt.height),
        viewport=viewport,
        threads=threads,
        palette=opt.palette,
        actions=actions,
        save=bool(opt.save),
        output_dir=Path(opt.output_dir).expanduser(),
        record_path=record_path,
        interactive=bool(opt.interactive),
        start_paused=bool(opt.paused),
        scroll_step=opt.scroll_step,
    )


def run_headless(session: ExplorerSession, actions, save: bool) -> None:
    session.refresh(force=True)
    for action in actions:
        session.apply(action)
        session.refresh()
    if save:
        path = session.save()
        print(f"Saved {path}")


_KEY_ACTIONS = {
    "left": "left",
    "right": "right",
    "up": "up",
    "down": "down",
    "z": "in",
    "x": "out",
    "r": "reset",
    "s": "save",
}


class WindowController:
    """Translate window input into session actions and decide when to redraw.

    While paused, frames are drawn only when the view changes or on a space
    step; while running, every timer tick redraws.
    """

    def __init__(self, session: ExplorerSession, start_paused: bool = True, scroll_step: int = 1,
                 on_close: Callable[[], None] | None = None):
        self.session = session
        self.paused = start_paused
        self.scroll_step = scroll_step
        self.closed = False
        self._on_close = on_close

    def key(self, key: str | None) -> None:
        if key in ("escape", "q"):
            self.closed = True
            if self._on_close is not None:
                self._on_close()
            return
        if key == "p":
            self.paused = not self.paused
        step = key == " "
        if step:
            self.paused = True
        if key in _KEY_ACTIONS:
            self.session.apply(_KEY_ACTIONS[key])
        self.session.refresh(force=step or not self.paused)

    def scroll(self, step: float, button: str | None = None) -> None:
        notches = int(round(step)) or (1 if button == "up" else -1)
        self.session.apply(Action("iter", notches * self.scroll_step))
        self.session.refresh(force=not self.paused)

    def resize(self, width: int, height: int) -> None:
        width, height = int(width), int(height)
        if width <= 0 or height <= 0:
            return
        self.session.resize(FrameDimensions(width, height))
        self.session.refresh()

    def tick(self) -> None:
        if not self.paused:
            self.session.refresh(force=True)


def run_interactive(session: ExplorerSession, start_paused: bool = True, scroll_step: int = 1) -> None:
    import matplotlib.pyplot as plt

    for key in list(plt.rcParams):
        if key.startswith("keymap."):
            plt.rcParams[key] = []

    dpi = plt.rcParams["figure.dpi"]
    fig = plt.figure(figsize=(session.dimensions.width / dpi, session.dimensions.height / dpi), dpi=dpi)
    if fig.canvas.manager is not None:
        fig.canvas.manager.set_window_title("Mandelbrot Explorer")
    ax = fig.add_axes((0, 0, 1, 1))
    ax.set_axis_off()

    session.refresh()
    image = ax.imshow(session.frame(), interpolation="nearest", aspect="auto")

    def present(frame: np.ndarray) -> None:
        height, width = frame.shape[:2]
        image.set_data(frame)
        image.set_extent((-0.5, width - 0.5, height - 0.5, -0.5))
        fig.canvas.draw_idle()

    session.add_presenter(present)
    controller = WindowController(session, start_paused, scroll_step, on_close=lambda: plt.close(fig))

    fig.canvas.mpl_connect("key_press_event", lambda event: controller.key(event.key))
    fig.canvas.mpl_connect("scroll_event", lambda event: controller.scroll(event.step, event.button))
    fig.canvas.mpl_connect("resize_event", lambda event: controller.resize(event.width, event.height))
    timer = fig.canvas.new_timer(interval=16)
    timer.add_callback(controller.tick)
    timer.start()

    plt.show()
    timer.stop()


def main():
    parser = build_parser()
    opt = parser.parse_args()

    global VERBOSE
    VERBOSE = bool(opt.verbose)

    config = resolve_session_config(opt, parser)
    log("TensorFlow version: %s" % tf.__version__)

    session = ExplorerSession(
        config.viewport,
        config.dimensions,
        threads=config.threads,
        palette=config.palette,
        output_dir=config.output_dir,
    )

    recorder = GifRecorder(config.record_path) if config.record_path is not None else None
    if recorder is not None:
        session.add_presenter(recorder)

    try:
        if config.interactive:
            run_headless(session, config.actions, save=False)
            run_interactive(session, config.start_paused, config.scroll_step)
            if config.save:
                print(f"Saved {session.save()}")
        else:
            run_headless(session, config.actions, config.save)
    finally:
        session.close()
        if recorder is not None:
            recorder.close()
            print(f"Recorded {recorder.frames} frame(s) to {recorder.path}")


if __name__ == '__main__':
    main()
