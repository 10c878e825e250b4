from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

EXAMPLES_ROOT = Path("examples/cli-options")
BASE_ARGS = ["--width", "192", "--height", "144", "--threads", "4"]


@dataclass
class Expected:
    path: Path
    is_dir: bool = False


@dataclass
class Example:
    name: str
    args: list[str]
    expected: list[Expected]
    clean: list[Path] | None = None

    def full_args(self) -> list[str]:
        return ["python", "explore.py", *self.args]


def _saved(name: str) -> list[str]:
    return ["--save", "--output-dir", str(EXAMPLES_ROOT / name)]


EXAMPLES: list[Example] = [
    Example(
        name="default-view",
        args=[*BASE_ARGS, *_saved("default-view")],
        expected=[Expected(EXAMPLES_ROOT / "default-view", is_dir=True)],
        clean=[EXAMPLES_ROOT / "default-view"],
    ),
    Example(
        name="max-iterations",
        args=[*BASE_ARGS, "--max-iterations", "400", *_saved("max-iterations")],
        expected=[Expected(EXAMPLES_ROOT / "max-iterations", is_dir=True)],
        clean=[EXAMPLES_ROOT / "max-iterations"],
    ),
    Example(
        name="bands",
        args=[*BASE_ARGS, "--palette", "bands", *_saved("bands")],
        expected=[Expected(EXAMPLES_ROOT / "bands", is_dir=True)],
        clean=[EXAMPLES_ROOT / "bands"],
    ),
    Example(
        name="pan-and-zoom",
        args=[
            *BASE_ARGS,
            "--zoom-factor",
            "1.1",
            "--actions",
            "left*6,up*2,in*20,iter+100",
            *_saved("pan-and-zoom"),
        ],
        expected=[Expected(EXAMPLES_ROOT / "pan-and-zoom", is_dir=True)],
        clean=[EXAMPLES_ROOT / "pan-and-zoom"],
    ),
    Example(
        name="record",
        args=[
            *BASE_ARGS,
            "--zoom-factor",
            "1.2",
            "--actions",
            ",".join(["in"] * 12),
            "--record",
            str(EXAMPLES_ROOT / "record" / "zoom-in.gif"),
        ],
        expected=[Expected(EXAMPLES_ROOT / "record" / "zoom-in.gif")],
        clean=[EXAMPLES_ROOT / "record"],
    ),
    Example(
        name="verbose",
        args=[*BASE_ARGS, "--verbose", "--actions", "iter+10,step", *_saved("verbose")],
        expected=[Expected(EXAMPLES_ROOT / "verbose", is_dir=True)],
        clean=[EXAMPLES_ROOT / "verbose"],
    ),
]


def _ensure_clean(paths: Iterable[Path]) -> None:
    for path in paths:
        if path.exists():
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()


def _prepare(example: Example) -> None:
    clean = example.clean or []
    _ensure_clean(clean)
    for expected in example.expected:
        if not expected.is_dir:
            expected.path.parent.mkdir(parents=True, exist_ok=True)


def _verify(example: Example) -> None:
    for expected in example.expected:
        if expected.is_dir:
            if not expected.path.is_dir():
                raise RuntimeError(f"Expected directory {expected.path} was not created")
            if not any(expected.path.iterdir()):
                raise RuntimeError(f"Directory {expected.path} is empty")
        else:
            if not expected.path.is_file():
                raise RuntimeError(f"Expected file {expected.path} was not created")


def main() -> None:
    EXAMPLES_ROOT.mkdir(parents=True, exist_ok=True)
    for example in EXAMPLES:
        print(f"\n[cli-example] {example.name}")
        _prepare(example)
        completed = subprocess.run(example.full_args(), check=True)
        if completed.returncode != 0:
            raise RuntimeError(f"Example {example.name} failed with {completed.returncode}")
        _verify(example)
    print("\nAll CLI examples generated successfully.")


if __name__ == "__main__":
    main()
