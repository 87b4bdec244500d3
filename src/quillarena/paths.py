"""Path helpers for quillarena runs and checkpoints."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

__all__ = [
    "OUTPUT_ROOT_ENV",
    "CHECKPOINT_ROOT_ENV",
    "CHECKPOINT_DIRNAME",
    "RunPathConfig",
    "default_output_root",
    "default_checkpoint_root",
    "resolve_output_path",
    "resolve_checkpoint_path",
    "ensure_directory",
]

OUTPUT_ROOT_ENV = "QUILLARENA_OUTPUT_ROOT"
CHECKPOINT_ROOT_ENV = "QUILLARENA_CHECKPOINT_ROOT"
CHECKPOINT_DIRNAME = "checkpoints"


def _normalise(path: Path | str) -> Path:
    return Path(path).expanduser()


def ensure_directory(path: Path | str) -> Path:
    resolved = _normalise(path)
    resolved.mkdir(parents=True, exist_ok=True)
    return resolved


def default_output_root() -> Path:
    return Path(os.getenv(OUTPUT_ROOT_ENV, "outputs")) / "quillarena"


def default_checkpoint_root() -> Path | None:
    raw = os.getenv(CHECKPOINT_ROOT_ENV)
    return Path(raw) if raw else None


def resolve_output_path(path: Path | str | None = None, *, create: bool = True) -> Path:
    candidate = _normalise(path or default_output_root())
    if create:
        candidate.mkdir(parents=True, exist_ok=True)
    return candidate


def resolve_checkpoint_path(
    path: Path | str | None = None,
    *,
    output_path: Path | str | None = None,
    create: bool = True,
) -> Path:
    """Checkpoints live in ``path`` or, without one, next to the run output."""
    candidate = _normalise(path or Path(output_path or default_output_root()) / CHECKPOINT_DIRNAME)
    if create:
        candidate.mkdir(parents=True, exist_ok=True)
    return candidate


@dataclass(slots=True)
class RunPathConfig:
    """Output and checkpoint locations for a generation run."""

    output_path: Path = field(default_factory=default_output_root)
    checkpoint_path: Path | None = field(default_factory=default_checkpoint_root)
    create_output: bool = True
    create_checkpoints: bool = True
