"""Filesystem checkpoints that let a paused run resume at a stage boundary."""

from __future__ import annotations

import json
import logging
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from ..paths import ensure_directory

logger = logging.getLogger(__name__)

__all__ = ["Checkpoint", "CheckpointStore", "JsonCheckpointStore"]

_FILENAME_PATTERN = re.compile(r"^(?P<sequence>\d{4})-(?P<phase>.+)\.json$")


@dataclass(frozen=True, slots=True)
class Checkpoint:
    task_id: str
    phase: str
    sequence: int
    state: dict[str, Any]
    progress: Optional[dict[str, Any]] = None
    created_at: str = ""


@runtime_checkable
class CheckpointStore(Protocol):
    def save(
        self,
        task_id: str,
        phase: str,
        state: dict[str, Any],
        progress: Optional[dict[str, Any]] = None,
    ) -> Checkpoint:
        ...

    def latest(self, task_id: str) -> Optional[Checkpoint]:
        ...

    def can_resume(self, task_id: str) -> bool:
        ...

    def resume_state(self, task_id: str) -> Optional[dict[str, Any]]:
        ...

    def clear(self, task_id: str) -> None:
        ...


def _sanitize(value: str, fallback: str) -> str:
    safe = [ch if ch.isalnum() or ch in {"-", "_"} else "_" for ch in value]
    sanitized = "".join(safe).strip("_")
    return sanitized or fallback


class JsonCheckpointStore:
    """One JSON document per checkpoint under ``<directory>/<task_id>/``.

    Files are named ``NNNN-<phase>.json`` with a monotonically increasing
    sequence number; the highest sequence is the latest checkpoint.
    """

    def __init__(self, directory: Path | str, *, encoding: str = "utf-8") -> None:
        self.directory = ensure_directory(directory)
        self.encoding = encoding

    def _task_dir(self, task_id: str) -> Path:
        return self.directory / _sanitize(task_id, "task")

    def _entries(self, task_id: str) -> list[tuple[int, Path]]:
        task_dir = self._task_dir(task_id)
        if not task_dir.is_dir():
            return []
        entries = []
        for path in task_dir.iterdir():
            match = _FILENAME_PATTERN.match(path.name)
            if match:
                entries.append((int(match.group("sequence")), path))
        return sorted(entries)

    def save(
        self,
        task_id: str,
        phase: str,
        state: dict[str, Any],
        progress: Optional[dict[str, Any]] = None,
    ) -> Checkpoint:
        entries = self._entries(task_id)
        sequence = entries[-1][0] + 1 if entries else 1
        checkpoint = Checkpoint(
            task_id=task_id,
            phase=phase,
            sequence=sequence,
            state=state,
            progress=progress,
            created_at=datetime.utcnow().isoformat(timespec="seconds") + "Z",
        )
        task_dir = ensure_directory(self._task_dir(task_id))
        path = task_dir / f"{sequence:04d}-{_sanitize(phase, 'phase')}.json"
        payload = {
            "task_id": checkpoint.task_id,
            "phase": checkpoint.phase,
            "sequence": checkpoint.sequence,
            "created_at": checkpoint.created_at,
            "progress": checkpoint.progress,
            "state": checkpoint.state,
        }
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding=self.encoding)
        logger.debug("Saved checkpoint %s for task %s (%s)", sequence, task_id, phase)
        return checkpoint

    def latest(self, task_id: str) -> Optional[Checkpoint]:
        entries = self._entries(task_id)
        if not entries:
            return None
        payload = json.loads(entries[-1][1].read_text(encoding=self.encoding))
        return Checkpoint(
            task_id=payload.get("task_id", task_id),
            phase=payload["phase"],
            sequence=int(payload["sequence"]),
            state=payload.get("state") or {},
            progress=payload.get("progress"),
            created_at=payload.get("created_at", ""),
        )

    def can_resume(self, task_id: str) -> bool:
        return bool(self._entries(task_id))

    def resume_state(self, task_id: str) -> Optional[dict[str, Any]]:
        checkpoint = self.latest(task_id)
        return checkpoint.state if checkpoint else None

    def clear(self, task_id: str) -> None:
        task_dir = self._task_dir(task_id)
        if task_dir.is_dir():
            shutil.rmtree(task_dir)
            logger.info("Cleared checkpoints for task %s", task_id)
