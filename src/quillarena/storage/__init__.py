"""Checkpoint persistence."""

from .checkpoints import Checkpoint, CheckpointStore, JsonCheckpointStore

__all__ = ["Checkpoint", "CheckpointStore", "JsonCheckpointStore"]
