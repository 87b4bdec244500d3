"""Moderated multi-writer drafting."""

from .session import (
    CollaborationConfig,
    CollaborationResult,
    CollaborationRound,
    CollaborationSession,
)

__all__ = [
    "CollaborationConfig",
    "CollaborationResult",
    "CollaborationRound",
    "CollaborationSession",
]
