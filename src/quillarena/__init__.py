"""quillarena: competing writer personas, judged brackets and quality loops."""

from .config import ConfigurationError, QuillArenaConfig
from .llm import CircuitBreaker, GuardedChatProvider, MockChatProvider, build_provider
from .pipeline import (
    NovelPlan,
    NovelRunner,
    PipelineDeps,
    RunContext,
    build_chapter_pipeline,
    pipe,
    try_stage,
    when,
)
from .tournament import TournamentArena, select_tournament_writers

__all__ = [
    "ConfigurationError",
    "QuillArenaConfig",
    "CircuitBreaker",
    "GuardedChatProvider",
    "MockChatProvider",
    "build_provider",
    "NovelPlan",
    "NovelRunner",
    "PipelineDeps",
    "RunContext",
    "build_chapter_pipeline",
    "pipe",
    "try_stage",
    "when",
    "TournamentArena",
    "select_tournament_writers",
]
