"""Stage composition, chapter pipelines and the multi-chapter runner."""

from .compose import Stage, pipe, try_stage, when
from .context import PipelineDeps, RunContext
from .cross_chapter import (
    CrossChapterState,
    avoidance_list,
    initial_state,
    update_state,
    wear_level,
)
from .novel import ChapterPlan, NovelPlan, NovelRunConfig, NovelRunner, NovelRunResult
from .stages import build_chapter_pipeline

__all__ = [
    "Stage",
    "pipe",
    "try_stage",
    "when",
    "PipelineDeps",
    "RunContext",
    "CrossChapterState",
    "avoidance_list",
    "initial_state",
    "update_state",
    "wear_level",
    "ChapterPlan",
    "NovelPlan",
    "NovelRunConfig",
    "NovelRunner",
    "NovelRunResult",
    "build_chapter_pipeline",
]
