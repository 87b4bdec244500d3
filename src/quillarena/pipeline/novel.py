"""LangGraph-driven multi-chapter generation with resumable checkpoints.

The graph loops over three nodes per chapter:

``write_chapter``
    Runs the single-chapter pipeline on a prompt that carries the plan,
    earlier chapter summaries, the variation hint and the motifs to avoid.
``track_state``
    Extracts continuity facts from the finished chapter and folds them into
    the cross-chapter state.
``checkpoint``
    Persists progress so an interrupted run resumes after the last
    completed chapter.

Chapters are written to ``chapter_NN.md`` and run metadata to ``run.json``.
"""

from __future__ import annotations

import json
import logging
import random
import textwrap
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence, TypedDict

from langgraph.graph import END, START, StateGraph

from ..agents.types import ChapterContext, NarrativeConfig, WriterConfig
from ..collaboration.session import CollaborationConfig
from ..config import ConfigurationError, RetakeConfig
from ..storage.checkpoints import CheckpointStore
from ..tournament.persona_pool import (
    DEFAULT_TEMPERATURE_SLOTS,
    DEFAULT_WRITER_PERSONAS,
    WriterPersona,
    personas_from_dicts,
    select_tournament_writers,
)
from .context import PipelineDeps, RunContext
from .cross_chapter import CrossChapterState, avoidance_list, initial_state, update_state
from .stages import build_chapter_pipeline

logger = logging.getLogger(__name__)

__all__ = [
    "CHAPTER_DONE_PHASE",
    "ChapterPlan",
    "NovelPlan",
    "NovelRunConfig",
    "NovelRunResult",
    "NovelRunner",
    "build_chapter_prompt",
]

CHAPTER_DONE_PHASE = "chapter_done"


@dataclass(frozen=True, slots=True)
class ChapterPlan:
    index: int
    title: str
    summary: str = ""


@dataclass(frozen=True, slots=True)
class NovelPlan:
    """What to write: premise, chapter outline, narrative rules and personas."""

    title: str
    chapters: tuple[ChapterPlan, ...]
    premise: str = ""
    narrative: NarrativeConfig = field(default_factory=NarrativeConfig)
    personas: tuple[WriterPersona, ...] = ()

    def __post_init__(self) -> None:
        if not self.chapters:
            raise ConfigurationError("A novel plan needs at least one chapter")

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "NovelPlan":
        chapters = tuple(
            ChapterPlan(
                index=int(item.get("index", position)),
                title=str(item.get("title", f"Chapter {position}")),
                summary=str(item.get("summary", "")),
            )
            for position, item in enumerate(payload.get("chapters", []), start=1)
        )
        narrative_payload = payload.get("narrative") or {}
        return cls(
            title=str(payload.get("title", "Untitled")),
            chapters=chapters,
            premise=str(payload.get("premise", "")),
            narrative=NarrativeConfig(**narrative_payload),
            personas=personas_from_dicts(payload.get("personas", [])),
        )

    @classmethod
    def load(cls, path: Path | str) -> "NovelPlan":
        plan_path = Path(path).expanduser()
        if not plan_path.exists():
            raise FileNotFoundError(f"Plan file not found: {plan_path}")
        return cls.from_dict(json.loads(plan_path.read_text(encoding="utf-8")))


@dataclass
class NovelRunConfig:
    output_dir: Path
    task_id: str = field(default_factory=lambda: datetime.utcnow().strftime("%Y%m%d%H%M%S"))
    writer_count: int = 4
    simple: bool = False
    mode: str = "tournament"
    collaboration: CollaborationConfig | None = None
    max_correction_attempts: int = 3
    retake: RetakeConfig | None = None
    max_reader_retakes: int = 2
    seed: int | None = None

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir).expanduser()


@dataclass(frozen=True, slots=True)
class NovelRunResult:
    task_id: str
    chapter_texts: tuple[str, ...]
    cross_chapter_state: CrossChapterState
    tokens_used: int
    chapter_paths: tuple[Path, ...]
    resumed_from: int = 0


class NovelGraphState(TypedDict, total=False):
    """State propagated through the LangGraph workflow."""

    next_chapter: int
    chapter_texts: list[str]
    cross_state: CrossChapterState
    tokens_used: int
    current_text: str
    chapter_records: list[dict[str, Any]]


def build_chapter_prompt(plan: NovelPlan, chapter: ChapterPlan, state: CrossChapterState) -> str:
    sections = [
        f"Novel: {plan.title}",
        f"Premise: {plan.premise}" if plan.premise else "",
        f"Write chapter {chapter.index}: {chapter.title}",
        chapter.summary,
    ]
    if state.chapter_summaries:
        recap = "\n".join(
            f"- Chapter {item.chapter_index} ({item.dominant_tone or 'n/a'}): {item.summary}"
            for item in state.chapter_summaries
        )
        sections.append(f"Story so far:\n{recap}")
    if state.variation_hint:
        sections.append(f"Variation for this chapter: {state.variation_hint}")
    avoid = avoidance_list(state)
    if avoid:
        sections.append("Avoid these overused motifs: " + ", ".join(avoid))
    return textwrap.dedent("\n\n".join(part for part in sections if part)).strip()


class NovelRunner:
    """Coordinate the chapter loop as a compiled LangGraph workflow."""

    def __init__(
        self,
        plan: NovelPlan,
        deps: PipelineDeps,
        store: CheckpointStore,
        config: NovelRunConfig,
        writer_configs: Optional[Sequence[WriterConfig]] = None,
    ) -> None:
        self.plan = plan
        self.deps = deps
        self.store = store
        self.config = config
        self.config.output_dir.mkdir(parents=True, exist_ok=True)
        self.writer_configs = list(writer_configs or self._select_writers())
        self._pipeline = build_chapter_pipeline(
            self.writer_configs,
            simple=config.simple,
            mode=config.mode,
            collaboration_config=config.collaboration,
            max_correction_attempts=config.max_correction_attempts,
            retake_config=config.retake,
            max_reader_retakes=config.max_reader_retakes,
        )
        self._workflow = self._build_workflow()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def run(self, *, resume: bool = False) -> NovelRunResult:
        started_at = datetime.utcnow()
        initial = self._initial_state(resume)
        resumed_from = initial["next_chapter"]
        if resumed_from:
            logger.info("Resuming task %s after chapter %s", self.config.task_id, resumed_from)

        final_state = await self._workflow.ainvoke(
            initial,
            config={"recursion_limit": 3 * len(self.plan.chapters) + 10},
        )
        finished_at = datetime.utcnow()

        chapter_paths = tuple(
            self._chapter_path(chapter) for chapter in self.plan.chapters
        )
        result = NovelRunResult(
            task_id=self.config.task_id,
            chapter_texts=tuple(final_state.get("chapter_texts", [])),
            cross_chapter_state=final_state.get("cross_state", initial_state()),
            tokens_used=int(final_state.get("tokens_used", 0)),
            chapter_paths=chapter_paths,
            resumed_from=resumed_from,
        )
        self._write_run_metadata(result, final_state, started_at, finished_at)
        return result

    # ------------------------------------------------------------------
    # LangGraph node implementations
    # ------------------------------------------------------------------
    async def write_chapter(self, state: NovelGraphState) -> NovelGraphState:
        chapter = self.plan.chapters[state["next_chapter"]]
        cross_state = state["cross_state"]
        ctx = RunContext.start(
            build_chapter_prompt(self.plan, chapter, cross_state),
            self.deps,
            chapter_context=ChapterContext(previous_texts=tuple(state["chapter_texts"])),
            cross_chapter_state=cross_state,
        )
        ctx = await self._pipeline(ctx)
        if not ctx.text.strip():
            raise RuntimeError(f"Chapter {chapter.index} came back empty.")

        path = self._chapter_path(chapter)
        path.write_text(f"## {chapter.title}\n\n{ctx.text.strip()}\n", encoding="utf-8")
        logger.info("Chapter %s written to %s", chapter.index, path)

        record = {
            "index": chapter.index,
            "title": chapter.title,
            "champion": ctx.champion,
            "tokens_used": ctx.tokens_used,
            "correction_attempts": ctx.correction_attempts,
            "retake_attempts": ctx.retake_attempts,
            "reader_retake_count": ctx.reader_retake_count,
            "synthesized": ctx.synthesized,
            "compliant": ctx.compliance_result.passed if ctx.compliance_result else None,
            "quality_score": ctx.quality_evaluation.aggregated_score
            if ctx.quality_evaluation
            else None,
        }
        return {
            "current_text": ctx.text,
            "tokens_used": state["tokens_used"] + ctx.tokens_used,
            "chapter_records": [*state.get("chapter_records", []), record],
        }

    async def track_state(self, state: NovelGraphState) -> NovelGraphState:
        chapter = self.plan.chapters[state["next_chapter"]]
        extractor = self.deps.agents.create_state_extractor()
        extraction = await extractor.extract(state["current_text"], chapter.index)
        return {
            "cross_state": update_state(state["cross_state"], extraction, chapter.index),
            "chapter_texts": [*state["chapter_texts"], state["current_text"]],
            "tokens_used": state["tokens_used"] + extraction.tokens_used,
            "next_chapter": state["next_chapter"] + 1,
        }

    def checkpoint(self, state: NovelGraphState) -> NovelGraphState:
        completed = state["next_chapter"]
        self.store.save(
            self.config.task_id,
            CHAPTER_DONE_PHASE,
            {
                "completed": completed,
                "chapter_texts": list(state["chapter_texts"]),
                "cross_state": state["cross_state"].to_dict(),
                "tokens_used": state["tokens_used"],
                "chapter_records": list(state.get("chapter_records", [])),
            },
            progress={"completed": completed, "total": len(self.plan.chapters)},
        )
        return {}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _build_workflow(self):
        graph = StateGraph(NovelGraphState)
        graph.add_node("write_chapter", self.write_chapter)
        graph.add_node("track_state", self.track_state)
        graph.add_node("checkpoint", self.checkpoint)

        graph.add_conditional_edges(
            START, self._route, {"continue": "write_chapter", "done": END}
        )
        graph.add_edge("write_chapter", "track_state")
        graph.add_edge("track_state", "checkpoint")
        graph.add_conditional_edges(
            "checkpoint", self._route, {"continue": "write_chapter", "done": END}
        )
        return graph.compile()

    def _route(self, state: NovelGraphState) -> str:
        return "continue" if state["next_chapter"] < len(self.plan.chapters) else "done"

    def _initial_state(self, resume: bool) -> NovelGraphState:
        saved = self.store.resume_state(self.config.task_id) if resume else None
        if saved:
            return {
                "next_chapter": int(saved.get("completed", 0)),
                "chapter_texts": list(saved.get("chapter_texts", [])),
                "cross_state": CrossChapterState.from_dict(saved.get("cross_state") or {}),
                "tokens_used": int(saved.get("tokens_used", 0)),
                "chapter_records": list(saved.get("chapter_records", [])),
            }
        if resume:
            logger.warning("No checkpoint for task %s; starting from scratch", self.config.task_id)
        return {
            "next_chapter": 0,
            "chapter_texts": [],
            "cross_state": initial_state(),
            "tokens_used": 0,
            "chapter_records": [],
        }

    def _select_writers(self) -> list[WriterConfig]:
        pool = self.plan.personas or DEFAULT_WRITER_PERSONAS
        return select_tournament_writers(
            pool,
            DEFAULT_TEMPERATURE_SLOTS,
            self.config.writer_count,
            rng=random.Random(self.config.seed),
        )

    def _chapter_path(self, chapter: ChapterPlan) -> Path:
        return self.config.output_dir / f"chapter_{chapter.index:02d}.md"

    def _write_run_metadata(
        self,
        result: NovelRunResult,
        final_state: NovelGraphState,
        started_at: datetime,
        finished_at: datetime,
    ) -> None:
        cross_state = result.cross_chapter_state
        metadata = {
            "task_id": result.task_id,
            "title": self.plan.title,
            "output_dir": str(self.config.output_dir),
            "started_at": started_at.isoformat(timespec="seconds") + "Z",
            "finished_at": finished_at.isoformat(timespec="seconds") + "Z",
            "mode": self.config.mode,
            "simple": self.config.simple,
            "resumed_from": result.resumed_from,
            "writers": [
                {
                    "id": writer.id,
                    "persona": writer.persona_name,
                    "temperature": writer.temperature,
                    "top_p": writer.top_p,
                }
                for writer in self.writer_configs
            ],
            "tokens_used": result.tokens_used,
            "chapters": list(final_state.get("chapter_records", [])),
            "motif_wear": [entry.to_dict() for entry in cross_state.motif_wear],
            "artefacts": [str(path) for path in result.chapter_paths if path.exists()],
        }
        run_path = self.config.output_dir / "run.json"
        run_path.write_text(
            json.dumps(metadata, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )
