"""Immutable run context threaded through pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..agents.types import (
    ChapterContext,
    ComplianceChecker,
    ComplianceResult,
    NarrativeConfig,
    QualityEvaluation,
    Violation,
)
from ..quality.compliance import AcceptAllChecker
from ..tournament.arena import TournamentResult
from .cross_chapter import CrossChapterState

if TYPE_CHECKING:  # pragma: no cover
    from ..agents.llm_agents import AgentFactory

__all__ = ["PipelineDeps", "RunContext"]


@dataclass(frozen=True, slots=True)
class PipelineDeps:
    """Collaborators shared by every stage of a run."""

    agents: "AgentFactory"
    checker: ComplianceChecker = field(default_factory=AcceptAllChecker)
    narrative: NarrativeConfig = field(default_factory=NarrativeConfig)


@dataclass(frozen=True, slots=True)
class RunContext:
    """State of one generation task.

    Stages never mutate a context; they return a new one via :meth:`evolve`.
    """

    text: str
    prompt: str
    deps: PipelineDeps
    champion: Optional[str] = None
    tournament_result: Optional[TournamentResult] = None
    compliance_result: Optional[ComplianceResult] = None
    quality_evaluation: Optional[QualityEvaluation] = None
    tokens_used: int = 0
    correction_attempts: int = 0
    retake_attempts: int = 0
    reader_retake_count: int = 0
    synthesized: bool = False
    chapter_context: Optional[ChapterContext] = None
    cross_chapter_state: Optional[CrossChapterState] = None
    collected_anti_patterns: tuple[Violation, ...] = ()

    @classmethod
    def start(
        cls,
        prompt: str,
        deps: PipelineDeps,
        *,
        chapter_context: ChapterContext | None = None,
        cross_chapter_state: CrossChapterState | None = None,
    ) -> "RunContext":
        return cls(
            text="",
            prompt=prompt,
            deps=deps,
            chapter_context=chapter_context,
            cross_chapter_state=cross_chapter_state,
        )

    def evolve(self, **changes: Any) -> "RunContext":
        return replace(self, **changes)

    def add_tokens(self, amount: int, **changes: Any) -> "RunContext":
        return replace(self, tokens_used=self.tokens_used + amount, **changes)

    def snapshot(self) -> dict[str, Any]:
        """JSON-serialisable view of everything but the dependencies."""

        return {
            "text": self.text,
            "prompt": self.prompt,
            "champion": self.champion,
            "tournament_result": self.tournament_result.to_dict()
            if self.tournament_result
            else None,
            "compliance_result": self.compliance_result.to_dict()
            if self.compliance_result
            else None,
            "quality_evaluation": self.quality_evaluation.to_dict()
            if self.quality_evaluation
            else None,
            "tokens_used": self.tokens_used,
            "correction_attempts": self.correction_attempts,
            "retake_attempts": self.retake_attempts,
            "reader_retake_count": self.reader_retake_count,
            "synthesized": self.synthesized,
            "chapter_context": list(self.chapter_context.previous_texts)
            if self.chapter_context
            else None,
            "cross_chapter_state": self.cross_chapter_state.to_dict()
            if self.cross_chapter_state
            else None,
            "collected_anti_patterns": [item.to_dict() for item in self.collected_anti_patterns],
        }

    @classmethod
    def restore(cls, snapshot: Mapping[str, Any], deps: PipelineDeps) -> "RunContext":
        def _optional(key: str, loader):
            value = snapshot.get(key)
            return loader(value) if value is not None else None

        return cls(
            text=str(snapshot.get("text", "")),
            prompt=str(snapshot.get("prompt", "")),
            deps=deps,
            champion=snapshot.get("champion"),
            tournament_result=_optional("tournament_result", TournamentResult.from_dict),
            compliance_result=_optional("compliance_result", ComplianceResult.from_dict),
            quality_evaluation=_optional("quality_evaluation", QualityEvaluation.from_dict),
            tokens_used=int(snapshot.get("tokens_used", 0)),
            correction_attempts=int(snapshot.get("correction_attempts", 0)),
            retake_attempts=int(snapshot.get("retake_attempts", 0)),
            reader_retake_count=int(snapshot.get("reader_retake_count", 0)),
            synthesized=bool(snapshot.get("synthesized", False)),
            chapter_context=_optional(
                "chapter_context", lambda texts: ChapterContext(previous_texts=tuple(texts))
            ),
            cross_chapter_state=_optional("cross_chapter_state", CrossChapterState.from_dict),
            collected_anti_patterns=tuple(
                Violation.from_dict(item) for item in snapshot.get("collected_anti_patterns", [])
            ),
        )
