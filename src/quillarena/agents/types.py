"""Value types and capability protocols shared by the generation core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Protocol, Sequence, runtime_checkable

from ..config import ConfigurationError

__all__ = [
    "Side",
    "NarrativeConfig",
    "WriterConfig",
    "GenerationResult",
    "ScoreBreakdown",
    "JudgeVerdict",
    "Violation",
    "ComplianceResult",
    "CorrectionResult",
    "RetakeResult",
    "SynthesisResult",
    "ReaderFeedback",
    "QualityEvaluation",
    "ChapterContext",
    "LoserExcerpt",
    "CharacterDelta",
    "MotifOccurrence",
    "ChapterExtraction",
    "ModerationResult",
    "TokenCounter",
    "Writer",
    "Judge",
    "Corrector",
    "ComplianceChecker",
    "ContextualComplianceChecker",
    "Retaker",
    "Synthesizer",
    "QualityEvaluator",
    "ChapterStateExtractor",
    "Moderator",
]

Side = Literal["A", "B"]
POINTS_OF_VIEW = ("first", "second", "third-limited", "third-omniscient")


@dataclass(frozen=True, slots=True)
class NarrativeConfig:
    """Narrative constraints shared by every agent of a run."""

    point_of_view: str = "first"
    voice: str = ""
    tone: str = ""
    language: str = "en"
    target_length: int = 4000

    def __post_init__(self) -> None:
        if self.point_of_view not in POINTS_OF_VIEW:
            raise ConfigurationError(
                f"point_of_view must be one of {', '.join(POINTS_OF_VIEW)}, got {self.point_of_view!r}"
            )
        if self.target_length <= 0:
            raise ConfigurationError("target_length must be positive")


@dataclass(frozen=True, slots=True)
class WriterConfig:
    """Sampling and persona settings for one tournament writer."""

    id: str
    temperature: float
    top_p: float
    style: str = "balanced"
    focus_categories: tuple[str, ...] = ()
    persona_directive: Optional[str] = None
    persona_name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class GenerationResult:
    writer_id: str
    text: str
    tokens_used: int = 0


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    """Judge sub-scores in [0, 1]; missing dimensions default to neutral."""

    style: float = 0.5
    compliance: float = 0.5
    overall: float = 0.5
    voice_accuracy: float = 0.5
    originality: float = 0.5
    structure: float = 0.5

    def to_dict(self) -> dict[str, float]:
        return {
            "style": self.style,
            "compliance": self.compliance,
            "overall": self.overall,
            "voice_accuracy": self.voice_accuracy,
            "originality": self.originality,
            "structure": self.structure,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ScoreBreakdown":
        return cls(**{key: float(payload.get(key, 0.5)) for key in cls.__dataclass_fields__})


@dataclass(frozen=True, slots=True)
class JudgeVerdict:
    """Structured comparison of two texts labelled ``A`` and ``B``."""

    winner: Side
    reasoning: str
    score_a: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    score_b: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    praised_a: tuple[str, ...] = ()
    praised_b: tuple[str, ...] = ()
    weaknesses_a: tuple[str, ...] = ()
    weaknesses_b: tuple[str, ...] = ()
    tokens_used: int = 0
    is_fallback: bool = False

    def score(self, side: Side) -> ScoreBreakdown:
        return self.score_a if side == "A" else self.score_b

    def praised(self, side: Side) -> tuple[str, ...]:
        return self.praised_a if side == "A" else self.praised_b

    def weaknesses(self, side: Side) -> tuple[str, ...]:
        return self.weaknesses_a if side == "A" else self.weaknesses_b

    def to_dict(self) -> dict[str, object]:
        return {
            "winner": self.winner,
            "reasoning": self.reasoning,
            "scores": {"A": self.score_a.to_dict(), "B": self.score_b.to_dict()},
            "praised_excerpts": {"A": list(self.praised_a), "B": list(self.praised_b)},
            "weaknesses": {"A": list(self.weaknesses_a), "B": list(self.weaknesses_b)},
            "tokens_used": self.tokens_used,
            "is_fallback": self.is_fallback,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "JudgeVerdict":
        scores = payload.get("scores", {})
        praised = payload.get("praised_excerpts", {})
        weaknesses = payload.get("weaknesses", {})
        return cls(
            winner=payload["winner"],
            reasoning=str(payload.get("reasoning", "")),
            score_a=ScoreBreakdown.from_dict(scores.get("A", {})),
            score_b=ScoreBreakdown.from_dict(scores.get("B", {})),
            praised_a=tuple(praised.get("A", ())),
            praised_b=tuple(praised.get("B", ())),
            weaknesses_a=tuple(weaknesses.get("A", ())),
            weaknesses_b=tuple(weaknesses.get("B", ())),
            tokens_used=int(payload.get("tokens_used", 0)),
            is_fallback=bool(payload.get("is_fallback", False)),
        )


@dataclass(frozen=True, slots=True)
class Violation:
    type: str
    start: int
    end: int
    excerpt: str
    rule: str
    severity: Literal["error", "warning"] = "error"

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type,
            "start": self.start,
            "end": self.end,
            "excerpt": self.excerpt,
            "rule": self.rule,
            "severity": self.severity,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "Violation":
        return cls(
            type=str(payload["type"]),
            start=int(payload.get("start", 0)),
            end=int(payload.get("end", 0)),
            excerpt=str(payload.get("excerpt", "")),
            rule=str(payload.get("rule", "")),
            severity=payload.get("severity", "error"),
        )


@dataclass(frozen=True, slots=True)
class ComplianceResult:
    passed: bool
    score: float
    violations: tuple[Violation, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "passed": self.passed,
            "score": self.score,
            "violations": [violation.to_dict() for violation in self.violations],
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ComplianceResult":
        return cls(
            passed=bool(payload["passed"]),
            score=float(payload.get("score", 0.0)),
            violations=tuple(Violation.from_dict(item) for item in payload.get("violations", [])),
        )


@dataclass(frozen=True, slots=True)
class CorrectionResult:
    corrected_text: str
    tokens_used: int = 0


@dataclass(frozen=True, slots=True)
class RetakeResult:
    retaken_text: str
    tokens_used: int = 0


@dataclass(frozen=True, slots=True)
class SynthesisResult:
    synthesized_text: str
    tokens_used: int = 0


@dataclass(frozen=True, slots=True)
class ReaderFeedback:
    """One evaluator's opinion inside a :class:`QualityEvaluation`."""

    evaluator_id: str
    evaluator_name: str
    score: float
    strengths: str = ""
    weaknesses: str = ""
    suggestion: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "evaluator_id": self.evaluator_id,
            "evaluator_name": self.evaluator_name,
            "score": self.score,
            "strengths": self.strengths,
            "weaknesses": self.weaknesses,
            "suggestion": self.suggestion,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "ReaderFeedback":
        return cls(
            evaluator_id=str(payload["evaluator_id"]),
            evaluator_name=str(payload.get("evaluator_name", "")),
            score=float(payload.get("score", 0.0)),
            strengths=str(payload.get("strengths", "")),
            weaknesses=str(payload.get("weaknesses", "")),
            suggestion=str(payload.get("suggestion", "")),
        )


@dataclass(frozen=True, slots=True)
class QualityEvaluation:
    """Aggregated score across several evaluators."""

    aggregated_score: float
    passed: bool
    summary: str = ""
    evaluations: tuple[ReaderFeedback, ...] = ()
    tokens_used: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "aggregated_score": self.aggregated_score,
            "passed": self.passed,
            "summary": self.summary,
            "evaluations": [item.to_dict() for item in self.evaluations],
            "tokens_used": self.tokens_used,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "QualityEvaluation":
        return cls(
            aggregated_score=float(payload["aggregated_score"]),
            passed=bool(payload["passed"]),
            summary=str(payload.get("summary", "")),
            evaluations=tuple(
                ReaderFeedback.from_dict(item) for item in payload.get("evaluations", [])
            ),
            tokens_used=int(payload.get("tokens_used", 0)),
        )


@dataclass(frozen=True, slots=True)
class LoserExcerpt:
    """Praised passages and judge reasoning for one eliminated writer."""

    writer_id: str
    text: str
    excerpts: tuple[str, ...] = ()
    reasonings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ChapterContext:
    """Completed chapter texts in generation order."""

    previous_texts: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CharacterDelta:
    """How one character changed over a single chapter."""

    character_name: str
    emotional_state: str = ""
    knowledge_gained: tuple[str, ...] = ()
    relationship_changes: tuple[str, ...] = ()
    physical_state: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "character_name": self.character_name,
            "emotional_state": self.emotional_state,
            "knowledge_gained": list(self.knowledge_gained),
            "relationship_changes": list(self.relationship_changes),
            "physical_state": self.physical_state,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "CharacterDelta":
        return cls(
            character_name=str(payload["character_name"]),
            emotional_state=str(payload.get("emotional_state", "")),
            knowledge_gained=tuple(payload.get("knowledge_gained", ())),
            relationship_changes=tuple(payload.get("relationship_changes", ())),
            physical_state=payload.get("physical_state"),
        )


@dataclass(frozen=True, slots=True)
class MotifOccurrence:
    motif: str
    count: int


@dataclass(frozen=True, slots=True)
class ChapterExtraction:
    """Structured facts pulled out of a finished chapter."""

    character_states: tuple[CharacterDelta, ...] = ()
    motif_occurrences: tuple[MotifOccurrence, ...] = ()
    next_variation_hint: str = ""
    chapter_summary: str = ""
    dominant_tone: str = ""
    peak_intensity: int = 3
    tokens_used: int = 0


@dataclass(frozen=True, slots=True)
class ModerationResult:
    merged_text: str
    consensus_score: float
    summary: str = ""
    tokens_used: int = 0


class TokenCounter(Protocol):
    @property
    def total_tokens(self) -> int:
        ...


@runtime_checkable
class Writer(Protocol):
    @property
    def writer_id(self) -> str:
        ...

    async def generate(self, prompt: str) -> str:
        ...

    async def generate_with_metadata(self, prompt: str) -> GenerationResult:
        ...


@runtime_checkable
class Judge(Protocol):
    async def evaluate(self, text_a: str, text_b: str) -> JudgeVerdict:
        ...


@runtime_checkable
class Corrector(Protocol):
    async def correct(self, text: str, violations: Sequence[Violation]) -> CorrectionResult:
        ...


@runtime_checkable
class ComplianceChecker(Protocol):
    async def check(self, text: str) -> ComplianceResult:
        ...


@runtime_checkable
class ContextualComplianceChecker(ComplianceChecker, Protocol):
    async def check_with_context(self, text: str, context: ChapterContext) -> ComplianceResult:
        ...


@runtime_checkable
class Retaker(Protocol):
    async def retake(self, text: str, feedback: str) -> RetakeResult:
        ...


@runtime_checkable
class Synthesizer(Protocol):
    async def synthesize(
        self, champion_text: str, loser_excerpts: Sequence[LoserExcerpt]
    ) -> SynthesisResult:
        ...


@runtime_checkable
class QualityEvaluator(Protocol):
    async def evaluate(
        self, text: str, previous: QualityEvaluation | None = None
    ) -> QualityEvaluation:
        ...


@runtime_checkable
class ChapterStateExtractor(Protocol):
    async def extract(self, text: str, chapter_index: int) -> ChapterExtraction:
        ...


@runtime_checkable
class Moderator(Protocol):
    async def merge(
        self, prompt: str, drafts: Sequence[GenerationResult], round_number: int
    ) -> ModerationResult:
        ...
