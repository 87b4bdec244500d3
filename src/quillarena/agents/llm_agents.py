"""LLM-backed implementations of the generation capabilities.

Each agent talks to a :class:`~quillarena.llm.providers.ChatProvider` and
reports the tokens its own call consumed, as collected by
:func:`~quillarena.llm.cost.track_call_usage`. Providers that do not report
per call fall back to the difference of their running counter. Structured
replies go through :func:`~quillarena.agents.schemas.decode`; malformed
replies degrade to neutral fallbacks instead of aborting the run.
"""

from __future__ import annotations

import asyncio
import logging
import textwrap
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from ..config import ConfigurationError
from ..llm.cost import track_call_usage
from ..llm.providers import ChatProvider
from .schemas import (
    ChapterStateResponse,
    Decoded,
    JudgeResponse,
    ModeratorResponse,
    ReaderResponse,
    ScorePayload,
    decode,
)
from .types import (
    ChapterExtraction,
    ChapterStateExtractor,
    CharacterDelta,
    CorrectionResult,
    Corrector,
    GenerationResult,
    Judge,
    JudgeVerdict,
    LoserExcerpt,
    ModerationResult,
    Moderator,
    MotifOccurrence,
    NarrativeConfig,
    QualityEvaluation,
    QualityEvaluator,
    ReaderFeedback,
    RetakeResult,
    Retaker,
    ScoreBreakdown,
    SynthesisResult,
    Synthesizer,
    TokenCounter,
    Violation,
    Writer,
    WriterConfig,
)

logger = logging.getLogger(__name__)

__all__ = [
    "SCORE_FLOOR",
    "SCORE_CEILING",
    "READER_PASSING_THRESHOLD",
    "ReaderPersona",
    "DEFAULT_READER_PERSONAS",
    "fence",
    "normalize_scores",
    "fallback_verdict",
    "verdict_from_response",
    "fallback_extraction",
    "extraction_from_response",
    "LLMWriter",
    "LLMJudge",
    "LLMCorrector",
    "LLMRetaker",
    "LLMSynthesizer",
    "LLMReaderEvaluator",
    "ReaderPanel",
    "LLMChapterStateExtractor",
    "LLMModerator",
    "AgentFactory",
    "LLMAgentFactory",
]

SCORE_FLOOR = 0.05
SCORE_CEILING = 0.95
READER_PASSING_THRESHOLD = 0.85


@dataclass(frozen=True, slots=True)
class ReaderPersona:
    id: str
    name: str
    focus: str


DEFAULT_READER_PERSONAS: tuple[ReaderPersona, ...] = (
    ReaderPersona("literary", "Literary critic", "prose rhythm, imagery and originality"),
    ReaderPersona("genre", "Genre reader", "pacing, tension and payoff"),
    ReaderPersona("casual", "Casual reader", "clarity and emotional pull"),
)


def fence(label: str, text: str) -> str:
    """Wrap ``text`` in a labelled block the model can refer to."""

    return f"<{label}>\n{text}\n</{label}>"


def _narrative_brief(narrative: NarrativeConfig) -> str:
    lines = [f"Point of view: {narrative.point_of_view}", f"Language: {narrative.language}"]
    if narrative.voice:
        lines.append(f"Voice: {narrative.voice}")
    if narrative.tone:
        lines.append(f"Tone: {narrative.tone}")
    return "\n".join(lines)


def _clamp(value: Optional[float]) -> float:
    resolved = 0.5 if value is None else float(value)
    return min(SCORE_CEILING, max(SCORE_FLOOR, resolved))


def normalize_scores(payload: Optional[ScorePayload]) -> ScoreBreakdown:
    """Clamp every sub-score into ``[0.05, 0.95]``; missing ones become 0.5."""

    if payload is None:
        return ScoreBreakdown()
    return ScoreBreakdown(
        style=_clamp(payload.style),
        compliance=_clamp(payload.compliance),
        overall=_clamp(payload.overall),
        voice_accuracy=_clamp(payload.voice_accuracy),
        originality=_clamp(payload.originality),
        structure=_clamp(payload.structure),
    )


def fallback_verdict(tokens_used: int = 0) -> JudgeVerdict:
    return JudgeVerdict(
        winner="A",
        reasoning="Fallback: structured output parsing failed",
        tokens_used=tokens_used,
        is_fallback=True,
    )


def verdict_from_response(response: JudgeResponse, tokens_used: int = 0) -> JudgeVerdict:
    return JudgeVerdict(
        winner=response.winner,
        reasoning=response.reasoning or "No reasoning provided",
        score_a=normalize_scores(response.scores.get("A")),
        score_b=normalize_scores(response.scores.get("B")),
        praised_a=tuple(response.praised_excerpts.A),
        praised_b=tuple(response.praised_excerpts.B),
        weaknesses_a=tuple(response.weaknesses.A),
        weaknesses_b=tuple(response.weaknesses.B),
        tokens_used=tokens_used,
    )


def fallback_extraction(tokens_used: int = 0) -> ChapterExtraction:
    return ChapterExtraction(peak_intensity=3, tokens_used=tokens_used)


def extraction_from_response(
    response: ChapterStateResponse, tokens_used: int = 0
) -> ChapterExtraction:
    return ChapterExtraction(
        character_states=tuple(
            CharacterDelta(
                character_name=item.character_name,
                emotional_state=item.emotional_state,
                knowledge_gained=tuple(item.knowledge_gained),
                relationship_changes=tuple(item.relationship_changes),
                physical_state=item.physical_state,
            )
            for item in response.character_states
        ),
        motif_occurrences=tuple(
            MotifOccurrence(motif=item.motif, count=item.count)
            for item in response.motif_occurrences
        ),
        next_variation_hint=response.next_variation_hint,
        chapter_summary=response.chapter_summary,
        dominant_tone=response.dominant_tone,
        peak_intensity=min(5, max(1, response.peak_intensity)),
        tokens_used=tokens_used,
    )


class _ProviderAgent:
    """Shared plumbing: narrative brief, token deltas and stage-tagged calls."""

    stage = ""

    def __init__(self, provider: ChatProvider, narrative: NarrativeConfig) -> None:
        self.provider = provider
        self.narrative = narrative

    async def _complete(self, system: str, prompt: str, **sampling) -> tuple[str, int]:
        before = self.provider.total_tokens
        with track_call_usage() as usage:
            content = await self.provider.complete(self.stage, system, prompt, **sampling)
        if usage.reported:
            return content, usage.tokens
        # providers that do not report per call only expose the shared counter
        return content, self.provider.total_tokens - before


class LLMWriter(_ProviderAgent):
    stage = "writer"

    def __init__(
        self, provider: ChatProvider, narrative: NarrativeConfig, config: WriterConfig
    ) -> None:
        super().__init__(provider, narrative)
        self.config = config

    @property
    def writer_id(self) -> str:
        return self.config.id

    def _system_prompt(self) -> str:
        parts = [
            "You are a fiction writer competing against other writers on the same brief.",
            _narrative_brief(self.narrative),
            f"Target length: about {self.narrative.target_length} characters.",
            f"Style: {self.config.style}",
        ]
        if self.config.focus_categories:
            parts.append("Focus on: " + ", ".join(self.config.focus_categories))
        if self.config.persona_directive:
            parts.append(self.config.persona_directive)
        return "\n".join(parts)

    async def generate(self, prompt: str) -> str:
        result = await self.generate_with_metadata(prompt)
        return result.text

    async def generate_with_metadata(self, prompt: str) -> GenerationResult:
        content, tokens = await self._complete(
            self._system_prompt(),
            prompt,
            temperature=self.config.temperature,
            top_p=self.config.top_p,
        )
        logger.debug("Writer %s produced %s characters", self.writer_id, len(content))
        return GenerationResult(writer_id=self.writer_id, text=content.strip(), tokens_used=tokens)


class LLMJudge(_ProviderAgent):
    stage = "judge"

    async def evaluate(self, text_a: str, text_b: str) -> JudgeVerdict:
        system = "\n".join(
            [
                "You judge two fiction passages written for the same brief.",
                _narrative_brief(self.narrative),
                "Reply with a single JSON object: winner (A or B), reasoning, scores for A"
                " and B (style, compliance, overall, voice_accuracy, originality, structure"
                " each in [0, 1]), praised_excerpts and weaknesses keyed by A and B.",
            ]
        )
        prompt = fence("text_a", text_a) + "\n\n" + fence("text_b", text_b)
        content, tokens = await self._complete(system, prompt, temperature=0.2)
        if not content.strip():
            raise ConfigurationError("Judge returned no structured payload")
        result = decode(content, JudgeResponse)
        if isinstance(result, Decoded):
            return verdict_from_response(result.value, tokens)
        logger.warning("Judge verdict fell back to neutral scores: %s", result.reason)
        return fallback_verdict(tokens)


class LLMCorrector(_ProviderAgent):
    stage = "corrector"

    async def correct(self, text: str, violations: Sequence[Violation]) -> CorrectionResult:
        issues = "\n".join(
            f"- [{violation.type}] {violation.rule}: \"{violation.excerpt}\""
            for violation in violations
        )
        system = "\n".join(
            [
                "You repair fiction so that it complies with the house rules.",
                _narrative_brief(self.narrative),
                "Change only what the listed violations require and return the full text.",
            ]
        )
        prompt = f"Violations:\n{issues or '- none reported'}\n\n" + fence("text", text)
        content, tokens = await self._complete(system, prompt, temperature=0.3)
        corrected = content.strip() or text
        return CorrectionResult(corrected_text=corrected, tokens_used=tokens)


class LLMRetaker(_ProviderAgent):
    stage = "retake"

    async def retake(self, text: str, feedback: str) -> RetakeResult:
        system = "\n".join(
            [
                "You rewrite fiction to address editorial feedback while keeping the plot.",
                _narrative_brief(self.narrative),
            ]
        )
        prompt = f"Feedback:\n{feedback}\n\n" + fence("text", text)
        content, tokens = await self._complete(system, prompt)
        return RetakeResult(retaken_text=content.strip() or text, tokens_used=tokens)


class LLMSynthesizer(_ProviderAgent):
    stage = "synthesis"

    async def synthesize(
        self, champion_text: str, loser_excerpts: Sequence[LoserExcerpt]
    ) -> SynthesisResult:
        if not loser_excerpts:
            return SynthesisResult(synthesized_text=champion_text, tokens_used=0)
        blocks = []
        for loser in loser_excerpts:
            if not loser.excerpts:
                continue
            lines = [f"From {loser.writer_id}:"]
            lines.extend(f"- {excerpt}" for excerpt in loser.excerpts)
            lines.extend(f"  (judge: {reason})" for reason in loser.reasonings)
            blocks.append("\n".join(lines))
        system = "\n".join(
            [
                "You fold the best passages of rejected drafts into a winning draft.",
                _narrative_brief(self.narrative),
                "Keep the winning draft's structure and voice; return the full text.",
            ]
        )
        prompt = "Praised passages:\n" + "\n\n".join(blocks) + "\n\n" + fence("text", champion_text)
        content, tokens = await self._complete(system, prompt, temperature=0.6)
        return SynthesisResult(synthesized_text=content.strip() or champion_text, tokens_used=tokens)


class LLMReaderEvaluator(_ProviderAgent):
    stage = "reader"

    def __init__(
        self, provider: ChatProvider, narrative: NarrativeConfig, persona: ReaderPersona
    ) -> None:
        super().__init__(provider, narrative)
        self.persona = persona

    async def evaluate(
        self, text: str, previous: ReaderFeedback | None = None
    ) -> tuple[ReaderFeedback, int]:
        system = "\n".join(
            [
                f"You are a {self.persona.name} who cares about {self.persona.focus}.",
                "Reply with JSON: score in [0, 1], strengths, weaknesses, suggestion.",
            ]
        )
        prompt = fence("text", text)
        if previous is not None:
            prompt = (
                f"Your previous score was {previous.score:.2f}. "
                f"You said: {previous.weaknesses}\n\n" + prompt
            )
        content, tokens = await self._complete(system, prompt, temperature=0.3)
        result = decode(content, ReaderResponse)
        if isinstance(result, Decoded):
            payload = result.value
            feedback = ReaderFeedback(
                evaluator_id=self.persona.id,
                evaluator_name=self.persona.name,
                score=payload.score,
                strengths=payload.strengths,
                weaknesses=payload.weaknesses,
                suggestion=payload.suggestion,
            )
        else:
            logger.warning(
                "Reader %s response unusable (%s); scoring neutral", self.persona.id, result.reason
            )
            feedback = ReaderFeedback(
                evaluator_id=self.persona.id, evaluator_name=self.persona.name, score=0.5
            )
        return feedback, tokens


class ReaderPanel:
    """Evaluate a text with several reader personas and average their scores."""

    def __init__(
        self,
        evaluators: Sequence[LLMReaderEvaluator],
        *,
        passing_threshold: float = READER_PASSING_THRESHOLD,
    ) -> None:
        self.evaluators = list(evaluators)
        self.passing_threshold = passing_threshold

    async def evaluate(
        self, text: str, previous: QualityEvaluation | None = None
    ) -> QualityEvaluation:
        prior = {item.evaluator_id: item for item in previous.evaluations} if previous else {}
        outcomes = await asyncio.gather(
            *(
                evaluator.evaluate(text, prior.get(evaluator.persona.id))
                for evaluator in self.evaluators
            )
        )
        evaluations = tuple(feedback for feedback, _ in outcomes)
        tokens = sum(used for _, used in outcomes)
        aggregated = (
            sum(item.score for item in evaluations) / len(evaluations) if evaluations else 0.0
        )
        passed = aggregated >= self.passing_threshold
        summary_lines = [f"Reader panel: {'pass' if passed else 'fail'}"]
        summary_lines.extend(
            f"- {item.evaluator_name}: {item.score * 100:.1f}" for item in evaluations
        )
        return QualityEvaluation(
            aggregated_score=aggregated,
            passed=passed,
            summary="\n".join(summary_lines),
            evaluations=evaluations,
            tokens_used=tokens,
        )


class LLMChapterStateExtractor(_ProviderAgent):
    stage = "chapter_state"

    async def extract(self, text: str, chapter_index: int) -> ChapterExtraction:
        system = textwrap.dedent(
            """
            You track continuity across the chapters of a novel. Reply with JSON:
            character_states (character_name, emotional_state, knowledge_gained,
            relationship_changes, physical_state), motif_occurrences (motif, count),
            next_variation_hint, chapter_summary, dominant_tone and peak_intensity (1-5).
            """
        ).strip()
        prompt = f"Chapter {chapter_index}\n\n" + fence("text", text)
        content, tokens = await self._complete(system, prompt, temperature=0.2)
        result = decode(content, ChapterStateResponse)
        if isinstance(result, Decoded):
            return extraction_from_response(result.value, tokens)
        logger.warning("Chapter %s state extraction fell back: %s", chapter_index, result.reason)
        return fallback_extraction(tokens)


class LLMModerator(_ProviderAgent):
    stage = "moderator"

    async def merge(
        self, prompt: str, drafts: Sequence[GenerationResult], round_number: int
    ) -> ModerationResult:
        system = "\n".join(
            [
                "You moderate a writers' room and merge competing drafts into one.",
                _narrative_brief(self.narrative),
                "Reply with JSON: merged_draft, consensus_score in [0, 1], summary.",
            ]
        )
        blocks = [fence(f"draft_{index}", draft.text) for index, draft in enumerate(drafts)]
        body = f"Brief:\n{prompt}\n\nRound {round_number}\n\n" + "\n\n".join(blocks)
        content, tokens = await self._complete(system, body, temperature=0.3)
        result = decode(content, ModeratorResponse)
        if isinstance(result, Decoded):
            payload = result.value
            return ModerationResult(
                merged_text=payload.merged_draft.strip(),
                consensus_score=payload.consensus_score,
                summary=payload.summary,
                tokens_used=tokens,
            )
        logger.warning("Moderator reply unusable (%s); keeping the first draft", result.reason)
        fallback_text = drafts[0].text if drafts else ""
        return ModerationResult(
            merged_text=fallback_text, consensus_score=0.0, summary=result.reason, tokens_used=tokens
        )


class AgentFactory(Protocol):
    """Builds the capabilities a pipeline run needs."""

    @property
    def token_counter(self) -> TokenCounter:
        ...

    def create_writer(self, config: WriterConfig) -> Writer:
        ...

    def create_judge(self) -> Judge:
        ...

    def create_corrector(self) -> Corrector:
        ...

    def create_retaker(self) -> Retaker:
        ...

    def create_synthesizer(self) -> Synthesizer:
        ...

    def create_quality_evaluator(self) -> QualityEvaluator:
        ...

    def create_state_extractor(self) -> ChapterStateExtractor:
        ...

    def create_moderator(self) -> Moderator:
        ...


class LLMAgentFactory:
    """Default :class:`AgentFactory` backed by a single chat provider."""

    def __init__(
        self,
        provider: ChatProvider,
        narrative: NarrativeConfig | None = None,
        *,
        reader_personas: Sequence[ReaderPersona] = DEFAULT_READER_PERSONAS,
        passing_threshold: float = READER_PASSING_THRESHOLD,
    ) -> None:
        self.provider = provider
        self.narrative = narrative or NarrativeConfig()
        self.reader_personas = tuple(reader_personas)
        self.passing_threshold = passing_threshold

    @property
    def token_counter(self) -> TokenCounter:
        return self.provider

    def create_writer(self, config: WriterConfig) -> LLMWriter:
        return LLMWriter(self.provider, self.narrative, config)

    def create_judge(self) -> LLMJudge:
        return LLMJudge(self.provider, self.narrative)

    def create_corrector(self) -> LLMCorrector:
        return LLMCorrector(self.provider, self.narrative)

    def create_retaker(self) -> LLMRetaker:
        return LLMRetaker(self.provider, self.narrative)

    def create_synthesizer(self) -> LLMSynthesizer:
        return LLMSynthesizer(self.provider, self.narrative)

    def create_quality_evaluator(self) -> ReaderPanel:
        evaluators = [
            LLMReaderEvaluator(self.provider, self.narrative, persona)
            for persona in self.reader_personas
        ]
        return ReaderPanel(evaluators, passing_threshold=self.passing_threshold)

    def create_state_extractor(self) -> LLMChapterStateExtractor:
        return LLMChapterStateExtractor(self.provider, self.narrative)

    def create_moderator(self) -> LLMModerator:
        return LLMModerator(self.provider, self.narrative)
