"""Rewrite-and-rejudge loops that only accept strict improvements.

:class:`RetakeLoop` lets a judge compare every rewrite head-to-head with
its predecessor; the rewrite is adopted only when it wins outright.
:func:`run_guarded_retakes` applies the same rule to an aggregated score
from several evaluators and rolls back the rewrite that failed to raise it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..agents.types import Judge, JudgeVerdict, QualityEvaluation, QualityEvaluator, Retaker
from ..config import RetakeConfig

logger = logging.getLogger(__name__)

__all__ = [
    "QUALITY_FLOOR",
    "RetakeLoopResult",
    "RetakeAssessment",
    "RetakeLoop",
    "GuardedRetakeResult",
    "run_guarded_retakes",
    "format_panel_feedback",
]

QUALITY_FLOOR = 0.6
GENERIC_FEEDBACK = "Improve the overall quality of the passage."


@dataclass(frozen=True, slots=True)
class RetakeLoopResult:
    final_text: str
    retake_count: int
    improved: bool
    total_tokens: int = 0
    final_score: Optional[float] = None


@dataclass(frozen=True, slots=True)
class RetakeAssessment:
    needed: bool
    score: float
    feedback: str
    tokens_used: int = 0


class RetakeLoop:
    def __init__(self, retaker: Retaker, judge: Judge, config: RetakeConfig | None = None) -> None:
        self.retaker = retaker
        self.judge = judge
        self.config = config or RetakeConfig()

    async def run(self, text: str, initial_feedback: str | None = None) -> RetakeLoopResult:
        current_text = text
        retake_count = 0
        total_tokens = 0
        improved = False
        last_score: Optional[float] = None

        for iteration in range(self.config.max_retakes):
            assessment = await self.assess(current_text)
            total_tokens += assessment.tokens_used
            if not assessment.needed:
                last_score = assessment.score
                break

            feedback = (
                initial_feedback if initial_feedback and iteration == 0 else assessment.feedback
            )
            retake = await self.retaker.retake(current_text, feedback)
            total_tokens += retake.tokens_used
            retake_count += 1

            comparison = await self.judge.evaluate(current_text, retake.retaken_text)
            total_tokens += comparison.tokens_used
            if comparison.winner == "B":
                current_text = retake.retaken_text
                improved = True
                last_score = comparison.score_b.overall
                logger.info("Retake %s adopted (overall %.2f)", retake_count, last_score)
            else:
                last_score = comparison.score_a.overall
                logger.info("Retake %s rejected; keeping the previous text", retake_count)
                break

        return RetakeLoopResult(
            final_text=current_text,
            retake_count=retake_count,
            improved=improved,
            total_tokens=total_tokens,
            final_score=last_score,
        )

    async def assess(self, text: str) -> RetakeAssessment:
        """Score ``text`` by judging it against itself and list its weak spots."""

        verdict = await self.judge.evaluate(text, text)
        scores = verdict.score_a
        needed = (
            scores.overall < self.config.min_score or scores.voice_accuracy < self.config.min_voice
        )
        return RetakeAssessment(
            needed=needed,
            score=scores.overall,
            feedback=self._feedback(verdict),
            tokens_used=verdict.tokens_used,
        )

    def _feedback(self, verdict: JudgeVerdict) -> str:
        scores = verdict.score_a
        hints = []
        if scores.voice_accuracy < self.config.min_voice:
            hints.append(
                "The narrative voice drifts; hold the configured point of view and register throughout."
            )
        if scores.style < QUALITY_FLOOR:
            hints.append("The prose rhythm is off; vary sentence length and tighten the cadence.")
        if scores.originality < QUALITY_FLOOR:
            hints.append("The text strays from the established setting and characters; remove inventions.")
        if scores.compliance < QUALITY_FLOOR:
            hints.append("Forbidden vocabulary or imagery is present; remove it.")
        return "\n".join(hints) if hints else GENERIC_FEEDBACK


@dataclass(frozen=True, slots=True)
class GuardedRetakeResult:
    final_text: str
    evaluation: QualityEvaluation
    retake_count: int
    total_tokens: int = 0
    rolled_back: bool = False


def format_panel_feedback(evaluation: QualityEvaluation) -> str:
    return "\n".join(
        f"{item.evaluator_name}:\n  strengths: {item.strengths}\n"
        f"  weaknesses: {item.weaknesses}\n  suggestion: {item.suggestion}"
        for item in evaluation.evaluations
    )


async def run_guarded_retakes(
    text: str,
    evaluator: QualityEvaluator,
    retaker: Retaker,
    max_retakes: int = 2,
    initial: QualityEvaluation | None = None,
) -> GuardedRetakeResult:
    """Retake until the panel passes, keeping only rewrites that raise the score.

    Every retake sees the feedback of all previous rounds. A rewrite whose
    aggregated score is not strictly higher than its predecessor's is
    discarded together with its evaluation and the loop stops.
    """

    evaluation = await evaluator.evaluate(text, initial)
    total_tokens = evaluation.tokens_used
    final_text = text
    retake_count = 0
    rolled_back = False
    history: list[str] = []

    for iteration in range(max_retakes):
        if evaluation.passed:
            break
        previous_score = evaluation.aggregated_score
        previous_text = final_text
        previous_evaluation = evaluation

        history.append(format_panel_feedback(evaluation))
        if len(history) == 1:
            message = f"Readers gave the following feedback. Revise accordingly:\n{history[0]}"
        else:
            rounds = "\n\n".join(
                f"Review round {index}:\n{entry}" for index, entry in enumerate(history, start=1)
            )
            message = (
                "Readers have reviewed this text several times. Address the earlier points"
                f" as well as the latest ones:\n\n{rounds}"
            )

        retake = await retaker.retake(final_text, message)
        total_tokens += retake.tokens_used
        final_text = retake.retaken_text
        evaluation = await evaluator.evaluate(final_text, evaluation)
        total_tokens += evaluation.tokens_used
        retake_count += 1
        logger.debug(
            "Guarded retake %s/%s scored %.3f", iteration + 1, max_retakes, evaluation.aggregated_score
        )

        if evaluation.aggregated_score <= previous_score:
            logger.warning(
                "Retake discarded: score degraded (%.3f -> %.3f)",
                previous_score,
                evaluation.aggregated_score,
            )
            final_text = previous_text
            evaluation = previous_evaluation
            rolled_back = True
            break

    return GuardedRetakeResult(
        final_text=final_text,
        evaluation=evaluation,
        retake_count=retake_count,
        total_tokens=total_tokens,
        rolled_back=rolled_back,
    )
