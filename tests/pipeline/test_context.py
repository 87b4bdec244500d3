from __future__ import annotations

import json

import pytest

from quillarena.agents.types import (
    ChapterContext,
    ComplianceResult,
    GenerationResult,
    JudgeVerdict,
    QualityEvaluation,
    ReaderFeedback,
    Violation,
)
from quillarena.pipeline.context import PipelineDeps, RunContext
from quillarena.pipeline.cross_chapter import CrossChapterState, MotifWearEntry
from quillarena.tournament.arena import MatchResult, TournamentResult


def test_evolve_returns_new_context_and_add_tokens_accumulates() -> None:
    ctx = RunContext.start("brief", PipelineDeps(agents=None))

    evolved = ctx.add_tokens(5, text="draft").add_tokens(7)

    assert ctx.text == "" and ctx.tokens_used == 0
    assert evolved.text == "draft"
    assert evolved.tokens_used == 12
    with pytest.raises(AttributeError):
        evolved.text = "mutated"  # type: ignore[misc]


def test_snapshot_is_json_serialisable_and_restores() -> None:
    deps = PipelineDeps(agents=None)
    violation = Violation("cliche", 1, 5, "dark", "no cliches", "warning")
    ctx = RunContext(
        text="final",
        prompt="brief",
        deps=deps,
        champion="w0",
        tournament_result=TournamentResult(
            champion="w0",
            champion_text="final",
            rounds=(MatchResult("final", "w0", "w1", "w0", JudgeVerdict("A", "tight")),),
            all_generations=(GenerationResult("w0", "final", 3), GenerationResult("w1", "other", 4)),
            total_tokens=9,
        ),
        compliance_result=ComplianceResult(passed=False, score=0.4, violations=(violation,)),
        quality_evaluation=QualityEvaluation(
            aggregated_score=0.7,
            passed=False,
            evaluations=(ReaderFeedback("r", "Reader", 0.7),),
        ),
        tokens_used=42,
        correction_attempts=2,
        retake_attempts=1,
        reader_retake_count=1,
        synthesized=True,
        chapter_context=ChapterContext(previous_texts=("one", "two")),
        cross_chapter_state=CrossChapterState(
            motif_wear=(MotifWearEntry("rain", 2, 1, "used"),), variation_hint="daylight"
        ),
        collected_anti_patterns=(violation,),
    )

    snapshot = json.loads(json.dumps(ctx.snapshot()))
    restored = RunContext.restore(snapshot, deps)

    assert restored == ctx
    assert "deps" not in snapshot


def test_restore_tolerates_minimal_snapshot() -> None:
    restored = RunContext.restore({"text": "t", "prompt": "p"}, PipelineDeps(agents=None))

    assert restored.text == "t"
    assert restored.tournament_result is None
    assert restored.collected_anti_patterns == ()
