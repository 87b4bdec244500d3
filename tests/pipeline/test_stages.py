from __future__ import annotations

import asyncio

import pytest

from quillarena.agents.types import (
    ChapterContext,
    ComplianceResult,
    CorrectionResult,
    GenerationResult,
    JudgeVerdict,
    ModerationResult,
    QualityEvaluation,
    RetakeResult,
    ScoreBreakdown,
    SynthesisResult,
    Violation,
    WriterConfig,
)
from quillarena.pipeline.context import PipelineDeps, RunContext
from quillarena.pipeline.stages import (
    COLLABORATION_CHAMPION,
    build_chapter_pipeline,
    checkpoint_stage,
    collaboration_stage,
    compliance_stage,
    correction_stage,
    judge_retake_stage,
    quality_retake_stage,
    synthesis_stage,
    tournament_stage,
)
from quillarena.storage.checkpoints import JsonCheckpointStore
from quillarena.tournament.arena import TournamentResult

BANNED = Violation(type="banned_word", start=0, end=4, excerpt="very", rule="no intensifiers")
HIGH = ScoreBreakdown(style=0.9, compliance=0.9, overall=0.9, voice_accuracy=0.9, originality=0.9, structure=0.9)


class FakeWriter:
    def __init__(self, config: WriterConfig) -> None:
        self.config = config

    @property
    def writer_id(self) -> str:
        return self.config.id

    async def generate(self, prompt: str) -> str:
        return (await self.generate_with_metadata(prompt)).text

    async def generate_with_metadata(self, prompt: str) -> GenerationResult:
        return GenerationResult(self.config.id, f"very good draft by {self.config.id}", 10)


class FakeJudge:
    async def evaluate(self, text_a: str, text_b: str) -> JudgeVerdict:
        return JudgeVerdict(
            "A", "A wins", score_a=HIGH, score_b=HIGH, praised_b=("a praised line",), tokens_used=1
        )


class FakeCorrector:
    async def correct(self, text, violations) -> CorrectionResult:
        return CorrectionResult(text.replace("very ", ""), tokens_used=3)


class FakeSynthesizer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    async def synthesize(self, champion_text, loser_excerpts) -> SynthesisResult:
        if self.fail:
            raise RuntimeError("synthesis unavailable")
        return SynthesisResult(champion_text + " [merged]", tokens_used=2)


class FakeRetaker:
    async def retake(self, text, feedback) -> RetakeResult:
        return RetakeResult(text + " [retake]", tokens_used=4)


class PassingPanel:
    async def evaluate(self, text, previous=None) -> QualityEvaluation:
        return QualityEvaluation(aggregated_score=0.9, passed=True, tokens_used=1)


class FakeModerator:
    async def merge(self, prompt, drafts, round_number) -> ModerationResult:
        return ModerationResult(drafts[0].text, consensus_score=0.9, tokens_used=1)


class BannedWordChecker:
    def __init__(self) -> None:
        self.contexts = []

    async def check(self, text: str) -> ComplianceResult:
        if "very" in text:
            return ComplianceResult(passed=False, score=0.5, violations=(BANNED,))
        return ComplianceResult(passed=True, score=1.0)

    async def check_with_context(self, text, context) -> ComplianceResult:
        self.contexts.append(context)
        return await self.check(text)


class FakeAgents:
    def __init__(self, *, synthesis_fails: bool = False) -> None:
        self.synthesis_fails = synthesis_fails
        self.created = []

    @property
    def token_counter(self):
        return None

    def create_writer(self, config):
        self.created.append("writer")
        return FakeWriter(config)

    def create_judge(self):
        self.created.append("judge")
        return FakeJudge()

    def create_corrector(self):
        self.created.append("corrector")
        return FakeCorrector()

    def create_retaker(self):
        self.created.append("retaker")
        return FakeRetaker()

    def create_synthesizer(self):
        self.created.append("synthesizer")
        return FakeSynthesizer(self.synthesis_fails)

    def create_quality_evaluator(self):
        self.created.append("panel")
        return PassingPanel()

    def create_state_extractor(self):  # pragma: no cover - unused here
        raise NotImplementedError

    def create_moderator(self):
        self.created.append("moderator")
        return FakeModerator()


WRITERS = [WriterConfig(id=f"writer_{index}", temperature=0.5, top_p=0.9) for index in range(4)]


def _ctx(agents=None, checker=None, **changes) -> RunContext:
    deps = PipelineDeps(agents=agents or FakeAgents(), checker=checker or BannedWordChecker())
    return RunContext.start("brief", deps).evolve(**changes)


def test_tournament_stage_records_champion_and_tokens() -> None:
    ctx = asyncio.run(tournament_stage(WRITERS)(_ctx()))

    assert ctx.champion == "writer_0"
    assert ctx.text == "very good draft by writer_0"
    assert ctx.tokens_used == 4 * 10 + 3 * 1
    assert len(ctx.tournament_result.rounds) == 3


def test_collaboration_stage_adapts_to_tournament_result() -> None:
    ctx = asyncio.run(collaboration_stage(WRITERS[:2])(_ctx()))

    assert ctx.champion == COLLABORATION_CHAMPION
    assert ctx.tournament_result.rounds == ()
    assert ctx.tournament_result.all_generations == ()
    assert ctx.text == "very good draft by writer_0"
    assert ctx.tokens_used == 2 * 10 + 1


def test_synthesis_is_a_noop_without_tournament() -> None:
    ctx = _ctx(text="plain")

    assert asyncio.run(synthesis_stage()(ctx)) is ctx


def test_synthesis_keeps_text_without_praised_losers() -> None:
    result = TournamentResult(champion="w0", champion_text="plain")
    ctx = _ctx(text="plain", tournament_result=result)

    out = asyncio.run(synthesis_stage()(ctx))

    assert out.text == "plain"
    assert out.synthesized is False


def test_synthesis_merges_loser_excerpts() -> None:
    ctx = asyncio.run(tournament_stage(WRITERS)(_ctx()))

    out = asyncio.run(synthesis_stage()(ctx))

    assert out.synthesized is True
    assert out.text.endswith("[merged]")
    assert out.tokens_used == ctx.tokens_used + 2


def test_correction_records_attempts_and_final_compliance() -> None:
    ctx = asyncio.run(compliance_stage()(_ctx(text="a very long night")))
    assert ctx.compliance_result.passed is False

    out = asyncio.run(correction_stage()(ctx))

    assert out.text == "a long night"
    assert out.correction_attempts == 1
    assert out.compliance_result.passed is True
    assert out.tokens_used == 3
    assert out.collected_anti_patterns == ()


def test_failed_correction_collects_anti_patterns() -> None:
    class StubbornCorrector:
        async def correct(self, text, violations):
            return CorrectionResult(text, tokens_used=1)

    class StubbornAgents(FakeAgents):
        def create_corrector(self):
            return StubbornCorrector()

    ctx = asyncio.run(compliance_stage()(_ctx(StubbornAgents(), text="very bad")))

    out = asyncio.run(correction_stage(max_attempts=2)(ctx))

    assert out.correction_attempts == 2
    assert out.compliance_result.passed is False
    assert out.collected_anti_patterns == (BANNED,)


def test_compliance_uses_chapter_context() -> None:
    checker = BannedWordChecker()
    context = ChapterContext(previous_texts=("one",))

    asyncio.run(compliance_stage()(_ctx(checker=checker, text="fine", chapter_context=context)))

    assert checker.contexts == [context]


def test_judge_retake_keeps_text_when_not_needed_but_counts_tokens() -> None:
    ctx = _ctx(text="already strong", tokens_used=5)

    out = asyncio.run(judge_retake_stage()(ctx))

    assert out.text == "already strong"
    assert out.retake_attempts == 0
    assert out.tokens_used == 6


def test_quality_retake_rechecks_compliance() -> None:
    out = asyncio.run(quality_retake_stage()(_ctx(text="very nice")))

    assert out.quality_evaluation.passed is True
    assert out.reader_retake_count == 0
    assert out.compliance_result.passed is False


def test_checkpoint_stage_snapshots_context(tmp_path) -> None:
    store = JsonCheckpointStore(tmp_path)

    ctx = _ctx(text="draft")

    assert checkpoint_stage(store, "task", "generated")(ctx) is ctx

    assert store.latest("task").phase == "generated"
    assert store.resume_state("task")["text"] == "draft"


def test_full_pipeline_runs_every_stage() -> None:
    agents = FakeAgents()
    pipeline = build_chapter_pipeline(WRITERS)

    ctx = asyncio.run(pipeline(_ctx(agents)))

    assert ctx.champion == "writer_0"
    assert ctx.synthesized is True
    assert "very" not in ctx.text
    assert ctx.correction_attempts == 1
    assert ctx.compliance_result.passed is True
    assert ctx.quality_evaluation.passed is True
    assert {"synthesizer", "corrector", "retaker", "panel"} <= set(agents.created)


def test_synthesis_failure_is_contained() -> None:
    pipeline = build_chapter_pipeline(WRITERS)

    ctx = asyncio.run(pipeline(_ctx(FakeAgents(synthesis_fails=True))))

    assert ctx.synthesized is False
    assert ctx.champion == "writer_0"
    assert ctx.compliance_result.passed is True


def test_simple_pipeline_only_generates() -> None:
    agents = FakeAgents()

    ctx = asyncio.run(build_chapter_pipeline(WRITERS, simple=True)(_ctx(agents)))

    assert ctx.text == "very good draft by writer_0"
    assert ctx.compliance_result is None
    assert set(agents.created) == {"writer", "judge"}


def test_pipeline_checkpoints_after_generation_and_refinement(tmp_path) -> None:
    store = JsonCheckpointStore(tmp_path)
    pipeline = build_chapter_pipeline(WRITERS, checkpoints=(store, "chapter-1"))

    asyncio.run(pipeline(_ctx()))

    phases = sorted(path.name for path in (tmp_path / "chapter-1").iterdir())
    assert phases == ["0001-generated.json", "0002-refined.json"]


def test_unknown_mode_rejected() -> None:
    with pytest.raises(ValueError):
        build_chapter_pipeline(WRITERS, mode="freestyle")


def test_mock_provider_end_to_end(mock_deps) -> None:
    pipeline = build_chapter_pipeline(WRITERS)

    ctx = asyncio.run(pipeline(RunContext.start("A storm over the harbour.", mock_deps)))

    assert ctx.text.strip()
    assert ctx.champion in {config.id for config in WRITERS}
    assert ctx.tokens_used > 0
    assert ctx.quality_evaluation is not None
    assert ctx.compliance_result.passed is True
