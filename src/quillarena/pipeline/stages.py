"""Domain stages wiring the arena and the quality loops into pipelines.

Each factory returns a :data:`~quillarena.pipeline.compose.Stage`. Stages
obtain their capabilities from ``ctx.deps.agents`` and hand back a new
context; none of them keeps state between invocations.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..agents.types import WriterConfig
from ..collaboration.session import CollaborationConfig, CollaborationSession
from ..config import RetakeConfig
from ..quality.correction import CorrectionLoop, check_text
from ..quality.retake import RetakeLoop, run_guarded_retakes
from ..storage.checkpoints import CheckpointStore
from ..tournament.arena import TournamentArena, TournamentResult, collect_loser_excerpts
from .compose import Stage, pipe, try_stage, when
from .context import RunContext

logger = logging.getLogger(__name__)

__all__ = [
    "COLLABORATION_CHAMPION",
    "tournament_stage",
    "collaboration_stage",
    "synthesis_stage",
    "compliance_stage",
    "correction_stage",
    "judge_retake_stage",
    "quality_retake_stage",
    "checkpoint_stage",
    "is_non_compliant",
    "build_chapter_pipeline",
]

COLLABORATION_CHAMPION = "collaboration"


def tournament_stage(writer_configs: Sequence[WriterConfig]) -> Stage:
    configs = tuple(writer_configs)

    async def run_tournament(ctx: RunContext) -> RunContext:
        agents = ctx.deps.agents
        arena = TournamentArena(
            writers=[agents.create_writer(config) for config in configs],
            create_judge=agents.create_judge,
            token_counter=agents.token_counter,
        )
        result = await arena.run(ctx.prompt)
        return ctx.add_tokens(
            result.total_tokens,
            text=result.champion_text,
            champion=result.champion,
            tournament_result=result,
        )

    return run_tournament


def collaboration_stage(
    writer_configs: Sequence[WriterConfig], config: CollaborationConfig | None = None
) -> Stage:
    configs = tuple(writer_configs)

    async def run_collaboration(ctx: RunContext) -> RunContext:
        agents = ctx.deps.agents
        session = CollaborationSession(
            [agents.create_writer(item) for item in configs],
            agents.create_moderator(),
            config,
            token_counter=agents.token_counter,
        )
        result = await session.run(ctx.prompt)
        adapted = TournamentResult(
            champion=COLLABORATION_CHAMPION,
            champion_text=result.final_text,
            total_tokens=result.total_tokens,
        )
        return ctx.add_tokens(
            result.total_tokens,
            text=result.final_text,
            champion=COLLABORATION_CHAMPION,
            tournament_result=adapted,
        )

    return run_collaboration


def synthesis_stage() -> Stage:
    async def run_synthesis(ctx: RunContext) -> RunContext:
        if ctx.tournament_result is None:
            return ctx
        excerpts = collect_loser_excerpts(ctx.tournament_result)
        if not excerpts:
            logger.debug("No praised loser excerpts; keeping champion text")
            return ctx
        synthesizer = ctx.deps.agents.create_synthesizer()
        result = await synthesizer.synthesize(ctx.text, excerpts)
        return ctx.add_tokens(
            result.tokens_used, text=result.synthesized_text, synthesized=True
        )

    return run_synthesis


def compliance_stage() -> Stage:
    async def run_compliance(ctx: RunContext) -> RunContext:
        result = await check_text(ctx.deps.checker, ctx.text, ctx.chapter_context)
        if not result.passed:
            logger.info("Compliance check failed with %s violation(s)", len(result.violations))
        return ctx.evolve(compliance_result=result)

    return run_compliance


def is_non_compliant(ctx: RunContext) -> bool:
    return ctx.compliance_result is not None and not ctx.compliance_result.passed


def correction_stage(max_attempts: int = 3) -> Stage:
    async def run_correction(ctx: RunContext) -> RunContext:
        if not is_non_compliant(ctx):
            return ctx
        loop = CorrectionLoop(
            ctx.deps.agents.create_corrector(), ctx.deps.checker, max_attempts=max_attempts
        )
        result = await loop.run(ctx.text, ctx.compliance_result.violations, ctx.chapter_context)
        anti_patterns = ctx.collected_anti_patterns
        if not result.success and result.original_violations:
            anti_patterns = anti_patterns + result.original_violations
        return ctx.add_tokens(
            result.total_tokens,
            text=result.final_text,
            correction_attempts=result.attempts,
            compliance_result=result.final_compliance or ctx.compliance_result,
            collected_anti_patterns=anti_patterns,
        )

    return run_correction


def judge_retake_stage(config: RetakeConfig | None = None) -> Stage:
    async def run_judge_retake(ctx: RunContext) -> RunContext:
        agents = ctx.deps.agents
        loop = RetakeLoop(agents.create_retaker(), agents.create_judge(), config)
        result = await loop.run(ctx.text)
        changes = {"retake_attempts": ctx.retake_attempts + result.retake_count}
        if result.improved:
            changes["text"] = result.final_text
        return ctx.add_tokens(result.total_tokens, **changes)

    return run_judge_retake


def quality_retake_stage(max_retakes: int = 2) -> Stage:
    async def run_quality_retake(ctx: RunContext) -> RunContext:
        agents = ctx.deps.agents
        result = await run_guarded_retakes(
            ctx.text,
            agents.create_quality_evaluator(),
            agents.create_retaker(),
            max_retakes,
            ctx.quality_evaluation,
        )
        compliance = await check_text(ctx.deps.checker, result.final_text, ctx.chapter_context)
        return ctx.add_tokens(
            result.total_tokens,
            text=result.final_text,
            quality_evaluation=result.evaluation,
            reader_retake_count=ctx.reader_retake_count + result.retake_count,
            compliance_result=compliance,
        )

    return run_quality_retake


def checkpoint_stage(store: CheckpointStore, task_id: str, phase: str) -> Stage:
    def save_checkpoint(ctx: RunContext) -> RunContext:
        store.save(task_id, phase, ctx.snapshot())
        return ctx

    return save_checkpoint


def build_chapter_pipeline(
    writer_configs: Sequence[WriterConfig],
    *,
    simple: bool = False,
    mode: str = "tournament",
    collaboration_config: CollaborationConfig | None = None,
    max_correction_attempts: int = 3,
    retake_config: RetakeConfig | None = None,
    max_reader_retakes: int = 2,
    checkpoints: Optional[tuple[CheckpointStore, str]] = None,
) -> Stage:
    """Assemble the single-chapter pipeline.

    ``simple`` keeps only the generation stage. Otherwise generation is
    followed by synthesis (failures contained), compliance, correction when
    non-compliant, the judge retake loop and the reader-panel retake loop.
    With ``checkpoints`` a snapshot is saved after generation and at the end.
    """

    if mode not in {"tournament", "collaboration"}:
        raise ValueError(f"Unsupported generation mode '{mode}'.")
    generation = (
        collaboration_stage(writer_configs, collaboration_config)
        if mode == "collaboration"
        else tournament_stage(writer_configs)
    )
    stages: list[Stage] = [generation]
    if checkpoints is not None:
        stages.append(checkpoint_stage(checkpoints[0], checkpoints[1], "generated"))
    if not simple:
        stages.extend(
            [
                try_stage(synthesis_stage()),
                compliance_stage(),
                when(is_non_compliant, correction_stage(max_correction_attempts)),
                judge_retake_stage(retake_config),
                quality_retake_stage(max_reader_retakes),
            ]
        )
        if checkpoints is not None:
            stages.append(checkpoint_stage(checkpoints[0], checkpoints[1], "refined"))
    return pipe(*stages)
