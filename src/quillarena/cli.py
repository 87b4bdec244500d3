"""Command line interface for tournament-driven chapter and novel generation."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import random
import sys
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from .agents.llm_agents import LLMAgentFactory
from .agents.types import NarrativeConfig
from .collaboration.session import CollaborationConfig
from .config import QuillArenaConfig
from .llm.circuit_breaker import CircuitBreaker
from .llm.mock import MockChatProvider
from .llm.providers import ChatProvider, GuardedChatProvider, ProviderError, build_provider
from .pipeline.context import PipelineDeps, RunContext
from .pipeline.novel import NovelPlan, NovelRunConfig, NovelRunner
from .pipeline.stages import build_chapter_pipeline
from .storage.checkpoints import JsonCheckpointStore
from .tournament.persona_pool import (
    DEFAULT_TEMPERATURE_SLOTS,
    DEFAULT_WRITER_PERSONAS,
    select_tournament_writers,
)

__all__ = ["main", "build_parser"]

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quillarena",
        description=(
            "Generate prose by running writer personas through an elimination "
            "tournament followed by correction and retake loops."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest="command")

    chapter = subparsers.add_parser(
        "chapter",
        help="Generate a single chapter from a prompt file.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    chapter.add_argument("--prompt-file", dest="prompt_file", required=True, help="Chapter brief (.md or .txt).")
    chapter.add_argument(
        "--output",
        default=None,
        help="Directory for chapter.md and run.json; falls back to $QUILLARENA_OUTPUT_ROOT/quillarena.",
    )
    chapter.add_argument(
        "--simple",
        action="store_true",
        help="Only run generation; skip synthesis, correction and retakes.",
    )
    _register_mode_argument(chapter)
    _register_shared_arguments(chapter)

    novel = subparsers.add_parser(
        "novel",
        help="Generate every chapter of a JSON plan with checkpoints.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    novel.add_argument("--plan-file", dest="plan_file", required=True, help="Novel plan (.json).")
    _register_output_arguments(novel)
    novel.add_argument("--task-id", dest="task_id", default=None, help="Checkpoint identifier for this run.")
    novel.add_argument("--simple", action="store_true", help="Only run generation for each chapter.")
    _register_mode_argument(novel)
    _register_shared_arguments(novel)

    resume = subparsers.add_parser(
        "resume",
        help="Continue a checkpointed novel run after its last completed chapter.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    resume.add_argument("--task-id", dest="task_id", required=True, help="Checkpoint identifier to resume.")
    resume.add_argument("--plan-file", dest="plan_file", required=True, help="Novel plan (.json).")
    _register_output_arguments(resume)
    resume.add_argument("--simple", action="store_true", help="Only run generation for each chapter.")
    _register_mode_argument(resume)
    _register_shared_arguments(resume)

    return parser


def _register_output_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        default=None,
        help="Directory for chapters and run.json; falls back to $QUILLARENA_OUTPUT_ROOT/quillarena.",
    )
    parser.add_argument(
        "--checkpoint-dir",
        dest="checkpoint_dir",
        default=None,
        help="Checkpoint directory; falls back to $QUILLARENA_CHECKPOINT_ROOT or <output>/checkpoints.",
    )


def _register_mode_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--mode",
        choices=("tournament", "collaboration"),
        default="tournament",
        help="How competing drafts are reduced to one text.",
    )
    parser.add_argument(
        "--writers",
        type=int,
        default=None,
        help="Number of writer personas drawn from the pool; falls back to QUILLARENA_WRITER_COUNT or 4.",
    )


def _register_shared_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--provider",
        choices=("mock", "openai"),
        default="mock",
        help="LLM provider to use.",
    )
    parser.add_argument("--model", default=None, help="Model name or identifier to target.")
    parser.add_argument(
        "--base-url",
        dest="base_url",
        default=None,
        help="Optional base URL for API-compatible providers.",
    )
    parser.add_argument(
        "--api-key-env",
        dest="api_key_env",
        default=None,
        help="Environment variable containing the provider API key.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for persona selection and deterministic mock outputs.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")


def _build_provider(args: argparse.Namespace, config: QuillArenaConfig) -> ChatProvider:
    if args.provider == "mock":
        inner: ChatProvider = MockChatProvider(seed=args.seed, model=args.model or "mock-latest")
    else:
        overrides: dict[str, object] = {"model": args.model, "base_url": args.base_url}
        if args.api_key_env:
            overrides["api_key"] = config.llm.resolve_api_key(os.getenv(args.api_key_env))
        inner = build_provider(**config.as_provider_kwargs(**overrides))
    breaker = CircuitBreaker(config.breaker, name=args.provider)
    return GuardedChatProvider(inner, breaker)


def _writer_count(args: argparse.Namespace, config: QuillArenaConfig) -> int:
    return args.writers if args.writers is not None else config.tournament.writer_count


def _run_chapter(args: argparse.Namespace, config: QuillArenaConfig) -> None:
    prompt_path = Path(args.prompt_file).expanduser()
    if not prompt_path.exists():
        raise FileNotFoundError(f"Prompt file not found: {prompt_path}")
    prompt = prompt_path.read_text(encoding="utf-8").strip()
    if not prompt:
        raise ValueError(f"Prompt file is empty: {prompt_path}")

    output_dir = config.with_paths(output_path=args.output).output_path
    provider = _build_provider(args, config)
    narrative = NarrativeConfig()
    deps = PipelineDeps(agents=LLMAgentFactory(provider, narrative), narrative=narrative)
    writers = select_tournament_writers(
        DEFAULT_WRITER_PERSONAS,
        DEFAULT_TEMPERATURE_SLOTS,
        _writer_count(args, config),
        rng=random.Random(args.seed),
    )
    pipeline = build_chapter_pipeline(
        writers,
        simple=args.simple,
        mode=args.mode,
        collaboration_config=CollaborationConfig(),
        max_correction_attempts=config.correction.max_attempts,
        retake_config=config.retake,
        max_reader_retakes=config.quality_retake.max_retakes,
    )
    ctx = asyncio.run(pipeline(RunContext.start(prompt, deps)))

    chapter_path = output_dir / "chapter.md"
    chapter_path.write_text(ctx.text.strip() + "\n", encoding="utf-8")
    run_path = output_dir / "run.json"
    run_path.write_text(
        json.dumps(ctx.snapshot(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
    )
    logger.info("Champion %s; %s tokens used", ctx.champion, ctx.tokens_used)
    print(f"Chapter written to {chapter_path}")


def _run_novel(args: argparse.Namespace, config: QuillArenaConfig, *, resume: bool) -> None:
    plan = NovelPlan.load(args.plan_file)
    config = config.with_paths(output_path=args.output, checkpoint_path=args.checkpoint_dir)
    output_dir = config.output_path
    provider = _build_provider(args, config)
    deps = PipelineDeps(
        agents=LLMAgentFactory(provider, plan.narrative), narrative=plan.narrative
    )
    store = JsonCheckpointStore(config.checkpoint_path)
    run_config = NovelRunConfig(
        output_dir=output_dir,
        writer_count=_writer_count(args, config),
        simple=args.simple,
        mode=args.mode,
        max_correction_attempts=config.correction.max_attempts,
        retake=config.retake,
        max_reader_retakes=config.quality_retake.max_retakes,
        seed=args.seed,
    )
    if args.task_id:
        run_config.task_id = args.task_id
    if resume and not store.can_resume(run_config.task_id):
        raise ValueError(f"No checkpoint found for task {run_config.task_id}")

    runner = NovelRunner(plan, deps, store, run_config)
    result = asyncio.run(runner.run(resume=resume))
    print(
        f"Task {result.task_id}: {len(result.chapter_texts)} chapter(s) written to {output_dir}"
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = QuillArenaConfig()
        if args.command == "chapter":
            _run_chapter(args, config)
        else:
            _run_novel(args, config, resume=args.command == "resume")
    except (FileNotFoundError, ValueError, ProviderError, RuntimeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
