from __future__ import annotations

import asyncio
import json

import pytest

from quillarena.agents.llm_agents import LLMAgentFactory
from quillarena.agents.types import ChapterExtraction, MotifOccurrence
from quillarena.config import ConfigurationError
from quillarena.llm.mock import MockChatProvider
from quillarena.pipeline.context import PipelineDeps
from quillarena.pipeline.cross_chapter import initial_state, update_state
from quillarena.pipeline.novel import (
    CHAPTER_DONE_PHASE,
    ChapterPlan,
    NovelPlan,
    NovelRunConfig,
    NovelRunner,
    build_chapter_prompt,
)
from quillarena.storage.checkpoints import JsonCheckpointStore

PLAN_PAYLOAD = {
    "title": "The Lantern Keeper",
    "premise": "A keeper guards the last light on a flooded coast.",
    "narrative": {"point_of_view": "third-limited", "tone": "somber"},
    "chapters": [
        {"title": "Flood", "summary": "The water rises."},
        {"title": "Signal", "summary": "A boat answers the light."},
        {"title": "Shore", "summary": "The keeper leaves the tower."},
    ],
    "personas": [
        {"id": "plain", "name": "Plain", "directive": "Write plainly."},
        {"id": "ornate", "name": "Ornate", "directive": "Write lavishly."},
    ],
}


def _runner(tmp_path, provider=None, *, task_id="novel", simple=True) -> tuple[NovelRunner, MockChatProvider]:
    provider = provider or MockChatProvider(seed=3)
    plan = NovelPlan.from_dict(PLAN_PAYLOAD)
    deps = PipelineDeps(agents=LLMAgentFactory(provider, plan.narrative), narrative=plan.narrative)
    config = NovelRunConfig(output_dir=tmp_path / "out", task_id=task_id, simple=simple, seed=1)
    store = JsonCheckpointStore(tmp_path / "checkpoints")
    return NovelRunner(plan, deps, store, config), provider


def test_plan_loading(tmp_path) -> None:
    path = tmp_path / "plan.json"
    path.write_text(json.dumps(PLAN_PAYLOAD), encoding="utf-8")

    plan = NovelPlan.load(path)

    assert [chapter.index for chapter in plan.chapters] == [1, 2, 3]
    assert plan.narrative.point_of_view == "third-limited"
    assert [persona.id for persona in plan.personas] == ["plain", "ornate"]
    with pytest.raises(FileNotFoundError):
        NovelPlan.load(tmp_path / "missing.json")
    with pytest.raises(ConfigurationError):
        NovelPlan.from_dict({"title": "Empty", "chapters": []})


def test_chapter_prompt_carries_continuity() -> None:
    plan = NovelPlan.from_dict(PLAN_PAYLOAD)
    extraction = ChapterExtraction(
        motif_occurrences=(MotifOccurrence("lantern", 5),),
        next_variation_hint="Open at dawn.",
        chapter_summary="The water rose over the pier.",
        dominant_tone="tense",
    )
    state = update_state(initial_state(), extraction, 1)

    prompt = build_chapter_prompt(plan, plan.chapters[1], state)

    assert "Write chapter 2: Signal" in prompt
    assert "Chapter 1 (tense): The water rose over the pier." in prompt
    assert "Variation for this chapter: Open at dawn." in prompt
    assert "Avoid these overused motifs: lantern" in prompt
    assert "Premise: A keeper guards" in prompt


def test_first_chapter_prompt_has_no_history() -> None:
    plan = NovelPlan.from_dict(PLAN_PAYLOAD)

    prompt = build_chapter_prompt(plan, plan.chapters[0], initial_state())

    assert "Story so far" not in prompt
    assert "Avoid" not in prompt


def test_run_writes_chapters_metadata_and_checkpoints(tmp_path) -> None:
    runner, provider = _runner(tmp_path)

    result = asyncio.run(runner.run())

    out = tmp_path / "out"
    assert len(result.chapter_texts) == 3
    for index in (1, 2, 3):
        chapter = (out / f"chapter_{index:02d}.md").read_text(encoding="utf-8")
        assert chapter.startswith("## ")
    summaries = result.cross_chapter_state.chapter_summaries
    assert [summary.chapter_index for summary in summaries] == [1, 2, 3]
    assert result.tokens_used > 0

    metadata = json.loads((out / "run.json").read_text(encoding="utf-8"))
    assert metadata["task_id"] == "novel"
    assert len(metadata["chapters"]) == 3
    assert {writer["persona"] for writer in metadata["writers"]} == {"Plain", "Ornate"}

    latest = runner.store.latest("novel")
    assert latest.phase == CHAPTER_DONE_PHASE
    assert latest.progress == {"completed": 3, "total": 3}
    assert sum(1 for stage, _ in provider.calls if stage == "chapter_state") == 3


def test_later_chapter_prompts_include_previous_summaries(tmp_path) -> None:
    runner, provider = _runner(tmp_path)

    asyncio.run(runner.run())

    writer_prompts = [prompt for stage, prompt in provider.calls if stage == "writer"]
    assert "Story so far" not in writer_prompts[0]
    assert "Chapter 1" in writer_prompts[-1]
    assert "Chapter 2" in writer_prompts[-1]


def test_resume_skips_completed_chapters(tmp_path) -> None:
    runner, _ = _runner(tmp_path, task_id="resumable")
    runner.store.save(
        "resumable",
        CHAPTER_DONE_PHASE,
        {
            "completed": 1,
            "chapter_texts": ["The earlier chapter."],
            "cross_state": update_state(
                initial_state(), ChapterExtraction(chapter_summary="Earlier."), 1
            ).to_dict(),
            "tokens_used": 5,
        },
    )

    result = asyncio.run(runner.run(resume=True))

    out = tmp_path / "out"
    assert result.resumed_from == 1
    assert result.chapter_texts[0] == "The earlier chapter."
    assert len(result.chapter_texts) == 3
    assert not (out / "chapter_01.md").exists()
    assert (out / "chapter_03.md").exists()
    assert [s.chapter_index for s in result.cross_chapter_state.chapter_summaries] == [1, 2, 3]
    assert result.tokens_used > 5


def test_resume_of_finished_task_does_no_work(tmp_path) -> None:
    runner, _ = _runner(tmp_path, task_id="done")
    asyncio.run(runner.run())

    fresh_provider = MockChatProvider(seed=9)
    again, _ = _runner(tmp_path, fresh_provider, task_id="done")
    result = asyncio.run(again.run(resume=True))

    assert fresh_provider.calls == []
    assert result.resumed_from == 3
    assert len(result.chapter_texts) == 3


def test_full_pipeline_per_chapter(tmp_path) -> None:
    runner, provider = _runner(tmp_path, simple=False)
    runner.plan = NovelPlan(title="Short", chapters=(ChapterPlan(1, "Only"),))

    result = asyncio.run(runner.run())

    stages = {stage for stage, _ in provider.calls}
    assert {"writer", "judge", "reader", "chapter_state"} <= stages
    assert len(result.chapter_texts) == 1
