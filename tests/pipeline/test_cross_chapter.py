from __future__ import annotations

import pytest

from quillarena.agents.types import ChapterExtraction, CharacterDelta, MotifOccurrence
from quillarena.pipeline.cross_chapter import (
    CrossChapterState,
    apply_motif_wear,
    avoidance_list,
    initial_state,
    update_state,
    wear_level,
)


@pytest.mark.parametrize(
    ("count", "level"),
    [(0, "fresh"), (1, "fresh"), (2, "used"), (3, "used"), (4, "worn"), (5, "worn"), (7, "exhausted")],
)
def test_wear_level_bands(count: int, level: str) -> None:
    assert wear_level(count) == level


def _extraction(motifs=(), summary="", hint="", tone="quiet", intensity=3) -> ChapterExtraction:
    return ChapterExtraction(
        character_states=(CharacterDelta("Ada", emotional_state="tense"),),
        motif_occurrences=tuple(MotifOccurrence(name, count) for name, count in motifs),
        next_variation_hint=hint,
        chapter_summary=summary,
        dominant_tone=tone,
        peak_intensity=intensity,
    )


def test_initial_state_is_empty() -> None:
    state = initial_state()

    assert state.character_states == ()
    assert state.motif_wear == ()
    assert state.variation_hint is None
    assert state.chapter_summaries == ()


def test_update_appends_history_and_accumulates_wear() -> None:
    state = update_state(initial_state(), _extraction([("rain", 2)], "one", "go north"), 1)
    state = update_state(state, _extraction([("rain", 3), ("clock", 1)], "two"), 2)

    assert [summary.chapter_index for summary in state.chapter_summaries] == [1, 2]
    assert [snapshot.chapter_index for snapshot in state.character_states] == [1, 2]
    rain = state.wear_for("rain")
    assert (rain.usage_count, rain.last_used_chapter, rain.wear_level) == (5, 2, "worn")
    assert state.wear_for("clock").wear_level == "fresh"
    assert state.variation_hint is None


def test_update_leaves_previous_state_untouched() -> None:
    first = update_state(initial_state(), _extraction([("rain", 1)]), 1)

    update_state(first, _extraction([("rain", 9)]), 2)

    assert first.wear_for("rain").usage_count == 1
    assert len(first.chapter_summaries) == 1


def test_unmentioned_motifs_keep_their_last_chapter() -> None:
    wear = apply_motif_wear((), [MotifOccurrence("mirror", 2)], 1)
    wear = apply_motif_wear(wear, [MotifOccurrence("rain", 1)], 2)

    by_motif = {entry.motif: entry for entry in wear}
    assert by_motif["mirror"].last_used_chapter == 1
    assert [entry.motif for entry in wear] == ["mirror", "rain"]


def test_avoidance_list_respects_threshold() -> None:
    state = update_state(
        initial_state(), _extraction([("rain", 4), ("clock", 2), ("river", 8)]), 1
    )

    assert avoidance_list(state) == ["rain", "river"]
    assert avoidance_list(state, "exhausted") == ["river"]
    assert avoidance_list(state, "used") == ["rain", "clock", "river"]


def test_state_round_trips_through_dict() -> None:
    state = update_state(initial_state(), _extraction([("rain", 2)], "one", "shift"), 1)

    restored = CrossChapterState.from_dict(state.to_dict())

    assert restored == state
