"""Continuity state carried from one chapter to the next.

Everything here is a pure function over frozen values: updating the state
returns a new :class:`CrossChapterState` and never edits an existing one.
Character snapshots and chapter summaries only ever grow; motif wear
entries are keyed by motif name and accumulate usage counts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Mapping, Optional

from ..agents.types import ChapterExtraction, CharacterDelta, MotifOccurrence

__all__ = [
    "WearLevel",
    "WEAR_LEVELS",
    "MotifWearEntry",
    "CharacterSnapshot",
    "ChapterSummary",
    "CrossChapterState",
    "initial_state",
    "wear_level",
    "apply_motif_wear",
    "update_state",
    "avoidance_list",
]

WearLevel = Literal["fresh", "used", "worn", "exhausted"]
WEAR_LEVELS: tuple[WearLevel, ...] = ("fresh", "used", "worn", "exhausted")


@dataclass(frozen=True, slots=True)
class MotifWearEntry:
    motif: str
    usage_count: int
    last_used_chapter: int
    wear_level: WearLevel

    def to_dict(self) -> dict[str, object]:
        return {
            "motif": self.motif,
            "usage_count": self.usage_count,
            "last_used_chapter": self.last_used_chapter,
            "wear_level": self.wear_level,
        }


@dataclass(frozen=True, slots=True)
class CharacterSnapshot:
    chapter_index: int
    states: tuple[CharacterDelta, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "chapter_index": self.chapter_index,
            "states": [state.to_dict() for state in self.states],
        }


@dataclass(frozen=True, slots=True)
class ChapterSummary:
    chapter_index: int
    summary: str
    dominant_tone: str
    peak_intensity: int

    def to_dict(self) -> dict[str, object]:
        return {
            "chapter_index": self.chapter_index,
            "summary": self.summary,
            "dominant_tone": self.dominant_tone,
            "peak_intensity": self.peak_intensity,
        }


@dataclass(frozen=True, slots=True)
class CrossChapterState:
    character_states: tuple[CharacterSnapshot, ...] = ()
    motif_wear: tuple[MotifWearEntry, ...] = ()
    variation_hint: Optional[str] = None
    chapter_summaries: tuple[ChapterSummary, ...] = ()

    def wear_for(self, motif: str) -> Optional[MotifWearEntry]:
        for entry in self.motif_wear:
            if entry.motif == motif:
                return entry
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "character_states": [snapshot.to_dict() for snapshot in self.character_states],
            "motif_wear": [entry.to_dict() for entry in self.motif_wear],
            "variation_hint": self.variation_hint,
            "chapter_summaries": [summary.to_dict() for summary in self.chapter_summaries],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "CrossChapterState":
        return cls(
            character_states=tuple(
                CharacterSnapshot(
                    chapter_index=int(item["chapter_index"]),
                    states=tuple(CharacterDelta.from_dict(state) for state in item.get("states", [])),
                )
                for item in payload.get("character_states", [])
            ),
            motif_wear=tuple(
                MotifWearEntry(
                    motif=str(item["motif"]),
                    usage_count=int(item["usage_count"]),
                    last_used_chapter=int(item["last_used_chapter"]),
                    wear_level=wear_level(int(item["usage_count"])),
                )
                for item in payload.get("motif_wear", [])
            ),
            variation_hint=payload.get("variation_hint"),
            chapter_summaries=tuple(
                ChapterSummary(
                    chapter_index=int(item["chapter_index"]),
                    summary=str(item.get("summary", "")),
                    dominant_tone=str(item.get("dominant_tone", "")),
                    peak_intensity=int(item.get("peak_intensity", 3)),
                )
                for item in payload.get("chapter_summaries", [])
            ),
        )


def initial_state() -> CrossChapterState:
    return CrossChapterState()


def wear_level(usage_count: int) -> WearLevel:
    if usage_count <= 1:
        return "fresh"
    if usage_count <= 3:
        return "used"
    if usage_count <= 5:
        return "worn"
    return "exhausted"


def apply_motif_wear(
    current: Iterable[MotifWearEntry],
    occurrences: Iterable[MotifOccurrence],
    chapter_index: int,
) -> tuple[MotifWearEntry, ...]:
    """Add occurrence counts to the running totals, preserving first-seen order."""

    wear = {entry.motif: entry for entry in current}
    for occurrence in occurrences:
        existing = wear.get(occurrence.motif)
        total = occurrence.count + (existing.usage_count if existing else 0)
        wear[occurrence.motif] = MotifWearEntry(
            motif=occurrence.motif,
            usage_count=total,
            last_used_chapter=chapter_index,
            wear_level=wear_level(total),
        )
    return tuple(wear.values())


def update_state(
    state: CrossChapterState, extraction: ChapterExtraction, chapter_index: int
) -> CrossChapterState:
    return CrossChapterState(
        character_states=state.character_states
        + (CharacterSnapshot(chapter_index, tuple(extraction.character_states)),),
        motif_wear=apply_motif_wear(state.motif_wear, extraction.motif_occurrences, chapter_index),
        variation_hint=extraction.next_variation_hint or None,
        chapter_summaries=state.chapter_summaries
        + (
            ChapterSummary(
                chapter_index=chapter_index,
                summary=extraction.chapter_summary,
                dominant_tone=extraction.dominant_tone,
                peak_intensity=extraction.peak_intensity,
            ),
        ),
    )


def avoidance_list(state: CrossChapterState, min_level: WearLevel = "worn") -> list[str]:
    """Motifs at or beyond ``min_level`` that later chapters should steer away from."""

    threshold = WEAR_LEVELS.index(min_level)
    return [
        entry.motif for entry in state.motif_wear if WEAR_LEVELS.index(entry.wear_level) >= threshold
    ]
