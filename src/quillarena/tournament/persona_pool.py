"""Writer persona selection with guaranteed spread across temperature bands."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from ..agents.types import WriterConfig
from ..config import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "WriterPersona",
    "TemperatureSlot",
    "DEFAULT_TEMPERATURE_SLOTS",
    "DEFAULT_WRITER_PERSONAS",
    "select_tournament_writers",
    "personas_from_dicts",
]


@dataclass(frozen=True, slots=True)
class WriterPersona:
    """A named writing sensibility that a tournament writer adopts."""

    id: str
    name: str
    directive: str = ""
    aesthetic_stance: str = ""
    focus_categories: tuple[str, ...] = ()

    def merged_directive(self) -> Optional[str]:
        parts = []
        if self.directive:
            parts.append(self.directive)
        if self.aesthetic_stance:
            parts.append(f"\nAesthetic stance:\n{self.aesthetic_stance}")
        return "\n".join(parts) if parts else None

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "WriterPersona":
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name", payload["id"])),
            directive=str(payload.get("directive", "")),
            aesthetic_stance=str(payload.get("aesthetic_stance", "")),
            focus_categories=tuple(payload.get("focus_categories", ()) or ()),
        )


@dataclass(frozen=True, slots=True)
class TemperatureSlot:
    label: str
    temperature_range: tuple[float, float]
    top_p_range: tuple[float, float]


DEFAULT_TEMPERATURE_SLOTS: tuple[TemperatureSlot, ...] = (
    TemperatureSlot("low", (0.4, 0.55), (0.75, 0.85)),
    TemperatureSlot("mid", (0.55, 0.7), (0.8, 0.9)),
    TemperatureSlot("mid-high", (0.7, 0.85), (0.85, 0.92)),
    TemperatureSlot("high", (0.85, 0.95), (0.9, 0.97)),
)

DEFAULT_WRITER_PERSONAS: tuple[WriterPersona, ...] = (
    WriterPersona(
        "minimalist",
        "The Minimalist",
        directive="Cut every sentence to the bone; let silences carry meaning.",
        focus_categories=("rhythm", "subtext"),
    ),
    WriterPersona(
        "lyricist",
        "The Lyricist",
        directive="Favour cadence and sensory texture over plot mechanics.",
        aesthetic_stance="Beauty of the sentence comes before speed of the story.",
        focus_categories=("imagery",),
    ),
    WriterPersona(
        "architect",
        "The Architect",
        directive="Build scenes around a clear turn; every paragraph must move the plot.",
        focus_categories=("structure", "tension"),
    ),
    WriterPersona(
        "confessor",
        "The Confessor",
        directive="Stay inside the narrator's head and let contradictions show.",
        aesthetic_stance="Honesty over likeability.",
        focus_categories=("voice",),
    ),
    WriterPersona(
        "observer",
        "The Observer",
        directive="Describe only what can be seen and heard; never name an emotion.",
        focus_categories=("imagery", "subtext"),
    ),
)


def personas_from_dicts(items: Iterable[Mapping[str, object]]) -> tuple[WriterPersona, ...]:
    return tuple(WriterPersona.from_dict(item) for item in items)


def _draw(rng: random.Random, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return round(low + rng.random() * (high - low), 2)


def select_tournament_writers(
    pool: Sequence[WriterPersona],
    slots: Sequence[TemperatureSlot] = DEFAULT_TEMPERATURE_SLOTS,
    count: int = 4,
    *,
    rng: random.Random | None = None,
) -> list[WriterConfig]:
    """Shuffle ``pool``, keep ``count`` personas and spread them over ``slots``.

    The i-th selected persona is placed in slot ``i % len(slots)`` so that
    every band is represented before any band repeats. Temperature and
    top-p are then drawn uniformly inside the slot's ranges.
    """

    if not pool:
        raise ConfigurationError("Writer persona pool is empty")
    if not slots:
        raise ConfigurationError("At least one temperature slot is required")

    rng = rng or random.Random()
    shuffled = list(pool)
    rng.shuffle(shuffled)
    selected = shuffled[: min(count, len(shuffled))]

    configs: list[WriterConfig] = []
    for index, persona in enumerate(selected):
        slot = slots[index % len(slots)]
        config = WriterConfig(
            id=f"writer_{persona.id}",
            temperature=_draw(rng, slot.temperature_range),
            top_p=_draw(rng, slot.top_p_range),
            style="balanced",
            focus_categories=persona.focus_categories,
            persona_directive=persona.merged_directive(),
            persona_name=persona.name,
        )
        logger.debug(
            "Selected %s in slot %s (temperature=%s, top_p=%s)",
            config.id,
            slot.label,
            config.temperature,
            config.top_p,
        )
        configs.append(config)
    return configs
