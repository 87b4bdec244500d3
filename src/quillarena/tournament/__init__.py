"""Competitive generation: persona selection and the elimination bracket."""

from .arena import MatchResult, TournamentArena, TournamentResult, collect_loser_excerpts
from .persona_pool import (
    DEFAULT_TEMPERATURE_SLOTS,
    DEFAULT_WRITER_PERSONAS,
    TemperatureSlot,
    WriterPersona,
    select_tournament_writers,
)

__all__ = [
    "MatchResult",
    "TournamentArena",
    "TournamentResult",
    "collect_loser_excerpts",
    "DEFAULT_TEMPERATURE_SLOTS",
    "DEFAULT_WRITER_PERSONAS",
    "TemperatureSlot",
    "WriterPersona",
    "select_tournament_writers",
]
