"""Single-elimination tournament over competing writer drafts."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from ..agents.types import GenerationResult, Judge, JudgeVerdict, LoserExcerpt, TokenCounter, Writer
from ..config import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "MatchResult",
    "TournamentResult",
    "TournamentArena",
    "collect_loser_excerpts",
]


@dataclass(frozen=True, slots=True)
class MatchResult:
    """One judged pairing. ``contestant_a`` was shown to the judge as text A."""

    match_name: str
    contestant_a: str
    contestant_b: str
    winner: str
    verdict: JudgeVerdict

    @property
    def loser(self) -> str:
        return self.contestant_b if self.winner == self.contestant_a else self.contestant_a

    def to_dict(self) -> dict[str, object]:
        return {
            "match_name": self.match_name,
            "contestant_a": self.contestant_a,
            "contestant_b": self.contestant_b,
            "winner": self.winner,
            "verdict": self.verdict.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "MatchResult":
        return cls(
            match_name=str(payload["match_name"]),
            contestant_a=str(payload["contestant_a"]),
            contestant_b=str(payload["contestant_b"]),
            winner=str(payload["winner"]),
            verdict=JudgeVerdict.from_dict(payload["verdict"]),
        )


@dataclass(frozen=True, slots=True)
class TournamentResult:
    champion: str
    champion_text: str
    rounds: tuple[MatchResult, ...] = ()
    all_generations: tuple[GenerationResult, ...] = ()
    total_tokens: int = 0

    def generation_for(self, writer_id: str) -> GenerationResult:
        for generation in self.all_generations:
            if generation.writer_id == writer_id:
                return generation
        raise KeyError(f"Generation not found for writer: {writer_id}")

    def to_dict(self) -> dict[str, object]:
        return {
            "champion": self.champion,
            "champion_text": self.champion_text,
            "rounds": [match.to_dict() for match in self.rounds],
            "all_generations": [
                {
                    "writer_id": generation.writer_id,
                    "text": generation.text,
                    "tokens_used": generation.tokens_used,
                }
                for generation in self.all_generations
            ],
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "TournamentResult":
        return cls(
            champion=str(payload["champion"]),
            champion_text=str(payload["champion_text"]),
            rounds=tuple(MatchResult.from_dict(item) for item in payload.get("rounds", [])),
            all_generations=tuple(
                GenerationResult(
                    writer_id=str(item["writer_id"]),
                    text=str(item["text"]),
                    tokens_used=int(item.get("tokens_used", 0)),
                )
                for item in payload.get("all_generations", [])
            ),
            total_tokens=int(payload.get("total_tokens", 0)),
        )


@dataclass
class TournamentArena:
    """Run writers against each other and let a fresh judge decide every match.

    Rounds are played on an explicit list of survivors. Within a round the
    survivors are paired by position (0 vs 1, 2 vs 3, ...); with an odd
    count the last survivor advances without a match. The match that
    leaves a single survivor is named ``final``.

    Writer and judge failures propagate unchanged; retrying is the
    caller's concern.
    """

    writers: Sequence[Writer]
    create_judge: Callable[[], Judge]
    token_counter: Optional[TokenCounter] = None

    async def run(self, prompt: str) -> TournamentResult:
        if not self.writers:
            raise ConfigurationError("A tournament needs at least one writer")
        writer_ids = [writer.writer_id for writer in self.writers]
        if len(set(writer_ids)) != len(writer_ids):
            raise ConfigurationError(f"Writer ids must be unique: {writer_ids}")

        tokens_start = self.token_counter.total_tokens if self.token_counter else 0
        generations = await asyncio.gather(
            *(writer.generate_with_metadata(prompt) for writer in self.writers)
        )
        for generation in generations:
            logger.debug(
                "%s drafted %s characters (%s tokens)",
                generation.writer_id,
                len(generation.text),
                generation.tokens_used,
            )

        rounds: list[MatchResult] = []
        survivors: list[GenerationResult] = list(generations)
        round_number = 1
        while len(survivors) > 1:
            pairs = [
                (survivors[index], survivors[index + 1])
                for index in range(0, len(survivors) - 1, 2)
            ]
            bye = survivors[-1] if len(survivors) % 2 else None
            is_final = len(pairs) == 1 and bye is None
            names = [
                "final" if is_final else f"round_{round_number}_match_{index + 1}"
                for index in range(len(pairs))
            ]
            matches = await asyncio.gather(
                *(self._run_match(name, a, b) for name, (a, b) in zip(names, pairs))
            )
            rounds.extend(matches)

            survivors = [
                a if match.verdict.winner == "A" else b for match, (a, b) in zip(matches, pairs)
            ]
            if bye is not None:
                logger.debug("%s advances unmatched from round %s", bye.writer_id, round_number)
                survivors.append(bye)
            round_number += 1

        champion = survivors[0]
        if self.token_counter is not None:
            total_tokens = self.token_counter.total_tokens - tokens_start
        else:
            total_tokens = sum(item.tokens_used for item in generations) + sum(
                match.verdict.tokens_used for match in rounds
            )
        logger.info(
            "Tournament champion: %s after %s match(es)", champion.writer_id, len(rounds)
        )
        return TournamentResult(
            champion=champion.writer_id,
            champion_text=champion.text,
            rounds=tuple(rounds),
            all_generations=tuple(generations),
            total_tokens=total_tokens,
        )

    async def _run_match(
        self, match_name: str, generation_a: GenerationResult, generation_b: GenerationResult
    ) -> MatchResult:
        judge = self.create_judge()
        verdict = await judge.evaluate(generation_a.text, generation_b.text)
        winner = generation_a.writer_id if verdict.winner == "A" else generation_b.writer_id
        match = MatchResult(
            match_name=match_name,
            contestant_a=generation_a.writer_id,
            contestant_b=generation_b.writer_id,
            winner=winner,
            verdict=verdict,
        )
        logger.debug(
            "Match %s: %s wins (%s vs %s)",
            match_name,
            winner,
            generation_a.writer_id,
            generation_b.writer_id,
        )
        return match


def collect_loser_excerpts(result: TournamentResult) -> list[LoserExcerpt]:
    """Gather what judges praised in every eliminated writer's draft."""

    collected: list[LoserExcerpt] = []
    for generation in result.all_generations:
        if generation.writer_id == result.champion:
            continue
        excerpts: list[str] = []
        reasonings: list[str] = []
        for match in result.rounds:
            if generation.writer_id == match.contestant_a:
                side = "A"
            elif generation.writer_id == match.contestant_b:
                side = "B"
            else:
                continue
            excerpts.extend(match.verdict.praised(side))
            if match.verdict.reasoning:
                reasonings.append(match.verdict.reasoning)
        if excerpts or reasonings:
            collected.append(
                LoserExcerpt(
                    writer_id=generation.writer_id,
                    text=generation.text,
                    excerpts=tuple(excerpts),
                    reasonings=tuple(reasonings),
                )
            )
    return collected
