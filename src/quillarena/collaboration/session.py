"""Writers' room alternative to the tournament.

Every round all writers draft concurrently against the brief (and, after
the first round, against the current merged text). A moderator merges the
drafts and reports how much the writers agree. The session ends once the
consensus score reaches the configured threshold or the round budget runs
out.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ..agents.types import GenerationResult, Moderator, TokenCounter, Writer
from ..config import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "CollaborationConfig",
    "CollaborationRound",
    "CollaborationResult",
    "CollaborationSession",
]


@dataclass(frozen=True, slots=True)
class CollaborationConfig:
    max_rounds: int = 3
    early_termination_threshold: float = 0.8

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            raise ConfigurationError("max_rounds must be at least 1")
        if not 0.0 <= self.early_termination_threshold <= 1.0:
            raise ConfigurationError("early_termination_threshold must lie within [0, 1]")


@dataclass(frozen=True, slots=True)
class CollaborationRound:
    round_number: int
    participants: tuple[str, ...]
    consensus_score: float
    moderator_summary: str = ""


@dataclass(frozen=True, slots=True)
class CollaborationResult:
    final_text: str
    rounds: tuple[CollaborationRound, ...]
    participants: tuple[str, ...]
    total_tokens: int
    consensus_score: float
    consensus_reached: bool = False


class CollaborationSession:
    def __init__(
        self,
        writers: Sequence[Writer],
        moderator: Moderator,
        config: CollaborationConfig | None = None,
        *,
        token_counter: Optional[TokenCounter] = None,
    ) -> None:
        if not writers:
            raise ConfigurationError("A collaboration needs at least one writer")
        self.writers = list(writers)
        self.moderator = moderator
        self.config = config or CollaborationConfig()
        self.token_counter = token_counter

    async def run(self, prompt: str) -> CollaborationResult:
        tokens_before = self.token_counter.total_tokens if self.token_counter else 0
        summed_tokens = 0
        merged_text = ""
        consensus = 0.0
        reached = False
        rounds: list[CollaborationRound] = []

        for round_number in range(1, self.config.max_rounds + 1):
            round_prompt = self._round_prompt(prompt, merged_text, round_number)
            drafts = await self._collect_drafts(round_prompt, round_number)
            summed_tokens += sum(draft.tokens_used for draft in drafts)

            moderation = await self.moderator.merge(prompt, drafts, round_number)
            summed_tokens += moderation.tokens_used
            merged_text = moderation.merged_text or merged_text
            consensus = moderation.consensus_score
            rounds.append(
                CollaborationRound(
                    round_number=round_number,
                    participants=tuple(draft.writer_id for draft in drafts),
                    consensus_score=consensus,
                    moderator_summary=moderation.summary,
                )
            )
            logger.info("Collaboration round %s consensus %.2f", round_number, consensus)

            if merged_text and consensus >= self.config.early_termination_threshold:
                reached = True
                break

        if self.token_counter is not None:
            total_tokens = self.token_counter.total_tokens - tokens_before
        else:
            total_tokens = summed_tokens
        return CollaborationResult(
            final_text=merged_text,
            rounds=tuple(rounds),
            participants=tuple(writer.writer_id for writer in self.writers),
            total_tokens=total_tokens,
            consensus_score=consensus,
            consensus_reached=reached,
        )

    async def _collect_drafts(self, prompt: str, round_number: int) -> list[GenerationResult]:
        outcomes = await asyncio.gather(
            *(writer.generate_with_metadata(prompt) for writer in self.writers),
            return_exceptions=True,
        )
        drafts: list[GenerationResult] = []
        failures: list[BaseException] = []
        for writer, outcome in zip(self.writers, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Writer %s failed in round %s: %s", writer.writer_id, round_number, outcome
                )
                failures.append(outcome)
            else:
                drafts.append(outcome)
        if not drafts:
            raise failures[0]
        return drafts

    @staticmethod
    def _round_prompt(prompt: str, merged_text: str, round_number: int) -> str:
        if round_number == 1 or not merged_text:
            return prompt
        return (
            f"{prompt}\n\nThe room's current merged draft follows. Propose an improved"
            f" version of the whole passage.\n\n{merged_text}"
        )
