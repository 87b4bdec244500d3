"""Running token ledger shared by every LLM-backed capability."""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping

__all__ = [
    "MODEL_PRICING",
    "ModelPricing",
    "StageUsage",
    "UsageRecord",
    "BudgetExceededError",
    "TokenLedger",
    "CallUsage",
    "track_call_usage",
    "report_call_usage",
]


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """Price definition expressed in USD per 1K tokens."""

    prompt_per_1k: float
    completion_per_1k: float

    def estimate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens / 1000) * self.prompt_per_1k + (
            completion_tokens / 1000
        ) * self.completion_per_1k


MODEL_PRICING: Dict[str, ModelPricing] = {
    "gpt-4o-mini": ModelPricing(prompt_per_1k=0.00015, completion_per_1k=0.0006),
    "gpt-4o": ModelPricing(prompt_per_1k=0.005, completion_per_1k=0.015),
    "o4-mini": ModelPricing(prompt_per_1k=0.0005, completion_per_1k=0.0015),
}


@dataclass(slots=True)
class StageUsage:
    """Mutable per-stage tally kept inside :class:`TokenLedger`."""

    calls: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, float | int]:
        return {
            "calls": self.calls,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """Immutable summary of a single provider call."""

    stage: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    cost_usd: float

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class BudgetExceededError(RuntimeError):
    """Raised when recorded spend breaches a configured hard limit."""


@dataclass
class TokenLedger:
    """Accumulates token usage per stage tag.

    ``total_tokens`` is the running counter capabilities expose. Every
    recorded call is also reported to the enclosing
    :func:`track_call_usage` scope, if any.
    """

    pricing: Mapping[str, ModelPricing] = field(default_factory=lambda: MODEL_PRICING)
    budget_limit: float | None = None
    _by_stage: Dict[str, StageUsage] = field(default_factory=dict, init=False, repr=False)
    _total_tokens: int = field(default=0, init=False, repr=False)
    _total_cost: float = field(default=0.0, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    @property
    def total_cost(self) -> float:
        return self._total_cost

    def record(
        self, stage: str, model: str, prompt_tokens: int, completion_tokens: int
    ) -> UsageRecord:
        pricing = self.pricing.get(model)
        cost = pricing.estimate_cost(prompt_tokens, completion_tokens) if pricing else 0.0
        with self._lock:
            usage = self._by_stage.setdefault(stage, StageUsage())
            usage.calls += 1
            usage.prompt_tokens += prompt_tokens
            usage.completion_tokens += completion_tokens
            usage.cost_usd += cost
            self._total_tokens += prompt_tokens + completion_tokens
            self._total_cost += cost
            total_cost = self._total_cost

        report_call_usage(prompt_tokens + completion_tokens)
        if self.budget_limit is not None and total_cost > self.budget_limit:
            raise BudgetExceededError(
                f"Budget limit {self.budget_limit:.2f} USD exceeded: {total_cost:.2f}"
            )

        return UsageRecord(
            stage=stage,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost_usd=cost,
        )

    def usage_for(self, stage: str) -> StageUsage | None:
        return self._by_stage.get(stage)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_tokens": self._total_tokens,
            "total_cost": round(self._total_cost, 6),
            "budget_limit": self.budget_limit,
            "stages": {stage: usage.to_dict() for stage, usage in sorted(self._by_stage.items())},
        }

    def to_json(self, *, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)


@dataclass(slots=True)
class CallUsage:
    """Tokens reported by providers inside one :func:`track_call_usage` scope."""

    tokens: int = 0
    reported: bool = False


_CURRENT_CALL: ContextVar[CallUsage | None] = ContextVar("quillarena_call_usage", default=None)


@contextmanager
def track_call_usage() -> Iterator[CallUsage]:
    """Collect the tokens of the provider calls awaited inside the block.

    The scope is held in a context variable and only sees calls awaited
    from the current task.
    """
    usage = CallUsage()
    token = _CURRENT_CALL.set(usage)
    try:
        yield usage
    finally:
        _CURRENT_CALL.reset(token)


def report_call_usage(tokens: int) -> None:
    usage = _CURRENT_CALL.get()
    if usage is not None:
        usage.tokens += tokens
        usage.reported = True
