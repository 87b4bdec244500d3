"""Circuit breaker guarding calls to an unreliable external dependency.

The breaker moves between three states:

``CLOSED``
    Calls pass through. Consecutive failures are counted and any success
    resets the count. Reaching ``failure_threshold`` opens the circuit.
``OPEN``
    Calls are rejected with :class:`CircuitOpenError` without touching the
    dependency. Once ``recovery_time`` seconds have passed since the last
    failure, the next call attempt moves the breaker to ``HALF_OPEN``.
``HALF_OPEN``
    A probation period. ``half_open_successes`` consecutive successes
    close the circuit; a single failure reopens it.

Recovery is evaluated lazily when a call is attempted; there is no
background timer. Transitions are serialised with an :class:`asyncio.Lock`
so concurrent fan-out calls cannot corrupt the counters.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from ..config import BreakerConfig
from .providers import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = ["CircuitState", "CircuitOpenError", "CircuitBreaker"]


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(ProviderError):
    """Raised when a call is attempted through an open circuit."""

    def __init__(self, remaining: float, name: str = "default") -> None:
        self.remaining = remaining
        self.name = name
        super().__init__(
            f"Circuit breaker '{name}' OPEN: waiting {math.ceil(remaining)}s for recovery"
        )


class CircuitBreaker:
    """Failure-counting wrapper around awaitable calls."""

    def __init__(
        self,
        config: BreakerConfig | None = None,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or BreakerConfig()
        self.name = name
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at = 0.0
        self._half_open_successes = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        await self._admit()
        try:
            result = await fn(*args, **kwargs)
        except Exception:
            await self._on_failure()
            raise
        await self._on_success()
        return result

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_at = 0.0
        self._half_open_successes = 0

    async def _admit(self) -> None:
        async with self._lock:
            if self._state is not CircuitState.OPEN:
                return
            elapsed = self._clock() - self._last_failure_at
            if elapsed >= self.config.recovery_time:
                logger.info("Circuit '%s' entering HALF_OPEN after %.1fs", self.name, elapsed)
                self._state = CircuitState.HALF_OPEN
                self._half_open_successes = 0
                return
            raise CircuitOpenError(self.config.recovery_time - elapsed, self.name)

    async def _on_success(self) -> None:
        async with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.half_open_successes:
                    logger.info("Circuit '%s' CLOSED after successful probation", self.name)
                    self._state = CircuitState.CLOSED
                    self._consecutive_failures = 0
                    self._half_open_successes = 0
            else:
                self._consecutive_failures = 0

    async def _on_failure(self) -> None:
        async with self._lock:
            self._consecutive_failures += 1
            self._last_failure_at = self._clock()
            self._half_open_successes = 0
            if self._state is CircuitState.HALF_OPEN:
                logger.warning("Circuit '%s' reopened by a failure during probation", self.name)
                self._state = CircuitState.OPEN
            elif (
                self._state is CircuitState.CLOSED
                and self._consecutive_failures >= self.config.failure_threshold
            ):
                logger.warning(
                    "Circuit '%s' OPEN after %s consecutive failures",
                    self.name,
                    self._consecutive_failures,
                )
                self._state = CircuitState.OPEN
