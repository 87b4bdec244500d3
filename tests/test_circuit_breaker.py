from __future__ import annotations

import asyncio
import logging

import pytest

from quillarena.config import BreakerConfig
from quillarena.llm.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _ok() -> str:
    return "ok"


async def _boom() -> str:
    raise RuntimeError("boom")


def _breaker(clock: FakeClock, **overrides) -> CircuitBreaker:
    config = BreakerConfig(
        failure_threshold=overrides.get("failure_threshold", 3),
        recovery_time=overrides.get("recovery_time", 30.0),
        half_open_successes=overrides.get("half_open_successes", 2),
    )
    return CircuitBreaker(config, name="test", clock=clock)


def _fail(breaker: CircuitBreaker, times: int) -> None:
    async def scenario():
        for _ in range(times):
            with pytest.raises(RuntimeError):
                await breaker.call(_boom)

    asyncio.run(scenario())


def test_opens_after_consecutive_failures(caplog) -> None:
    clock = FakeClock()
    breaker = _breaker(clock)

    with caplog.at_level(logging.WARNING):
        _fail(breaker, 3)

    assert breaker.state is CircuitState.OPEN
    assert "OPEN after 3 consecutive failures" in caplog.text


def test_success_resets_failure_count() -> None:
    breaker = _breaker(FakeClock())
    _fail(breaker, 2)
    assert asyncio.run(breaker.call(_ok)) == "ok"
    _fail(breaker, 2)

    assert breaker.state is CircuitState.CLOSED
    assert breaker.consecutive_failures == 2


def test_open_circuit_rejects_without_calling() -> None:
    clock = FakeClock()
    breaker = _breaker(clock)
    _fail(breaker, 3)
    clock.advance(10.0)
    calls = []

    async def tracked():
        calls.append(1)
        return "never"

    with pytest.raises(CircuitOpenError) as excinfo:
        asyncio.run(breaker.call(tracked))

    assert calls == []
    assert excinfo.value.remaining == pytest.approx(20.0)
    assert "waiting 20s" in str(excinfo.value)


def test_half_open_closes_after_required_successes() -> None:
    clock = FakeClock()
    breaker = _breaker(clock)
    _fail(breaker, 3)
    clock.advance(30.0)

    assert asyncio.run(breaker.call(_ok)) == "ok"
    assert breaker.state is CircuitState.HALF_OPEN
    assert asyncio.run(breaker.call(_ok)) == "ok"
    assert breaker.state is CircuitState.CLOSED
    assert breaker.consecutive_failures == 0


def test_failure_in_half_open_reopens() -> None:
    clock = FakeClock()
    breaker = _breaker(clock)
    _fail(breaker, 3)
    clock.advance(31.0)

    _fail(breaker, 1)

    assert breaker.state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        asyncio.run(breaker.call(_ok))


def test_reset_returns_to_closed() -> None:
    breaker = _breaker(FakeClock(), failure_threshold=1)
    _fail(breaker, 1)
    assert breaker.state is CircuitState.OPEN

    breaker.reset()

    assert breaker.state is CircuitState.CLOSED
    assert asyncio.run(breaker.call(_ok)) == "ok"


async def _slow_boom() -> str:
    await asyncio.sleep(0.01)
    raise RuntimeError("boom")


async def _slow_ok() -> str:
    await asyncio.sleep(0.01)
    return "ok"


def test_concurrent_failures_are_all_counted() -> None:
    breaker = _breaker(FakeClock(), failure_threshold=3)

    async def scenario():
        return await asyncio.gather(*(breaker.call(_slow_boom) for _ in range(5)), return_exceptions=True)

    outcomes = asyncio.run(scenario())

    assert all(isinstance(outcome, RuntimeError) for outcome in outcomes)
    assert breaker.consecutive_failures == 5
    assert breaker.state is CircuitState.OPEN


def test_concurrent_successes_close_a_half_open_circuit() -> None:
    clock = FakeClock()
    breaker = _breaker(clock, half_open_successes=2)
    _fail(breaker, 3)
    clock.advance(30.0)

    async def scenario():
        return await asyncio.gather(*(breaker.call(_slow_ok) for _ in range(3)))

    assert asyncio.run(scenario()) == ["ok", "ok", "ok"]
    assert breaker.state is CircuitState.CLOSED
    assert breaker.consecutive_failures == 0
