"""Combinators for building pipelines out of independent stages.

A stage maps a :class:`~quillarena.pipeline.context.RunContext` to a new
one. Stages may be coroutine functions or plain functions; the combinators
await the result only when it is awaitable.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from .context import RunContext

logger = logging.getLogger(__name__)

__all__ = ["Stage", "Predicate", "pipe", "when", "try_stage", "run_stage"]

Stage = Callable[[RunContext], Union[RunContext, Awaitable[RunContext]]]
Predicate = Callable[[RunContext], bool]


async def run_stage(stage: Stage, ctx: RunContext) -> RunContext:
    result = stage(ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


def pipe(*stages: Stage) -> Stage:
    """Run ``stages`` in order, threading each output into the next stage."""

    async def piped(ctx: RunContext) -> RunContext:
        current = ctx
        for stage in stages:
            current = await run_stage(stage, current)
        return current

    return piped


def when(predicate: Predicate, stage: Stage) -> Stage:
    """Run ``stage`` only if ``predicate`` holds for the incoming context."""

    async def conditional(ctx: RunContext) -> RunContext:
        if predicate(ctx):
            return await run_stage(stage, ctx)
        return ctx

    return conditional


def try_stage(stage: Stage, fallback: Optional[Stage] = None) -> Stage:
    """Contain any exception raised by ``stage``.

    On failure ``fallback`` runs against the context ``stage`` received;
    without a fallback that same context is returned.
    """

    async def guarded(ctx: RunContext) -> RunContext:
        try:
            return await run_stage(stage, ctx)
        except Exception as exc:
            logger.warning(
                "Stage %s failed and was contained: %s",
                getattr(stage, "__name__", repr(stage)),
                exc,
            )
            if fallback is not None:
                return await run_stage(fallback, ctx)
            return ctx

    return guarded
