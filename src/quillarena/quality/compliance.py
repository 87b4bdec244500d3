"""Default compliance checker used when a run supplies no rule set."""

from __future__ import annotations

from ..agents.types import ChapterContext, ComplianceResult

__all__ = ["AcceptAllChecker"]


class AcceptAllChecker:
    """Treat every text as compliant with a perfect score."""

    async def check(self, text: str) -> ComplianceResult:
        return ComplianceResult(passed=True, score=1.0)

    async def check_with_context(self, text: str, context: ChapterContext) -> ComplianceResult:
        return await self.check(text)
