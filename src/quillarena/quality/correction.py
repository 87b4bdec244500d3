"""Fix-and-recheck loop driving a corrector until the text is compliant."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from ..agents.types import (
    ChapterContext,
    ComplianceChecker,
    ComplianceResult,
    Corrector,
    Violation,
)
from ..config import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ["CorrectionLoopResult", "CorrectionLoop", "merge_violations", "check_text"]

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class CorrectionLoopResult:
    """Outcome of a correction run.

    ``original_violations`` is only populated on failure and holds the
    violations detected before any rewrite, not the ones left at the end.
    """

    success: bool
    final_text: str
    attempts: int
    total_tokens: int = 0
    original_violations: Optional[tuple[Violation, ...]] = None
    final_compliance: Optional[ComplianceResult] = None


def merge_violations(
    detected: Sequence[Violation], extra: Iterable[Violation] | None
) -> tuple[Violation, ...]:
    """Append ``extra`` violations not already present by type and excerpt."""

    merged = list(detected)
    seen = {(violation.type, violation.excerpt) for violation in detected}
    for violation in extra or ():
        key = (violation.type, violation.excerpt)
        if key not in seen:
            seen.add(key)
            merged.append(violation)
    return tuple(merged)


async def check_text(
    checker: ComplianceChecker, text: str, context: ChapterContext | None = None
) -> ComplianceResult:
    """Run ``checker`` with chapter context when both are available."""

    check_with_context = getattr(checker, "check_with_context", None)
    if context is not None and check_with_context is not None:
        return await check_with_context(text, context)
    return await checker.check(text)


class CorrectionLoop:
    def __init__(
        self,
        corrector: Corrector,
        checker: ComplianceChecker,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 0:
            raise ConfigurationError("max_attempts must not be negative")
        self.corrector = corrector
        self.checker = checker
        self.max_attempts = max_attempts

    async def run(
        self,
        text: str,
        initial_violations: Sequence[Violation] | None = None,
        chapter_context: ChapterContext | None = None,
    ) -> CorrectionLoopResult:
        initial = await check_text(self.checker, text, chapter_context)
        violations = merge_violations(initial.violations, initial_violations)

        if initial.passed and not violations:
            return CorrectionLoopResult(
                success=True,
                final_text=text,
                attempts=0,
                final_compliance=initial,
            )

        original_violations = violations
        current_text = text
        current_violations = violations
        last_check = initial
        total_tokens = 0
        attempts = 0

        while attempts < self.max_attempts:
            attempts += 1
            correction = await self.corrector.correct(current_text, current_violations)
            total_tokens += correction.tokens_used
            current_text = correction.corrected_text

            last_check = await check_text(self.checker, current_text, chapter_context)
            if last_check.passed:
                logger.info("Text became compliant after %s correction attempt(s)", attempts)
                return CorrectionLoopResult(
                    success=True,
                    final_text=current_text,
                    attempts=attempts,
                    total_tokens=total_tokens,
                    final_compliance=last_check,
                )
            current_violations = last_check.violations
            logger.debug(
                "Correction attempt %s left %s violation(s)", attempts, len(current_violations)
            )

        logger.warning(
            "Correction budget of %s attempt(s) exhausted with %s violation(s) remaining",
            self.max_attempts,
            len(current_violations),
        )
        return CorrectionLoopResult(
            success=False,
            final_text=current_text,
            attempts=attempts,
            total_tokens=total_tokens,
            original_violations=original_violations,
            final_compliance=last_check,
        )
