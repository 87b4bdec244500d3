from __future__ import annotations

import asyncio
import logging

import pytest

from quillarena.agents.types import ChapterContext, ComplianceResult, CorrectionResult, Violation
from quillarena.config import ConfigurationError
from quillarena.quality.correction import CorrectionLoop, check_text, merge_violations

BANNED = Violation(type="banned_word", start=0, end=4, excerpt="very", rule="no intensifiers")
CLICHE = Violation(type="cliche", start=5, end=9, excerpt="dark and stormy", rule="no cliches")


class MockChecker:
    """Fails while ``marker`` appears in the text."""

    def __init__(self, marker: str = "very") -> None:
        self.marker = marker
        self.checked = []

    async def check(self, text: str) -> ComplianceResult:
        self.checked.append(text)
        if self.marker in text:
            return ComplianceResult(passed=False, score=0.4, violations=(BANNED,))
        return ComplianceResult(passed=True, score=1.0)


class ContextChecker(MockChecker):
    def __init__(self) -> None:
        super().__init__()
        self.contexts = []

    async def check_with_context(self, text: str, context: ChapterContext) -> ComplianceResult:
        self.contexts.append(context)
        return await self.check(text)


class MockCorrector:
    def __init__(self, replacements) -> None:
        self.replacements = list(replacements)
        self.calls = []

    async def correct(self, text, violations) -> CorrectionResult:
        self.calls.append((text, tuple(violations)))
        return CorrectionResult(corrected_text=self.replacements.pop(0), tokens_used=5)


def test_compliant_text_needs_no_attempts() -> None:
    corrector = MockCorrector([])
    loop = CorrectionLoop(corrector, MockChecker())

    result = asyncio.run(loop.run("a calm text"))

    assert result.success is True
    assert result.attempts == 0
    assert result.final_text == "a calm text"
    assert result.original_violations is None
    assert corrector.calls == []


def test_fixes_on_second_attempt() -> None:
    corrector = MockCorrector(["still very bad", "fixed text"])
    loop = CorrectionLoop(corrector, MockChecker(), max_attempts=3)

    result = asyncio.run(loop.run("a very bad text"))

    assert result.success is True
    assert result.attempts == 2
    assert result.final_text == "fixed text"
    assert result.total_tokens == 10
    assert result.final_compliance.passed is True


def test_exhaustion_reports_original_violations(caplog) -> None:
    corrector = MockCorrector(["very 1", "very 2"])
    loop = CorrectionLoop(corrector, MockChecker(), max_attempts=2)

    with caplog.at_level(logging.WARNING):
        result = asyncio.run(loop.run("very first", initial_violations=[CLICHE]))

    assert result.success is False
    assert result.attempts == 2
    assert result.final_text == "very 2"
    assert result.original_violations == (BANNED, CLICHE)
    assert result.final_compliance.passed is False
    assert "exhausted" in caplog.text


def test_extra_violations_force_a_pass_even_if_checker_passes() -> None:
    corrector = MockCorrector(["cleaned"])
    loop = CorrectionLoop(corrector, MockChecker(marker="zzz"))

    result = asyncio.run(loop.run("dark and stormy night", initial_violations=[CLICHE]))

    assert result.success is True
    assert result.attempts == 1
    assert corrector.calls[0][1] == (CLICHE,)


def test_zero_attempts_fails_immediately() -> None:
    loop = CorrectionLoop(MockCorrector([]), MockChecker(), max_attempts=0)

    result = asyncio.run(loop.run("very"))

    assert result.success is False
    assert result.attempts == 0
    assert result.original_violations == (BANNED,)


def test_negative_attempts_rejected() -> None:
    with pytest.raises(ConfigurationError):
        CorrectionLoop(MockCorrector([]), MockChecker(), max_attempts=-1)


def test_merge_violations_deduplicates_by_type_and_excerpt() -> None:
    duplicate = Violation(type="banned_word", start=40, end=44, excerpt="very", rule="other")

    merged = merge_violations([BANNED], [duplicate, CLICHE])

    assert merged == (BANNED, CLICHE)


def test_check_text_prefers_context_aware_checks() -> None:
    checker = ContextChecker()
    context = ChapterContext(previous_texts=("chapter one",))

    asyncio.run(check_text(checker, "text", context))
    asyncio.run(check_text(checker, "text"))

    assert checker.contexts == [context]
    assert checker.checked == ["text", "text"]
