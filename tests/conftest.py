"""Shared fixtures for the test suite."""
from __future__ import annotations

from typing import Any, Iterable

import pytest
from langchain_core.messages import AIMessage

from quillarena.agents.llm_agents import LLMAgentFactory
from quillarena.llm.cost import ModelPricing, TokenLedger
from quillarena.llm.mock import MockChatProvider
from quillarena.pipeline.context import PipelineDeps

ENV_VARS = {
    "QUILLARENA_MODEL",
    "OPENAI_MODEL",
    "QUILLARENA_API_KEY",
    "OPENAI_API_KEY",
    "QUILLARENA_BASE_URL",
    "OPENAI_BASE_URL",
    "QUILLARENA_TEMPERATURE",
    "QUILLARENA_MAX_TOKENS",
    "QUILLARENA_API_KEY_ENV",
    "QUILLARENA_BREAKER_THRESHOLD",
    "QUILLARENA_BREAKER_RECOVERY_SECONDS",
    "QUILLARENA_BREAKER_HALF_OPEN_SUCCESSES",
    "QUILLARENA_WRITER_COUNT",
    "QUILLARENA_OUTPUT_ROOT",
    "QUILLARENA_CHECKPOINT_ROOT",
}


@pytest.fixture(autouse=True)
def _clear_llm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure LLM-related environment variables do not leak between tests."""

    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def dummy_chat_model(monkeypatch: pytest.MonkeyPatch):
    """Patch the LangChain chat client used by the provider abstraction."""

    from quillarena.llm import providers

    class DummyChatModel:
        reply = "dummy reply"
        fail_with: Exception | None = None

        def __init__(self, **kwargs: Any) -> None:
            self.kwargs = kwargs
            self.invocations: list[tuple[tuple[Any, ...], dict[str, Any]]] = []

        async def ainvoke(self, messages: Iterable[Any], **kwargs: Any) -> AIMessage:
            self.invocations.append((tuple(messages), dict(kwargs)))
            if self.fail_with is not None:
                raise self.fail_with
            return AIMessage(
                content=self.reply,
                usage_metadata={"input_tokens": 7, "output_tokens": 5, "total_tokens": 12},
            )

    monkeypatch.setattr(providers, "ChatOpenAI", DummyChatModel)
    return DummyChatModel


@pytest.fixture
def dummy_ledger() -> TokenLedger:
    """Provide a token ledger with deterministic pricing for tests."""

    pricing = {
        "stub-model": ModelPricing(prompt_per_1k=0.001, completion_per_1k=0.002),
        "alt-model": ModelPricing(prompt_per_1k=0.01, completion_per_1k=0.02),
    }
    return TokenLedger(pricing=pricing, budget_limit=5.0)


@pytest.fixture
def mock_provider() -> MockChatProvider:
    return MockChatProvider(seed=7)


@pytest.fixture
def mock_deps(mock_provider: MockChatProvider) -> PipelineDeps:
    return PipelineDeps(agents=LLMAgentFactory(mock_provider))
