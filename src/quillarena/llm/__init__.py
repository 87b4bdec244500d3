"""LLM boundary: chat providers, the circuit breaker and token accounting."""

from .circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from .cost import (
    MODEL_PRICING,
    BudgetExceededError,
    CallUsage,
    ModelPricing,
    TokenLedger,
    report_call_usage,
    track_call_usage,
)
from .mock import MockChatProvider
from .providers import (
    ChatProvider,
    GuardedChatProvider,
    LangChainChatProvider,
    ProviderDependencyError,
    ProviderError,
    ProviderSettings,
    build_provider,
)

__all__ = [
    "MODEL_PRICING",
    "ModelPricing",
    "BudgetExceededError",
    "TokenLedger",
    "CallUsage",
    "track_call_usage",
    "report_call_usage",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "MockChatProvider",
    "ChatProvider",
    "GuardedChatProvider",
    "LangChainChatProvider",
    "ProviderError",
    "ProviderDependencyError",
    "ProviderSettings",
    "build_provider",
]
