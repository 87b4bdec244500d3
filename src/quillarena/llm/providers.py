"""LangChain chat provider abstraction for the generation pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Protocol, Sequence, Tuple, runtime_checkable

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from .cost import TokenLedger

try:  # pragma: no cover - import guard for optional dependency
    from langchain_openai import ChatOpenAI
except ImportError:  # pragma: no cover - gracefully degrade when dependency missing
    ChatOpenAI = None  # type: ignore[assignment]

if TYPE_CHECKING:  # pragma: no cover
    from .circuit_breaker import CircuitBreaker

__all__ = [
    "ProviderError",
    "ProviderDependencyError",
    "ProviderSettings",
    "ChatProvider",
    "LangChainChatProvider",
    "GuardedChatProvider",
    "build_provider",
]

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MODEL_ENVS: Tuple[str, ...] = ("QUILLARENA_MODEL", "OPENAI_MODEL")
DEFAULT_API_KEY_ENVS: Tuple[str, ...] = ("QUILLARENA_API_KEY", "OPENAI_API_KEY")
DEFAULT_BASE_URL_ENVS: Tuple[str, ...] = ("QUILLARENA_BASE_URL", "OPENAI_BASE_URL")
DEFAULT_TEMPERATURE_ENV = "QUILLARENA_TEMPERATURE"
DEFAULT_MAX_TOKEN_ENV = "QUILLARENA_MAX_TOKENS"


class ProviderError(RuntimeError):
    """Base error raised when interacting with a chat provider."""


class ProviderDependencyError(ProviderError):
    """Raised when required dependencies are unavailable."""


@runtime_checkable
class ChatProvider(Protocol):
    """Single call/response abstraction every agent talks to.

    ``stage`` tags the call for token accounting and lets offline
    providers route responses. Implementations report the tokens of each
    call through :func:`~quillarena.llm.cost.report_call_usage`.
    """

    @property
    def total_tokens(self) -> int:
        ...

    async def complete(
        self,
        stage: str,
        system: str,
        prompt: str,
        *,
        temperature: float | None = None,
        top_p: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        ...


@dataclass(slots=True)
class ProviderSettings:
    """Settings bundle for a chat provider."""

    model: str = DEFAULT_MODEL
    base_url: str | None = None
    api_key: str | None = None
    temperature: float = 0.7
    max_tokens: int | None = None
    timeout: float | None = None

    def as_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
        }
        if self.base_url:
            kwargs["base_url"] = self.base_url
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.max_tokens is not None:
            kwargs["max_tokens"] = self.max_tokens
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        return kwargs


class LangChainChatProvider:
    """Thin async wrapper around ``langchain_openai.ChatOpenAI``."""

    def __init__(self, settings: ProviderSettings, *, ledger: TokenLedger | None = None):
        if ChatOpenAI is None:
            raise ProviderDependencyError(
                "langchain-openai is required to instantiate LangChainChatProvider"
            )
        self.settings = settings
        self.ledger = ledger or TokenLedger()
        self._client = self._build_client(settings)

    def _build_client(self, settings: ProviderSettings):
        try:
            return ChatOpenAI(**settings.as_kwargs())  # type: ignore[arg-type]
        except Exception as exc:  # pragma: no cover - passthrough
            raise ProviderError(f"Failed to initialise chat model '{settings.model}': {exc}") from exc

    @property
    def model(self) -> str:
        return self.settings.model

    @property
    def total_tokens(self) -> int:
        return self.ledger.total_tokens

    async def complete(
        self,
        stage: str,
        system: str,
        prompt: str,
        *,
        temperature: float | None = None,
        top_p: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        bind_kwargs: dict[str, Any] = {}
        if temperature is not None:
            bind_kwargs["temperature"] = temperature
        if top_p is not None:
            bind_kwargs["top_p"] = top_p
        if max_tokens is not None:
            bind_kwargs["max_tokens"] = max_tokens
        messages = [SystemMessage(content=system), HumanMessage(content=prompt)]
        try:
            response = await self._client.ainvoke(messages, **bind_kwargs)
        except Exception as exc:
            raise ProviderError(
                f"Invocation failed for model '{self.settings.model}' at stage '{stage}': {exc}"
            ) from exc

        prompt_tokens, completion_tokens = _extract_token_usage(response)
        self.ledger.record(stage, self.settings.model, prompt_tokens, completion_tokens)
        return _extract_content(response)

    def with_model(self, model: str, **overrides: Any) -> "LangChainChatProvider":
        new_settings = replace(self.settings, model=model)
        for key, value in overrides.items():
            if hasattr(new_settings, key):
                setattr(new_settings, key, value)
        return self.__class__(new_settings, ledger=self.ledger)


class GuardedChatProvider:
    """Route every call of an inner provider through a shared circuit breaker."""

    def __init__(self, inner: ChatProvider, breaker: "CircuitBreaker") -> None:
        self.inner = inner
        self.breaker = breaker

    @property
    def total_tokens(self) -> int:
        return self.inner.total_tokens

    async def complete(
        self,
        stage: str,
        system: str,
        prompt: str,
        *,
        temperature: float | None = None,
        top_p: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        return await self.breaker.call(
            self.inner.complete,
            stage,
            system,
            prompt,
            temperature=temperature,
            top_p=top_p,
            max_tokens=max_tokens,
        )


def build_provider(
    *,
    model: str | None = None,
    model_envs: Sequence[str] | None = None,
    base_url: str | None = None,
    api_key: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: float | None = None,
    api_key_envs: Sequence[str] | None = None,
    base_url_envs: Sequence[str] | None = None,
    ledger: TokenLedger | None = None,
) -> LangChainChatProvider:
    """Factory that mirrors CLI/env resolution for provider credentials."""

    resolved_model = model or _resolve_from_env(model_envs or DEFAULT_MODEL_ENVS) or DEFAULT_MODEL
    resolved_base_url = base_url or _resolve_from_env(base_url_envs or DEFAULT_BASE_URL_ENVS)
    resolved_api_key = api_key or _resolve_from_env(api_key_envs or DEFAULT_API_KEY_ENVS)
    resolved_temperature = _coerce_float(temperature, os.getenv(DEFAULT_TEMPERATURE_ENV), default=0.7)
    resolved_max_tokens = _coerce_int(max_tokens, os.getenv(DEFAULT_MAX_TOKEN_ENV))

    settings = ProviderSettings(
        model=resolved_model,
        base_url=resolved_base_url,
        api_key=resolved_api_key,
        temperature=resolved_temperature,
        max_tokens=resolved_max_tokens,
        timeout=timeout,
    )
    return LangChainChatProvider(settings, ledger=ledger)


def _resolve_from_env(envs: Sequence[str]) -> str | None:
    for env_name in envs:
        value = os.getenv(env_name)
        if value:
            return value
    return None


def _coerce_float(explicit: float | None, env_value: str | None, *, default: float) -> float:
    if explicit is not None:
        return float(explicit)
    if env_value:
        try:
            return float(env_value)
        except ValueError:
            return default
    return default


def _coerce_int(explicit: int | None, env_value: str | None) -> int | None:
    if explicit is not None:
        return int(explicit)
    if env_value:
        try:
            return int(env_value)
        except ValueError:
            return None
    return None


def _extract_content(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        pieces = [segment.get("text", "") for segment in content if isinstance(segment, dict)]
        return "".join(pieces)
    return str(content or "")


def _extract_token_usage(response: Any) -> tuple[int, int]:
    """Normalise usage metadata from different LangChain chat models."""

    usage: dict[str, Any] = {}
    if isinstance(response, AIMessage) and response.usage_metadata:
        usage.update(response.usage_metadata)
    response_meta = getattr(response, "response_metadata", None) or {}
    if not usage and isinstance(response_meta, dict):
        maybe_usage = response_meta.get("token_usage") or response_meta.get("usage")
        if isinstance(maybe_usage, dict):
            usage.update(maybe_usage)

    prompt_tokens = int(usage.get("input_tokens") or usage.get("prompt_tokens") or 0)
    completion_tokens = int(usage.get("output_tokens") or usage.get("completion_tokens") or 0)
    return prompt_tokens, completion_tokens
