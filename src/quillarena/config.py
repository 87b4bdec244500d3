"""Dataclass-driven configuration for the quillarena generation pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable

from .paths import RunPathConfig, resolve_checkpoint_path, resolve_output_path

__all__ = [
    "ConfigurationError",
    "LLMConfig",
    "BreakerConfig",
    "TournamentConfig",
    "CorrectionConfig",
    "RetakeConfig",
    "QualityRetakeConfig",
    "QuillArenaConfig",
]


class ConfigurationError(ValueError):
    """Raised synchronously when a component is misconfigured or misused."""


def _env_float(name: str, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:  # pragma: no cover
        return default


def _env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:  # pragma: no cover
        return default


@dataclass(slots=True)
class LLMConfig:
    """Configuration for LangChain-backed chat providers."""

    model: str = field(default_factory=lambda: os.getenv("QUILLARENA_MODEL", "gpt-4o-mini"))
    base_url: str | None = field(
        default_factory=lambda: os.getenv("QUILLARENA_BASE_URL") or os.getenv("OPENAI_BASE_URL")
    )
    temperature: float = field(default_factory=lambda: _env_float("QUILLARENA_TEMPERATURE", 0.7))
    max_tokens: int | None = field(default_factory=lambda: _env_int("QUILLARENA_MAX_TOKENS"))
    api_key_env: str = field(
        default_factory=lambda: os.getenv("QUILLARENA_API_KEY_ENV", "QUILLARENA_API_KEY")
    )
    fallback_api_key_envs: tuple[str, ...] = ("OPENAI_API_KEY",)

    def resolve_api_key(self, override: str | None = None) -> str | None:
        if override:
            return override
        env_candidates: Iterable[str | None] = (self.api_key_env, *self.fallback_api_key_envs)
        for name in env_candidates:
            if not name:
                continue
            value = os.getenv(name)
            if value:
                return value
        return None

    def provider_kwargs(
        self,
        *,
        model: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, object | None]:
        return {
            "model": model or self.model,
            "base_url": base_url or self.base_url,
            "api_key": api_key if api_key is not None else self.resolve_api_key(),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
        }


@dataclass(slots=True)
class BreakerConfig:
    """Failure-counting policy for calls to an external dependency."""

    failure_threshold: int = field(default_factory=lambda: _env_int("QUILLARENA_BREAKER_THRESHOLD", 5))
    recovery_time: float = field(
        default_factory=lambda: _env_float("QUILLARENA_BREAKER_RECOVERY_SECONDS", 60.0)
    )
    half_open_successes: int = field(
        default_factory=lambda: _env_int("QUILLARENA_BREAKER_HALF_OPEN_SUCCESSES", 2)
    )

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigurationError("failure_threshold must be at least 1")
        if self.recovery_time < 0:
            raise ConfigurationError("recovery_time must not be negative")
        if self.half_open_successes < 1:
            raise ConfigurationError("half_open_successes must be at least 1")


@dataclass(slots=True)
class TournamentConfig:
    writer_count: int = field(default_factory=lambda: _env_int("QUILLARENA_WRITER_COUNT", 4))

    def __post_init__(self) -> None:
        if self.writer_count < 1:
            raise ConfigurationError("writer_count must be at least 1")


@dataclass(slots=True)
class CorrectionConfig:
    max_attempts: int = 3

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ConfigurationError("max_attempts must not be negative")


@dataclass(slots=True)
class RetakeConfig:
    """Thresholds for the judge-driven retake loop."""

    max_retakes: int = 2
    min_score: float = 0.7
    min_voice: float = 0.6

    def __post_init__(self) -> None:
        if self.max_retakes < 0:
            raise ConfigurationError("max_retakes must not be negative")
        for name in ("min_score", "min_voice"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must lie within [0, 1], got {value}")


@dataclass(slots=True)
class QualityRetakeConfig:
    """Retake budget for the reader-panel loop with degradation rollback."""

    max_retakes: int = 2

    def __post_init__(self) -> None:
        if self.max_retakes < 0:
            raise ConfigurationError("max_retakes must not be negative")


@dataclass(slots=True)
class QuillArenaConfig:
    """Primary configuration entry point for a generation run."""

    paths: RunPathConfig = field(default_factory=RunPathConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    tournament: TournamentConfig = field(default_factory=TournamentConfig)
    correction: CorrectionConfig = field(default_factory=CorrectionConfig)
    retake: RetakeConfig = field(default_factory=RetakeConfig)
    quality_retake: QualityRetakeConfig = field(default_factory=QualityRetakeConfig)

    def with_paths(
        self,
        *,
        output_path: Path | str | None = None,
        checkpoint_path: Path | str | None = None,
    ) -> "QuillArenaConfig":
        new_paths = replace(
            self.paths,
            output_path=Path(output_path).expanduser() if output_path else self.paths.output_path,
            checkpoint_path=(
                Path(checkpoint_path).expanduser() if checkpoint_path else self.paths.checkpoint_path
            ),
        )
        return replace(self, paths=new_paths)

    @property
    def output_path(self) -> Path:
        return resolve_output_path(self.paths.output_path, create=self.paths.create_output)

    @property
    def checkpoint_path(self) -> Path:
        return resolve_checkpoint_path(
            self.paths.checkpoint_path,
            output_path=self.paths.output_path,
            create=self.paths.create_checkpoints,
        )

    def as_provider_kwargs(self, **overrides: object) -> dict[str, object | None]:
        return self.llm.provider_kwargs(**overrides)
