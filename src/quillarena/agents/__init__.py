"""Generation capabilities: value types, response schemas and LLM-backed agents."""

from .llm_agents import AgentFactory, LLMAgentFactory, ReaderPanel, ReaderPersona
from .types import (
    ChapterContext,
    ChapterExtraction,
    ComplianceResult,
    GenerationResult,
    JudgeVerdict,
    NarrativeConfig,
    QualityEvaluation,
    ScoreBreakdown,
    Violation,
    WriterConfig,
)

__all__ = [
    "AgentFactory",
    "LLMAgentFactory",
    "ReaderPanel",
    "ReaderPersona",
    "ChapterContext",
    "ChapterExtraction",
    "ComplianceResult",
    "GenerationResult",
    "JudgeVerdict",
    "NarrativeConfig",
    "QualityEvaluation",
    "ScoreBreakdown",
    "Violation",
    "WriterConfig",
]
