"""Structured schemas for LLM JSON responses and a tagged decode step.

Every structured response goes through :func:`decode`, which never raises
on malformed content. It returns either :class:`Decoded` carrying the
validated model or :class:`DecodeFailure` carrying the reason, and callers
branch on the two explicitly.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Generic, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "FrozenBaseModel",
    "ScorePayload",
    "SidePair",
    "JudgeResponse",
    "ReaderResponse",
    "CharacterStatePayload",
    "MotifOccurrencePayload",
    "ChapterStateResponse",
    "ModeratorResponse",
    "Decoded",
    "DecodeFailure",
    "DecodeResult",
    "decode",
    "extract_json_block",
]

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class FrozenBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class ScorePayload(FrozenBaseModel):
    """Per-text judge scores; absent dimensions are treated as neutral."""

    style: Optional[float] = None
    compliance: Optional[float] = None
    overall: Optional[float] = None
    voice_accuracy: Optional[float] = None
    originality: Optional[float] = Field(default=None, alias="originality_fidelity")
    structure: Optional[float] = Field(default=None, alias="narrative_quality")

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class SidePair(FrozenBaseModel):
    A: List[str] = Field(default_factory=list)
    B: List[str] = Field(default_factory=list)


class JudgeResponse(FrozenBaseModel):
    winner: Literal["A", "B"]
    reasoning: str = ""
    scores: dict[Literal["A", "B"], ScorePayload]
    praised_excerpts: SidePair = Field(default_factory=SidePair)
    weaknesses: SidePair = Field(default_factory=SidePair)


class ReaderResponse(FrozenBaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    strengths: str = ""
    weaknesses: str = ""
    suggestion: str = ""


class CharacterStatePayload(FrozenBaseModel):
    character_name: str
    emotional_state: str = ""
    knowledge_gained: List[str] = Field(default_factory=list)
    relationship_changes: List[str] = Field(default_factory=list)
    physical_state: Optional[str] = None


class MotifOccurrencePayload(FrozenBaseModel):
    motif: str
    count: int = Field(..., ge=0)


class ChapterStateResponse(FrozenBaseModel):
    character_states: List[CharacterStatePayload] = Field(default_factory=list)
    motif_occurrences: List[MotifOccurrencePayload] = Field(default_factory=list)
    next_variation_hint: str = ""
    chapter_summary: str = ""
    dominant_tone: str = ""
    peak_intensity: int = 3


class ModeratorResponse(FrozenBaseModel):
    merged_draft: str
    consensus_score: float = Field(..., ge=0.0, le=1.0)
    summary: str = ""


@dataclass(frozen=True, slots=True)
class Decoded(Generic[ModelT]):
    value: ModelT


@dataclass(frozen=True, slots=True)
class DecodeFailure:
    reason: str
    raw: str


DecodeResult = Union[Decoded[ModelT], DecodeFailure]


def extract_json_block(raw: str) -> str:
    """Return the JSON object embedded in a model reply.

    Markdown fences are stripped first; otherwise the outermost brace pair
    is used.
    """

    fenced = _FENCE_PATTERN.search(raw)
    candidate = fenced.group(1) if fenced else raw
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end < start:
        return candidate.strip()
    return candidate[start : end + 1]


def decode(raw: str, model: Type[ModelT]) -> DecodeResult[ModelT]:
    if not raw or not raw.strip():
        return DecodeFailure(reason="empty response", raw=raw or "")
    payload = extract_json_block(raw)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        return DecodeFailure(reason=f"invalid JSON: {exc.msg}", raw=raw)
    try:
        return Decoded(model.model_validate(data))
    except ValidationError as exc:
        return DecodeFailure(reason=f"schema mismatch: {exc.error_count()} error(s)", raw=raw)
