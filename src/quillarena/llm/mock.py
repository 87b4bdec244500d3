"""Deterministic offline provider used for testing and offline development."""

from __future__ import annotations

import json
import random
import re
import textwrap

from .cost import report_call_usage

__all__ = ["MockChatProvider", "MOCK_MOTIFS"]

MOCK_MOTIFS = ("rain", "mirror", "lantern", "clock", "river")

_SECTION_PATTERN = re.compile(r"<(?P<label>[a-z_]+)>\n(?P<body>.*?)\n</(?P=label)>", re.DOTALL)

_OPENINGS = (
    "The rain had not stopped since morning",
    "A lantern burned in the window across the river",
    "Nobody spoke when the clock struck the hour",
    "She kept the cracked mirror face down on the table",
)
_DEVELOPMENTS = (
    "and the silence made every small sound enormous.",
    "while the city pretended nothing had changed.",
    "as if the house itself were holding its breath.",
    "though no one could say who had moved first.",
)


class MockChatProvider:
    """Stage-keyed canned responses with a seeded RNG and heuristic token counts."""

    def __init__(self, seed: int | None = None, *, model: str = "mock-latest") -> None:
        self.model = model
        self._rng = random.Random(seed or 0)
        self._total_tokens = 0
        self.calls: list[tuple[str, str]] = []

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

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
        stage_key = stage.lower().strip()
        self.calls.append((stage_key, prompt))
        sections = {match.group("label"): match.group("body") for match in _SECTION_PATTERN.finditer(prompt)}

        if stage_key == "writer":
            content = self._build_prose(prompt)
        elif stage_key == "judge":
            content = self._build_verdict(sections)
        elif stage_key in {"corrector", "synthesis"}:
            content = sections.get("text", "").strip() or self._build_prose(prompt)
        elif stage_key == "retake":
            content = self._build_retake(sections.get("text", ""))
        elif stage_key == "reader":
            content = self._build_reader_opinion()
        elif stage_key == "chapter_state":
            content = self._build_chapter_state(sections.get("text", ""))
        elif stage_key == "moderator":
            content = self._build_moderation(sections)
        else:  # pragma: no cover
            content = f"Unsupported stage '{stage}'."

        used = (
            self._estimate_tokens(system)
            + self._estimate_tokens(prompt)
            + self._estimate_tokens(content)
        )
        self._total_tokens += used
        report_call_usage(used)
        return content

    def _build_prose(self, prompt: str) -> str:
        paragraphs = []
        for _ in range(3):
            paragraphs.append(
                f"{self._select(_OPENINGS)}, {self._select(_DEVELOPMENTS)}"
            )
        return "\n\n".join(paragraphs)

    def _build_verdict(self, sections: dict[str, str]) -> str:
        text_a = sections.get("text_a", "")
        text_b = sections.get("text_b", "")
        score_a = self._score()
        score_b = score_a if text_a == text_b else self._score()
        winner = "A" if score_a >= score_b else "B"
        payload = {
            "winner": winner,
            "reasoning": "Mock judge compared rhythm and voice.",
            "scores": {
                "A": self._score_block(score_a),
                "B": self._score_block(score_b),
            },
            "praised_excerpts": {
                "A": [self._first_sentence(text_a)] if text_a else [],
                "B": [self._first_sentence(text_b)] if text_b else [],
            },
        }
        return json.dumps(payload, ensure_ascii=False)

    def _build_retake(self, text: str) -> str:
        addition = self._select(
            [
                "The air tasted of iron and old paper.",
                "Somewhere below, a door closed without a sound.",
                "Her hands were steady now, and that frightened her more.",
            ]
        )
        return (text.strip() + "\n\n" + addition).strip()

    def _build_reader_opinion(self) -> str:
        return json.dumps(
            {
                "score": self._score(),
                "strengths": "Atmosphere is consistent.",
                "weaknesses": "The middle section loses momentum.",
                "suggestion": "Tighten the transitions between scenes.",
            }
        )

    def _build_chapter_state(self, text: str) -> str:
        lowered = text.lower()
        occurrences = [
            {"motif": motif, "count": lowered.count(motif)}
            for motif in MOCK_MOTIFS
            if motif in lowered
        ]
        summary = textwrap.shorten(" ".join(text.split()), width=160, placeholder="…")
        return json.dumps(
            {
                "character_states": [
                    {
                        "character_name": "narrator",
                        "emotional_state": self._select(["uneasy", "resolved", "weary"]),
                        "knowledge_gained": [],
                        "relationship_changes": [],
                    }
                ],
                "motif_occurrences": occurrences,
                "next_variation_hint": "Shift the scene to daylight and open with dialogue.",
                "chapter_summary": summary,
                "dominant_tone": self._select(["melancholic", "tense", "quiet"]),
                "peak_intensity": self._rng.randint(1, 5),
            },
            ensure_ascii=False,
        )

    def _build_moderation(self, sections: dict[str, str]) -> str:
        drafts = [body for label, body in sorted(sections.items()) if label.startswith("draft")]
        merged = drafts[0] if drafts else ""
        return json.dumps(
            {
                "merged_draft": merged,
                "consensus_score": round(self._rng.uniform(0.6, 0.95), 2),
                "summary": f"Merged {len(drafts)} draft(s).",
            },
            ensure_ascii=False,
        )

    def _score(self) -> float:
        return round(self._rng.uniform(0.55, 0.9), 2)

    @staticmethod
    def _score_block(value: float) -> dict[str, float]:
        return {
            "style": value,
            "compliance": value,
            "overall": value,
            "voice_accuracy": value,
            "originality": value,
            "structure": value,
        }

    @staticmethod
    def _first_sentence(text: str) -> str:
        stripped = " ".join(text.split())
        for terminator in (". ", "! ", "? "):
            if terminator in stripped:
                return stripped.split(terminator, 1)[0] + terminator.strip()
        return stripped[:120]

    def _select(self, options) -> str:
        return options[self._rng.randrange(len(options))]

    @staticmethod
    def _estimate_tokens(text: str) -> int:
        return max(1, len(text.split()))
