"""Structural validation of annotated chunks.

Two gates, both required:

1. Verbatim preservation: once inserted markers and definitions are
   removed, the candidate must still contain the source text.
2. Tag compliance: every definition must open with one allowed tag.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from footnoter.footnotes import DEFINITION_LINE_RE, strip_definitions

DEFAULT_TAGS: tuple[str, ...] = (
    "📚",
    "💓",
    "🔧",
    "🧠",
    "🗝️",
    "🇯🇵",
    "🌍",
    "🧩",
    "⏳",
)

TAG_LEGEND = (
    "📚 vocab / 💓 emotion / 🔧 grammar / 🧠 nuance / 🗝️ symbolism / "
    "🇯🇵 JP gloss / 🌍 culture / 🧩 interpretation / ⏳ tense"
)

_INLINE_MARKER_RE = re.compile(r"\[\^\d+\]")
_DASH_RE = re.compile(r"\s*([—–])\s*")
_WHITESPACE_RE = re.compile(r"\s+")


class ValidationReason(StrEnum):
    SOURCE_MISMATCH = "source_mismatch"
    TAG_MISSING = "tag_missing"


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: ValidationReason | None = None

    @property
    def message(self) -> str:
        if self.reason == ValidationReason.SOURCE_MISMATCH:
            return "Model modified or dropped source text"
        if self.reason == ValidationReason.TAG_MISSING:
            return "Footnote definitions missing required tag prefix"
        return ""


ACCEPTED = ValidationResult(ok=True)


def normalize(text: str) -> str:
    """Collapse whitespace and give dashes one space on each side."""
    spaced = _DASH_RE.sub(r" \1 ", text)
    return _WHITESPACE_RE.sub(" ", spaced).strip()


def candidate_body(candidate: str) -> str:
    """Candidate text with definitions and inline markers removed."""
    return _INLINE_MARKER_RE.sub("", strip_definitions(candidate))


def _compact(text: str) -> str:
    return _WHITESPACE_RE.sub("", text)


def _first_words(text: str, count: int) -> str:
    return " ".join(text.split(" ")[:count])


def _last_words(text: str, count: int) -> str:
    return " ".join(text.split(" ")[-count:])


def preserves_source(source: str, candidate: str, anchor_words: int = 8) -> bool:
    """True when the candidate body still contains the whole source.

    Falls back to an anchored window: the first and last ``anchor_words``
    words of the source must each occur exactly once in the body, in
    order, and the span between them must equal the source once all
    whitespace is removed. This tolerates spacing drift around inserted
    markers but not reordered or edited text.
    """
    source_norm = normalize(source.strip())
    if not source_norm:
        return True
    body_norm = normalize(candidate_body(candidate))
    if source_norm in body_norm:
        return True

    head = _first_words(source_norm, anchor_words)
    tail = _last_words(source_norm, anchor_words)
    if body_norm.count(head) != 1 or body_norm.count(tail) != 1:
        return False
    start = body_norm.find(head)
    end = body_norm.find(tail)
    if end < start:
        return False
    window = body_norm[start:end + len(tail)]
    return _compact(window) == _compact(source_norm)


def has_tagged_definitions(candidate: str, tags: Iterable[str] = DEFAULT_TAGS) -> bool:
    """True when every definition's content starts with exactly one allowed tag."""
    allowed = tuple(tags)
    for match in DEFINITION_LINE_RE.finditer(candidate):
        content = match.group(2).strip()
        tag = next((t for t in allowed if content.startswith(t)), None)
        if tag is None:
            return False
        rest = content[len(tag):].strip()
        if not rest or rest.startswith(allowed):
            return False
    return True


class Validator:
    """Runs both gates and reports the first failing reason."""

    def __init__(self, tags: Iterable[str] = DEFAULT_TAGS, anchor_words: int = 8):
        self._tags = tuple(tags)
        self._anchor_words = anchor_words

    @property
    def tags(self) -> tuple[str, ...]:
        return self._tags

    def validate(self, source: str, candidate: str) -> ValidationResult:
        if not preserves_source(source, candidate, self._anchor_words):
            return ValidationResult(ok=False, reason=ValidationReason.SOURCE_MISMATCH)
        if not has_tagged_definitions(candidate, self._tags):
            return ValidationResult(ok=False, reason=ValidationReason.TAG_MISSING)
        return ACCEPTED
