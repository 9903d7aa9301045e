"""Manuscript loading and paragraph-aligned, token-budgeted chunking."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from footnoter.utils.tokens import TokenEstimator

logger = logging.getLogger(__name__)

PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
PARAGRAPH_SEPARATOR = "\n\n"

_SOURCE_DEFINITION_RE = re.compile(r"^\[\^([^\]]+)\]:\s*(.*)$")
_SOURCE_MARKER_RE = re.compile(r"\[\^([^\]]+)\]")
_UNSAFE_ID_RE = re.compile(r"[^A-Za-z0-9_-]+")


def source_note_id(raw_id: str) -> str:
    """Protected id for a note that was already present in the input."""
    return "src-" + (_UNSAFE_ID_RE.sub("_", raw_id.strip()) or "_")


def parse_source_notes(raw_text: str) -> tuple[str, dict[str, str]]:
    """Split ``[^id]: ...`` definitions (with indented continuations) from the body.

    Returns the remaining body text and the definitions keyed by their
    original id, continuation lines joined with single spaces.
    """
    body_lines: list[str] = []
    notes: dict[str, list[str]] = {}
    current_id: str | None = None

    for line in raw_text.splitlines():
        match = _SOURCE_DEFINITION_RE.match(line)
        if match:
            current_id = match.group(1).strip()
            notes[current_id] = [match.group(2).strip()]
            continue
        if current_id is not None and line[:1].isspace():
            content = line.strip()
            if content:
                notes[current_id].append(content)
            continue
        current_id = None
        body_lines.append(line)

    normalized = {
        note_id: " ".join(" ".join(parts).split())
        for note_id, parts in notes.items()
    }
    return "\n".join(body_lines).strip(), normalized


@dataclass(frozen=True)
class Manuscript:
    """Immutable input text plus the footnote definitions it already carried.

    ``body`` has every reference to an extracted note, and every numeric
    marker whether defined or not, rewritten to the protected
    ``[^src-...]`` form so generated numbering never collides with it.
    """

    raw: str
    body: str
    notes: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_text(cls, raw: str) -> Manuscript:
        body, notes = parse_source_notes(raw)

        def _protect(match: re.Match) -> str:
            raw_id = match.group(1).strip()
            # Bare numeric markers would collide with generated ids, defined or not.
            if raw_id in notes or raw_id.isdigit():
                return f"[^{source_note_id(raw_id)}]"
            return match.group(0)

        body = _SOURCE_MARKER_RE.sub(_protect, body)
        return cls(raw=raw, body=body, notes=MappingProxyType(dict(notes)))

    @classmethod
    def from_path(cls, path: Path) -> Manuscript:
        return cls.from_text(path.read_text(encoding="utf-8"))

    def notes_block(self) -> str:
        """Definition lines for the source notes, ordered by first reference."""
        if not self.notes:
            return ""
        by_protected = {source_note_id(raw_id): raw_id for raw_id in self.notes}
        order: list[str] = []
        for match in _SOURCE_MARKER_RE.finditer(self.body):
            raw_id = by_protected.get(match.group(1))
            if raw_id is not None and raw_id not in order:
                order.append(raw_id)
        order.extend(raw_id for raw_id in self.notes if raw_id not in order)
        return "\n".join(f"[^{source_note_id(raw_id)}]: {self.notes[raw_id]}" for raw_id in order)


@dataclass(frozen=True)
class Chunk:
    """A paragraph-aligned slice of the manuscript body."""

    index: int
    text: str
    tokens: int


class Chunker:
    """Greedy paragraph packer with a soft token ceiling.

    A safety margin is taken off every budget to leave room for the
    markers and definitions the model inserts. A paragraph that alone
    exceeds the effective budget becomes its own chunk, never split.
    """

    def __init__(
        self,
        estimator: TokenEstimator,
        margin_tokens: int = 250,
        min_tokens: int = 400,
    ):
        self._estimator = estimator
        self._margin = max(0, margin_tokens)
        self._min_tokens = max(1, min_tokens)

    @property
    def min_tokens(self) -> int:
        return self._min_tokens

    def effective_budget(self, max_tokens: int) -> int:
        return max(self._min_tokens, max_tokens - self._margin)

    def split(self, text: str, max_tokens: int) -> list[str]:
        effective = self.effective_budget(max_tokens)
        if effective < max_tokens:
            logger.debug(
                "Applying footnote margin: chunk tokens %d -> %d (margin %d)",
                max_tokens, effective, self._margin,
            )
        stripped = text.strip()
        if not stripped:
            return []

        chunks: list[str] = []
        current: list[str] = []
        for paragraph in PARAGRAPH_BREAK_RE.split(stripped):
            if current:
                # Cost the joined text: separators and rounding count against the budget.
                candidate = PARAGRAPH_SEPARATOR.join([*current, paragraph])
                if self._estimator.estimate(candidate) > effective:
                    chunks.append(PARAGRAPH_SEPARATOR.join(current))
                    current = []
            current.append(paragraph)
        if current:
            chunks.append(PARAGRAPH_SEPARATOR.join(current))
        return chunks

    def chunks(self, text: str, max_tokens: int) -> list[Chunk]:
        return [
            Chunk(index=i, text=part, tokens=self._estimator.estimate(part))
            for i, part in enumerate(self.split(text, max_tokens), start=1)
        ]
