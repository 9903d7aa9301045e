"""Footnote bookkeeping: renumbering, relocation, and integrity checks.

Only generated numeric footnotes (``[^12]``) are handled here. A
definition is a line that starts with ``[^N]:``; every other ``[^N]``
occurrence is an inline marker. Source notes carried over from the input
use the ``[^src-...]`` form and are treated as ordinary text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum

_FOOTNOTE_RE = re.compile(r"\[\^(\d+)\]")
DEFINITION_LINE_RE = re.compile(r"^\[\^(\d+)\]:(.*)$", re.MULTILINE)


class OccurrenceKind(StrEnum):
    MARKER = "marker"
    DEFINITION = "definition"


@dataclass(frozen=True)
class FootnoteOccurrence:
    """One identifier occurrence, with the id it is rewritten to."""

    old_id: str
    new_id: int
    kind: OccurrenceKind
    start: int
    end: int

    def render(self) -> str:
        suffix = ":" if self.kind == OccurrenceKind.DEFINITION else ""
        return f"[^{self.new_id}]{suffix}"


@dataclass(frozen=True)
class RenumberResult:
    text: str
    next_id: int


def _scan(text: str) -> list[tuple[str, OccurrenceKind, int, int]]:
    """Return (id, kind, start, end) for every numeric footnote, in text order."""
    found = []
    for match in _FOOTNOTE_RE.finditer(text):
        start, end = match.span()
        at_line_start = start == 0 or text[start - 1] == "\n"
        if at_line_start and text.startswith(":", end):
            found.append((match.group(1), OccurrenceKind.DEFINITION, start, end + 1))
        else:
            found.append((match.group(1), OccurrenceKind.MARKER, start, end))
    return found


def plan_renumbering(text: str, start_id: int = 1) -> list[FootnoteOccurrence]:
    """Assign fresh ids in order of first occurrence, starting at ``start_id``."""
    mapping: dict[str, int] = {}
    occurrences: list[FootnoteOccurrence] = []
    for old_id, kind, start, end in _scan(text):
        if old_id not in mapping:
            mapping[old_id] = start_id + len(mapping)
        occurrences.append(FootnoteOccurrence(old_id, mapping[old_id], kind, start, end))
    return occurrences


def renumber(text: str, start_id: int = 1) -> RenumberResult:
    """Rewrite footnote ids sequentially from ``start_id`` in document order.

    Returns the rewritten text and the next unused id so subsequent chunks
    can continue the sequence.
    """
    occurrences = plan_renumbering(text, start_id)
    parts: list[str] = []
    cursor = 0
    for occ in occurrences:
        parts.append(text[cursor:occ.start])
        parts.append(occ.render())
        cursor = occ.end
    parts.append(text[cursor:])
    distinct = len({occ.old_id for occ in occurrences})
    return RenumberResult(text="".join(parts), next_id=start_id + distinct)


def split_definition_blocks(text: str) -> tuple[list[str], list[str]]:
    """Separate body lines from definition blocks.

    A block is a definition line plus the directly following non-blank,
    non-definition lines. A blank line or the next definition ends it.
    """
    body: list[str] = []
    blocks: list[str] = []
    current: list[str] | None = None
    for line in text.split("\n"):
        if DEFINITION_LINE_RE.match(line):
            if current:
                blocks.append("\n".join(current).rstrip())
            current = [line]
            continue
        if current is not None:
            if line.strip():
                current.append(line)
                continue
            blocks.append("\n".join(current).rstrip())
            current = None
            # Collapse the blank line left behind by a removed mid-body block.
            if body and not body[-1].strip():
                continue
        body.append(line)
    if current:
        blocks.append("\n".join(current).rstrip())
    return body, [block for block in blocks if block]


def strip_definitions(text: str) -> str:
    """Return the body text with every definition block removed."""
    body, _ = split_definition_blocks(text)
    return "\n".join(body)


def ensure_footnotes_at_end(text: str) -> str:
    """Move definition blocks found anywhere in ``text`` to a trailing block."""
    body_lines, blocks = split_definition_blocks(text)
    body = "\n".join(body_lines).rstrip()
    if not blocks:
        return body
    return f"{body}\n\n" + "\n".join(blocks)


@dataclass
class FootnoteTable:
    """Marker and definition ids present in a piece of text."""

    markers: list[str] = field(default_factory=list)
    definitions: list[str] = field(default_factory=list)

    @classmethod
    def from_text(cls, text: str) -> FootnoteTable:
        table = cls()
        for old_id, kind, _start, _end in _scan(text):
            target = table.definitions if kind == OccurrenceKind.DEFINITION else table.markers
            if old_id not in target:
                target.append(old_id)
        return table

    def dangling_markers(self) -> list[str]:
        defined = set(self.definitions)
        return [m for m in self.markers if m not in defined]

    def orphan_definitions(self) -> list[str]:
        referenced = set(self.markers)
        return [d for d in self.definitions if d not in referenced]

    @property
    def is_complete(self) -> bool:
        return not self.dangling_markers()


def strip_dangling_markers(text: str) -> tuple[str, list[str]]:
    """Remove inline markers whose id has no definition in ``text``."""
    dangling = set(FootnoteTable.from_text(text).dangling_markers())
    if not dangling:
        return text, []
    parts: list[str] = []
    cursor = 0
    for old_id, kind, start, end in _scan(text):
        if kind == OccurrenceKind.MARKER and old_id in dangling:
            parts.append(text[cursor:start])
            cursor = end
    parts.append(text[cursor:])
    return "".join(parts), sorted(dangling, key=int)
