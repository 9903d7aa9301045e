"""Bounded memory of recently annotated terms.

Terms come from footnote definitions of accepted chunks and are fed back
into later prompts as a "do not re-annotate" hint. The store is ordered,
unique case-insensitively, capped, and written through to a JSON file
after each change so a crash loses at most one chunk's contribution.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from footnoter.engine.validation import DEFAULT_TAGS
from footnoter.footnotes import DEFINITION_LINE_RE
from footnoter.utils.files import atomic_write_text

logger = logging.getLogger(__name__)

TERM_SEPARATORS = (":", "：", " - ", " — ", " – ", "—", "–")


def extract_terms(text: str, tags: Iterable[str] = DEFAULT_TAGS) -> list[str]:
    """Read the annotated term from each footnote definition in ``text``."""
    allowed = tuple(tags)
    terms: list[str] = []
    for match in DEFINITION_LINE_RE.finditer(text):
        content = match.group(2).strip()
        for tag in allowed:
            if content.startswith(tag):
                content = content[len(tag):].lstrip()
                break
        if not content:
            continue
        for separator in TERM_SEPARATORS:
            idx = content.find(separator)
            if idx != -1:
                content = content[:idx]
                break
        term = content.strip()
        if term:
            terms.append(term)
    return terms


class VocabMemory:
    """Ordered, case-insensitive, capacity-bounded term store."""

    def __init__(self, path: Path, store_limit: int = 300, tags: Iterable[str] = DEFAULT_TAGS):
        self._path = path
        self._store_limit = max(1, store_limit)
        self._tags = tuple(tags)
        self._terms: list[str] = []
        self._lower: set[str] = set()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def terms(self) -> list[str]:
        return list(self._terms)

    def __len__(self) -> int:
        return len(self._terms)

    def load(self) -> None:
        """Read persisted terms; a missing or unreadable file means empty."""
        self._terms = []
        self._lower = set()
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load vocab memory %s: %s", self._path, e)
            return
        if not isinstance(data, list):
            logger.warning("Ignoring vocab memory %s: expected a JSON array", self._path)
            return
        self.add_terms(entry for entry in data if isinstance(entry, str))

    def save(self) -> None:
        payload = json.dumps(self._terms[-self._store_limit:], ensure_ascii=False, indent=2)
        try:
            atomic_write_text(self._path, payload + "\n")
        except OSError as e:
            logger.warning("Failed to save vocab memory %s: %s", self._path, e)

    def delete(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete vocab memory %s: %s", self._path, e)

    def recent(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        return self._terms[-limit:]

    def add_terms(self, terms: Iterable[str]) -> bool:
        updated = False
        for term in terms:
            clean = term.strip()
            if not clean:
                continue
            lower = clean.lower()
            if lower in self._lower:
                continue
            self._terms.append(clean)
            self._lower.add(lower)
            updated = True
        if len(self._terms) > self._store_limit:
            self._terms = self._terms[-self._store_limit:]
            self._lower = {t.lower() for t in self._terms}
        return updated

    def update_from_text(self, text: str) -> bool:
        """Add the terms annotated in ``text``; True when anything was new."""
        return self.add_terms(extract_terms(text, self._tags))
