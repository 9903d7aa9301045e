"""Tests for manuscript loading and paragraph chunking."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from footnoter.engine.chunker import Chunker, Manuscript, parse_source_notes, source_note_id
from footnoter.engine.validation import Validator
from footnoter.utils.tokens import TokenEstimator

VOCABULARY = ("the", "old", "house", "stood", "alone,", "quiet;", "rain", "fell!", "why?", "a", "lantern")


def _paragraph(words: int, word: str = "word") -> str:
    return " ".join([word] * words) + "."


class TestChunker:
    def test_effective_budget_applies_margin_with_floor(self):
        chunker = Chunker(TokenEstimator(), margin_tokens=250, min_tokens=400)
        assert chunker.effective_budget(2200) == 1950
        assert chunker.effective_budget(500) == 400

    def test_blank_text_has_no_chunks(self):
        chunker = Chunker(TokenEstimator())
        assert chunker.split("  \n\n ", 1000) == []

    def test_short_text_is_one_chunk(self):
        chunker = Chunker(TokenEstimator(), margin_tokens=0, min_tokens=1)
        text = "The sun set.\n\nThe moon rose."
        assert chunker.split(text, 1000) == [text]

    def test_splits_on_paragraph_boundaries(self):
        estimator = TokenEstimator()
        chunker = Chunker(estimator, margin_tokens=0, min_tokens=1)
        paragraphs = [_paragraph(40, w) for w in ("alpha", "beta", "gamma", "delta")]
        budget = estimator.estimate(paragraphs[0]) * 2
        chunks = chunker.split("\n\n".join(paragraphs), budget)
        assert len(chunks) == 2
        assert chunks[0] == "\n\n".join(paragraphs[:2])
        assert chunks[1] == "\n\n".join(paragraphs[2:])

    def test_oversized_paragraph_is_its_own_chunk(self):
        chunker = Chunker(TokenEstimator(), margin_tokens=0, min_tokens=1)
        big = _paragraph(500)
        chunks = chunker.split(f"tiny.\n\n{big}\n\nsmall.", 50)
        assert chunks == ["tiny.", big, "small."]

    def test_paragraph_separators_normalised(self):
        chunker = Chunker(TokenEstimator(), margin_tokens=0, min_tokens=1)
        assert chunker.split("one.\n   \n\ntwo.", 1000) == ["one.\n\ntwo."]

    def test_chunks_are_numbered_from_one(self):
        estimator = TokenEstimator()
        chunker = Chunker(estimator, margin_tokens=0, min_tokens=1)
        paragraphs = [_paragraph(60, w) for w in ("one", "two", "three")]
        chunks = chunker.chunks("\n\n".join(paragraphs), estimator.estimate(paragraphs[0]))
        assert [c.index for c in chunks] == [1, 2, 3]
        assert all(c.tokens == estimator.estimate(c.text) for c in chunks)

    @pytest.mark.parametrize("seed", range(40))
    def test_random_paragraphs_respect_budget_and_rejoin(self, seed: int):
        rng = random.Random(seed)
        estimator = TokenEstimator()
        chunker = Chunker(estimator, margin_tokens=0, min_tokens=1)
        paragraphs = [
            " ".join(rng.choice(VOCABULARY) for _ in range(rng.randint(1, 25))) + "."
            for _ in range(rng.randint(1, 30))
        ]
        text = "\n\n".join(paragraphs)
        budget = rng.randint(3, 80)

        chunks = chunker.chunks(text, budget)

        assert "\n\n".join(c.text for c in chunks) == text
        for chunk in chunks:
            assert chunk.tokens == estimator.estimate(chunk.text)
            if "\n\n" in chunk.text:
                assert chunk.tokens <= budget


class TestManuscript:
    def test_plain_text(self):
        manuscript = Manuscript.from_text("  Hello.\n\nWorld.  \n")
        assert manuscript.body == "Hello.\n\nWorld."
        assert manuscript.notes == {}
        assert manuscript.notes_block() == ""

    def test_parse_source_notes_joins_continuations(self):
        body, notes = parse_source_notes("Text[^a].\n\n[^a]: First line\n    second line\n")
        assert body == "Text[^a]."
        assert notes == {"a": "First line second line"}

    def test_existing_notes_are_protected(self):
        raw = "One[^2] two[^1].\n\n[^1]: Note one.\n[^2]: Note two."
        manuscript = Manuscript.from_text(raw)
        assert manuscript.body == "One[^src-2] two[^src-1]."
        assert manuscript.notes_block() == "[^src-2]: Note two.\n[^src-1]: Note one."

    def test_undefined_numeric_markers_are_protected(self):
        manuscript = Manuscript.from_text("Hello[^7] world[^note].")
        assert manuscript.body == "Hello[^src-7] world[^note]."
        assert manuscript.notes_block() == ""

    def test_undefined_marker_survives_validation(self):
        body = Manuscript.from_text("Hello[^7] world.").body
        candidate = "Hello[^src-7] world[^1].\n\n[^1]: 📚 world"
        assert Validator().validate(body, candidate).ok

    def test_unreferenced_notes_kept_after_referenced(self):
        manuscript = Manuscript.from_text("A[^b].\n\n[^a]: Alpha.\n[^b]: Beta.")
        assert manuscript.notes_block() == "[^src-b]: Beta.\n[^src-a]: Alpha."

    def test_source_note_id_sanitises(self):
        assert source_note_id("note 1") == "src-note_1"

    def test_from_path(self, tmp_path: Path):
        path = tmp_path / "book.md"
        path.write_text("Body.\n", encoding="utf-8")
        assert Manuscript.from_path(path).body == "Body."
