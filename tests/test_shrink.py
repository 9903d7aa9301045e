"""Tests for the shrink fallback."""

from __future__ import annotations

from footnoter.engine.chunker import Chunker
from footnoter.engine.shrink import ShrinkFallback, is_timeout
from footnoter.engine.validation import ValidationReason
from footnoter.exceptions import (
    ModelAPIError,
    ModelTimeoutError,
    RetryExhaustedError,
    ValidationError,
)
from footnoter.utils.tokens import TokenEstimator


def _shrink(chunk_tokens: int = 200) -> ShrinkFallback:
    chunker = Chunker(TokenEstimator(), margin_tokens=0, min_tokens=10)
    return ShrinkFallback(chunker, chunk_tokens=chunk_tokens, factors=(0.6, 0.4, 0.25), min_attempts=2)


def _paragraphs(count: int, words: int = 30) -> str:
    return "\n\n".join(" ".join([f"p{i}"] * words) + "." for i in range(count))


class TestTrigger:
    def test_not_before_min_attempts(self):
        error = ValidationError(ValidationReason.SOURCE_MISMATCH)
        assert not _shrink().should_trigger(error, 1)
        assert _shrink().should_trigger(error, 2)

    def test_tag_failures_do_not_shrink(self):
        assert not _shrink().should_trigger(ValidationError(ValidationReason.TAG_MISSING), 3)

    def test_timeouts_shrink(self):
        assert _shrink().should_trigger(ModelTimeoutError("slow"), 2)
        wrapped = RetryExhaustedError(6, ModelTimeoutError("slow"))
        assert _shrink().should_trigger(wrapped, 2)

    def test_other_errors_do_not_shrink(self):
        assert not _shrink().should_trigger(ModelAPIError("bad", status=500), 3)
        assert not is_timeout(RetryExhaustedError(6, ModelAPIError("bad", status=503)))


class TestPlan:
    def test_splits_into_several_pieces(self):
        text = _paragraphs(6)
        pieces = _shrink().plan(text)
        assert len(pieces) > 1
        assert "\n\n".join(pieces) == text

    def test_single_paragraph_cannot_shrink(self):
        assert _shrink().plan(" ".join(["word"] * 400)) == []


class TestRun:
    async def test_reassembles_with_distinct_ids(self):
        replies = {
            "one.": "one[^1].\n\n[^1]: 📚 one",
            "two.": "two[^1] too[^2].\n\n[^1]: 📚 two\n[^2]: 📚 too",
        }
        labels = []

        async def annotate(text: str, label: str) -> str:
            labels.append(label)
            return replies[text]

        result = await _shrink().run(["one.", "two."], annotate)
        assert labels == ["sub0", "sub1"]
        assert result == (
            "one[^1].\n\ntwo[^2] too[^3].\n\n"
            "[^1]: 📚 one\n[^2]: 📚 two\n[^3]: 📚 too"
        )
