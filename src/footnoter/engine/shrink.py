"""Shrink fallback for chunks that keep failing.

Long chunks are the usual cause of timeouts and truncated (source
mismatch) answers. After enough failed attempts the chunk is re-split
with progressively smaller budgets and each piece is annotated on its
own; the pieces are then stitched back into one chunk result.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence

from footnoter.engine.chunker import PARAGRAPH_SEPARATOR, Chunker
from footnoter.engine.validation import ValidationReason
from footnoter.exceptions import ModelTimeoutError, RetryExhaustedError, ValidationError
from footnoter.footnotes import ensure_footnotes_at_end, renumber

logger = logging.getLogger(__name__)

# (sub-chunk text, attempt label) -> validated annotated text
SubchunkAnnotator = Callable[[str, str], Awaitable[str]]


def is_timeout(error: BaseException) -> bool:
    if isinstance(error, RetryExhaustedError):
        return is_timeout(error.last_error)
    return isinstance(error, (ModelTimeoutError, TimeoutError))


class ShrinkFallback:
    """Plans and runs the sub-chunk annotation path."""

    def __init__(
        self,
        chunker: Chunker,
        chunk_tokens: int,
        factors: Sequence[float] = (0.6, 0.4, 0.25),
        min_attempts: int = 2,
    ):
        self._chunker = chunker
        self._chunk_tokens = chunk_tokens
        self._factors = tuple(factors)
        self._min_attempts = min_attempts

    def should_trigger(self, error: BaseException, attempt: int) -> bool:
        if attempt < self._min_attempts:
            return False
        if isinstance(error, ValidationError):
            return error.reason == ValidationReason.SOURCE_MISMATCH
        return is_timeout(error)

    def plan(self, text: str) -> list[str]:
        """First split under a reduced budget that yields several pieces."""
        for factor in self._factors:
            limit = max(self._chunker.min_tokens, int(self._chunk_tokens * factor))
            if limit >= self._chunk_tokens:
                continue
            pieces = self._chunker.split(text, limit)
            if len(pieces) > 1 and any(piece.strip() for piece in pieces):
                logger.debug("Shrink factor %.2f -> %d sub-chunks", factor, len(pieces))
                return pieces
        return []

    async def run(self, subchunks: Sequence[str], annotate: SubchunkAnnotator) -> str:
        parts: list[str] = []
        next_id = 1
        for position, piece in enumerate(subchunks):
            annotated = await annotate(piece, f"sub{position}")
            local = renumber(ensure_footnotes_at_end(annotated), 1).text
            # Sub-chunks all number from 1; shift so ids stay distinct once joined.
            shifted = renumber(local, next_id)
            parts.append(shifted.text)
            next_id = shifted.next_id
        combined = ensure_footnotes_at_end(PARAGRAPH_SEPARATOR.join(parts))
        return renumber(combined, 1).text
