"""Core orchestrator loop.

Drives one manuscript through: detect genre -> chunk -> annotate each
chunk (retry / shrink) -> combine and renumber -> write output.

Chunks run strictly one after another: vocabulary memory and footnote
numbering both depend on document order. Each chunk moves through an
explicit state machine::

    PENDING -> CACHE_HIT -> SUCCEEDED
    PENDING -> ANNOTATING -> SUCCEEDED
                ANNOTATING -> ANNOTATING        (retry)
                ANNOTATING -> SHRINKING -> SUCCEEDED
                SHRINKING  -> ANNOTATING        (attempts left)
                ANNOTATING | SHRINKING -> FAILED
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from footnoter.collaborators import Packager
from footnoter.config import Config
from footnoter.engine.chunker import PARAGRAPH_SEPARATOR, Chunk, Chunker, Manuscript
from footnoter.engine.shrink import ShrinkFallback
from footnoter.engine.validation import ValidationReason, ValidationResult, Validator
from footnoter.events.bus import Event, EventBus
from footnoter.events.types import (
    CHUNK_CACHE_HIT,
    CHUNK_COMPLETED,
    CHUNK_FAILED,
    CHUNK_RETRYING,
    CHUNK_SHRINKING,
    CHUNK_STARTED,
    DOCUMENT_COMPLETED,
    DOCUMENT_STARTED,
)
from footnoter.exceptions import (
    CacheError,
    ChunkFailedError,
    ModelError,
    RetryExhaustedError,
    ValidationError,
)
from footnoter.footnotes import ensure_footnotes_at_end, renumber, strip_dangling_markers
from footnoter.models.base import StreamingCaller
from footnoter.models.responses import build_payload
from footnoter.models.retry import RetryPolicy, call_with_backoff, is_retryable_error
from footnoter.prompts.assembler import DEFAULT_GENRE, PromptAssembler
from footnoter.state.chunk_cache import ChunkCache
from footnoter.state.vocab_memory import VocabMemory
from footnoter.utils.files import atomic_write_text
from footnoter.utils.tokens import TokenEstimator

logger = logging.getLogger(__name__)

OUTPUT_SUFFIX = "_annotated"
VOCAB_MEMORY_FILE = "vocab_memory.json"
GENRE_TEMPERATURE = 0.3

_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9._-]+")

# Failures a chunk can recover from by retrying or shrinking.
RECOVERABLE_ERRORS = (ModelError, RetryExhaustedError, ValidationError)


class ChunkState(StrEnum):
    PENDING = "pending"
    CACHE_HIT = "cache_hit"
    ANNOTATING = "annotating"
    SHRINKING = "shrinking"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class AnnotationAttempt:
    """One candidate produced for a chunk (or sub-chunk)."""

    chunk_index: int
    label: str
    candidate: str = ""
    result: ValidationResult | None = None


@dataclass
class ChunkOutcome:
    index: int
    state: ChunkState = ChunkState.PENDING
    attempts: int = 0
    shrunk: bool = False
    history: list[AnnotationAttempt] = field(default_factory=list)


def cache_dir_for(cache_root: Path, input_path: Path) -> Path:
    """Per-input cache directory, e.g. ``.cache/My_Book.cache``."""
    safe_name = _UNSAFE_NAME_RE.sub("_", input_path.stem or "input")
    return cache_root / f"{safe_name}.cache"


def next_available_path(path: Path) -> Path:
    counter = 1
    while True:
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


def resolve_output_path(input_path: Path, output_path: Path | None, force: bool) -> Path:
    target = output_path or input_path.with_name(f"{input_path.stem}{OUTPUT_SUFFIX}.md")
    if target.exists():
        if force:
            logger.warning("Overwriting existing file: %s", target.name)
        else:
            target = next_available_path(target)
            logger.warning("Output exists; writing to %s instead", target.name)
    return target


class Orchestrator:
    """Annotates one manuscript end to end.

    Configuration is immutable and threaded in; the streaming caller,
    event bus, packager and sleep function are injectable so the whole
    pipeline can run against fakes.
    """

    def __init__(
        self,
        config: Config,
        caller: StreamingCaller,
        *,
        prompts: PromptAssembler | None = None,
        validator: Validator | None = None,
        event_bus: EventBus | None = None,
        packager: Packager | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config
        self._caller = caller
        self._prompts = prompts or PromptAssembler()
        self._validator = validator or Validator()
        self._events = event_bus or EventBus()
        self._packager = packager
        self._sleep = sleep
        self._policy = RetryPolicy.from_retry_config(config.retry)
        estimator = TokenEstimator(
            model=config.model.model, cache_size=config.chunking.token_cache_size,
        )
        self._chunker = Chunker(
            estimator,
            margin_tokens=config.chunking.margin_tokens,
            min_tokens=config.chunking.min_effective_tokens,
        )
        self._shrink = ShrinkFallback(
            self._chunker,
            chunk_tokens=config.chunking.chunk_tokens,
            factors=config.chunking.shrink_factors,
            min_attempts=config.retry.shrink_after_attempts,
        )
        self._document = ""
        self._guidance = ""
        self._cache: ChunkCache | None = None
        self._memory: VocabMemory | None = None

    @property
    def chunker(self) -> Chunker:
        return self._chunker

    @property
    def events(self) -> EventBus:
        return self._events

    def _emit(self, event_type: str, **data) -> None:
        self._events.emit(Event(event_type=event_type, document=self._document, data=data))

    # ------------------------------------------------------------------
    # Document lifecycle
    # ------------------------------------------------------------------

    async def run(
        self,
        input_path: Path,
        *,
        output_path: Path | None = None,
        resume: bool = True,
        force: bool = False,
        genre: str | None = None,
    ) -> Path:
        """Annotate ``input_path`` and return the path of the written output."""
        input_path = input_path.resolve()
        manuscript = Manuscript.from_path(input_path)
        base_dir = cache_dir_for(self._config.cache_root, input_path)
        self._document = input_path.name
        self._cache = ChunkCache(base_dir / "chunks")
        self._cache.ensure()
        self._memory = VocabMemory(
            base_dir / VOCAB_MEMORY_FILE,
            store_limit=self._config.memory.store_limit,
            tags=self._validator.tags,
        )
        self._memory.load()
        target = resolve_output_path(input_path, output_path, force)

        if genre is None:
            genre = await self.detect_genre(manuscript.body)
        self._guidance = self._prompts.genre_guidance(genre)
        logger.info("Genre: %s | Guidance: %s", genre, self._guidance)

        chunks = self._chunker.chunks(manuscript.body, self._config.chunking.chunk_tokens)
        logger.info("Total chunks: %d", len(chunks))
        self._emit(DOCUMENT_STARTED, chunks=len(chunks), genre=genre)

        for chunk in chunks:
            await self.process_chunk(chunk, len(chunks), resume=resume)

        logger.info("Combining chunks & renumbering footnotes across the document...")
        combined = self.combine_chunks(len(chunks))
        notes = manuscript.notes_block()
        if notes:
            combined = f"{combined}\n\n{notes}" if combined else notes
        try:
            atomic_write_text(target, combined)
        except OSError as e:
            raise CacheError(f"Cannot write output ({e.strerror})", target) from e
        logger.info("Annotated output saved to: %s", target)

        self._memory.save()
        self._memory.delete()
        if not self._config.cache.keep_chunks:
            self._cache.remove()
            _remove_if_empty(base_dir)

        result = target
        if self._packager is not None:
            result = self._packager.package(target)
        self._emit(DOCUMENT_COMPLETED, output=str(result), chunks=len(chunks))
        return result

    async def detect_genre(self, text: str) -> str:
        """Classify the opening of the manuscript; falls back to ``other``."""
        payload = build_payload(
            self._caller.model, self._prompts.genre_messages(text), GENRE_TEMPERATURE,
        )
        try:
            reply = await call_with_backoff(
                lambda: self._caller.call(payload), policy=self._policy, sleep=self._sleep,
            )
        except RECOVERABLE_ERRORS as e:
            logger.warning("Genre detection failed, using '%s': %s", DEFAULT_GENRE, e)
            return DEFAULT_GENRE
        return self._prompts.parse_genre(reply)

    def combine_chunks(self, count: int) -> str:
        """Read every checkpoint in order and assign document-wide footnote ids."""
        cache = self._require_cache()
        parts: list[str] = []
        next_id = 1
        for index in range(1, count + 1):
            text = ensure_footnotes_at_end(cache.read(index))
            text, dangling = strip_dangling_markers(text)
            if dangling:
                logger.warning(
                    "Chunk %d: removed markers without definitions: %s",
                    index, ", ".join(dangling),
                )
            result = renumber(text, next_id)
            parts.append(result.text)
            next_id = result.next_id
        return PARAGRAPH_SEPARATOR.join(parts)

    # ------------------------------------------------------------------
    # Chunk state machine
    # ------------------------------------------------------------------

    async def process_chunk(self, chunk: Chunk, total: int, *, resume: bool = True) -> ChunkOutcome:
        cache = self._require_cache()
        outcome = ChunkOutcome(index=chunk.index)
        max_attempts = self._config.retry.max_chunk_attempts
        last_error: BaseException | None = None
        subchunks: list[str] = []

        while True:
            state = outcome.state

            if state == ChunkState.PENDING:
                if resume and cache.has(chunk.index):
                    outcome.state = ChunkState.CACHE_HIT
                else:
                    outcome.state = ChunkState.ANNOTATING
                    logger.info("[%d/%d] annotating...", chunk.index, total)
                    self._emit(CHUNK_STARTED, index=chunk.index, tokens=chunk.tokens)

            elif state == ChunkState.CACHE_HIT:
                logger.info("[%d/%d] cache hit -> skip", chunk.index, total)
                self._remember(cache.read(chunk.index))
                self._emit(CHUNK_CACHE_HIT, index=chunk.index)
                return outcome

            elif state == ChunkState.ANNOTATING:
                outcome.attempts += 1
                label = f"try{outcome.attempts}"
                try:
                    annotated = await self._attempt(chunk.index, chunk.text, label, outcome)
                except RECOVERABLE_ERRORS as error:
                    last_error = error
                    logger.warning(
                        "annotate retry %d/%d due to: %s", outcome.attempts, max_attempts, error,
                    )
                    outcome.state = self._after_failure(chunk, error, outcome.attempts)
                    if outcome.state == ChunkState.SHRINKING:
                        subchunks = self._shrink.plan(chunk.text)
                    if outcome.state == ChunkState.ANNOTATING:
                        await self._pause(chunk.index, outcome.attempts, error)
                    continue
                self._commit(chunk.index, annotated)
                outcome.state = ChunkState.SUCCEEDED

            elif state == ChunkState.SHRINKING:
                outcome.shrunk = True
                logger.info(
                    "[%d/%d] shrinking chunk -> %d subchunks", chunk.index, total, len(subchunks),
                )
                self._emit(CHUNK_SHRINKING, index=chunk.index, subchunks=len(subchunks))
                try:
                    combined = await self._shrink.run(
                        subchunks,
                        lambda text, label: self._annotate_subchunk(chunk.index, text, label, outcome),
                    )
                except RECOVERABLE_ERRORS as error:
                    last_error = error
                    logger.warning("Fallback subchunk annotation failed: %s", error)
                    if isinstance(error, ModelError) and not is_retryable_error(error):
                        outcome.state = ChunkState.FAILED
                    elif outcome.attempts < max_attempts:
                        outcome.state = ChunkState.ANNOTATING
                        await self._pause(chunk.index, outcome.attempts, error)
                    else:
                        outcome.state = ChunkState.FAILED
                    continue
                self._commit(chunk.index, combined)
                outcome.state = ChunkState.SUCCEEDED

            elif state == ChunkState.SUCCEEDED:
                self._emit(
                    CHUNK_COMPLETED,
                    index=chunk.index, attempts=outcome.attempts, shrunk=outcome.shrunk,
                )
                return outcome

            else:
                self._emit(CHUNK_FAILED, index=chunk.index, error=str(last_error))
                raise ChunkFailedError(chunk.index, last_error)

    def _after_failure(self, chunk: Chunk, error: BaseException, attempt: int) -> ChunkState:
        if isinstance(error, ModelError) and not is_retryable_error(error):
            return ChunkState.FAILED
        if self._shrink.should_trigger(error, attempt):
            if self._shrink.plan(chunk.text):
                return ChunkState.SHRINKING
            logger.info("Chunk %d cannot be split further", chunk.index)
        if attempt < self._config.retry.max_chunk_attempts:
            return ChunkState.ANNOTATING
        return ChunkState.FAILED

    async def _pause(self, index: int, attempt: int, error: BaseException) -> None:
        delay = 1.2 * attempt + random.uniform(0.0, 0.5)
        self._emit(CHUNK_RETRYING, index=index, attempt=attempt, error=str(error), delay=delay)
        await self._sleep(delay)

    async def _annotate_subchunk(
        self,
        index: int,
        text: str,
        label: str,
        outcome: ChunkOutcome,
    ) -> str:
        """Single-chunk path for one shrink piece, with its own attempts."""
        max_attempts = self._config.retry.max_chunk_attempts
        for attempt in range(1, max_attempts + 1):
            attempt_label = label if attempt == 1 else f"{label}_try{attempt}"
            try:
                annotated = await self._attempt(index, text, attempt_label, outcome)
            except RECOVERABLE_ERRORS as error:
                if attempt >= max_attempts or (
                    isinstance(error, ModelError) and not is_retryable_error(error)
                ):
                    raise
                logger.warning("subchunk %s retry %d/%d due to: %s", label, attempt, max_attempts, error)
                await self._pause(index, attempt, error)
                continue
            return annotated
        raise RuntimeError("subchunk attempts exhausted without a result")

    async def _attempt(self, index: int, text: str, label: str, outcome: ChunkOutcome) -> str:
        """Call the model once (with network retries) and validate the answer."""
        memory = self._require_memory()
        messages = self._prompts.annotation_messages(
            text, self._guidance, memory.recent(self._config.memory.prompt_limit),
        )
        payload = build_payload(self._caller.model, messages, self._config.model.temperature)
        content = await call_with_backoff(
            lambda: self._caller.call(payload), policy=self._policy, sleep=self._sleep,
        )
        attempt = AnnotationAttempt(chunk_index=index, label=label)
        outcome.history.append(attempt)
        if not content.strip():
            attempt.result = ValidationResult(ok=False, reason=ValidationReason.SOURCE_MISMATCH)
            raise ValidationError(ValidationReason.SOURCE_MISMATCH, "Empty response from model")

        candidate = ensure_footnotes_at_end(content)
        attempt.candidate = candidate
        attempt.result = self._validator.validate(text, candidate)
        if not attempt.result.ok:
            self._require_cache().record_failure(index, label, candidate, attempt.result.reason)
            raise ValidationError(attempt.result.reason, attempt.result.message)
        return candidate

    def _commit(self, index: int, annotated: str) -> None:
        text = renumber(ensure_footnotes_at_end(annotated), 1).text
        self._require_cache().write(index, text)
        self._remember(text)

    def _remember(self, text: str) -> None:
        memory = self._require_memory()
        if memory.update_from_text(text):
            memory.save()

    def _require_cache(self) -> ChunkCache:
        if self._cache is None:
            raise RuntimeError("orchestrator has no active document")
        return self._cache

    def _require_memory(self) -> VocabMemory:
        if self._memory is None:
            raise RuntimeError("orchestrator has no active document")
        return self._memory

    def bind(self, cache: ChunkCache, memory: VocabMemory, guidance: str = "", document: str = "") -> None:
        """Attach checkpoint and memory stores without running a whole document."""
        self._cache = cache
        self._memory = memory
        self._guidance = guidance or self._prompts.genre_guidance(DEFAULT_GENRE)
        self._document = document


def _remove_if_empty(directory: Path) -> None:
    try:
        directory.rmdir()
    except OSError:
        # Not empty (kept files) or already gone.
        return
