"""Footnoter exception hierarchy.

Provides a structured exception tree so catch blocks can be specific
and callers can distinguish between different failure modes.
"""

from __future__ import annotations

from pathlib import Path


class FootnoterError(Exception):
    """Base for all Footnoter exceptions."""


class ModelError(FootnoterError):
    """Endpoint connection, timeout, protocol failures.

    ``status`` carries the HTTP (or embedded stream) status code when the
    endpoint reported one; transport-level failures leave it unset.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class ModelConnectionError(ModelError):
    """Raised when the endpoint cannot be reached or the stream breaks.

    Wraps the underlying httpx/transport error with a user-friendly
    message and preserves the original exception for debugging.
    """

    def __init__(self, message: str, original: Exception | None = None):
        super().__init__(message)
        self.original = original


class ModelAPIError(ModelError):
    """Raised for non-2xx responses and error events inside the stream."""


class ModelTimeoutError(ModelError):
    """Raised when no terminal stream event arrives in the allotted time."""


class RetryExhaustedError(FootnoterError):
    """Raised after every retry attempt of a model call failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(
            f"Exceeded max retries for API call ({attempts} attempts): {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


class ValidationError(FootnoterError):
    """A candidate annotation failed structural validation."""

    def __init__(self, reason, message: str = ""):
        super().__init__(message or f"Annotation rejected: {reason}")
        self.reason = reason


class EngineError(FootnoterError):
    """Orchestrator and chunk-processing failures."""


class ChunkFailedError(EngineError):
    """A chunk could not be annotated; aborts the whole document."""

    def __init__(self, index: int, last_error: BaseException | None):
        detail = str(last_error) if last_error is not None else "unknown error"
        super().__init__(f"Failed to annotate chunk {index}: {detail}")
        self.index = index
        self.last_error = last_error


class StateError(FootnoterError):
    """Persistence, checkpoint, and memory failures."""


class CacheError(StateError):
    """A checkpoint path is missing or cannot be written."""

    def __init__(self, message: str, path: Path | str):
        super().__init__(f"{message}: {path}")
        self.path = Path(path)
