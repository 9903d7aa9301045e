"""Server-sent event decoding for streaming text responses.

The decoder is pull-based and knows nothing about the transport: callers
``feed()`` whatever text arrives and then call ``next()`` until it
reports ``NEED_MORE`` (wait for more input) or ``END`` (stream finished).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import StrEnum

from footnoter.exceptions import ModelAPIError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

TEXT_DELTA_EVENTS = frozenset({"response.output_text.delta"})
FULL_TEXT_EVENTS = frozenset({"response.output_text"})
TEXT_DONE_EVENTS = frozenset({"response.output_text.done"})
ERROR_EVENTS = frozenset({"response.error", "error", "response.failed"})
TERMINAL_EVENTS = frozenset({"response.completed"})


class DecodeState(StrEnum):
    NEED_MORE = "need_more"
    RECORD = "record"
    END = "end"


@dataclass(frozen=True)
class DecodeResult:
    state: DecodeState
    event: dict | None = None


_NEED_MORE = DecodeResult(DecodeState.NEED_MORE)
_END = DecodeResult(DecodeState.END)


class SSEDecoder:
    """Turn raw stream text into parsed ``data:`` records."""

    def __init__(self) -> None:
        self._buffer = ""
        self._closed = False
        self._ended = False
        self.skipped = 0

    def feed(self, text: str) -> None:
        if self._closed:
            raise RuntimeError("cannot feed a closed decoder")
        self._buffer += text

    def close(self) -> None:
        """Mark end of input; a trailing line without newline is still decoded."""
        self._closed = True

    def next(self) -> DecodeResult:
        while not self._ended:
            line = self._take_line()
            if line is None:
                return _END if self._closed else _NEED_MORE
            line = line.strip()
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):].strip()
            if payload == DONE_SENTINEL:
                self._ended = True
                break
            try:
                event = json.loads(payload)
            except json.JSONDecodeError:
                self.skipped += 1
                logger.debug("Skipping malformed stream record: %.80s", payload)
                continue
            if not isinstance(event, dict):
                self.skipped += 1
                continue
            return DecodeResult(DecodeState.RECORD, event)
        return _END

    def _take_line(self) -> str | None:
        newline = self._buffer.find("\n")
        if newline == -1:
            if self._closed and self._buffer:
                line, self._buffer = self._buffer, ""
                return line
            return None
        line = self._buffer[:newline]
        self._buffer = self._buffer[newline + 1:]
        return line.rstrip("\r")


def _text_parts(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
        return "".join(parts)
    return ""


class TextAccumulator:
    """Assemble output text from decoded response events."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._saw_delta = False
        self.finished = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def apply(self, event: dict) -> None:
        event_type = str(event.get("type") or event.get("object") or "")
        if event_type in TEXT_DELTA_EVENTS:
            delta = event.get("delta")
            if isinstance(delta, str):
                self._parts.append(delta)
                self._saw_delta = True
        elif event_type in FULL_TEXT_EVENTS:
            self._parts.append(_text_parts(
                event.get("content") or event.get("output_text") or event.get("text"),
            ))
        elif event_type in TEXT_DONE_EVENTS:
            if not self._saw_delta:
                self._parts.append(_text_parts(event.get("text")))
        elif event_type in ERROR_EVENTS:
            response = event.get("response")
            nested = response.get("error") if isinstance(response, dict) else None
            detail = event.get("error") or nested or event
            status = event.get("status")
            raise ModelAPIError(
                f"Model response error: {json.dumps(detail, ensure_ascii=False)}",
                status=status if isinstance(status, int) else None,
            )
        elif event_type in TERMINAL_EVENTS:
            self.finished = True
