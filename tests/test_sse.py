"""Tests for the pull-based event-stream decoder and text accumulator."""

from __future__ import annotations

import json

import pytest

from footnoter.exceptions import ModelAPIError
from footnoter.models.sse import DecodeState, SSEDecoder, TextAccumulator


def _record(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


def _drain(decoder: SSEDecoder) -> tuple[list[dict], DecodeState]:
    events = []
    while True:
        result = decoder.next()
        if result.state != DecodeState.RECORD:
            return events, result.state
        events.append(result.event)


class TestSSEDecoder:
    def test_needs_more_on_empty_buffer(self):
        assert SSEDecoder().next().state == DecodeState.NEED_MORE

    def test_record_split_across_feeds(self):
        decoder = SSEDecoder()
        line = _record({"type": "response.output_text.delta", "delta": "Hi"})
        decoder.feed(line[:10])
        assert decoder.next().state == DecodeState.NEED_MORE
        decoder.feed(line[10:])
        events, state = _drain(decoder)
        assert events == [{"type": "response.output_text.delta", "delta": "Hi"}]
        assert state == DecodeState.NEED_MORE

    def test_done_sentinel_ends_stream(self):
        decoder = SSEDecoder()
        decoder.feed(_record({"type": "a"}) + "data: [DONE]\n\n" + _record({"type": "b"}))
        events, state = _drain(decoder)
        assert [e["type"] for e in events] == ["a"]
        assert state == DecodeState.END
        assert decoder.next().state == DecodeState.END

    def test_skips_comments_and_other_fields(self):
        decoder = SSEDecoder()
        decoder.feed(": keep-alive\nevent: response.output_text.delta\n" + _record({"type": "x"}))
        events, _ = _drain(decoder)
        assert events == [{"type": "x"}]

    def test_malformed_records_are_skipped(self):
        decoder = SSEDecoder()
        decoder.feed("data: {not json\n\ndata: [1, 2]\n\n" + _record({"type": "ok"}))
        events, _ = _drain(decoder)
        assert events == [{"type": "ok"}]
        assert decoder.skipped == 2

    def test_crlf_line_endings(self):
        decoder = SSEDecoder()
        decoder.feed('data: {"type": "x"}\r\n\r\n')
        events, _ = _drain(decoder)
        assert events == [{"type": "x"}]

    def test_close_flushes_trailing_line(self):
        decoder = SSEDecoder()
        decoder.feed('data: {"type": "tail"}')
        assert decoder.next().state == DecodeState.NEED_MORE
        decoder.close()
        events, state = _drain(decoder)
        assert events == [{"type": "tail"}]
        assert state == DecodeState.END

    def test_feed_after_close_rejected(self):
        decoder = SSEDecoder()
        decoder.close()
        with pytest.raises(RuntimeError):
            decoder.feed("data: {}\n")


class TestTextAccumulator:
    def test_concatenates_deltas(self):
        acc = TextAccumulator()
        for delta in ("The ", "sun", " set."):
            acc.apply({"type": "response.output_text.delta", "delta": delta})
        assert acc.text == "The sun set."
        assert not acc.finished

    def test_done_text_used_only_without_deltas(self):
        acc = TextAccumulator()
        acc.apply({"type": "response.output_text.done", "text": "Full."})
        assert acc.text == "Full."

        acc = TextAccumulator()
        acc.apply({"type": "response.output_text.delta", "delta": "Part"})
        acc.apply({"type": "response.output_text.done", "text": "Part"})
        assert acc.text == "Part"

    def test_full_text_event_with_parts(self):
        acc = TextAccumulator()
        acc.apply({"type": "response.output_text", "content": [{"text": "a"}, "b"]})
        assert acc.text == "ab"

    def test_completed_marks_finished(self):
        acc = TextAccumulator()
        acc.apply({"type": "response.completed"})
        assert acc.finished

    def test_unknown_events_ignored(self):
        acc = TextAccumulator()
        acc.apply({"type": "response.created"})
        acc.apply({"type": "response.output_text.delta", "delta": 5})
        assert acc.text == ""

    def test_error_event_raises_with_status(self):
        acc = TextAccumulator()
        with pytest.raises(ModelAPIError, match="overloaded") as exc_info:
            acc.apply({"type": "error", "error": {"message": "overloaded"}, "status": 503})
        assert exc_info.value.status == 503

    def test_failed_response_uses_nested_error(self):
        acc = TextAccumulator()
        event = {"type": "response.failed", "response": {"error": {"code": "server_error"}}}
        with pytest.raises(ModelAPIError, match="server_error") as exc_info:
            acc.apply(event)
        assert exc_info.value.status is None
