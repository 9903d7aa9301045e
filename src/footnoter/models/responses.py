"""Streaming caller for the OpenAI Responses endpoint.

Sends one POST per call with ``stream: true`` and assembles the output
text from the server-sent event stream. Every failure is mapped onto the
``footnoter.exceptions`` model errors so the retry layer can classify it.
"""

from __future__ import annotations

import asyncio
import json
import logging

import httpx

from footnoter.config import ModelConfig
from footnoter.exceptions import (
    ModelAPIError,
    ModelConnectionError,
    ModelTimeoutError,
)
from footnoter.models.base import StreamingCaller
from footnoter.models.sse import DecodeState, SSEDecoder, TextAccumulator

logger = logging.getLogger(__name__)


def _flatten_content(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return "\n".join(parts)
    return "" if content is None else str(content)


def build_payload(model: str, messages: list[dict], temperature: float) -> bytes:
    """Serialize chat-style messages into a streaming Responses request.

    System messages are merged into ``instructions``; every other turn
    becomes role-tagged input (or output, for assistant turns) content.
    """
    instructions: list[str] = []
    turns: list[dict] = []
    for message in messages:
        role = message.get("role") or "user"
        text = _flatten_content(message.get("content"))
        if role == "system":
            instructions.append(text)
            continue
        part_type = "output_text" if role == "assistant" else "input_text"
        turns.append({"role": role, "content": [{"type": part_type, "text": text}]})

    payload: dict = {
        "model": model,
        "input": turns,
        "temperature": temperature,
        "stream": True,
    }
    joined = "\n".join(instructions).strip()
    if joined:
        payload["instructions"] = joined
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


class ResponsesStreamingCaller(StreamingCaller):
    """Caller for ``POST {base_url}/responses`` with an SSE response body."""

    def __init__(
        self,
        config: ModelConfig,
        timeout_seconds: float,
        client: httpx.AsyncClient | None = None,
    ):
        self._config = config
        self._timeout = timeout_seconds
        self._url = f"{config.base_url.rstrip('/')}/responses"
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        api_key = config.api_key.strip()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        if config.organization:
            headers["OpenAI-Organization"] = config.organization
        self._headers = headers
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @staticmethod
    async def _http_error_body(response: httpx.Response, limit: int = 200) -> str:
        """Safely extract an HTTP error body from a streaming response."""
        try:
            body = await response.aread()
        except httpx.HTTPError:
            return "<response body unavailable>"
        return body.decode("utf-8", errors="replace")[:limit]

    async def call(self, payload: bytes) -> str:
        try:
            async with asyncio.timeout(self._timeout):
                return await self._stream(payload)
        except TimeoutError as e:
            raise ModelTimeoutError(
                f"Streaming request timed out after {self._timeout:.0f}s ({self.model})",
            ) from e
        except httpx.TimeoutException as e:
            raise ModelTimeoutError(
                f"Streaming request timed out ({self.model}): {e}",
            ) from e
        except httpx.ConnectError as e:
            raise ModelConnectionError(
                f"Cannot connect to model server at {self._url}: {e}",
                original=e,
            ) from e
        except (httpx.ReadError, httpx.RemoteProtocolError) as e:
            raise ModelConnectionError(
                f"Stream interrupted ({self.model}): {e}",
                original=e,
            ) from e

    async def _stream(self, payload: bytes) -> str:
        decoder = SSEDecoder()
        accumulator = TextAccumulator()
        async with self._client.stream(
            "POST", self._url, content=payload, headers=self._headers,
        ) as response:
            if response.is_error:
                body_text = await self._http_error_body(response)
                raise ModelAPIError(
                    f"Model API error {response.status_code}: {body_text}",
                    status=response.status_code,
                )
            async for text in response.aiter_text():
                decoder.feed(text)
                if self._drain(decoder, accumulator):
                    return accumulator.text
            decoder.close()
            self._drain(decoder, accumulator)

        if decoder.skipped:
            logger.debug("Skipped %d malformed stream records", decoder.skipped)
        return accumulator.text

    @staticmethod
    def _drain(decoder: SSEDecoder, accumulator: TextAccumulator) -> bool:
        """Apply every ready record; True once the stream has terminated."""
        while True:
            result = decoder.next()
            if result.state == DecodeState.NEED_MORE:
                return False
            if result.state == DecodeState.END:
                return True
            accumulator.apply(result.event)
            if accumulator.finished:
                return True

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
