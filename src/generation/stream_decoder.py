"""
Server-Sent-Events decoder for provider streams.

Turns raw bytes into StreamChunk values:
- assembles lines across transport chunk boundaries
- keeps only `data: ` payloads, honours the `[DONE]` sentinel
- JSON-decodes each payload and pulls out the content delta or error message
- silently skips lines that are not valid JSON
"""

import asyncio
import codecs
import json
from typing import Any, AsyncIterator, Callable, List, Optional

from common.errors import StreamIdleTimeout
from common.logging import get_logger
from common.models import StreamChunk
from common.payload import dig, error_message

logger = get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

DeltaExtractor = Callable[[Any], Optional[str]]


def default_extract_delta(payload: Any) -> Optional[str]:
    """Content delta for the normalized, OpenAI-compatible and Gemini shapes."""
    for path in (
        ("content",),
        ("choices", 0, "delta", "content"),
        ("candidates", 0, "content", "parts", 0, "text"),
    ):
        value = dig(payload, *path)
        if isinstance(value, str) and value:
            return value
    return None


class SSEDecoder:
    """Incremental `data:` line decoder. One instance per stream."""

    def __init__(
        self,
        extract_delta: DeltaExtractor = default_extract_delta,
        extract_error: DeltaExtractor = error_message,
    ):
        self.extract_delta = extract_delta
        self.extract_error = extract_error
        self.done = False
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: Any) -> List[StreamChunk]:
        """Consume the next transport fragment and return the chunks it completes."""
        text = self._utf8.decode(data) if isinstance(data, (bytes, bytearray)) else data
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._decode_lines(lines)

    def flush(self) -> List[StreamChunk]:
        """Process whatever is left once the connection has closed."""
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        return self._decode_lines([tail])

    def _decode_lines(self, lines: List[str]) -> List[StreamChunk]:
        chunks: List[StreamChunk] = []
        for line in lines:
            if self.done:
                break
            chunk = self._decode_line(line)
            if chunk is not None:
                chunks.append(chunk)
        return chunks

    def _decode_line(self, line: str) -> Optional[StreamChunk]:
        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):].strip()
        if not payload:
            return None

        if payload == DONE_SENTINEL:
            self.done = True
            return StreamChunk.end()

        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            return None

        message = self.extract_error(parsed)
        if message:
            return StreamChunk.error(message)

        text = self.extract_delta(parsed)
        if text:
            return StreamChunk.content(text)
        return None


async def _next_with_timeout(iterator: AsyncIterator[Any], idle_timeout: Optional[float]) -> Any:
    if idle_timeout is None:
        return await iterator.__anext__()
    try:
        return await asyncio.wait_for(iterator.__anext__(), timeout=idle_timeout)
    except asyncio.TimeoutError:
        raise StreamIdleTimeout(
            "Provider stream stalled",
            f"No data received from provider for {idle_timeout:g} seconds",
        ) from None


async def decode_stream(
    byte_chunks: AsyncIterator[Any],
    decoder: Optional[SSEDecoder] = None,
    idle_timeout: Optional[float] = None,
) -> AsyncIterator[StreamChunk]:
    """
    Decode a provider byte stream into StreamChunk values.

    Exactly one END chunk is produced: when `[DONE]` is seen, or when the byte
    stream closes without it.

    Raises:
        StreamIdleTimeout: no bytes arrived within idle_timeout seconds
    """
    decoder = decoder or SSEDecoder()
    iterator = byte_chunks.__aiter__()

    while not decoder.done:
        try:
            data = await _next_with_timeout(iterator, idle_timeout)
        except StopAsyncIteration:
            for chunk in decoder.flush():
                yield chunk
            break
        for chunk in decoder.feed(data):
            yield chunk

    if not decoder.done:
        logger.info(event="stream_closed_without_done")
        yield StreamChunk.end()
