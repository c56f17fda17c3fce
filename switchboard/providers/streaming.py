"""
Server-sent-event decoding for vendor streaming bodies.

Network chunks do not respect line or even UTF-8 character boundaries, so
the decoder keeps a text buffer and an incremental UTF-8 decoder between
feeds and only emits complete ``data:`` payloads.
"""
import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, Callable, Optional

from switchboard.errors import StreamingError
from switchboard.providers.pricing import TokenCounts

logger = logging.getLogger(__name__)


class SSEDecoder:
    """Incremental decoder turning raw bytes into SSE ``data`` payloads."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        # Last element is an incomplete line (or "" after a trailing newline)
        self._buffer = lines.pop()
        return [p for p in (self._parse_line(line) for line in lines) if p is not None]

    def flush(self) -> list[str]:
        """Drain whatever is left once the body has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        payload = self._parse_line(remainder)
        return [payload] if payload is not None else []

    @staticmethod
    def _parse_line(line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            return None
        payload = line[5:]
        if payload.startswith(" "):
            payload = payload[1:]
        return payload


async def iter_sse_events(
    chunks: AsyncIterable[bytes],
    done_sentinel: Optional[str] = "[DONE]",
) -> AsyncIterator[dict]:
    """Yield parsed JSON events from an SSE byte stream.

    Unparseable payloads are skipped so one bad frame doesn't end the
    stream. Iteration stops at ``done_sentinel`` or when the body ends.
    """
    decoder = SSEDecoder()
    async for chunk in chunks:
        for payload in decoder.feed(chunk):
            if done_sentinel is not None and payload.strip() == done_sentinel:
                return
            event = _load_event(payload)
            if event is not None:
                yield event

    for payload in decoder.flush():
        if done_sentinel is not None and payload.strip() == done_sentinel:
            return
        event = _load_event(payload)
        if event is not None:
            yield event


def _load_event(payload: str) -> Optional[dict]:
    if not payload.strip():
        return None
    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed SSE frame", extra={"frame": payload[:200]})
        return None
    return event if isinstance(event, dict) else None


class ChatStream:
    """A single-use async iterator of text deltas.

    ``tokens`` is filled in from vendor usage frames while the stream is
    consumed and is final once iteration ends.
    """

    def __init__(self, factory: Callable[[TokenCounts], AsyncIterator[str]]):
        self.tokens = TokenCounts()
        self._factory = factory
        self._consumed = False
        self._iterator = None

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise StreamingError("Stream has already been consumed")
        self._consumed = True
        self._iterator = self._factory(self.tokens)
        return self._iterator

    async def aclose(self):
        """Stop the stream early, releasing the vendor connection."""
        if self._iterator is not None:
            await self._iterator.aclose()

    @classmethod
    def from_text(cls, text: str, tokens: Optional[TokenCounts] = None) -> "ChatStream":
        """Wrap a complete response as a one-chunk stream."""

        async def single(counts: TokenCounts) -> AsyncIterator[str]:
            if tokens is not None:
                counts.input, counts.output, counts.total = tokens.input, tokens.output, tokens.total
            if text:
                yield text

        return cls(single)
