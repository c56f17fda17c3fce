"""Tests for SSE decoding and ChatStream."""
import json

import pytest

from switchboard.errors import StreamingError
from switchboard.providers.pricing import TokenCounts
from switchboard.providers.streaming import ChatStream, SSEDecoder, iter_sse_events


async def as_chunks(*chunks: bytes):
    for chunk in chunks:
        yield chunk


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


def openai_frames(texts: list[str]) -> bytes:
    frames = [
        f"data: {json.dumps({'choices': [{'delta': {'content': t}}]})}\n\n" for t in texts
    ]
    frames.append("data: [DONE]\n\n")
    return "".join(frames).encode("utf-8")


class TestSSEDecoder:
    """Test line reassembly across arbitrary chunk boundaries."""

    def test_complete_lines(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"a": 1}\n\ndata: {"b": 2}\n\n') == ['{"a": 1}', '{"b": 2}']

    def test_line_split_across_chunks(self):
        """A data line cut mid-way is only emitted once complete."""
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"te') == []
        assert decoder.feed(b'xt": "hi"}\n') == ['{"text": "hi"}']

    def test_multibyte_character_split_across_chunks(self):
        """A UTF-8 sequence split between chunks decodes intact."""
        encoded = 'data: {"t": "héllo ✓"}\n'.encode("utf-8")
        cut = encoded.index("✓".encode("utf-8")) + 1
        decoder = SSEDecoder()
        payloads = decoder.feed(encoded[:cut]) + decoder.feed(encoded[cut:])
        assert payloads == ['{"t": "héllo ✓"}']

    def test_crlf_and_no_space(self):
        decoder = SSEDecoder()
        assert decoder.feed(b"data:{\"x\": 1}\r\n") == ['{"x": 1}']

    def test_ignores_comments_and_other_fields(self):
        decoder = SSEDecoder()
        assert decoder.feed(b": keep-alive\nevent: message\nid: 3\n\n") == []

    def test_flush_returns_unterminated_last_line(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"end": true}') == []
        assert decoder.flush() == ['{"end": true}']


class TestIterSSEEvents:
    """Test event iteration over chunked bodies."""

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 64])
    async def test_reassembles_for_any_chunk_size(self, size):
        """Any chunking of the body yields the same events in order."""
        texts = ["Hel", "lo, ", "wörld", " ✓"]
        body = openai_frames(texts)

        events = [e async for e in iter_sse_events(as_chunks(*split_every(body, size)))]

        assert "".join(e["choices"][0]["delta"]["content"] for e in events) == "".join(texts)

    async def test_stops_at_done_sentinel(self):
        body = b'data: {"n": 1}\n\ndata: [DONE]\n\ndata: {"n": 2}\n\n'
        events = [e async for e in iter_sse_events(as_chunks(body))]
        assert events == [{"n": 1}]

    async def test_skips_malformed_frames(self):
        body = b'data: {"n": 1}\n\ndata: {not json\n\ndata: {"n": 2}\n\n'
        events = [e async for e in iter_sse_events(as_chunks(body))]
        assert events == [{"n": 1}, {"n": 2}]

    async def test_no_sentinel_runs_to_end_of_body(self):
        body = b'data: {"n": 1}\n\ndata: [DONE]\n\ndata: {"n": 2}'
        events = [e async for e in iter_sse_events(as_chunks(body), done_sentinel=None)]
        assert events == [{"n": 1}, {"n": 2}]


class TestChatStream:
    """Test the single-use stream wrapper."""

    async def test_from_text_yields_one_chunk_with_tokens(self):
        stream = ChatStream.from_text("whole answer", TokenCounts(3, 4, 7))
        chunks = [c async for c in stream]
        assert chunks == ["whole answer"]
        assert stream.tokens.total == 7

    async def test_second_iteration_raises(self):
        stream = ChatStream.from_text("once")
        assert [c async for c in stream] == ["once"]
        with pytest.raises(StreamingError):
            async for _ in stream:
                pass
