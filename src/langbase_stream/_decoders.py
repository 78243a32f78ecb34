"""
Incremental decoders that turn transport fragments into lines and
event-sized byte segments.
"""

from __future__ import annotations

import codecs
import re
from typing import AsyncIterable, AsyncIterator, Union

RawChunk = Union[str, bytes, bytearray, memoryview, None]

_NEWLINE_RE = re.compile(r"\r\n|[\n\r]")
_DOUBLE_NEWLINES = (b"\n\n", b"\r\r", b"\r\n\r\n")
# Longest pattern minus one: a match may straddle the previous scan end by this much.
_SCAN_OVERLAP = 3


def _as_bytes(chunk: RawChunk) -> bytes:
    if chunk is None:
        return b""
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if isinstance(chunk, (bytes, bytearray, memoryview)):
        return bytes(chunk)
    raise TypeError(f"Unexpected stream chunk of type {type(chunk).__name__}; expected str or bytes")


class LineDecoder:
    """
    Handles incrementally reading lines from text or bytes.

    Lines end in `\\r\\n`, `\\n` or `\\r`. A trailing `\\r` is held back
    until the next fragment shows whether it starts a `\\r\\n` pair.
    """

    def __init__(self) -> None:
        self.buffer: list[str] = []
        self.trailing_cr = False
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def _decode_text(self, chunk: RawChunk) -> str:
        if chunk is None:
            return ""
        if isinstance(chunk, str):
            return chunk
        if isinstance(chunk, (bytes, bytearray, memoryview)):
            return self._utf8.decode(bytes(chunk))
        raise TypeError(f"Unexpected stream chunk of type {type(chunk).__name__}; expected str or bytes")

    def decode(self, chunk: RawChunk) -> list[str]:
        return self._split(self._decode_text(chunk))

    def _split(self, text: str) -> list[str]:
        if self.trailing_cr:
            text = "\r" + text
            self.trailing_cr = False
        if text.endswith("\r"):
            self.trailing_cr = True
            text = text[:-1]

        if not text:
            return []

        trailing_newline = text[-1] in "\r\n"
        lines = _NEWLINE_RE.split(text)

        # split() leaves an empty entry after a trailing terminator
        if trailing_newline:
            lines.pop()

        if len(lines) == 1 and not trailing_newline:
            self.buffer.append(lines[0])
            return []

        if self.buffer:
            lines = ["".join(self.buffer) + lines[0], *lines[1:]]
            self.buffer = []

        if not trailing_newline:
            self.buffer = [lines.pop()]

        return lines

    def flush(self) -> list[str]:
        """
        Emit whatever is left at end of input.

        Bytes still held by the UTF-8 decoder are decoded first. A held back
        `\\r` terminates the buffered text, so at most one line comes out and
        the `\\r` is never emitted on its own afterwards.
        """
        tail = self._utf8.decode(b"", final=True)
        lines = self._split(tail) if tail else []

        if not self.buffer and not self.trailing_cr:
            return lines

        lines.append("".join(self.buffer))
        self.buffer = []
        self.trailing_cr = False
        return lines


def _decode_chunks(chunks: list[str]) -> list[str]:
    """Feed `chunks` through one LineDecoder without flushing. Used by tests."""
    decoder = LineDecoder()
    lines: list[str] = []
    for chunk in chunks:
        lines.extend(decoder.decode(chunk))
    return lines


def _find_double_newline(buffer: bytearray, start: int) -> int:
    """Index right after the earliest double newline at or after `start`, or -1."""
    best = -1
    for pattern in _DOUBLE_NEWLINES:
        idx = buffer.find(pattern, start)
        if idx != -1 and (best == -1 or idx + len(pattern) < best):
            best = idx + len(pattern)
    return best


class ChunkAggregator:
    """
    Groups raw bytes into segments that each end on an SSE event boundary.

    The scan resumes a few bytes before where the previous one stopped, so a
    large event arriving in many small fragments is scanned in linear time.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._scanned = 0

    def feed(self, chunk: RawChunk) -> list[bytes]:
        data = _as_bytes(chunk)
        if not data:
            return []
        self._buffer.extend(data)

        segments: list[bytes] = []
        while True:
            end = _find_double_newline(self._buffer, self._scanned)
            if end == -1:
                self._scanned = max(0, len(self._buffer) - _SCAN_OVERLAP)
                return segments
            segments.append(bytes(self._buffer[:end]))
            del self._buffer[:end]
            self._scanned = 0

    def flush(self) -> list[bytes]:
        if not self._buffer:
            return []
        rest = bytes(self._buffer)
        self._buffer.clear()
        self._scanned = 0
        return [rest]


async def iter_sse_chunks(source: AsyncIterable[RawChunk]) -> AsyncIterator[bytes]:
    """
    Iterate over `source` and yield full SSE chunks, i.e. yield whenever a
    double newline is encountered, then whatever is left at the end.
    """
    aggregator = ChunkAggregator()
    async for chunk in source:
        for segment in aggregator.feed(chunk):
            yield segment
    for segment in aggregator.flush():
        yield segment
