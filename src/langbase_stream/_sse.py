"""
Parser for Server-Sent Events (SSE) that accumulates field lines into events.
Works line by line so it can sit behind an incremental LineDecoder.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from langbase_stream._decoders import LineDecoder


@dataclass(frozen=True, slots=True)
class ServerSentEvent:
    """
    Data structure representing a single Server-Sent Event (SSE).
    `raw` keeps every line that contributed to the event, for diagnostics.
    """

    event: str | None
    data: str
    raw: list[str] = field(default_factory=list)


class SSEDecoder:
    """
    State machine fed with one complete line at a time.

    Returns a ServerSentEvent when a blank line closes a block that carried
    an event name or at least one data line, and None otherwise.
    """

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []
        self._chunks: list[str] = []

    def decode(self, line: str) -> ServerSentEvent | None:
        if line.endswith("\r"):
            line = line[:-1]

        if not line:
            # stray blank line, nothing accumulated
            if not self._event and not self._data:
                return None

            sse = ServerSentEvent(event=self._event, data="\n".join(self._data), raw=self._chunks)

            self._event = None
            self._data = []
            self._chunks = []

            return sse

        self._chunks.append(line)

        if line.startswith(":"):
            return None

        fieldname, _, value = line.partition(":")

        if value.startswith(" "):
            value = value[1:]

        if fieldname == "event":
            self._event = value
        elif fieldname == "data":
            self._data.append(value)

        return None


def iter_sse_events_from_text(text: str) -> Iterator[ServerSentEvent]:
    """
    Parse SSE events from an already buffered text block.

    Args:
        text: The raw string containing one or multiple SSE events.

    Yields:
        ServerSentEvent objects, in wire order. As with a streamed body, a
        block that is not closed by a blank line is not emitted.
    """
    line_decoder = LineDecoder()
    sse_decoder = SSEDecoder()

    for line in [*line_decoder.decode(text), *line_decoder.flush()]:
        sse = sse_decoder.decode(line)
        if sse is not None:
            yield sse
