from __future__ import annotations

from langbase_stream._abort import AbortController
from langbase_stream._config import StreamConfig
from langbase_stream._decoders import ChunkAggregator, LineDecoder, iter_sse_chunks
from langbase_stream._errors import (
    AbortError,
    APIError,
    EmptyBodyError,
    LangbaseStreamError,
    MalformedPayloadError,
    StreamConsumedError,
    UpstreamError,
)
from langbase_stream._sse import SSEDecoder, ServerSentEvent, iter_sse_events_from_text
from langbase_stream._streaming import EventStream, ReadableStream
from langbase_stream._types import ChunkStream
from langbase_stream.helpers import (
    StreamResponse,
    araise_for_status,
    get_text_part,
    handle_response_stream,
    raise_for_status,
)

__all__ = [
    "AbortController",
    "AbortError",
    "APIError",
    "ChunkAggregator",
    "ChunkStream",
    "EmptyBodyError",
    "EventStream",
    "LangbaseStreamError",
    "LineDecoder",
    "MalformedPayloadError",
    "ReadableStream",
    "SSEDecoder",
    "ServerSentEvent",
    "StreamConfig",
    "StreamConsumedError",
    "StreamResponse",
    "UpstreamError",
    "araise_for_status",
    "get_text_part",
    "handle_response_stream",
    "iter_sse_chunks",
    "iter_sse_events_from_text",
    "raise_for_status",
]

__version__ = "0.1.0"
