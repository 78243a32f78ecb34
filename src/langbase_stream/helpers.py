from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from langbase_stream._abort import AbortController
from langbase_stream._config import StreamConfig
from langbase_stream._errors import parse_error_response
from langbase_stream._streaming import EventStream, ReadableStream
from langbase_stream._types import ChunkStream

THREAD_ID_HEADER = "lb-thread-id"
REQUEST_ID_HEADER = "lb-request-id"


@dataclass(slots=True)
class StreamResponse:
    stream: ReadableStream
    thread_id: Optional[str] = None
    raw_response: Optional[dict[str, Any]] = None


def _extract_text_from_content_blocks(obj: Any) -> str:
    """Join the text of `text` blocks, skipping thinking and other block types."""
    if not isinstance(obj, list):
        return ""

    parts: list[str] = []
    for block in obj:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text":
            txt = block.get("text")
            if isinstance(txt, str) and txt:
                parts.append(txt)
    return "".join(parts)


def get_text_part(chunk: ChunkStream | dict[str, Any]) -> str:
    """
    Text content of the first choice's delta.

    Args:
        chunk: A streamed chunk, either raw (dict) or already validated.

    Returns:
        The delta text, or an empty string when the chunk carries none.
    """
    if not isinstance(chunk, ChunkStream):
        chunk = ChunkStream.model_validate(chunk)
    if not chunk.choices:
        return ""

    content = chunk.choices[0].delta.content
    if isinstance(content, str):
        return content
    return _extract_text_from_content_blocks(content)


def raise_for_status(response: httpx.Response) -> None:
    """Raise a structured APIError for a non-2xx response."""
    if 200 <= response.status_code < 300:
        return

    body_text: str | None = None
    try:
        body_text = response.text
    except httpx.ResponseNotRead:
        body_text = None

    raise parse_error_response(
        status_code=response.status_code,
        body_text=body_text or "",
        content_type=response.headers.get("content-type", ""),
        request_id=response.headers.get(REQUEST_ID_HEADER),
    )


async def araise_for_status(response: httpx.Response) -> None:
    """Async version of raise_for_status(); reads a streamed error body first."""
    if 200 <= response.status_code < 300:
        return
    await response.aread()
    raise_for_status(response)


def handle_response_stream(
    response: httpx.Response,
    *,
    raw_response: bool = False,
    controller: AbortController | None = None,
    config: StreamConfig | None = None,
) -> StreamResponse:
    """
    Turn an SSE response into a newline-delimited JSON byte stream.

    Args:
        response: The streaming response of a run request.
        raw_response: Also return the response headers.
        controller: Optional AbortController; a fresh one is created if omitted.
        config: Optional StreamConfig passed through to the decoder.

    Returns:
        StreamResponse with the byte stream, the thread id header and,
        when requested, `{"headers": {...}}`.

    Raises:
        APIError: If the response status is not 2xx.
        EmptyBodyError: If the response has no body.
    """
    raise_for_status(response)

    controller = controller or AbortController()
    stream = EventStream.from_sse_response(response, controller, config=config).to_readable_stream()

    result = StreamResponse(stream=stream, thread_id=response.headers.get(THREAD_ID_HEADER))
    if raw_response:
        result.raw_response = {"headers": dict(response.headers)}
    return result
