import json

import httpx
import pytest

from conftest import collect
from langbase_stream._abort import AbortController
from langbase_stream._errors import StreamConsumedError, UpstreamError
from langbase_stream._streaming import EventStream, ReadableStream


async def agen(items):
    for item in items:
        yield item


@pytest.mark.asyncio
async def test_to_readable_stream_serializes_json_lines():
    chunks = [{"id": 1}, {"id": 2}, {"id": 3}]
    readable = EventStream(lambda: agen(chunks), AbortController()).to_readable_stream()

    assert isinstance(readable, ReadableStream)
    assert isinstance(readable, httpx.AsyncByteStream)

    parts = [part async for part in readable]

    assert parts == [b"{\"id\":1}\n", b"{\"id\":2}\n", b"{\"id\":3}\n"]
    assert [json.loads(p) for p in parts] == chunks


@pytest.mark.asyncio
async def test_to_readable_stream_keeps_non_ascii_text():
    readable = EventStream(lambda: agen(["héllo ✓"]), AbortController()).to_readable_stream()

    assert [part async for part in readable] == ["\"héllo ✓\"\n".encode("utf-8")]


def test_to_readable_stream_consumes_the_stream():
    stream = EventStream(lambda: agen([]), AbortController())

    stream.to_readable_stream()

    with pytest.raises(StreamConsumedError):
        stream.__aiter__()


@pytest.mark.asyncio
async def test_round_trip_through_from_readable_stream(make_response):
    response = make_response("data: {\"a\":1}\n\nevent: x\ndata: {\"b\":2}\n\n", "data: [DONE]\n\n")
    readable = EventStream.from_sse_response(response, AbortController()).to_readable_stream()

    again = EventStream.from_readable_stream(readable, AbortController())

    assert await collect(again) == [{"a": 1}, {"event": "x", "data": {"b": 2}}]


@pytest.mark.asyncio
async def test_readable_stream_as_httpx_response_body():
    readable = EventStream(lambda: agen([{"id": 1}, {"id": 2}]), AbortController()).to_readable_stream()
    response = httpx.Response(200, stream=readable)

    assert await response.aread() == b"{\"id\":1}\n{\"id\":2}\n"


@pytest.mark.asyncio
async def test_errors_propagate_out_of_the_byte_stream(make_response):
    response = make_response("data: {\"id\": 1}\n\n", "data: {\"error\": \"bad\"}\n\n")
    readable = EventStream.from_sse_response(response, AbortController()).to_readable_stream()
    parts = []

    with pytest.raises(UpstreamError, match="bad"):
        async for part in readable:
            parts.append(part)

    assert parts == [b"{\"id\":1}\n"]


@pytest.mark.asyncio
async def test_cancel_returns_the_underlying_iterator():
    closed = []

    async def source():
        try:
            for i in range(10):
                yield {"i": i}
        finally:
            closed.append(True)

    controller = AbortController()
    readable = EventStream(source, controller).to_readable_stream()

    async for part in readable:
        assert part == b"{\"i\":0}\n"
        break
    await readable.aclose()

    assert closed == [True]
