from typing import Any, AsyncIterator, Callable

import httpx
import pytest


class FragmentStream(httpx.AsyncByteStream):
    """Async byte stream that hands out pre-split fragments, one per read."""

    def __init__(self, fragments: list[Any]) -> None:
        self.fragments = list(fragments)
        self.reads = 0
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for fragment in self.fragments:
            self.reads += 1
            yield fragment.encode("utf-8") if isinstance(fragment, str) else fragment

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def make_response() -> Callable[..., httpx.Response]:
    """Factory de httpx.Response en memoria cuyo body llega en los fragmentos indicados."""

    def _make(*fragments: Any, status_code: int = 200, headers: dict[str, str] | None = None) -> httpx.Response:
        hdrs = {"content-type": "text/event-stream"}
        hdrs.update(headers or {})
        return httpx.Response(status_code, headers=hdrs, stream=FragmentStream(list(fragments)))

    return _make


async def collect(stream: Any) -> list[Any]:
    return [item async for item in stream]
