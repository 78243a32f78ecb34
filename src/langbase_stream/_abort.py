"""
Cancellation handle shared between an EventStream and its transport.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable


class AbortController:
    """
    Abort-signal object shared between a stream and the transport it reads.

    Either side may call `abort()`. Readers waiting on `wait()` wake up,
    and registered callbacks run once, synchronously, in registration order.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Any | None = None
        self._callbacks: list[Callable[[], Any]] = []

    def __repr__(self) -> str:
        return f"AbortController(aborted={self.aborted})"

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Any | None:
        return self._reason

    def abort(self, reason: Any | None = None) -> None:
        if self.aborted:
            return
        self._reason = reason
        self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception as e:
                logging.warning("AbortController callback %r failed: %r", cb, e)

    def add_abort_callback(self, cb: Callable[[], Any]) -> None:
        """Run `cb` on abort, or right away if already aborted."""
        if self.aborted:
            cb()
            return
        self._callbacks.append(cb)

    async def wait(self) -> Any | None:
        await self._event.wait()
        return self._reason
