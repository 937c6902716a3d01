from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from sync.errors import FetchCancelled


T = TypeVar("T")


class CancelToken:
    """
    Cooperative cancellation signal for one operation (a map fetch or an export).

    Suspendable work either checks `raise_if_cancelled()` between steps or awaits
    through `run()`, which abandons the awaited call as soon as the token fires.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.reason: str | None = None
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise FetchCancelled(self.reason or "cancelled")

    async def run(self, aw: Awaitable[T]) -> T:
        """Await `aw`, raising FetchCancelled (and cancelling `aw`) if the token fires first."""
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, Exception):
            # The result of abandoned work is discarded by contract.
            pass
        raise FetchCancelled(self.reason or "cancelled")
