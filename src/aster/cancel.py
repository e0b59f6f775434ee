"""Cancellation token shared by a batch and its workers."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, TypeVar

from aster.errors import BatchCancelled

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class CancelToken:
    """One-way cancellation flag observed cooperatively.

    ``cancel()`` is safe to call from any coroutine on the batch's event loop,
    and from signal handlers or other threads via ``loop.call_soon_threadsafe``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``BatchCancelled`` when the token has fired."""
        if self._event.is_set():
            raise BatchCancelled

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for *delay* seconds, waking early with ``BatchCancelled``."""
        self.raise_if_cancelled()
        if delay <= 0:
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self.wait(), timeout=delay)
        self.raise_if_cancelled()

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await *aw*, abandoning it with ``BatchCancelled`` if the token fires.

        The in-flight task is cancelled and awaited before returning, so no
        request outlives the call.
        """
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise BatchCancelled
        task: asyncio.Future[T] = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not waiter.done():
                waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
        if task.cancelled():
            if self.cancelled:
                raise BatchCancelled
            raise asyncio.CancelledError
        return task.result()
