"""Cooperative cancellation shared by every call a turn spawns."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from ..errors import CancellationError

T = TypeVar("T")


class CancellationToken:
    """One-shot abort handle backed by an :class:`asyncio.Event`."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        On cancellation the awaitable is cancelled and
        :class:`CancellationError` is raised.
        """

        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancellationError()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise CancellationError()


__all__ = ["CancellationToken"]
