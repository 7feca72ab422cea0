"""Cancellation shared by every request of one upload call."""

import asyncio
import weakref
from typing import Awaitable, TypeVar

from directupload.client.errors import UploadAborted

T = TypeVar("T")


class AbortSignal:
    """One-shot cancellation flag that in-flight requests can race against.

    Call :meth:`abort` from any task on the same event loop. Requests that
    already finished keep their result; requests that have not started yet
    refuse to start.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        # Children are only held while a transfer still references them
        self._children: "weakref.WeakSet[AbortSignal]" = weakref.WeakSet()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()
        for child in list(self._children):
            child.abort()

    def child(self) -> "AbortSignal":
        """A signal that aborts with this one but can also abort on its own."""
        linked = AbortSignal()
        self._children.add(linked)
        if self.aborted:
            linked.abort()
        return linked

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise UploadAborted()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds``, waking up early if the signal fires.

        Raises:
            UploadAborted: If the signal fires before or during the wait
        """
        self.raise_if_aborted()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise UploadAborted()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the signal fires first.

        Raises:
            UploadAborted: If the signal fires before the awaitable settles;
                the awaitable is cancelled
        """
        if self.aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise UploadAborted()

        task = asyncio.ensure_future(awaitable)
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
        raise UploadAborted()
