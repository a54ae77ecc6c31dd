import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from imagegen.generation.exceptions import GenerationAbortedError

T = TypeVar("T")


class CancelSignal:
    """Cooperative cancellation shared by the poller, submitter and retriever."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "Generation aborted"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationAbortedError(self._reason)

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, waking early and raising if cancelled meanwhile."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return
        raise GenerationAbortedError(self._reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless the signal fires first.

        On cancellation the in-flight call is cancelled and not awaited further.

        Raises:
            GenerationAbortedError: if the signal was or becomes set.
        """
        self.raise_if_cancelled()
        call = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _pending = await asyncio.wait(
                {call, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            call.cancel()
            waiter.cancel()
            raise
        if call in done:
            waiter.cancel()
            return call.result()
        call.cancel()
        raise GenerationAbortedError(self._reason)
