import asyncio

import pytest

from imagegen.generation.cancellation import CancelSignal
from imagegen.generation.exceptions import GenerationAbortedError


class TestCancelSignal:
    def test_not_cancelled_initially(self) -> None:
        assert CancelSignal().cancelled is False

    def test_raise_if_cancelled_uses_reason(self) -> None:
        signal = CancelSignal()
        signal.cancel("stopped by user")
        with pytest.raises(GenerationAbortedError, match="stopped by user"):
            signal.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_sleep_returns_after_timeout(self) -> None:
        await CancelSignal().sleep(0.01)

    @pytest.mark.asyncio
    async def test_sleep_wakes_early_on_cancel(self) -> None:
        signal = CancelSignal()
        asyncio.get_running_loop().call_later(0.01, signal.cancel)
        with pytest.raises(GenerationAbortedError):
            await asyncio.wait_for(signal.sleep(30), timeout=5)

    @pytest.mark.asyncio
    async def test_guard_returns_result(self) -> None:
        async def call() -> str:
            return "ok"

        assert await CancelSignal().guard(call()) == "ok"

    @pytest.mark.asyncio
    async def test_guard_cancels_in_flight_call(self) -> None:
        signal = CancelSignal()
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow_call() -> None:
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def cancel_when_started() -> None:
            await started.wait()
            signal.cancel()

        canceller = asyncio.create_task(cancel_when_started())
        with pytest.raises(GenerationAbortedError):
            await asyncio.wait_for(signal.guard(slow_call()), timeout=5)
        await canceller
        await asyncio.wait_for(cancelled.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_guard_propagates_call_errors(self) -> None:
        async def failing() -> None:
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await CancelSignal().guard(failing())
