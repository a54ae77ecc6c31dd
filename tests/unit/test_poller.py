import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from imagegen.generation.cancellation import CancelSignal
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import (
    GenerationAbortedError,
    PollTimeoutError,
    ProviderRequestError,
    TransientProviderError,
)
from imagegen.generation.models import GenerationJob
from imagegen.generation.poller import JobPoller
from imagegen.generation.retry import RetryPolicy


def _make_client(*responses: object) -> MagicMock:
    client = MagicMock(spec=BaseGenerationClient)
    client.poll_job = AsyncMock(side_effect=list(responses))
    return client


def _job(status: str, **kwargs: object) -> GenerationJob:
    return GenerationJob(id="job-1", status=status, **kwargs)  # type: ignore[arg-type]


class TestPollUntilTerminal:
    @pytest.mark.asyncio
    async def test_returns_succeeded_job(self, fast_policy: RetryPolicy) -> None:
        client = _make_client(_job("queued"), _job("processing"), _job("succeeded"))
        job = await JobPoller(client).poll("job-1", policy=fast_policy, cancel=CancelSignal())
        assert job.status == "succeeded"
        assert client.poll_job.await_count == 3

    @pytest.mark.asyncio
    async def test_failed_job_is_returned_not_raised(self, fast_policy: RetryPolicy) -> None:
        client = _make_client(_job("failed", error_message="nope"))
        job = await JobPoller(client).poll("job-1", policy=fast_policy, cancel=CancelSignal())
        assert job.is_failed

    @pytest.mark.asyncio
    async def test_on_update_called_for_non_terminal(self, fast_policy: RetryPolicy) -> None:
        client = _make_client(_job("queued"), _job("processing"), _job("succeeded"))
        updates: list[str] = []
        await JobPoller(client).poll(
            "job-1", policy=fast_policy, cancel=CancelSignal(), on_update=lambda j: updates.append(j.status)
        )
        assert updates == ["queued", "processing"]

    @pytest.mark.asyncio
    async def test_passes_poll_url_hint(self, fast_policy: RetryPolicy) -> None:
        client = _make_client(_job("succeeded"))
        await JobPoller(client).poll("job-1", policy=fast_policy, cancel=CancelSignal(), poll_url="/jobs/job-1")
        client.poll_job.assert_awaited_once_with("job-1", "/jobs/job-1")


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start_makes_no_calls(self, fast_policy: RetryPolicy) -> None:
        client = _make_client(_job("succeeded"))
        cancel = CancelSignal()
        cancel.cancel()
        with pytest.raises(GenerationAbortedError):
            await JobPoller(client).poll("job-1", policy=fast_policy, cancel=cancel)
        client.poll_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_during_update_stops_polling(self, fast_policy: RetryPolicy) -> None:
        client = _make_client(_job("queued"), _job("succeeded"))
        cancel = CancelSignal()
        with pytest.raises(GenerationAbortedError):
            await JobPoller(client).poll(
                "job-1", policy=fast_policy, cancel=cancel, on_update=lambda _job: cancel.cancel()
            )
        assert client.poll_job.await_count == 1


class TestErrorsAndTimeouts:
    @pytest.mark.asyncio
    async def test_tolerates_transient_errors(self, fast_policy: RetryPolicy) -> None:
        client = _make_client(
            TransientProviderError("busy", status=503),
            ProviderRequestError("network down"),
            _job("succeeded"),
        )
        job = await JobPoller(client).poll("job-1", policy=fast_policy, cancel=CancelSignal())
        assert job.succeeded

    @pytest.mark.asyncio
    async def test_gives_up_after_consecutive_errors(self) -> None:
        policy = RetryPolicy(
            interval_s=0.0, max_interval_s=0.0, initial_delay_s=0.0, max_consecutive_errors=2
        )
        client = _make_client(*[TransientProviderError("busy", status=503)] * 3)
        with pytest.raises(TransientProviderError):
            await JobPoller(client).poll("job-1", policy=policy, cancel=CancelSignal())
        assert client.poll_job.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, fast_policy: RetryPolicy) -> None:
        client = _make_client(ProviderRequestError("unauthorized", status=401))
        with pytest.raises(ProviderRequestError, match="unauthorized"):
            await JobPoller(client).poll("job-1", policy=fast_policy, cancel=CancelSignal())
        assert client.poll_job.await_count == 1

    @pytest.mark.asyncio
    async def test_times_out_when_budget_exceeded(self) -> None:
        policy = RetryPolicy(
            interval_s=0.02, max_interval_s=0.02, backoff_factor=1.0, initial_delay_s=0.0, max_wait_s=0.05
        )
        client = MagicMock(spec=BaseGenerationClient)
        client.poll_job = AsyncMock(return_value=_job("processing"))
        with pytest.raises(PollTimeoutError):
            await JobPoller(client).poll("job-1", policy=policy, cancel=CancelSignal())

    @pytest.mark.asyncio
    async def test_hanging_fetch_is_cut_off_at_deadline(self) -> None:
        async def hang(job_id: str, poll_url: str | None = None) -> GenerationJob:
            await asyncio.sleep(5)
            return _job("succeeded")

        client = MagicMock(spec=BaseGenerationClient)
        client.poll_job = AsyncMock(side_effect=hang)
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(PollTimeoutError):
            await JobPoller(client).poll("job-1", policy=RetryPolicy().refresh_policy(0.2), cancel=CancelSignal())
        assert loop.time() - started < 1.0

    @pytest.mark.asyncio
    async def test_poll_after_hint_is_clamped(self) -> None:
        policy = RetryPolicy(interval_s=0.0, max_interval_s=0.01, backoff_factor=1.0, initial_delay_s=0.0)
        client = _make_client(_job("queued", poll_after_s=60.0), _job("succeeded"))
        job = await JobPoller(client).poll("job-1", policy=policy, cancel=CancelSignal())
        assert job.succeeded
