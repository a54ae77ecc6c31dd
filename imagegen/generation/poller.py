import asyncio
from collections.abc import Callable

from imagegen.generation.cancellation import CancelSignal
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import (
    PollTimeoutError,
    ProviderRequestError,
    TransientProviderError,
)
from imagegen.generation.models import GenerationJob
from imagegen.generation.retry import RetryPolicy
from imagegen.logging.logger import Log

JobUpdateCallback = Callable[[GenerationJob], None]


class JobPoller:
    """Re-fetches a job until it reaches a terminal status.

    Failed, canceled and expired jobs are returned, not raised; the caller
    classifies them. Only cancellation, timeout and repeated fetch errors raise.
    """

    def __init__(self, client: BaseGenerationClient) -> None:
        self._client = client

    async def poll(
        self,
        job_id: str,
        *,
        policy: RetryPolicy,
        cancel: CancelSignal,
        poll_url: str | None = None,
        on_update: JobUpdateCallback | None = None,
    ) -> GenerationJob:
        """Poll `job_id` under `policy`.

        Raises:
            GenerationAbortedError: when `cancel` fires before a sleep or fetch.
            PollTimeoutError: when `policy.max_wait_s` is exceeded.
            ProviderRequestError: on a non-retryable fetch failure, or after
                more than `policy.max_consecutive_errors` failures in a row.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + policy.max_wait_s if policy.max_wait_s else None
        await self._sleep(policy.initial_delay_s, cancel, deadline, job_id)

        interval = policy.interval_s
        errors = 0
        polls = 0
        while True:
            cancel.raise_if_cancelled()
            self._check_deadline(deadline, job_id)
            polls += 1
            try:
                job = await self._fetch(job_id, poll_url, cancel, deadline)
            except ProviderRequestError as exc:
                if not self._is_tolerated(exc):
                    raise
                errors += 1
                if errors > policy.max_consecutive_errors:
                    Log.error(f"Polling job {job_id} failed {errors} times in a row: {exc}")
                    raise
                Log.warning(f"Polling job {job_id} failed ({errors}/{policy.max_consecutive_errors}): {exc}")
                await self._sleep(interval, cancel, deadline, job_id)
                interval = policy.next_interval(interval)
                continue

            errors = 0
            Log.debug(f"Job {job_id} poll #{polls}: {job.status}")
            if job.is_terminal:
                return job
            if on_update is not None:
                on_update(job)
            delay = policy.clamp(job.poll_after_s) if job.poll_after_s is not None else interval
            await self._sleep(delay, cancel, deadline, job_id)
            interval = policy.next_interval(interval)

    async def _fetch(
        self,
        job_id: str,
        poll_url: str | None,
        cancel: CancelSignal,
        deadline: float | None,
    ) -> GenerationJob:
        """Fetch once; with a deadline, an in-flight fetch is cut off when it passes."""
        fetch = cancel.guard(self._client.poll_job(job_id, poll_url))
        if deadline is None:
            return await fetch
        remaining = deadline - asyncio.get_running_loop().time()
        try:
            return await asyncio.wait_for(fetch, timeout=max(0.0, remaining))
        except TimeoutError as exc:
            raise PollTimeoutError(f"Timed out waiting for job {job_id}") from exc

    @staticmethod
    def _is_tolerated(exc: ProviderRequestError) -> bool:
        return isinstance(exc, TransientProviderError) or exc.status is None

    @staticmethod
    def _check_deadline(deadline: float | None, job_id: str) -> None:
        if deadline is not None and asyncio.get_running_loop().time() >= deadline:
            raise PollTimeoutError(f"Timed out waiting for job {job_id}")

    async def _sleep(
        self,
        seconds: float,
        cancel: CancelSignal,
        deadline: float | None,
        job_id: str,
    ) -> None:
        if deadline is not None:
            remaining = deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                raise PollTimeoutError(f"Timed out waiting for job {job_id}")
            seconds = min(seconds, remaining)
        await cancel.sleep(seconds)
