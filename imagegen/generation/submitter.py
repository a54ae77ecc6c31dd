import hashlib
import json
import math
import uuid
from collections.abc import Awaitable, Callable

from imagegen.generation.cancellation import CancelSignal
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import TerminalProviderError
from imagegen.generation.models import (
    BatchResult,
    GenerationJob,
    GenerationOutput,
    GenerationRequest,
    InputImageReference,
    JobSubmission,
)
from imagegen.generation.poller import JobPoller
from imagegen.generation.retry import RetryPolicy
from imagegen.logging.logger import Log

IDEMPOTENCY_KEY_PREFIX = "imagegen-"

BatchCallback = Callable[[BatchResult], Awaitable[None]]
StatusCallback = Callable[[str], None]


def stable_json(value: object) -> str:
    """Serialize `value` with sorted keys and compact separators."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def build_idempotency_key(run_scope: str, submission: JobSubmission, attempt_token: str) -> str:
    """Hash of the run scope, the normalized body and a per-submission token.

    The token is fresh for every sub-job, so the key only dedupes a transport
    retry of the exact same submission, never a separate run of the same prompt.
    """
    digest = hashlib.sha256()
    digest.update(run_scope.encode("utf-8"))
    digest.update(b"\n")
    digest.update(stable_json(submission.signature_payload()).encode("utf-8"))
    digest.update(b"\n")
    digest.update(attempt_token.encode("utf-8"))
    return f"{IDEMPOTENCY_KEY_PREFIX}{digest.hexdigest()}"


def is_fetchable_url(url: str) -> bool:
    return url.strip().lower().startswith(("http://", "https://"))


def data_url_references(request: GenerationRequest) -> tuple[InputImageReference, ...]:
    return tuple(
        InputImageReference(
            type="data_url",
            sha256=image.sha256,
            data_url=image.to_data_url(),
            mime_type=image.mime_type,
            size_bytes=image.size_bytes,
        )
        for image in request.input_images
    )


class GenerationSubmitter:
    """Submits a request as one or more sub-jobs and polls each to completion."""

    def __init__(
        self,
        client: BaseGenerationClient,
        poller: JobPoller,
        policy: RetryPolicy,
        token_factory: Callable[[], str] | None = None,
    ) -> None:
        self._client = client
        self._poller = poller
        self._policy = policy
        self._token_factory = token_factory or (lambda: uuid.uuid4().hex)

    async def submit_batch(
        self,
        request: GenerationRequest,
        per_job_max: int,
        cancel: CancelSignal,
        *,
        run_scope: str,
        input_refs: tuple[InputImageReference, ...] | None = None,
        on_batch: BatchCallback | None = None,
        on_status: StatusCallback | None = None,
    ) -> list[BatchResult]:
        """Run sub-jobs until `request.image_count` outputs are accepted.

        Each accepted batch is handed to `on_batch` before the next sub-job is
        submitted. Stops early once something was accepted and a sub-job yields
        nothing, and always after `max(3, image_count * 3)` attempts.

        Raises:
            TerminalProviderError: if the first sub-job fails or yields no usable output.
            GenerationAbortedError: when `cancel` fires.
        """
        desired = max(1, request.image_count)
        per_job = max(1, per_job_max)
        planned = math.ceil(desired / per_job)
        max_attempts = max(3, desired * 3)
        refs = input_refs if input_refs is not None else data_url_references(request)

        results: list[BatchResult] = []
        accepted = 0
        attempts = 0
        while accepted < desired and attempts < max_attempts:
            cancel.raise_if_cancelled()
            attempts += 1
            remaining = desired - accepted
            submission = JobSubmission(
                model_id=request.model_id,
                prompt=request.prompt,
                count=min(per_job, remaining),
                aspect_ratio=request.aspect_ratio,
                seed=request.seed + accepted if request.seed is not None else None,
                input_images=refs,
            )
            label = f" ({attempts}/{planned})" if planned > 1 else ""
            self._emit(on_status, f"Submitting generation job{label}...")
            key = build_idempotency_key(run_scope, submission, self._token_factory())
            created = await cancel.guard(self._client.create_generation_job(submission, key))
            Log.info(
                f"Submitted generation job {created.job_id} "
                f"(count={submission.count}, attempt {attempts}/{max_attempts})"
            )

            self._emit(on_status, "Waiting for image generation...")
            job = await self._poller.poll(
                created.job_id,
                policy=self._policy,
                cancel=cancel,
                poll_url=created.poll_url,
                on_update=lambda update: self._report_progress(update, planned, on_status),
            )
            outputs = self._usable_outputs(job, remaining)
            if not outputs:
                if not results:
                    raise TerminalProviderError(self._empty_job_message(job))
                Log.warning(
                    f"Generation job {job.id} yielded no usable outputs; "
                    f"stopping with {accepted}/{desired}"
                )
                break

            batch = BatchResult(job=job, outputs=outputs, poll_url=created.poll_url)
            if on_batch is not None:
                await on_batch(batch)
            results.append(batch)
            accepted += len(outputs)

        if accepted < desired:
            Log.warning(f"Generation produced {accepted}/{desired} outputs after {attempts} attempts")
        return results

    @staticmethod
    def _usable_outputs(job: GenerationJob, limit: int) -> list[GenerationOutput]:
        if not job.succeeded:
            return []
        return [output for output in job.outputs if is_fetchable_url(output.url)][:limit]

    @staticmethod
    def _empty_job_message(job: GenerationJob) -> str:
        if job.is_failed:
            detail = job.error_message or job.error_code or "no details"
            return f"Generation job {job.id} {job.status}: {detail}"
        return f"Generation job {job.id} completed, but no output URLs were returned"

    @staticmethod
    def _report_progress(job: GenerationJob, planned: int, on_status: StatusCallback | None) -> None:
        text = f"Generation ({job.status})..." if planned > 1 else f"Generation: {job.status}..."
        GenerationSubmitter._emit(on_status, text)

    @staticmethod
    def _emit(on_status: StatusCallback | None, text: str) -> None:
        if on_status is not None:
            on_status(text)
