"""Example generation client adapter.

Use this module as a reference when implementing new provider adapters.
Implement BaseGenerationClient and register the provider in GenerationClientFactory.
"""

import io
import uuid
from dataclasses import dataclass
from typing import Any, ClassVar

from PIL import Image

from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.models import (
    CreatedJob,
    DownloadedOutput,
    GenerationJob,
    GenerationOutput,
    JobSubmission,
)


@dataclass
class _ExampleJob:
    submission: JobSubmission
    polls: int = 0


class ExampleClientAdapter(BaseGenerationClient):
    """Offline adapter that renders solid-color PNGs for every requested output.

    No network calls. Jobs report `processing` on the first poll and
    `succeeded` afterwards. Useful for local development and integration tests.
    """

    BASE_URL: ClassVar[str] = "https://example.invalid/outputs"
    PALETTE: ClassVar[list[tuple[int, int, int]]] = [
        (214, 92, 76),
        (76, 142, 214),
        (98, 178, 104),
        (232, 188, 70),
    ]

    def __init__(self, image_size: tuple[int, int] = (64, 64)) -> None:
        self._image_size = image_size
        self._jobs: dict[str, _ExampleJob] = {}
        self._jobs_by_key: dict[str, str] = {}

    async def create_generation_job(
        self,
        submission: JobSubmission,
        idempotency_key: str,
    ) -> CreatedJob:
        existing = self._jobs_by_key.get(idempotency_key)
        if existing is not None:
            return CreatedJob(job_id=existing, idempotent_replay=True)
        job_id = f"example-{uuid.uuid4().hex[:12]}"
        self._jobs[job_id] = _ExampleJob(submission=submission)
        self._jobs_by_key[idempotency_key] = job_id
        return CreatedJob(job_id=job_id, status="queued")

    async def poll_job(self, job_id: str, poll_url: str | None = None) -> GenerationJob:
        _ = poll_url
        job = self._jobs.get(job_id)
        if job is None:
            return GenerationJob(
                id=job_id,
                status="failed",
                error_code="not_found",
                error_message=f"Unknown job {job_id}",
            )
        job.polls += 1
        if job.polls < 2:
            return GenerationJob(id=job_id, status="processing", model=job.submission.model_id)
        width, height = self._image_size
        outputs = tuple(
            GenerationOutput(
                index=index,
                url=f"{self.BASE_URL}/{job_id}/{index}.png",
                mime_type="image/png",
                width=width,
                height=height,
            )
            for index in range(max(1, job.submission.count))
        )
        return GenerationJob(
            id=job_id,
            status="succeeded",
            model=job.submission.model_id,
            outputs=outputs,
        )

    async def download_output(self, url: str) -> DownloadedOutput:
        index = url.rsplit("/", 1)[-1].split(".", 1)[0]
        color = self.PALETTE[int(index) % len(self.PALETTE)] if index.isdigit() else (0, 0, 0)
        buffer = io.BytesIO()
        Image.new("RGB", self._image_size, color).save(buffer, format="PNG")
        return DownloadedOutput(data=buffer.getvalue(), content_type="image/png")

    async def list_models(self) -> list[dict[str, Any]]:
        return [
            {
                "id": "example/solid-color",
                "name": "Solid Color",
                "provider": "Example",
                "supports_image_input": False,
                "max_images_per_job": 4,
            }
        ]
