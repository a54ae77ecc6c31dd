from abc import ABC, abstractmethod
from typing import Any

from imagegen.generation.models import (
    CreatedJob,
    DownloadedOutput,
    GenerationJob,
    JobSubmission,
    PreparedInputImage,
    UploadTarget,
)


class BaseGenerationClient(ABC):
    """Contract for provider-specific image generation API clients.

    Implementations perform exactly one network exchange per call; looping,
    backoff and cancellation belong to the caller.
    """

    requires_upload: bool = False

    @abstractmethod
    async def create_generation_job(
        self,
        submission: JobSubmission,
        idempotency_key: str,
    ) -> CreatedJob:
        """Submit one job.

        Raises:
            ProviderRequestError: on transport or HTTP failure.
        """

    @abstractmethod
    async def poll_job(self, job_id: str, poll_url: str | None = None) -> GenerationJob:
        """Fetch the current job snapshot once (no internal looping)."""

    @abstractmethod
    async def download_output(self, url: str) -> DownloadedOutput:
        """Download one output.

        Must not attach authentication headers when the URL is cross-origin
        relative to the API.

        Raises:
            TransientProviderError: for retryable HTTP statuses.
            ProviderRequestError: for any other failure.
        """

    async def prepare_uploads(self, images: list[PreparedInputImage]) -> list[UploadTarget]:
        """Reserve out-of-band upload targets, one per image, in order."""
        raise NotImplementedError(f"{type(self).__name__} does not support input uploads")

    async def upload_prepared(self, target: UploadTarget, data: bytes) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support input uploads")

    async def list_models(self) -> list[dict[str, Any]]:
        """Server-side model catalog entries; empty when the provider has none."""
        return []

    async def aclose(self) -> None:
        return None
