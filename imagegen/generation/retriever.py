import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlsplit

from imagegen.generation.cancellation import CancelSignal
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import (
    PollTimeoutError,
    ProviderRequestError,
    TransientProviderError,
)
from imagegen.generation.file_store import OutputFileStore
from imagegen.generation.models import (
    DownloadedOutput,
    GenerationJob,
    GenerationOutput,
    PreparedInputImage,
    SavedOutput,
)
from imagegen.generation.poller import JobPoller
from imagegen.generation.retry import RetryPolicy
from imagegen.logging.logger import Log

DEFAULT_EXTENSION = "png"
SIDECAR_SUFFIX = ".imagegen.json"

_EXTENSIONS_BY_MIME = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}
_URL_EXTENSIONS = {"png": "png", "jpg": "jpg", "jpeg": "jpg", "webp": "webp", "gif": "gif"}


def extension_from_content_type(content_type: str | None) -> str | None:
    value = (content_type or "").split(";", 1)[0].strip().lower()
    return _EXTENSIONS_BY_MIME.get(value)


def extension_from_url(url: str) -> str | None:
    last = urlsplit(url).path.rsplit("/", 1)[-1]
    if "." not in last:
        return None
    return _URL_EXTENSIONS.get(last.rsplit(".", 1)[-1].lower())


def resolve_extension(download: DownloadedOutput, output: GenerationOutput) -> str:
    """Pick a file extension: response content-type, then declared mime, then URL path."""
    return (
        extension_from_content_type(download.content_type)
        or extension_from_content_type(output.mime_type)
        or extension_from_url(output.url)
        or DEFAULT_EXTENSION
    )


@dataclass(frozen=True)
class OutputMetadata:
    """Run details recorded in each output's sidecar."""

    prompt: str
    model_id: str
    model_label: str | None = None
    input_images: tuple[PreparedInputImage, ...] = ()


class OutputRetriever:
    """Downloads finished outputs and persists them through an OutputFileStore."""

    def __init__(
        self,
        client: BaseGenerationClient,
        poller: JobPoller,
        store: OutputFileStore,
        refresh_policy: RetryPolicy,
        save_sidecar: bool = True,
    ) -> None:
        self._client = client
        self._poller = poller
        self._store = store
        self._refresh_policy = refresh_policy
        self._save_sidecar = save_sidecar

    async def save(
        self,
        output: GenerationOutput,
        job: GenerationJob,
        base_name: str,
        cancel: CancelSignal,
        *,
        poll_url: str | None = None,
        position: int | None = None,
        metadata: OutputMetadata | None = None,
    ) -> SavedOutput:
        """Download `output` and write it under `base_name`.

        A retryable download failure triggers one short re-poll of the job to
        refresh the output URL, followed by exactly one more download attempt.

        Raises:
            TransientProviderError: if the refreshed download fails again, or no
                different URL could be obtained.
            ProviderRequestError: on any non-retryable download failure.
            GenerationAbortedError: when `cancel` fires.
        """
        cancel.raise_if_cancelled()
        try:
            download = await cancel.guard(self._client.download_output(output.url))
        except TransientProviderError as exc:
            Log.warning(f"Download of output {output.index} for job {job.id} failed: {exc}")
            refreshed = await self._refresh_output(output, job, cancel, poll_url, position)
            if refreshed is None or refreshed.url == output.url:
                raise
            Log.info(f"Retrying output {output.index} for job {job.id} with a refreshed URL")
            download = await cancel.guard(self._client.download_output(refreshed.url))
            output = refreshed

        extension = resolve_extension(download, output)
        path = await self._store.save(base_name, extension, download.data)
        Log.info(f"Saved output {output.index} of job {job.id} to {path}")

        sidecar_path = None
        if self._save_sidecar and metadata is not None:
            sidecar_path = await self._write_sidecar(path, output, job, metadata)
        return SavedOutput(output=output, path=path, job_id=job.id, sidecar_path=sidecar_path)

    async def _refresh_output(
        self,
        output: GenerationOutput,
        job: GenerationJob,
        cancel: CancelSignal,
        poll_url: str | None,
        position: int | None,
    ) -> GenerationOutput | None:
        try:
            refreshed_job = await self._poller.poll(
                job.id, policy=self._refresh_policy, cancel=cancel, poll_url=poll_url
            )
        except (PollTimeoutError, ProviderRequestError) as exc:
            Log.warning(f"Could not refresh output URLs for job {job.id}: {exc}")
            return None
        if not refreshed_job.succeeded:
            return None
        for candidate in refreshed_job.outputs:
            if candidate.index == output.index:
                return candidate
        slot = output.index if position is None else position
        if 0 <= slot < len(refreshed_job.outputs):
            return refreshed_job.outputs[slot]
        return None

    async def _write_sidecar(
        self,
        path: Path,
        output: GenerationOutput,
        job: GenerationJob,
        metadata: OutputMetadata,
    ) -> Path | None:
        sidecar_path = path.with_name(f"{path.name}{SIDECAR_SUFFIX}")
        try:
            await self._store.write_text(
                sidecar_path, json.dumps(build_sidecar(output, job, metadata), indent=2)
            )
        except Exception as exc:
            Log.warning(f"Could not write sidecar for {path}: {exc}")
            return None
        return sidecar_path


def build_sidecar(
    output: GenerationOutput,
    job: GenerationJob,
    metadata: OutputMetadata,
    created_at: datetime | None = None,
) -> dict[str, object]:
    return {
        "kind": "imagegen_output",
        "created_at": (created_at or datetime.now(timezone.utc)).isoformat(),
        "prompt": metadata.prompt,
        "model": {"id": metadata.model_id, "label": metadata.model_label},
        "job": {
            "id": job.id,
            "status": job.status,
            "error_code": job.error_code,
            "error_message": job.error_message,
            "attempt_count": job.attempt_count,
            "completed_at": job.completed_at,
        },
        "output": {
            "index": output.index,
            "url": output.url,
            "mime_type": output.mime_type,
            "size_bytes": output.size_bytes,
            "width": output.width,
            "height": output.height,
        },
        "usage": job.usage,
        "input_images": [
            {
                "source": image.source or None,
                "sha256": image.sha256,
                "mime_type": image.mime_type,
                "size_bytes": image.size_bytes,
            }
            for image in metadata.input_images
        ],
    }
