import base64
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

NON_TERMINAL_STATUSES = frozenset({"queued", "processing"})
FAILED_STATUSES = frozenset({"failed", "canceled", "expired"})
TERMINAL_STATUSES = FAILED_STATUSES | {"succeeded"}

SUPPORTED_INPUT_MIME_TYPES = frozenset(
    {"image/png", "image/jpeg", "image/webp", "image/gif"}
)


@dataclass(frozen=True)
class PreparedInputImage:
    """Upload-ready input image. Size is bounded by the upload ceiling."""

    data: bytes
    mime_type: str
    size_bytes: int
    sha256: str
    source: str = ""

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class GenerationRequest:
    """Resolved request for one run. Immutable once built."""

    model_id: str
    prompt: str
    image_count: int
    aspect_ratio: str | None = None
    seed: int | None = None
    input_images: tuple[PreparedInputImage, ...] = ()


@dataclass(frozen=True)
class InputImageReference:
    """How an input image is referenced in a job submission."""

    type: str
    sha256: str
    data_url: str | None = None
    upload_id: str | None = None
    mime_type: str = ""
    size_bytes: int = 0

    def to_payload(self) -> dict[str, object]:
        if self.type == "uploaded":
            return {
                "type": "uploaded",
                "id": self.upload_id,
                "sha256": self.sha256,
                "mime_type": self.mime_type,
                "size_bytes": self.size_bytes,
            }
        return {"type": "data_url", "data_url": self.data_url}


@dataclass(frozen=True)
class JobSubmission:
    """Body of one sub-job submission."""

    model_id: str
    prompt: str
    count: int
    aspect_ratio: str | None = None
    seed: int | None = None
    input_images: tuple[InputImageReference, ...] = ()

    def to_payload(self) -> dict[str, object]:
        """Normalized request body sent to the provider."""
        options: dict[str, object] = {"count": max(1, int(self.count))}
        if self.aspect_ratio:
            options["aspect_ratio"] = self.aspect_ratio
        if self.seed is not None:
            options["seed"] = max(0, int(self.seed))
        return {
            "model": self.model_id.strip(),
            "prompt": self.prompt,
            "input_images": [image.to_payload() for image in self.input_images],
            "options": options,
        }

    def signature_payload(self) -> dict[str, object]:
        """Body used for idempotency hashing; inline image data replaced by digests."""
        payload = self.to_payload()
        payload["input_images"] = [image.sha256 for image in self.input_images]
        return payload


@dataclass(frozen=True)
class GenerationOutput:
    """One output of a succeeded job. The URL may be short-lived."""

    index: int
    url: str
    mime_type: str = "application/octet-stream"
    size_bytes: int = 0
    width: int | None = None
    height: int | None = None
    url_expires_in_seconds: int = 0


@dataclass(frozen=True)
class GenerationJob:
    """Provider-side job snapshot. Replaced by re-fetch, never patched."""

    id: str
    status: str
    model: str = ""
    outputs: tuple[GenerationOutput, ...] = ()
    error_code: str | None = None
    error_message: str | None = None
    attempt_count: int | None = None
    completed_at: str | None = None
    poll_after_s: float | None = None
    usage: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_failed(self) -> bool:
        return self.status in FAILED_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class CreatedJob:
    job_id: str
    status: str = "queued"
    poll_url: str | None = None
    idempotent_replay: bool = False


@dataclass(frozen=True)
class DownloadedOutput:
    data: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class UploadTarget:
    """Out-of-band upload slot returned by the provider for one input image."""

    index: int
    url: str
    method: str
    upload_id: str
    sha256: str
    size_bytes: int
    mime_type: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one sub-job: the terminal job and its usable outputs."""

    job: GenerationJob
    outputs: list[GenerationOutput]
    poll_url: str | None = None


@dataclass(frozen=True)
class SavedOutput:
    """A generation output persisted to a local path."""

    output: GenerationOutput
    path: Path
    job_id: str
    sidecar_path: Path | None = None
