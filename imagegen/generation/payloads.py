"""Builds domain objects from raw generation API JSON payloads."""

from typing import Any

from imagegen.generation.exceptions import ProviderRequestError
from imagegen.generation.models import (
    CreatedJob,
    GenerationJob,
    GenerationOutput,
    UploadTarget,
)

_DEFAULT_MIME_TYPE = "application/octet-stream"


def build_created_job(data: Any) -> CreatedJob:
    """Build a CreatedJob from a job-creation response.

    Raises:
        ProviderRequestError: if the response carries no job id.
    """
    job = _require_job_object(data, "Image generation response did not include a valid job id")
    poll_url = data.get("poll_url")
    return CreatedJob(
        job_id=job["id"].strip(),
        status=_as_str(job.get("status")) or "queued",
        poll_url=poll_url.strip() if isinstance(poll_url, str) and poll_url.strip() else None,
        idempotent_replay=data.get("idempotent_replay") is True,
    )


def build_job(data: Any, retry_after_s: float | None = None) -> GenerationJob:
    """Build a GenerationJob snapshot from a status response.

    Args:
        data: Parsed JSON body.
        retry_after_s: Retry-After header value, used when the body has no poll hint.

    Raises:
        ProviderRequestError: if the response carries no job payload.
    """
    job = _require_job_object(
        data, "Image generation status response did not include a valid job payload"
    )
    poll_after_s = _poll_after_seconds(data.get("poll_after_ms"))
    if poll_after_s is None:
        poll_after_s = retry_after_s
    attempt_count = job.get("attempt_count")
    usage = data.get("usage")
    return GenerationJob(
        id=job["id"].strip(),
        status=(_as_str(job.get("status")) or "").lower(),
        model=_as_str(job.get("model")) or "",
        outputs=tuple(build_outputs(data.get("outputs"))),
        error_code=_as_str(job.get("error_code")),
        error_message=_as_str(job.get("error_message")),
        attempt_count=attempt_count if isinstance(attempt_count, int) else None,
        completed_at=_as_str(job.get("completed_at")),
        poll_after_s=poll_after_s,
        usage=usage if isinstance(usage, dict) else None,
    )


def build_outputs(raw: Any) -> list[GenerationOutput]:
    """Normalize an outputs array: drop entries without a URL, sort by index."""
    if not isinstance(raw, list):
        return []
    outputs: list[GenerationOutput] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        url = (_as_str(item.get("url")) or "").strip()
        if not url:
            continue
        index = item.get("index")
        outputs.append(
            GenerationOutput(
                index=int(index) if _is_number(index) else len(outputs),
                url=url,
                mime_type=(_as_str(item.get("mime_type")) or "").strip() or _DEFAULT_MIME_TYPE,
                size_bytes=_non_negative_int(item.get("size_bytes")),
                width=int(item["width"]) if _is_number(item.get("width")) else None,
                height=int(item["height"]) if _is_number(item.get("height")) else None,
                url_expires_in_seconds=_non_negative_int(item.get("url_expires_in_seconds")),
            )
        )
    return sorted(outputs, key=lambda output: output.index)


def build_upload_targets(data: Any) -> list[UploadTarget]:
    """Build upload targets from a prepare-uploads response.

    Raises:
        ProviderRequestError: if any entry lacks a PUT upload URL or uploaded-image metadata.
    """
    raw = data.get("input_uploads") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        raise ProviderRequestError("Input upload preparation returned no uploads")
    targets: list[UploadTarget] = []
    for position, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ProviderRequestError(f"Input upload at position {position} must be an object")
        index = item.get("index")
        index = int(index) if _is_number(index) else position
        upload = item.get("upload")
        if not isinstance(upload, dict) or not _as_str(upload.get("url")):
            raise ProviderRequestError(f"Input upload URL missing for index {index}")
        method = (_as_str(upload.get("method")) or "").upper()
        if method != "PUT":
            raise ProviderRequestError(f"Input upload method must be PUT for index {index}")
        image = item.get("input_image")
        if not isinstance(image, dict) or image.get("type") != "uploaded":
            raise ProviderRequestError(f"Input upload metadata missing for index {index}")
        headers = upload.get("headers")
        targets.append(
            UploadTarget(
                index=index,
                url=str(upload["url"]),
                method=method,
                upload_id=_as_str(image.get("id")) or "",
                sha256=_as_str(image.get("sha256")) or "",
                size_bytes=_non_negative_int(image.get("size_bytes")),
                mime_type=(_as_str(image.get("mime_type")) or "").lower(),
                headers={str(k): str(v) for k, v in headers.items()}
                if isinstance(headers, dict)
                else {},
            )
        )
    return targets


def parse_retry_after_seconds(value: str | None) -> float | None:
    """Parse a numeric Retry-After header to seconds (HTTP-date form is ignored)."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _require_job_object(data: Any, message: str) -> dict[str, Any]:
    job = data.get("job") if isinstance(data, dict) else None
    if not isinstance(job, dict):
        raise ProviderRequestError(message)
    job_id = job.get("id")
    if not isinstance(job_id, str) or not job_id.strip():
        raise ProviderRequestError(message)
    return job


def _poll_after_seconds(raw: Any) -> float | None:
    if isinstance(raw, str):
        try:
            raw = float(raw)
        except ValueError:
            return None
    if _is_number(raw) and raw >= 0:
        return float(raw) / 1000.0
    return None


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _non_negative_int(value: Any) -> int:
    return max(0, int(value)) if _is_number(value) else 0
