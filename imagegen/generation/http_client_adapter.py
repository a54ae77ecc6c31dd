import re
from typing import Any
from urllib.parse import urlsplit

import httpx

from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import ProviderRequestError, error_for_status
from imagegen.generation.models import (
    CreatedJob,
    DownloadedOutput,
    GenerationJob,
    JobSubmission,
    PreparedInputImage,
    UploadTarget,
)
from imagegen.generation.payloads import (
    build_created_job,
    build_job,
    build_upload_targets,
    parse_retry_after_seconds,
)
from imagegen.logging.logger import Log

_VERSIONED_API_PATH = re.compile(r"^/?api/v\d+(/|$)", re.IGNORECASE)


class SystemSculptClientAdapter(BaseGenerationClient):
    """Generation API client built on httpx.AsyncClient."""

    JOBS_PATH = "/images/generations/jobs"
    UPLOADS_PATH = "/images/generations/input-uploads"
    MODELS_PATH = "/images/models"

    def __init__(
        self,
        *,
        base_url: str,
        license_key: str,
        timeout_seconds: int,
        client_version: str = "",
        requires_upload: bool = False,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._license_key = license_key.strip()
        self._client_version = client_version.strip()
        self.requires_upload = requires_upload
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def create_generation_job(
        self,
        submission: JobSubmission,
        idempotency_key: str,
    ) -> CreatedJob:
        headers = self._auth_headers()
        if idempotency_key.strip():
            headers["Idempotency-Key"] = idempotency_key.strip()
        data, _headers = await self._request_json(
            "POST",
            self._endpoint(self.JOBS_PATH),
            headers=headers,
            json=submission.to_payload(),
        )
        created = build_created_job(data)
        if created.idempotent_replay:
            Log.info(f"Provider replayed existing job {created.job_id} for idempotency key")
        return created

    async def poll_job(self, job_id: str, poll_url: str | None = None) -> GenerationJob:
        if not job_id.strip():
            raise ValueError("Missing generation job id")
        url = self.resolve_poll_url(job_id.strip(), poll_url)
        data, headers = await self._request_json(
            "GET",
            url,
            headers=self._auth_headers() if self._is_same_origin(url) else {},
        )
        return build_job(data, retry_after_s=parse_retry_after_seconds(headers.get("retry-after")))

    async def download_output(self, url: str) -> DownloadedOutput:
        target = url.strip()
        if not target:
            raise ValueError("Missing output URL")
        if not target.lower().startswith(("http://", "https://")):
            target = self._endpoint(target)
        same_origin = self._is_same_origin(target)
        try:
            response = await self._client.get(
                target,
                headers=self._auth_headers() if same_origin else {},
                follow_redirects=not same_origin,
            )
        except httpx.TransportError as exc:
            raise ProviderRequestError(f"Image download request failed: {exc}") from exc
        if not response.is_success:
            raise error_for_status(
                response.status_code, f"Image download failed: HTTP {response.status_code}"
            )
        return DownloadedOutput(
            data=response.content,
            content_type=response.headers.get("content-type"),
        )

    async def prepare_uploads(self, images: list[PreparedInputImage]) -> list[UploadTarget]:
        body = {
            "input_images": [
                {
                    "index": index,
                    "mime_type": image.mime_type,
                    "size_bytes": image.size_bytes,
                    "sha256": image.sha256,
                }
                for index, image in enumerate(images)
            ]
        }
        data, _headers = await self._request_json(
            "POST",
            self._endpoint(self.UPLOADS_PATH),
            headers=self._auth_headers(),
            json=body,
        )
        return build_upload_targets(data)

    async def upload_prepared(self, target: UploadTarget, data: bytes) -> None:
        headers = {"Content-Type": target.mime_type, **target.headers}
        if self._is_same_origin(target.url):
            headers.update(self._auth_headers())
        try:
            response = await self._client.put(target.url, content=data, headers=headers)
        except httpx.TransportError as exc:
            raise ProviderRequestError(f"Input image upload failed: {exc}") from exc
        if not response.is_success:
            raise error_for_status(
                response.status_code, f"Input image upload failed: HTTP {response.status_code}"
            )

    async def list_models(self) -> list[dict[str, Any]]:
        data, _headers = await self._request_json(
            "GET", self._endpoint(self.MODELS_PATH), headers=self._auth_headers()
        )
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        return [model for model in models if isinstance(model, dict)]

    async def aclose(self) -> None:
        await self._client.aclose()

    def resolve_poll_url(self, job_id: str, poll_url: str | None = None) -> str:
        """Resolve a provider poll hint against the API base URL."""
        hint = (poll_url or "").strip()
        if not hint:
            return self._endpoint(f"{self.JOBS_PATH}/{job_id}")
        if hint.lower().startswith(("http://", "https://")):
            return hint
        base = urlsplit(self._base_url)
        origin = f"{base.scheme}://{base.netloc}"
        base_path = base.path.rstrip("/")
        path = hint if hint.startswith("/") else f"/{hint}"
        if (base_path and (path == base_path or path.startswith(f"{base_path}/"))) or (
            _VERSIONED_API_PATH.match(path)
        ):
            return f"{origin}{path}"
        return self._endpoint(path)

    def _endpoint(self, path: str) -> str:
        return f"{self._base_url}{path if path.startswith('/') else '/' + path}"

    def _is_same_origin(self, url: str) -> bool:
        target = urlsplit(url)
        base = urlsplit(self._base_url)
        return (target.scheme, target.netloc) == (base.scheme, base.netloc)

    def _auth_headers(self) -> dict[str, str]:
        headers = {"x-license-key": self._license_key}
        if self._client_version:
            headers["x-client-version"] = self._client_version
        return headers

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        json: dict[str, object] | None = None,
    ) -> tuple[Any, httpx.Headers]:
        try:
            response = await self._client.request(method, url, headers=headers, json=json)
        except httpx.TransportError as exc:
            raise ProviderRequestError(f"Generation API network error: {exc}") from exc
        try:
            data = response.json()
        except ValueError:
            data = None
        if not response.is_success:
            raise error_for_status(
                response.status_code,
                _error_message(data)
                or f"Generation API request failed: HTTP {response.status_code}",
            )
        return data, response.headers


def _error_message(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    for key in ("error", "message"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
