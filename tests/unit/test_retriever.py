import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from imagegen.generation.cancellation import CancelSignal
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import (
    GenerationAbortedError,
    ProviderRequestError,
    TransientProviderError,
)
from imagegen.generation.file_store import OutputFileStore
from imagegen.generation.models import (
    DownloadedOutput,
    GenerationJob,
    GenerationOutput,
    PreparedInputImage,
)
from imagegen.generation.poller import JobPoller
from imagegen.generation.retriever import (
    OutputMetadata,
    OutputRetriever,
    build_sidecar,
    resolve_extension,
)
from imagegen.generation.retry import RetryPolicy

OLD_URL = "https://cdn.example/job-1/0.png?sig=old"
NEW_URL = "https://cdn.example/job-1/0.png?sig=new"


def _job(url: str = OLD_URL, status: str = "succeeded") -> GenerationJob:
    return GenerationJob(
        id="job-1",
        status=status,
        outputs=(GenerationOutput(index=0, url=url, mime_type="image/png", width=64, height=64),),
    )


def _make_retriever(
    tmp_path: Path,
    fast_policy: RetryPolicy,
    save_sidecar: bool = True,
) -> tuple[OutputRetriever, MagicMock]:
    client = MagicMock(spec=BaseGenerationClient)
    client.download_output = AsyncMock()
    client.poll_job = AsyncMock()
    retriever = OutputRetriever(
        client,
        JobPoller(client),
        OutputFileStore(tmp_path),
        fast_policy.refresh_policy(1.0),
        save_sidecar=save_sidecar,
    )
    return retriever, client


def _metadata() -> OutputMetadata:
    image = PreparedInputImage(data=b"x", mime_type="image/png", size_bytes=1, sha256="abc", source="in.png")
    return OutputMetadata(prompt="a cat", model_id="m1", model_label="Model One", input_images=(image,))


class TestResolveExtension:
    def test_content_type_wins(self) -> None:
        output = GenerationOutput(index=0, url="https://x/a.gif", mime_type="image/webp")
        assert resolve_extension(DownloadedOutput(b"", "image/jpeg; charset=binary"), output) == "jpg"

    def test_falls_back_to_declared_mime(self) -> None:
        output = GenerationOutput(index=0, url="https://x/a.gif", mime_type="image/webp")
        assert resolve_extension(DownloadedOutput(b"", "application/octet-stream"), output) == "webp"

    def test_falls_back_to_url(self) -> None:
        output = GenerationOutput(index=0, url="https://x/a.JPEG?sig=1")
        assert resolve_extension(DownloadedOutput(b"", None), output) == "jpg"

    def test_defaults_to_png(self) -> None:
        output = GenerationOutput(index=0, url="https://x/blob")
        assert resolve_extension(DownloadedOutput(b"", None), output) == "png"


class TestSave:
    @pytest.mark.asyncio
    async def test_saves_bytes_and_sidecar(self, tmp_path: Path, fast_policy: RetryPolicy) -> None:
        retriever, client = _make_retriever(tmp_path, fast_policy)
        client.download_output.return_value = DownloadedOutput(b"png-bytes", "image/png")
        job = _job()

        saved = await retriever.save(job.outputs[0], job, "Model-20260101-120000", CancelSignal(), metadata=_metadata())

        assert saved.path == tmp_path / "Model-20260101-120000.png"
        assert saved.path.read_bytes() == b"png-bytes"
        assert saved.job_id == "job-1"
        assert saved.sidecar_path == tmp_path / "Model-20260101-120000.png.imagegen.json"
        sidecar = json.loads(saved.sidecar_path.read_text())
        assert sidecar["prompt"] == "a cat"
        assert sidecar["job"]["id"] == "job-1"
        assert sidecar["input_images"][0]["source"] == "in.png"
        client.poll_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sidecar_disabled(self, tmp_path: Path, fast_policy: RetryPolicy) -> None:
        retriever, client = _make_retriever(tmp_path, fast_policy, save_sidecar=False)
        client.download_output.return_value = DownloadedOutput(b"x", "image/png")
        job = _job()
        saved = await retriever.save(job.outputs[0], job, "base", CancelSignal(), metadata=_metadata())
        assert saved.sidecar_path is None
        assert list(tmp_path.iterdir()) == [saved.path]

    @pytest.mark.asyncio
    async def test_sidecar_failure_is_not_fatal(self, tmp_path: Path, fast_policy: RetryPolicy) -> None:
        retriever, client = _make_retriever(tmp_path, fast_policy)
        client.download_output.return_value = DownloadedOutput(b"x", "image/png")
        (tmp_path / "base.png.imagegen.json").mkdir()
        job = _job()
        saved = await retriever.save(job.outputs[0], job, "base", CancelSignal(), metadata=_metadata())
        assert saved.path.read_bytes() == b"x"
        assert saved.sidecar_path is None

    @pytest.mark.asyncio
    async def test_refreshes_url_after_transient_failure(self, tmp_path: Path, fast_policy: RetryPolicy) -> None:
        retriever, client = _make_retriever(tmp_path, fast_policy)
        client.download_output.side_effect = [
            TransientProviderError("Image download failed: HTTP 503", status=503),
            DownloadedOutput(b"fresh", "image/png"),
        ]
        client.poll_job.return_value = _job(NEW_URL)
        job = _job()

        saved = await retriever.save(job.outputs[0], job, "base", CancelSignal(), poll_url="/jobs/job-1")

        assert saved.output.url == NEW_URL
        assert saved.path.read_bytes() == b"fresh"
        assert [c.args[0] for c in client.download_output.await_args_list] == [OLD_URL, NEW_URL]
        client.poll_job.assert_awaited_once_with("job-1", "/jobs/job-1")

    @pytest.mark.asyncio
    async def test_second_transient_failure_propagates(self, tmp_path: Path, fast_policy: RetryPolicy) -> None:
        retriever, client = _make_retriever(tmp_path, fast_policy)
        client.download_output.side_effect = [
            TransientProviderError("HTTP 503", status=503),
            TransientProviderError("HTTP 503", status=503),
        ]
        client.poll_job.return_value = _job(NEW_URL)
        job = _job()

        with pytest.raises(TransientProviderError):
            await retriever.save(job.outputs[0], job, "base", CancelSignal())

        assert client.poll_job.await_count == 1
        assert client.download_output.await_count == 2

    @pytest.mark.asyncio
    async def test_unchanged_url_is_not_retried(self, tmp_path: Path, fast_policy: RetryPolicy) -> None:
        retriever, client = _make_retriever(tmp_path, fast_policy)
        client.download_output.side_effect = [TransientProviderError("HTTP 410", status=410)]
        client.poll_job.return_value = _job(OLD_URL)
        job = _job()

        with pytest.raises(TransientProviderError):
            await retriever.save(job.outputs[0], job, "base", CancelSignal())
        assert client.download_output.await_count == 1

    @pytest.mark.asyncio
    async def test_refresh_matches_by_index_then_position(self, tmp_path: Path, fast_policy: RetryPolicy) -> None:
        retriever, client = _make_retriever(tmp_path, fast_policy)
        client.download_output.side_effect = [
            TransientProviderError("HTTP 503", status=503),
            DownloadedOutput(b"ok", "image/png"),
        ]
        client.poll_job.return_value = GenerationJob(
            id="job-1",
            status="succeeded",
            outputs=(
                GenerationOutput(index=5, url="https://cdn.example/a.png"),
                GenerationOutput(index=6, url="https://cdn.example/b.png"),
            ),
        )
        job = _job()

        saved = await retriever.save(job.outputs[0], job, "base", CancelSignal(), position=1)

        assert saved.output.url == "https://cdn.example/b.png"

    @pytest.mark.asyncio
    async def test_hanging_refresh_gives_up_at_timeout(self, tmp_path: Path, fast_policy: RetryPolicy) -> None:
        async def hang(job_id: str, poll_url: str | None = None) -> GenerationJob:
            await asyncio.sleep(10)
            return _job(NEW_URL)

        retriever, client = _make_retriever(tmp_path, fast_policy)
        client.download_output.side_effect = [TransientProviderError("HTTP 503", status=503)]
        client.poll_job.side_effect = hang
        loop = asyncio.get_running_loop()
        started = loop.time()
        job = _job()

        with pytest.raises(TransientProviderError):
            await retriever.save(job.outputs[0], job, "base", CancelSignal())

        assert loop.time() - started < 3.0
        assert client.download_output.await_count == 1

    @pytest.mark.asyncio
    async def test_non_retryable_failure_propagates_without_refresh(
        self, tmp_path: Path, fast_policy: RetryPolicy
    ) -> None:
        retriever, client = _make_retriever(tmp_path, fast_policy)
        client.download_output.side_effect = [ProviderRequestError("HTTP 403", status=403)]
        job = _job()

        with pytest.raises(ProviderRequestError, match="403"):
            await retriever.save(job.outputs[0], job, "base", CancelSignal())
        client.poll_job.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancelled_signal_prevents_download(self, tmp_path: Path, fast_policy: RetryPolicy) -> None:
        retriever, client = _make_retriever(tmp_path, fast_policy)
        cancel = CancelSignal()
        cancel.cancel()
        job = _job()

        with pytest.raises(GenerationAbortedError):
            await retriever.save(job.outputs[0], job, "base", cancel)
        client.download_output.assert_not_awaited()


class TestBuildSidecar:
    def test_includes_output_dimensions_and_model(self) -> None:
        job = _job()
        sidecar = build_sidecar(job.outputs[0], job, _metadata())
        assert sidecar["model"] == {"id": "m1", "label": "Model One"}
        assert sidecar["output"]["width"] == 64  # type: ignore[index]
        assert sidecar["job"]["status"] == "succeeded"  # type: ignore[index]
