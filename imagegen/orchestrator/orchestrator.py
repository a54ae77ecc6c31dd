import asyncio
from collections.abc import Callable
from pathlib import Path

from imagegen.canvas.graph_base import BaseDocumentGraph
from imagegen.catalog.model_catalog import ModelCatalog
from imagegen.config.settings import Settings
from imagegen.generation.cancellation import CancelSignal
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import GenerationAbortedError
from imagegen.generation.file_store import OutputFileStore, output_stamp
from imagegen.generation.poller import JobPoller
from imagegen.generation.retriever import OutputRetriever
from imagegen.generation.retry import RetryPolicy
from imagegen.generation.submitter import GenerationSubmitter
from imagegen.imaging.factory import ImageTranscoderFactory
from imagegen.imaging.preprocessor import InputImagePreprocessor
from imagegen.logging.logger import Log
from imagegen.orchestrator.models import RunRequest, RunResult
from imagegen.orchestrator.pipeline import RunContext, RunStep
from imagegen.orchestrator.steps import (
    CollectInputsStep,
    FinalizeStep,
    PreparePlaceholdersStep,
    ResolveContextStep,
    SubmitStep,
)
from imagegen.placeholders.animator import PlaceholderAnimator

StatusCallback = Callable[[str], None]


class GenerationOrchestrator:
    """Runs one generation from an anchor node to saved, linked outputs.

    Pipeline: resolve -> placeholders -> inputs -> submit/save -> finalize.
    Any failure, cancellation included, removes the placeholders before the
    original exception propagates.
    """

    def __init__(self, steps: list[RunStep], animator: PlaceholderAnimator) -> None:
        self._steps = steps
        self._animator = animator

    async def run(
        self,
        request: RunRequest,
        cancel: CancelSignal | None = None,
        on_status: StatusCallback | None = None,
    ) -> RunResult:
        context = RunContext(
            request=request,
            cancel=cancel or CancelSignal(),
            run_scope=request.run_scope or request.anchor_id,
            stamp=output_stamp(),
        )
        context.status = lambda text: self._emit_status(context, text, on_status)
        Log.info(f"Starting generation run for node {request.anchor_id}")
        try:
            for step in self._steps:
                context.cancel.raise_if_cancelled()
                Log.debug(f"Run step {step.name} for node {request.anchor_id}")
                context = await step.run(context)
        except (Exception, asyncio.CancelledError) as exc:
            await self._rollback(context, exc)
            raise

        result = RunResult(
            saved_outputs=list(context.saved_outputs),
            requested_count=context.image_count,
            job_ids=list(context.job_ids),
            node_ids=list(context.node_ids),
        )
        if result.partial:
            Log.warning(
                f"Generation for node {request.anchor_id} saved "
                f"{len(result.saved_outputs)}/{result.requested_count} images"
            )
            self._notify(on_status, f"Saved {len(result.saved_outputs)} of {result.requested_count} images.")
        else:
            self._notify(on_status, "Done.")
        Log.info(f"Generation run for node {request.anchor_id} finished: {len(result.saved_outputs)} saved")
        return result

    async def _rollback(self, context: RunContext, exc: BaseException) -> None:
        if isinstance(exc, (GenerationAbortedError, asyncio.CancelledError)):
            Log.info(f"Generation run for node {context.request.anchor_id} aborted")
        else:
            Log.error(f"Generation run for node {context.request.anchor_id} failed: {exc}")
        if context.session is None:
            return
        try:
            await self._animator.remove(context.session)
        except Exception as rollback_exc:
            Log.exception(f"Could not remove placeholders for node {context.request.anchor_id}: {rollback_exc}")

    def _emit_status(self, context: RunContext, text: str, on_status: StatusCallback | None) -> None:
        Log.debug(f"[{context.request.anchor_id}] {text}")
        if context.session is not None:
            self._animator.set_phase(context.session, text)
        self._notify(on_status, text)

    @staticmethod
    def _notify(on_status: StatusCallback | None, text: str) -> None:
        if on_status is None:
            return
        try:
            on_status(text)
        except Exception as exc:
            Log.warning(f"Status callback failed: {exc}")


def build_orchestrator(
    settings: Settings,
    graph: BaseDocumentGraph,
    client: BaseGenerationClient,
    output_root: Path,
    catalog: ModelCatalog | None = None,
    file_reference: Callable[[Path], str] | None = None,
) -> GenerationOrchestrator:
    """Build a GenerationOrchestrator with all required collaborators."""
    catalog = catalog or ModelCatalog()
    policy = RetryPolicy.from_settings(settings)
    poller = JobPoller(client)
    submitter = GenerationSubmitter(client, poller, policy)
    retriever = OutputRetriever(
        client,
        poller,
        OutputFileStore(output_root),
        policy.refresh_policy(settings.refresh_poll_timeout_seconds),
        save_sidecar=settings.save_metadata_sidecar,
    )
    preprocessor = InputImagePreprocessor(
        ImageTranscoderFactory.create(settings), settings.upload_max_bytes
    )
    animator = PlaceholderAnimator(
        graph, tick_seconds=settings.placeholder_tick_seconds, file_reference=file_reference
    )
    steps: list[RunStep] = [
        ResolveContextStep(catalog, settings.default_model_id),
        PreparePlaceholdersStep(graph, animator, catalog),
        CollectInputsStep(preprocessor, client, catalog, settings.max_input_images),
        SubmitStep(submitter, retriever, catalog),
        FinalizeStep(animator),
    ]
    return GenerationOrchestrator(steps=steps, animator=animator)
