from imagegen.canvas.graph_base import BaseDocumentGraph
from imagegen.canvas.layout import frame_size_for_aspect_ratio, normalize_aspect_ratio
from imagegen.catalog.model_catalog import ModelCatalog
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import ConfigurationError, GenerationValidationError
from imagegen.generation.file_store import output_base_name
from imagegen.generation.models import (
    BatchResult,
    GenerationRequest,
    InputImageReference,
    PreparedInputImage,
    UploadTarget,
)
from imagegen.generation.retriever import OutputMetadata, OutputRetriever
from imagegen.generation.submitter import GenerationSubmitter
from imagegen.imaging.preprocessor import InputImagePreprocessor
from imagegen.logging.logger import Log
from imagegen.orchestrator.pipeline import RunContext, RunStep
from imagegen.placeholders.animator import PlaceholderAnimator

MIN_IMAGE_COUNT = 1
MAX_IMAGE_COUNT = 4


class ResolveContextStep(RunStep):
    name = "resolve_context"

    def __init__(self, catalog: ModelCatalog, default_model_id: str) -> None:
        self._catalog = catalog
        self._default_model_id = default_model_id

    async def run(self, context: RunContext) -> RunContext:
        request = context.request
        if not request.prompt.strip():
            raise GenerationValidationError("Prompt is empty")
        model_id = (request.model_id or "").strip() or self._default_model_id.strip()
        if not model_id:
            raise ConfigurationError("No image model selected")
        if request.seed is not None and request.seed < 0:
            raise GenerationValidationError(f"Seed must be a non-negative integer, got {request.seed}")
        aspect_ratio = None
        if request.aspect_ratio and request.aspect_ratio.strip():
            aspect_ratio = normalize_aspect_ratio(request.aspect_ratio)
            if aspect_ratio is None:
                raise GenerationValidationError(f"Invalid aspect ratio '{request.aspect_ratio}'")

        context.model_id = model_id
        context.image_count = max(MIN_IMAGE_COUNT, min(MAX_IMAGE_COUNT, int(request.image_count)))
        context.aspect_ratio = aspect_ratio
        context.per_job_max = self._catalog.max_images_per_job(model_id)
        Log.info(
            f"Resolved run for node {request.anchor_id}: model={model_id} "
            f"count={context.image_count} per_job_max={context.per_job_max}"
        )
        return context


class PreparePlaceholdersStep(RunStep):
    name = "prepare_placeholders"

    def __init__(
        self,
        graph: BaseDocumentGraph,
        animator: PlaceholderAnimator,
        catalog: ModelCatalog,
    ) -> None:
        self._graph = graph
        self._animator = animator
        self._catalog = catalog

    async def run(self, context: RunContext) -> RunContext:
        ratio = context.aspect_ratio
        if ratio is None:
            model = self._catalog.get(context.model_id)
            ratio = model.default_aspect_ratio if model is not None else None
        context.slots = await self._graph.compute_next_free_slot(
            context.request.anchor_id,
            context.image_count,
            frame_size_for_aspect_ratio(ratio),
        )
        context.session = await self._animator.start(context.request.anchor_id, context.slots)
        context.status("Preparing...")
        return context


class CollectInputsStep(RunStep):
    name = "collect_inputs"

    def __init__(
        self,
        preprocessor: InputImagePreprocessor,
        client: BaseGenerationClient,
        catalog: ModelCatalog,
        max_input_images: int,
    ) -> None:
        self._preprocessor = preprocessor
        self._client = client
        self._catalog = catalog
        self._max_input_images = max_input_images

    async def run(self, context: RunContext) -> RunContext:
        sources = list(context.request.input_images)
        if sources and not self._catalog.supports_image_input(context.model_id):
            Log.warning(f"Model {context.model_id} does not accept input images; ignoring {len(sources)}")
            sources = []
        if len(sources) > self._max_input_images:
            Log.warning(f"Using the first {self._max_input_images} of {len(sources)} input images")
            sources = sources[: self._max_input_images]

        for position, source in enumerate(sources, start=1):
            context.cancel.raise_if_cancelled()
            context.status(f"Preparing input image ({position}/{len(sources)})...")
            context.prepared_inputs.append(
                await self._preprocessor.prepare(source.data, source.mime_type, source.source)
            )

        if context.prepared_inputs and self._client.requires_upload:
            context.input_refs = await self._upload(context, context.prepared_inputs)

        context.generation_request = GenerationRequest(
            model_id=context.model_id,
            prompt=context.request.prompt.strip(),
            image_count=context.image_count,
            aspect_ratio=context.aspect_ratio,
            seed=context.request.seed,
            input_images=tuple(context.prepared_inputs),
        )
        return context

    async def _upload(
        self,
        context: RunContext,
        images: list[PreparedInputImage],
    ) -> tuple[InputImageReference, ...]:
        context.status("Uploading input images...")
        targets = await context.cancel.guard(self._client.prepare_uploads(images))
        if len(targets) != len(images):
            raise GenerationValidationError(
                f"Upload preparation returned {len(targets)} targets for {len(images)} images"
            )
        refs: list[InputImageReference] = []
        for image, target in zip(images, sorted(targets, key=lambda t: t.index)):
            verify_upload_target(image, target)
            await context.cancel.guard(self._client.upload_prepared(target, image.data))
            refs.append(
                InputImageReference(
                    type="uploaded",
                    sha256=image.sha256,
                    upload_id=target.upload_id,
                    mime_type=image.mime_type,
                    size_bytes=image.size_bytes,
                )
            )
        Log.info(f"Uploaded {len(refs)} input images")
        return tuple(refs)


def verify_upload_target(image: PreparedInputImage, target: UploadTarget) -> None:
    """Check that an upload target describes exactly the local image.

    Raises:
        GenerationValidationError: on a digest, size or mime type mismatch.
    """
    mismatches = []
    if target.sha256.lower() != image.sha256.lower():
        mismatches.append("sha256")
    if target.size_bytes != image.size_bytes:
        mismatches.append("size")
    if target.mime_type.lower() != image.mime_type.lower():
        mismatches.append("mime type")
    if mismatches:
        raise GenerationValidationError(
            f"Upload target {target.index} does not match input image: {', '.join(mismatches)}"
        )


class SubmitStep(RunStep):
    name = "submit"

    def __init__(
        self,
        submitter: GenerationSubmitter,
        retriever: OutputRetriever,
        catalog: ModelCatalog,
    ) -> None:
        self._submitter = submitter
        self._retriever = retriever
        self._catalog = catalog

    async def run(self, context: RunContext) -> RunContext:
        if context.generation_request is None:
            raise RuntimeError("Inputs must be collected before submitting")
        request = context.generation_request
        metadata = OutputMetadata(
            prompt=request.prompt,
            model_id=request.model_id,
            model_label=self._catalog.display_label(request.model_id),
            input_images=request.input_images,
        )

        async def save_batch(batch: BatchResult) -> None:
            context.job_ids.append(batch.job.id)
            for position, output in enumerate(batch.outputs):
                ordinal = len(context.saved_outputs) + 1
                label = f" ({ordinal}/{request.image_count})" if request.image_count > 1 else ""
                context.status(f"Downloading generated image{label}...")
                saved = await self._retriever.save(
                    output,
                    batch.job,
                    output_base_name(
                        self._catalog.file_base_name(request.model_id),
                        context.stamp,
                        ordinal if request.image_count > 1 else None,
                    ),
                    context.cancel,
                    poll_url=batch.poll_url,
                    position=position,
                    metadata=metadata,
                )
                context.saved_outputs.append(saved)

        await self._submitter.submit_batch(
            request,
            context.per_job_max,
            context.cancel,
            run_scope=context.run_scope,
            input_refs=context.input_refs,
            on_batch=save_batch,
            on_status=context.status,
        )
        return context


class FinalizeStep(RunStep):
    name = "finalize"

    def __init__(self, animator: PlaceholderAnimator) -> None:
        self._animator = animator

    async def run(self, context: RunContext) -> RunContext:
        if context.session is None:
            raise RuntimeError("Placeholders must be prepared before finalizing")
        context.status("Finalizing...")
        inserted = await self._animator.replace(context.session, context.saved_outputs)
        context.node_ids = list(inserted.values())
        return context
