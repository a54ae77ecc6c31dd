import argparse
import asyncio
import signal
import sys
from pathlib import Path

from imagegen.canvas.canvas_graph import CanvasGraph
from imagegen.canvas.document import CanvasDocument, find_incoming_image_files
from imagegen.canvas.exceptions import CanvasError
from imagegen.catalog.model_catalog import ModelCatalog
from imagegen.config.settings import Settings
from imagegen.generation.cancellation import CancelSignal
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import GenerationAbortedError, GenerationError, ProviderRequestError
from imagegen.generation.factory import GenerationClientFactory
from imagegen.imaging.preprocessor import mime_type_from_extension
from imagegen.logging.logger import Log
from imagegen.orchestrator.models import InputImageSource, RunRequest
from imagegen.orchestrator.orchestrator import build_orchestrator

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ABORTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagegen",
        description="Generate images from a prompt node of a JSON canvas.",
    )
    parser.add_argument("--canvas", required=True, type=Path, help="Path to the .canvas file")
    parser.add_argument("--node", required=True, help="Id of the anchor node")
    parser.add_argument("--prompt", required=True, help="Prompt text")
    parser.add_argument("--model", default=None, help="Model id (defaults to DEFAULT_MODEL_ID)")
    parser.add_argument("--count", type=int, default=1, help="Number of images (1-4)")
    parser.add_argument("--aspect-ratio", default=None, help='Aspect ratio such as "16:9"')
    parser.add_argument("--seed", type=int, default=None, help="Non-negative seed")
    parser.add_argument(
        "--vault-root",
        type=Path,
        default=None,
        help="Folder that canvas file references are relative to (defaults to the canvas folder)",
    )
    return parser


async def load_input_images(document: CanvasDocument, node_id: str, root: Path) -> list[InputImageSource]:
    """Read image files linked into `node_id`; missing or unsupported files are skipped.

    Raises:
        NodeNotFoundError: if `node_id` is not in the canvas.
    """
    document.get_node(node_id)
    sources: list[InputImageSource] = []
    for incoming in find_incoming_image_files(document, node_id):
        path = root / incoming.file
        mime_type = mime_type_from_extension(path.suffix)
        if mime_type is None:
            Log.warning(f"Skipping input image with unsupported type: {incoming.file}")
            continue
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            Log.warning(f"Input image missing; running without it: {incoming.file}")
            continue
        sources.append(InputImageSource(data=data, mime_type=mime_type, source=incoming.file))
    return sources


async def load_catalog(client: BaseGenerationClient) -> ModelCatalog:
    catalog = ModelCatalog()
    try:
        return catalog.with_server_models(await client.list_models())
    except ProviderRequestError as exc:
        Log.warning(f"Could not load server model catalog, using curated models: {exc}")
        return catalog


async def run(args: argparse.Namespace, settings: Settings) -> int:
    canvas_path: Path = args.canvas
    vault_root: Path = args.vault_root or canvas_path.parent
    output_root = Path(settings.output_dir)
    if not output_root.is_absolute():
        output_root = vault_root / output_root

    cancel = CancelSignal()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel, "Interrupted")
    except NotImplementedError:
        Log.debug("Signal handlers are not supported on this platform")

    graph = await CanvasGraph.load(canvas_path)
    client = GenerationClientFactory.create(settings)
    try:
        catalog = await load_catalog(client)
        orchestrator = build_orchestrator(
            settings,
            graph,
            client,
            output_root,
            catalog=catalog,
            file_reference=lambda path: _relative_reference(path, vault_root),
        )
        request = RunRequest(
            anchor_id=args.node,
            prompt=args.prompt,
            model_id=args.model,
            image_count=args.count,
            aspect_ratio=args.aspect_ratio,
            seed=args.seed,
            input_images=tuple(await load_input_images(graph.document, args.node, vault_root)),
            run_scope=f"{canvas_path.resolve()}#{args.node}",
        )
        result = await orchestrator.run(request, cancel=cancel)
    finally:
        await client.aclose()

    for saved in result.saved_outputs:
        Log.info(f"Generated {saved.path}")
    return EXIT_OK


def _relative_reference(path: Path, root: Path) -> str:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def main(argv: list[str] | None = None) -> int:
    """Entry point: parse args -> load settings -> run one generation."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    Log.configure(settings.log_level)
    try:
        return asyncio.run(run(args, settings))
    except GenerationAbortedError:
        Log.info("Generation aborted")
        return EXIT_ABORTED
    except KeyboardInterrupt:
        Log.info("Generation interrupted")
        return EXIT_ABORTED
    except (GenerationError, CanvasError, OSError) as exc:
        Log.error(f"Generation failed: {exc}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
