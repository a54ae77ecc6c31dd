from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from imagegen.canvas.document import parse_canvas_document
from imagegen.canvas.exceptions import NodeNotFoundError
from imagegen.catalog.model_catalog import CURATED_MODELS
from imagegen.generation.client_base import BaseGenerationClient
from imagegen.generation.exceptions import (
    ConfigurationError,
    GenerationAbortedError,
    ProviderRequestError,
)
from imagegen.main import (
    EXIT_ABORTED,
    EXIT_FAILED,
    EXIT_OK,
    build_parser,
    load_catalog,
    load_input_images,
    main,
)

ARGS = ["--canvas", "board.canvas", "--node", "n1", "--prompt", "a cat"]


class TestParser:
    def test_defaults(self) -> None:
        args = build_parser().parse_args(ARGS)
        assert args.canvas == Path("board.canvas")
        assert args.count == 1
        assert args.model is None
        assert args.seed is None

    def test_all_options(self) -> None:
        args = build_parser().parse_args(
            [*ARGS, "--model", "m", "--count", "3", "--aspect-ratio", "4:3", "--seed", "9", "--vault-root", "/v"]
        )
        assert (args.model, args.count, args.aspect_ratio, args.seed) == ("m", 3, "4:3", 9)
        assert args.vault_root == Path("/v")

    def test_prompt_is_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--canvas", "c", "--node", "n"])


class TestExitCodes:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (None, EXIT_OK),
            (GenerationAbortedError("stop"), EXIT_ABORTED),
            (ConfigurationError("no key"), EXIT_FAILED),
            (FileNotFoundError("board.canvas"), EXIT_FAILED),
        ],
    )
    def test_maps_outcomes(self, error: BaseException | None, expected: int) -> None:
        run = AsyncMock(return_value=EXIT_OK, side_effect=error)
        with patch("imagegen.main.run", run):
            assert main(ARGS) == expected
        run.assert_awaited_once()


class TestLoadInputImages:
    @pytest.mark.asyncio
    async def test_skips_missing_and_unsupported(self, tmp_path: Path, png_bytes: bytes) -> None:
        (tmp_path / "a.png").write_bytes(png_bytes)
        document = parse_canvas_document(
            """{"nodes": [
                {"id": "n1", "type": "text", "text": "p"},
                {"id": "i1", "type": "file", "file": "a.png"},
                {"id": "i2", "type": "file", "file": "gone.jpg"},
                {"id": "i3", "type": "file", "file": "scan.tiff"}
            ], "edges": [
                {"id": "e1", "fromNode": "i1", "toNode": "n1"},
                {"id": "e2", "fromNode": "i2", "toNode": "n1"},
                {"id": "e3", "fromNode": "i3", "toNode": "n1"}
            ]}"""
        )

        sources = await load_input_images(document, "n1", tmp_path)

        assert [(s.source, s.mime_type) for s in sources] == [("a.png", "image/png")]
        assert sources[0].data == png_bytes

    @pytest.mark.asyncio
    async def test_missing_node_raises(self, tmp_path: Path) -> None:
        document = parse_canvas_document('{"nodes": [{"id": "n1", "type": "text", "text": "p"}]}')
        with pytest.raises(NodeNotFoundError):
            await load_input_images(document, "gone", tmp_path)


class TestLoadCatalog:
    @pytest.mark.asyncio
    async def test_falls_back_to_curated_models(self) -> None:
        client = MagicMock(spec=BaseGenerationClient)
        client.list_models = AsyncMock(side_effect=ProviderRequestError("HTTP 500", status=500))
        catalog = await load_catalog(client)
        assert catalog.models == CURATED_MODELS
