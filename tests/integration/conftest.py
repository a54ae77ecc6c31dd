import io
import json
from pathlib import Path

import pytest
from PIL import Image

PROMPT_NODE_ID = "prompt-node"
REFERENCE_NODE_ID = "reference-node"


@pytest.fixture()
def offline_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment for runs against the offline example provider."""
    monkeypatch.setenv("GENERATION_PROVIDER", "example")
    monkeypatch.setenv("LICENSE_KEY", "")
    monkeypatch.setenv("POLL_INITIAL_DELAY_SECONDS", "0")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "0.25")
    monkeypatch.setenv("PLACEHOLDER_TICK_SECONDS", "3600")
    monkeypatch.setenv("DEFAULT_MODEL_ID", "openai/gpt-5-image-mini")
    monkeypatch.setenv("OUTPUT_DIR", "Generations")


@pytest.fixture()
def vault(tmp_path: Path) -> Path:
    """A vault folder holding one reference image and a canvas linking it to a prompt node."""
    refs = tmp_path / "refs"
    refs.mkdir()
    buf = io.BytesIO()
    Image.new("RGB", (40, 30), (12, 160, 90)).save(buf, format="PNG")
    (refs / "fox.png").write_bytes(buf.getvalue())

    canvas = {
        "nodes": [
            {
                "id": PROMPT_NODE_ID,
                "type": "text",
                "x": 0,
                "y": 0,
                "width": 300,
                "height": 200,
                "text": "a red fox in snow",
            },
            {
                "id": REFERENCE_NODE_ID,
                "type": "file",
                "x": -400,
                "y": 0,
                "width": 200,
                "height": 150,
                "file": "refs/fox.png",
            },
        ],
        "edges": [{"id": "ref-edge", "fromNode": REFERENCE_NODE_ID, "toNode": PROMPT_NODE_ID}],
    }
    (tmp_path / "board.canvas").write_text(json.dumps(canvas), encoding="utf-8")
    return tmp_path
