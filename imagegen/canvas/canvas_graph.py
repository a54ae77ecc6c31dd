import asyncio
from pathlib import Path
from typing import Any

from imagegen.canvas.document import (
    CanvasDocument,
    generate_id,
    parse_canvas_document,
    serialize_canvas_document,
)
from imagegen.canvas.exceptions import NodeNotFoundError
from imagegen.canvas.graph_base import BaseDocumentGraph
from imagegen.canvas.layout import compute_output_slots
from imagegen.canvas.models import (
    CanvasEdge,
    CanvasNode,
    GraphMutation,
    OutputSlot,
    Rect,
)
from imagegen.logging.logger import Log

DEFAULT_NODE_WIDTH = 320
DEFAULT_NODE_HEIGHT = 240


class CanvasGraph(BaseDocumentGraph):
    """Document graph over an in-memory CanvasDocument.

    When `path` is set, the document is written back to it after every mutation.
    """

    def __init__(self, document: CanvasDocument, path: Path | None = None) -> None:
        self._document = document
        self._path = path

    @classmethod
    async def load(cls, path: Path) -> "CanvasGraph":
        raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return cls(parse_canvas_document(raw), path=path)

    @property
    def document(self) -> CanvasDocument:
        return self._document

    @property
    def path(self) -> Path | None:
        return self._path

    async def insert_node(self, kind: str, rect: Rect, payload: dict[str, Any]) -> str:
        node_id = self._add_node(kind, rect, payload)
        await self._persist()
        return node_id

    async def insert_edge(self, from_node: str, to_node: str) -> str:
        edge_id = self._add_edge(from_node, to_node)
        await self._persist()
        return edge_id

    async def remove_nodes(self, node_ids: list[str]) -> None:
        self._document.remove_nodes(node_ids)
        await self._persist()

    async def update_node_text(self, node_id: str, text: str) -> None:
        node = await self.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(f"Node '{node_id}' not found in canvas")
        if node.text == text:
            return
        node.text = text
        await self._persist()

    async def compute_next_free_slot(
        self,
        anchor_id: str,
        count: int,
        frame_size: tuple[int, int],
    ) -> list[OutputSlot]:
        anchor = await self.get_node(anchor_id)
        if anchor is None:
            raise NodeNotFoundError(f"Node '{anchor_id}' not found in canvas")
        anchor_rect = Rect(
            anchor.x,
            anchor.y,
            anchor.width or DEFAULT_NODE_WIDTH,
            anchor.height or DEFAULT_NODE_HEIGHT,
        )
        occupied = [
            Rect(node.x, node.y, node.width or DEFAULT_NODE_WIDTH, node.height or DEFAULT_NODE_HEIGHT)
            for node in self._document.nodes.values()
            if node.id != anchor_id
        ]
        return compute_output_slots(anchor_rect, count, frame_size, occupied)

    async def apply(self, mutation: GraphMutation) -> dict[str, str]:
        self._document.remove_nodes(list(mutation.remove_node_ids))
        inserted: dict[str, str] = {}
        for spec in mutation.add_nodes:
            inserted[spec.key] = self._add_node(spec.kind, spec.rect, spec.payload)
        for edge in mutation.add_edges:
            self._add_edge(inserted.get(edge.from_ref, edge.from_ref), inserted.get(edge.to_ref, edge.to_ref))
        await self._persist()
        return inserted

    async def get_node(self, node_id: str) -> CanvasNode | None:
        return self._document.nodes.get(node_id)

    def _add_node(self, kind: str, rect: Rect, payload: dict[str, Any]) -> str:
        fields = dict(payload)
        node = CanvasNode(
            id=generate_id("imagegen-node"),
            type=kind,
            x=rect.x,
            y=rect.y,
            width=rect.width,
            height=rect.height,
            text=fields.pop("text", None),
            file=fields.pop("file", None),
            extra=fields,
        )
        self._document.add_node(node)
        return node.id

    def _add_edge(self, from_node: str, to_node: str) -> str:
        edge = CanvasEdge(id=generate_id("imagegen-edge"), from_node=from_node, to_node=to_node)
        self._document.add_edge(edge)
        return edge.id

    async def _persist(self) -> None:
        if self._path is None:
            return
        text = serialize_canvas_document(self._document)
        await asyncio.to_thread(self._path.write_text, text, encoding="utf-8")
        Log.debug(f"Canvas written to {self._path}")
