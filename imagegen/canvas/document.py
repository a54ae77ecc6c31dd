"""JSON canvas documents held as an arena of nodes and edges keyed by id."""

import json
import uuid
from dataclasses import dataclass
from typing import Any

from imagegen.canvas.exceptions import CanvasFormatError, NodeNotFoundError
from imagegen.canvas.models import CanvasEdge, CanvasNode

IMAGE_FILE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "webp", "gif", "bmp", "tiff"})

_NODE_KEYS = ("id", "type", "x", "y", "width", "height", "text", "file")
_EDGE_KEYS = ("id", "fromNode", "toNode", "label")


def generate_id(prefix: str = "imagegen") -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


class CanvasDocument:
    """Nodes and edges stored by id, with incoming/outgoing adjacency by id."""

    def __init__(self, extra: dict[str, Any] | None = None) -> None:
        self.nodes: dict[str, CanvasNode] = {}
        self.edges: dict[str, CanvasEdge] = {}
        self.extra: dict[str, Any] = dict(extra or {})
        self._incoming: dict[str, list[str]] = {}
        self._outgoing: dict[str, list[str]] = {}

    def add_node(self, node: CanvasNode) -> None:
        if node.id in self.nodes:
            raise ValueError(f"Duplicate node id '{node.id}'")
        self.nodes[node.id] = node

    def add_edge(self, edge: CanvasEdge) -> None:
        if edge.id in self.edges:
            raise ValueError(f"Duplicate edge id '{edge.id}'")
        self.edges[edge.id] = edge
        self._outgoing.setdefault(edge.from_node, []).append(edge.id)
        self._incoming.setdefault(edge.to_node, []).append(edge.id)

    def remove_edge(self, edge_id: str) -> None:
        edge = self.edges.pop(edge_id, None)
        if edge is None:
            return
        for index, node_id in ((self._outgoing, edge.from_node), (self._incoming, edge.to_node)):
            edge_ids = index.get(node_id)
            if edge_ids and edge_id in edge_ids:
                edge_ids.remove(edge_id)

    def remove_nodes(self, node_ids: list[str] | tuple[str, ...]) -> list[str]:
        """Remove nodes and every edge touching them; returns the removed edge ids."""
        removed_edges: list[str] = []
        for node_id in node_ids:
            if self.nodes.pop(node_id, None) is None:
                continue
            touching = [*self._incoming.get(node_id, []), *self._outgoing.get(node_id, [])]
            for edge_id in touching:
                if edge_id in self.edges:
                    self.remove_edge(edge_id)
                    removed_edges.append(edge_id)
            self._incoming.pop(node_id, None)
            self._outgoing.pop(node_id, None)
        return removed_edges

    def get_node(self, node_id: str) -> CanvasNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(f"Node '{node_id}' not found in canvas")
        return node

    def incoming(self, node_id: str) -> list[CanvasEdge]:
        return [self.edges[edge_id] for edge_id in self._incoming.get(node_id, [])]


def parse_canvas_document(raw: str) -> CanvasDocument:
    """Parse JSON canvas text. Malformed nodes and edges are skipped.

    Raises:
        CanvasFormatError: if `raw` is not a JSON object.
    """
    try:
        data = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError as exc:
        raise CanvasFormatError(f"Canvas is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CanvasFormatError("Canvas root must be a JSON object")

    doc = CanvasDocument(extra={k: v for k, v in data.items() if k not in ("nodes", "edges")})
    for raw_node in _as_list(data.get("nodes")):
        node = _parse_node(raw_node)
        if node is not None and node.id not in doc.nodes:
            doc.add_node(node)
    for raw_edge in _as_list(data.get("edges")):
        edge = _parse_edge(raw_edge)
        if edge is not None and edge.id not in doc.edges:
            doc.add_edge(edge)
    return doc


def serialize_canvas_document(doc: CanvasDocument) -> str:
    data: dict[str, Any] = {
        **doc.extra,
        "nodes": [_node_to_dict(node) for node in doc.nodes.values()],
        "edges": [_edge_to_dict(edge) for edge in doc.edges.values()],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


@dataclass(frozen=True)
class IncomingImage:
    from_node_id: str
    file: str
    edge_id: str


def is_image_path(path: str) -> bool:
    return "." in path and path.rsplit(".", 1)[-1].lower() in IMAGE_FILE_EXTENSIONS


def find_incoming_image_files(doc: CanvasDocument, node_id: str) -> list[IncomingImage]:
    """Image file nodes linked into `node_id`, in edge order, without duplicates."""
    found: list[IncomingImage] = []
    seen: set[tuple[str, str]] = set()
    for edge in doc.incoming(node_id):
        source = doc.nodes.get(edge.from_node)
        if source is None or source.type != "file" or not source.file:
            continue
        if not is_image_path(source.file):
            continue
        key = (source.id, source.file)
        if key in seen:
            continue
        seen.add(key)
        found.append(IncomingImage(from_node_id=source.id, file=source.file, edge_id=edge.id))
    return found


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _parse_node(raw: Any) -> CanvasNode | None:
    if not isinstance(raw, dict):
        return None
    node_id, node_type = raw.get("id"), raw.get("type")
    if not isinstance(node_id, str) or not node_id or not isinstance(node_type, str) or not node_type:
        return None
    text, file = raw.get("text"), raw.get("file")
    return CanvasNode(
        id=node_id,
        type=node_type,
        x=_number(raw.get("x")) or 0,
        y=_number(raw.get("y")) or 0,
        width=_number(raw.get("width")),
        height=_number(raw.get("height")),
        text=text if isinstance(text, str) else None,
        file=file if isinstance(file, str) else None,
        extra={k: v for k, v in raw.items() if k not in _NODE_KEYS},
    )


def _parse_edge(raw: Any) -> CanvasEdge | None:
    if not isinstance(raw, dict):
        return None
    edge_id, from_node, to_node = raw.get("id"), raw.get("fromNode"), raw.get("toNode")
    if not all(isinstance(value, str) and value for value in (edge_id, from_node, to_node)):
        return None
    label = raw.get("label")
    return CanvasEdge(
        id=edge_id,
        from_node=from_node,
        to_node=to_node,
        label=label if isinstance(label, str) else None,
        extra={k: v for k, v in raw.items() if k not in _EDGE_KEYS},
    )


def _node_to_dict(node: CanvasNode) -> dict[str, Any]:
    data: dict[str, Any] = {"id": node.id, "type": node.type, "x": node.x, "y": node.y}
    for key in ("width", "height", "text", "file"):
        value = getattr(node, key)
        if value is not None:
            data[key] = value
    data.update(node.extra)
    return data


def _edge_to_dict(edge: CanvasEdge) -> dict[str, Any]:
    data: dict[str, Any] = {"id": edge.id, "fromNode": edge.from_node, "toNode": edge.to_node}
    if edge.label is not None:
        data["label"] = edge.label
    data.update(edge.extra)
    return data
