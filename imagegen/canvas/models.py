from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def overlaps(self, other: "Rect") -> bool:
        return (
            self.x < other.right
            and other.x < self.right
            and self.y < other.bottom
            and other.y < self.bottom
        )


@dataclass(frozen=True)
class OutputSlot:
    """Target rectangle in the document for one output of a run."""

    index: int
    rect: Rect


@dataclass
class CanvasNode:
    """Node of a JSON canvas. Keys this model does not know are kept in `extra`."""

    id: str
    type: str
    x: float = 0
    y: float = 0
    width: float | None = None
    height: float | None = None
    text: str | None = None
    file: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def rect(self) -> Rect:
        return Rect(self.x, self.y, self.width or 0, self.height or 0)


@dataclass
class CanvasEdge:
    id: str
    from_node: str
    to_node: str
    label: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NodeSpec:
    """Node to insert as part of a GraphMutation; `key` names it for edges in the same mutation."""

    key: str
    kind: str
    rect: Rect
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EdgeSpec:
    """Edge to insert; endpoints are existing node ids or NodeSpec keys."""

    from_ref: str
    to_ref: str


@dataclass(frozen=True)
class GraphMutation:
    """Removals and insertions applied to the document as one write."""

    remove_node_ids: tuple[str, ...] = ()
    add_nodes: tuple[NodeSpec, ...] = ()
    add_edges: tuple[EdgeSpec, ...] = ()
