from abc import ABC, abstractmethod
from typing import Any

from imagegen.canvas.models import CanvasNode, GraphMutation, OutputSlot, Rect


class BaseDocumentGraph(ABC):
    """Narrow document capability used by a generation run.

    Implementations own storage and serialization; callers only see ids.
    """

    @abstractmethod
    async def insert_node(self, kind: str, rect: Rect, payload: dict[str, Any]) -> str:
        """Insert a node and return its id."""

    @abstractmethod
    async def insert_edge(self, from_node: str, to_node: str) -> str:
        """Insert an edge and return its id."""

    @abstractmethod
    async def remove_nodes(self, node_ids: list[str]) -> None:
        """Remove nodes together with every edge touching them."""

    @abstractmethod
    async def update_node_text(self, node_id: str, text: str) -> None:
        """Rewrite the display text of an existing node."""

    @abstractmethod
    async def compute_next_free_slot(
        self,
        anchor_id: str,
        count: int,
        frame_size: tuple[int, int],
    ) -> list[OutputSlot]:
        """Compute `count` free output rectangles next to the anchor node.

        Raises:
            NodeNotFoundError: if the anchor is not in the document.
        """

    @abstractmethod
    async def apply(self, mutation: GraphMutation) -> dict[str, str]:
        """Apply removals and insertions as one write.

        Returns:
            Mapping of each NodeSpec key to the id of the inserted node.
        """

    @abstractmethod
    async def get_node(self, node_id: str) -> CanvasNode | None:
        """Return a node by id, or None when it does not exist."""
