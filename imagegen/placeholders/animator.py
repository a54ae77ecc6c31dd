import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from imagegen.canvas.graph_base import BaseDocumentGraph
from imagegen.canvas.models import EdgeSpec, GraphMutation, NodeSpec, OutputSlot
from imagegen.generation.models import SavedOutput
from imagegen.logging.logger import Log

T = TypeVar("T")

SPINNER_FRAMES = ("◐", "◓", "◑", "◒")
DEFAULT_PHASE = "Preparing"

# First match wins; more specific phrases come first.
_PHASE_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("upload",), "Uploading inputs"),
    (("download",), "Downloading"),
    (("saving", "save "), "Saving"),
    (("submit",), "Submitting"),
    (("queued",), "Queued"),
    (("finaliz", "updating canvas", "done"), "Finalizing"),
    (("prepar", "reading input", "input image", "compress", "collect"), "Preparing"),
    (("processing", "generat", "waiting"), "Generating"),
)


def normalize_phase(status: str) -> str:
    """Map raw status text such as "Downloading generated image (2/3)..." to a short phase."""
    text = status.strip().lower()
    if not text:
        return DEFAULT_PHASE
    for keywords, phase in _PHASE_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return phase
    return "Generating"


def format_elapsed(seconds: float) -> str:
    total = max(0, int(seconds))
    return f"{total // 60}:{total % 60:02d}"


class SerialTaskQueue:
    """Runs queued steps one at a time in FIFO order.

    Each step starts only after the previous one has finished, whatever its
    outcome. A step's own exception is delivered to whoever awaits its task.
    """

    def __init__(self) -> None:
        self._tail: asyncio.Future[object] | None = None

    def enqueue(self, step: Callable[[], Awaitable[T]]) -> "asyncio.Task[T]":
        previous = self._tail

        async def run() -> T:
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            return await step()

        task = asyncio.ensure_future(run())
        self._tail = task
        return task

    async def drain(self) -> None:
        """Wait until the most recently queued step has finished."""
        if self._tail is not None and not self._tail.done():
            await asyncio.wait([self._tail])


@dataclass
class PlaceholderSession:
    """Live placeholder state for one run; torn down exactly once."""

    anchor_id: str
    node_ids: list[str]
    slots: list[OutputSlot]
    phase: str
    started_at: float
    frame: int = 0
    stopped: bool = False
    torn_down: bool = False
    timer: "asyncio.Task[None] | None" = None
    queue: SerialTaskQueue = field(default_factory=SerialTaskQueue)


class PlaceholderAnimator:
    """Keeps animated "in progress" nodes in the document while a run is active.

    Every document write of a session goes through the session's queue, so
    timer ticks, phase updates and the final replace/remove never interleave.
    """

    def __init__(
        self,
        graph: BaseDocumentGraph,
        tick_seconds: float = 0.5,
        file_reference: Callable[[Path], str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._graph = graph
        self._tick_seconds = tick_seconds
        self._file_reference = file_reference or str
        self._clock = clock

    async def start(
        self,
        anchor_id: str,
        slots: list[OutputSlot],
        phase: str = DEFAULT_PHASE,
    ) -> PlaceholderSession:
        """Insert one linked placeholder per slot and start the tick timer."""
        session = PlaceholderSession(
            anchor_id=anchor_id,
            node_ids=[],
            slots=list(slots),
            phase=normalize_phase(phase),
            started_at=self._clock(),
        )
        try:
            for slot in session.slots:
                node_id = await self._graph.insert_node(
                    "text", slot.rect, {"text": self.render_text(session, slot.index)}
                )
                session.node_ids.append(node_id)
                await self._graph.insert_edge(anchor_id, node_id)
        except Exception:
            if session.node_ids:
                await self._graph.remove_nodes(session.node_ids)
            raise
        session.timer = asyncio.create_task(self._run_timer(session))
        Log.debug(f"Started {len(session.node_ids)} placeholders for node {anchor_id}")
        return session

    def tick(self, session: PlaceholderSession) -> "asyncio.Task[None]":
        """Queue one render step for the session."""
        return session.queue.enqueue(lambda: self._render(session))

    def set_phase(self, session: PlaceholderSession, status: str) -> None:
        """Record new status text; it is shown by the next queued render step."""
        if session.stopped:
            return
        session.phase = normalize_phase(status)
        self.tick(session)

    async def stop(self, session: PlaceholderSession) -> None:
        """Cancel the timer and wait for the queued steps; no writes follow."""
        session.stopped = True
        timer, session.timer = session.timer, None
        if timer is not None:
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        await session.queue.drain()

    async def replace(self, session: PlaceholderSession, saved: list[SavedOutput]) -> dict[str, str]:
        """Swap placeholders for output file nodes in one document mutation."""
        await self.stop(session)
        if session.torn_down:
            Log.warning(f"Placeholders for node {session.anchor_id} were already torn down")
            return {}
        add_nodes: list[NodeSpec] = []
        add_edges: list[EdgeSpec] = []
        for slot, output in zip(session.slots, saved):
            key = f"output-{slot.index}"
            add_nodes.append(
                NodeSpec(
                    key=key,
                    kind="file",
                    rect=slot.rect,
                    payload={"file": self._file_reference(output.path)},
                )
            )
            add_edges.append(EdgeSpec(from_ref=session.anchor_id, to_ref=key))
        mutation = GraphMutation(
            remove_node_ids=tuple(session.node_ids),
            add_nodes=tuple(add_nodes),
            add_edges=tuple(add_edges),
        )
        inserted = await session.queue.enqueue(lambda: self._graph.apply(mutation))
        session.torn_down = True
        return inserted

    async def remove(self, session: PlaceholderSession) -> None:
        """Delete the placeholders without replacement."""
        await self.stop(session)
        if session.torn_down:
            return
        mutation = GraphMutation(remove_node_ids=tuple(session.node_ids))
        await session.queue.enqueue(lambda: self._graph.apply(mutation))
        session.torn_down = True

    def render_text(self, session: PlaceholderSession, slot_index: int) -> str:
        glyph = SPINNER_FRAMES[session.frame % len(SPINNER_FRAMES)]
        elapsed = format_elapsed(self._clock() - session.started_at)
        lines = [f"{glyph} {session.phase} · {elapsed}"]
        if len(session.slots) > 1:
            lines.insert(0, f"Image {slot_index + 1}/{len(session.slots)}")
        return "\n".join(lines)

    async def _run_timer(self, session: PlaceholderSession) -> None:
        while not session.stopped:
            await asyncio.sleep(self._tick_seconds)
            if session.stopped:
                return
            self.tick(session)

    async def _render(self, session: PlaceholderSession) -> None:
        if session.stopped:
            return
        session.frame += 1
        try:
            for slot, node_id in zip(session.slots, session.node_ids):
                await self._graph.update_node_text(node_id, self.render_text(session, slot.index))
        except Exception as exc:
            Log.warning(f"Placeholder update for node {session.anchor_id} failed: {exc}")
