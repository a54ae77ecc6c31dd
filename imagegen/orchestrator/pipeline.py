from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from imagegen.canvas.models import OutputSlot
from imagegen.generation.cancellation import CancelSignal
from imagegen.generation.models import (
    GenerationRequest,
    InputImageReference,
    PreparedInputImage,
    SavedOutput,
)
from imagegen.orchestrator.models import RunRequest
from imagegen.placeholders.animator import PlaceholderSession


def _ignore_status(_text: str) -> None:
    return None


@dataclass(slots=True)
class RunContext:
    request: RunRequest
    cancel: CancelSignal
    run_scope: str
    stamp: str
    status: Callable[[str], None] = _ignore_status
    model_id: str = ""
    image_count: int = 1
    aspect_ratio: str | None = None
    per_job_max: int = 1
    slots: list[OutputSlot] = field(default_factory=list)
    session: PlaceholderSession | None = None
    prepared_inputs: list[PreparedInputImage] = field(default_factory=list)
    input_refs: tuple[InputImageReference, ...] | None = None
    generation_request: GenerationRequest | None = None
    saved_outputs: list[SavedOutput] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)
    node_ids: list[str] = field(default_factory=list)


class RunStep(ABC):
    name: str = "step"

    @abstractmethod
    async def run(self, context: RunContext) -> RunContext:
        raise NotImplementedError
