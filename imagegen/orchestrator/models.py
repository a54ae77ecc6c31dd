from dataclasses import dataclass, field

from imagegen.generation.models import SavedOutput


@dataclass(frozen=True)
class InputImageSource:
    """Raw input image handed to a run before preprocessing."""

    data: bytes
    mime_type: str
    source: str = ""


@dataclass(frozen=True)
class RunRequest:
    """One generation run started from an anchor node."""

    anchor_id: str
    prompt: str
    model_id: str | None = None
    image_count: int = 1
    aspect_ratio: str | None = None
    seed: int | None = None
    input_images: tuple[InputImageSource, ...] = ()
    run_scope: str = ""


@dataclass(frozen=True)
class RunResult:
    """Outcome of a completed run. Fewer outputs than requested is not an error."""

    saved_outputs: list[SavedOutput]
    requested_count: int
    job_ids: list[str] = field(default_factory=list)
    node_ids: list[str] = field(default_factory=list)

    @property
    def shortfall(self) -> int:
        return max(0, self.requested_count - len(self.saved_outputs))

    @property
    def partial(self) -> bool:
        return self.shortfall > 0
