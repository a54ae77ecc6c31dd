import math
import re
from collections.abc import Iterable

from imagegen.canvas.models import OutputSlot, Rect

DEFAULT_LONG_EDGE = 360
DEFAULT_MIN_EDGE = 160
SLOT_GAP = 80
MAX_SHIFT_ROWS = 200

_ASPECT_RATIO = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*[:x/]\s*(\d+(?:\.\d+)?)\s*$", re.IGNORECASE)


def parse_aspect_ratio(value: str | None) -> tuple[float, float] | None:
    """Parse "W:H", "WxH" or "W/H"; returns None for empty or malformed input."""
    if not value:
        return None
    match = _ASPECT_RATIO.match(value)
    if match is None:
        return None
    width, height = float(match.group(1)), float(match.group(2))
    if width <= 0 or height <= 0:
        return None
    return width, height


def normalize_aspect_ratio(value: str | None) -> str | None:
    """Canonical "W:H" form of an aspect ratio string, or None if it does not parse."""
    parsed = parse_aspect_ratio(value)
    if parsed is None:
        return None
    return ":".join(_format_number(part) for part in parsed)


def frame_size_for_aspect_ratio(
    ratio: str | None,
    long_edge: int = DEFAULT_LONG_EDGE,
    min_edge: int = DEFAULT_MIN_EDGE,
) -> tuple[int, int]:
    """Width and height of an output frame whose longest edge is `long_edge`."""
    parsed = parse_aspect_ratio(ratio)
    if parsed is None:
        return long_edge, long_edge
    width, height = parsed
    if width >= height:
        return long_edge, max(min_edge, math.floor(long_edge * height / width))
    return max(min_edge, math.floor(long_edge * width / height)), long_edge


def compute_output_slots(
    anchor: Rect,
    count: int,
    frame_size: tuple[int, int],
    occupied: Iterable[Rect] = (),
    gap: int = SLOT_GAP,
) -> list[OutputSlot]:
    """Lay out `count` frames in a row right of `anchor`, shifted down until nothing overlaps."""
    width, height = frame_size
    obstacles = list(occupied)
    start_x = anchor.right + gap
    y = anchor.y
    for _row in range(MAX_SHIFT_ROWS):
        rects = [Rect(start_x + index * (width + gap), y, width, height) for index in range(count)]
        if not any(rect.overlaps(obstacle) for rect in rects for obstacle in obstacles):
            break
        y += height + gap
    return [OutputSlot(index=index, rect=rect) for index, rect in enumerate(rects)]


def _format_number(value: float) -> str:
    return str(int(value)) if value.is_integer() else f"{value:g}"
