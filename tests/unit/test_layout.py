import pytest

from imagegen.canvas.layout import (
    compute_output_slots,
    frame_size_for_aspect_ratio,
    normalize_aspect_ratio,
    parse_aspect_ratio,
)
from imagegen.canvas.models import Rect


class TestAspectRatio:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [("16:9", "16:9"), ("16x9", "16:9"), (" 4 / 3 ", "4:3"), ("1.5:1", "1.5:1")],
    )
    def test_normalize(self, value: str, expected: str) -> None:
        assert normalize_aspect_ratio(value) == expected

    @pytest.mark.parametrize("value", [None, "", "wide", "0:1", "16:"])
    def test_invalid(self, value: str | None) -> None:
        assert parse_aspect_ratio(value) is None


class TestFrameSize:
    def test_landscape(self) -> None:
        assert frame_size_for_aspect_ratio("16:9") == (360, 202)

    def test_portrait(self) -> None:
        assert frame_size_for_aspect_ratio("9:16") == (202, 360)

    def test_square_when_missing(self) -> None:
        assert frame_size_for_aspect_ratio(None) == (360, 360)

    def test_min_edge_applies(self) -> None:
        assert frame_size_for_aspect_ratio("21:9") == (360, 160)


class TestComputeOutputSlots:
    def test_row_right_of_anchor(self) -> None:
        slots = compute_output_slots(Rect(0, 0, 100, 100), 2, (50, 50), gap=80)
        assert [slot.rect for slot in slots] == [Rect(180, 0, 50, 50), Rect(310, 0, 50, 50)]
        assert [slot.index for slot in slots] == [0, 1]

    def test_shifts_down_past_obstacles(self) -> None:
        slots = compute_output_slots(Rect(0, 0, 100, 100), 2, (50, 50), occupied=[Rect(200, 0, 10, 10)], gap=80)
        assert all(slot.rect.y == 130 for slot in slots)

    def test_slots_never_overlap_each_other(self) -> None:
        slots = compute_output_slots(Rect(0, 0, 100, 100), 4, (360, 202))
        rects = [slot.rect for slot in slots]
        assert not any(a.overlaps(b) for i, a in enumerate(rects) for b in rects[i + 1 :])
