"""Tests for the model reply interpreter."""

from __future__ import annotations

import pytest

from shelfcount.vision.interpreter import parse
from shelfcount.vision.types import (
    CoordinateSpace,
    DetectionBox,
    DetectionResult,
    LabelMismatch,
    ReferenceSize,
    UnparseableResponse,
)

# ---------------------------------------------------------------------------
# Reply fixtures
# ---------------------------------------------------------------------------

DIMENSIONED_REPLY = (
    "Image dimensions: width: 640px, height: 480px. 2, "
    "[[top: 10, left: 20, width: 100, height: 50], [top: 200, left: 300, width: 40, height: 60]]"
)

NORMALIZED_REPLY = "3, [[x1: 0.1, y1: 0.2, x2: 0.5, y2: 0.6], [x1: 0.6, y1: 0.2, x2: 0.9, y2: 0.7]]"


class TestLabelMismatch:
    def test_marker_returns_observed_label(self) -> None:
        outcome = parse("WRONG_ITEM: keyboard", "wireless mouse")
        assert outcome == LabelMismatch(observed_label="keyboard", expected_label="wireless mouse")

    @pytest.mark.parametrize(
        "reply",
        [
            "WRONG_ITEM: usb-c cable\n3",
            "3, [[x1: 0.1, y1: 0.1, x2: 0.2, y2: 0.2]]\nWRONG_ITEM: usb-c cable",
            f"{DIMENSIONED_REPLY} WRONG_ITEM: usb-c cable",
            "'WRONG_ITEM: usb-c cable'",
        ],
    )
    def test_marker_wins_over_any_count(self, reply: str) -> None:
        outcome = parse(reply, "monitor stand")
        assert isinstance(outcome, LabelMismatch)
        assert outcome.observed_label == "usb-c cable"

    def test_message_names_both_labels(self) -> None:
        outcome = parse("WRONG_ITEM: keyboard.", "mouse")
        assert isinstance(outcome, LabelMismatch)
        assert outcome.message == "Wrong item detected: found keyboard instead of mouse"

    def test_empty_label_after_marker(self) -> None:
        outcome = parse("WRONG_ITEM:", "mouse")
        assert isinstance(outcome, LabelMismatch)
        assert outcome.observed_label == ""
        assert "unknown item" in outcome.message


class TestDimensionedDialect:
    def test_parses_reference_size_and_pixel_boxes(self) -> None:
        outcome = parse(DIMENSIONED_REPLY, "bottle")
        reference = ReferenceSize(width=640, height=480)
        assert outcome == DetectionResult(
            count=2,
            boxes=(
                DetectionBox(20, 10, 120, 60, CoordinateSpace.ABSOLUTE_PIXELS, reference),
                DetectionBox(300, 200, 340, 260, CoordinateSpace.ABSOLUTE_PIXELS, reference),
            ),
            reference_size=reference,
        )

    def test_malformed_object_is_dropped_but_count_kept(self) -> None:
        reply = (
            "Image dimensions: width: 800px, height: 600px. 3, "
            "[[top: 10, left: 20, width: 30, height: 40], [top: 5, left: abc, width: 1, height: 1], "
            "[top: 1, left: 1, height: 9]]"
        )
        outcome = parse(reply, "bottle")
        assert isinstance(outcome, DetectionResult)
        assert outcome.count == 3
        assert len(outcome.boxes) == 1
        assert outcome.boxes[0].x2 == 50

    def test_fields_in_any_order_and_decimals(self) -> None:
        reply = "image dimensions: width: 100.5px, height: 50px. 1, [[left: 1.5, top: 2, height: 3.25, width: 4]]"
        outcome = parse(reply, "bottle")
        assert isinstance(outcome, DetectionResult)
        assert outcome.reference_size == ReferenceSize(width=100.5, height=50)
        assert outcome.boxes[0] == DetectionBox.from_top_left(2, 1.5, 4, 3.25, ReferenceSize(100.5, 50))

    def test_labelled_count_after_dimensions(self) -> None:
        reply = "Image dimensions: width: 640px, height: 480px. Count: 1, [[top: 10, left: 20, width: 100, height: 50]]"
        reference = ReferenceSize(width=640, height=480)
        outcome = parse(reply, "bottle")
        assert outcome == DetectionResult(
            count=1,
            boxes=(DetectionBox(20, 10, 120, 60, CoordinateSpace.ABSOLUTE_PIXELS, reference),),
            reference_size=reference,
        )

    def test_zero_size_box_is_dropped(self) -> None:
        reply = "Image dimensions: width: 100px, height: 100px. 1, [[top: 10, left: 10, width: 0, height: 5]]"
        outcome = parse(reply, "bottle")
        assert outcome == DetectionResult(count=1, boxes=(), reference_size=ReferenceSize(100, 100))


class TestNormalizedDialect:
    def test_parses_normalized_boxes(self) -> None:
        outcome = parse(NORMALIZED_REPLY, "mouse")
        assert isinstance(outcome, DetectionResult)
        assert outcome.count == 3
        assert outcome.reference_size is None
        assert outcome.boxes == (
            DetectionBox(0.1, 0.2, 0.5, 0.6),
            DetectionBox(0.6, 0.2, 0.9, 0.7),
        )
        assert all(box.space is CoordinateSpace.NORMALIZED for box in outcome.boxes)

    def test_count_is_authoritative_over_surviving_boxes(self) -> None:
        reply = (
            "4, [[x1: 0.1, y1: 0.1, x2: 0.2, y2: 0.2], [x1: 0.3, y2: 0.4], "
            "[x1: 0.5, y1: 0.5, x2: 0.4, y2: 0.9], [x1: one, y1: 0, x2: 1, y2: 1]]"
        )
        outcome = parse(reply, "mouse")
        assert isinstance(outcome, DetectionResult)
        assert outcome.count == 4
        assert outcome.boxes == (DetectionBox(0.1, 0.1, 0.2, 0.2),)

    def test_tolerates_preamble_and_code_fences(self) -> None:
        reply = "Sure! Here is the count:\n```\n1, [[x1: .2, y1: 0.3, x2: 0.8, y2: 0.7]]\n```"
        outcome = parse(reply, "mouse")
        assert outcome == DetectionResult(count=1, boxes=(DetectionBox(0.2, 0.3, 0.8, 0.7),))

    def test_integer_coordinates(self) -> None:
        outcome = parse("1, [[x1: 0, y1: 0, x2: 1, y2: 1]]", "mouse")
        assert isinstance(outcome, DetectionResult)
        assert outcome.boxes == (DetectionBox(0.0, 0.0, 1.0, 1.0),)

    def test_negative_count_clamped_to_zero(self) -> None:
        outcome = parse("-2, [[x1: 0.1, y1: 0.1, x2: 0.2, y2: 0.2]]", "mouse")
        assert isinstance(outcome, DetectionResult)
        assert outcome.count == 0
        assert len(outcome.boxes) == 1

    def test_dimensioned_reply_is_not_read_as_normalized(self) -> None:
        outcome = parse(DIMENSIONED_REPLY, "bottle")
        assert isinstance(outcome, DetectionResult)
        assert all(box.space is CoordinateSpace.ABSOLUTE_PIXELS for box in outcome.boxes)


class TestCountOnlyDialect:
    def test_bare_integer(self) -> None:
        assert parse("3", "mouse") == DetectionResult(count=3, boxes=())

    def test_first_integer_in_prose(self) -> None:
        assert parse("I can see 7 mice and 2 cables.", "mouse") == DetectionResult(count=7)

    def test_skips_decimals_for_standalone_integer(self) -> None:
        assert parse("Confidence 0.85, total 12", "mouse") == DetectionResult(count=12)

    def test_falls_back_to_any_digits(self) -> None:
        assert parse("roughly 2.5 boxes", "mouse") == DetectionResult(count=2)

    def test_negative_clamped(self) -> None:
        assert parse("-4", "mouse") == DetectionResult(count=0)


class TestUnparseable:
    @pytest.mark.parametrize("reply", ["", "no numbers here", "   \n  "])
    def test_no_number_is_unparseable(self, reply: str) -> None:
        outcome = parse(reply, "mouse")
        assert outcome == UnparseableResponse(raw_text=reply)
        assert outcome.message == "Invalid response format"

    @pytest.mark.parametrize(
        "reply",
        ["]] [[ , : x1:", "[[x1: , y1: ]]", "Image dimensions: width: px", "\x00\x01", "WRONG_ITEM"],
    )
    def test_never_raises(self, reply: str) -> None:
        parse(reply, "mouse")
