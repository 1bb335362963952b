"""Tests for the coordinate projector."""

from __future__ import annotations

import math

import pytest

from shelfcount.vision.projection import project, project_all
from shelfcount.vision.types import (
    EMPTY_RECT,
    CoordinateSpace,
    DetectionBox,
    DetectionResult,
    PixelRect,
    ReferenceSize,
    SurfaceSize,
)


def _pixel_box(top: float, left: float, width: float, height: float, ref: ReferenceSize | None) -> DetectionBox:
    return DetectionBox(left, top, left + width, top + height, CoordinateSpace.ABSOLUTE_PIXELS, ref)


class TestNormalizedBoxes:
    def test_scales_to_surface(self) -> None:
        rect = project(DetectionBox(0.25, 0.5, 0.75, 1.0), SurfaceSize(200, 100))
        assert rect == PixelRect(left=50, top=50, width=100, height=50)

    def test_doubling_surface_doubles_every_field(self) -> None:
        box = DetectionBox(0.1, 0.2, 0.4, 0.7)
        small = project(box, SurfaceSize(300, 200))
        large = project(box, SurfaceSize(600, 400))
        assert large == PixelRect(small.left * 2, small.top * 2, small.width * 2, small.height * 2)

    def test_reprojection_is_stable(self) -> None:
        box = DetectionBox(0.137, 0.291, 0.733, 0.958)
        surface = SurfaceSize(1024, 768)
        assert project(box, surface) == project(box, surface)

    def test_extent_rounded_independently_of_origin(self) -> None:
        # Rounding x2 and subtracting the rounded x1 would give 23.
        rect = project(DetectionBox(0.1234, 0.0, 0.3456, 0.5), SurfaceSize(100, 100))
        assert rect.left == 12
        assert rect.width == 22

    def test_rounds_half_up(self) -> None:
        rect = project(DetectionBox(0.125, 0.125, 0.5, 0.5), SurfaceSize(100, 100))
        assert rect.left == 13
        assert rect.top == 13

    def test_not_clipped_to_surface(self) -> None:
        rect = project(DetectionBox(0.5, 0.5, 1.5, 1.5), SurfaceSize(100, 100))
        assert rect == PixelRect(50, 50, 100, 100)


class TestPixelBoxes:
    def test_rescaled_by_reference_size(self) -> None:
        box = _pixel_box(top=48, left=64, width=128, height=96, ref=ReferenceSize(640, 480))
        assert project(box, SurfaceSize(320, 240)) == PixelRect(32, 24, 64, 48)

    def test_axes_scaled_independently(self) -> None:
        box = _pixel_box(top=48, left=64, width=128, height=96, ref=ReferenceSize(640, 480))
        assert project(box, SurfaceSize(640, 240)) == PixelRect(64, 24, 128, 48)

    @pytest.mark.parametrize("ref", [None, ReferenceSize(0, 480), ReferenceSize(640, -1)])
    def test_missing_or_bad_reference_gives_empty_rect(self, ref: ReferenceSize | None) -> None:
        box = _pixel_box(top=1, left=1, width=10, height=10, ref=ref)
        assert project(box, SurfaceSize(320, 240)) == EMPTY_RECT


class TestDegenerateInput:
    @pytest.mark.parametrize(
        "box",
        [
            DetectionBox(0.5, 0.1, 0.5, 0.2),
            DetectionBox(0.1, 0.6, 0.2, 0.3),
            DetectionBox(math.nan, 0.1, 0.2, 0.2),
            DetectionBox(0.1, 0.1, math.inf, 0.2),
        ],
    )
    def test_invalid_box(self, box: DetectionBox) -> None:
        assert project(box, SurfaceSize(100, 100)) == EMPTY_RECT

    @pytest.mark.parametrize("surface", [SurfaceSize(0, 100), SurfaceSize(100, -5), SurfaceSize(math.nan, 10)])
    def test_invalid_surface(self, surface: SurfaceSize) -> None:
        assert project(DetectionBox(0.1, 0.1, 0.2, 0.2), surface) == EMPTY_RECT


class TestProjectAll:
    def test_preserves_order(self) -> None:
        result = DetectionResult(
            count=5,
            boxes=(DetectionBox(0.0, 0.0, 0.1, 0.1), DetectionBox(0.5, 0.5, 0.6, 0.7)),
        )
        assert project_all(result, SurfaceSize(10, 10)) == [PixelRect(0, 0, 1, 1), PixelRect(5, 5, 1, 2)]

    def test_no_boxes(self) -> None:
        assert project_all(DetectionResult(count=3), SurfaceSize(10, 10)) == []
