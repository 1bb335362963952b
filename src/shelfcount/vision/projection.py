"""Coordinate projector: detection box -> pixel rectangle on a rendered surface.

Axes are scaled independently. When the surface does not share the aspect
ratio of the model's reference size the rectangle is distorted rather than
corrected, since letterbox padding is not known here. Rectangles are not
clipped to the surface; that is left to the overlay renderer.
"""

from __future__ import annotations

import math

from shelfcount.vision.types import (
    EMPTY_RECT,
    CoordinateSpace,
    DetectionBox,
    DetectionResult,
    PixelRect,
    SurfaceSize,
)


def project(box: DetectionBox, surface: SurfaceSize) -> PixelRect:
    """Project ``box`` onto ``surface``.

    Never raises: a degenerate box, a non-positive surface, or a pixel box
    without a usable reference size yields a zero-size rectangle.
    """
    if not box.is_valid or not _positive(surface.width, surface.height):
        return EMPTY_RECT

    if box.space is CoordinateSpace.NORMALIZED:
        scale_x, scale_y = surface.width, surface.height
    else:
        reference = box.reference_size
        if reference is None or not _positive(reference.width, reference.height):
            return EMPTY_RECT
        scale_x = surface.width / reference.width
        scale_y = surface.height / reference.height

    # Each field is rounded on its own so width/height carry no rounding bias
    # from left/top.
    fields = (
        box.x1 * scale_x,
        box.y1 * scale_y,
        (box.x2 - box.x1) * scale_x,
        (box.y2 - box.y1) * scale_y,
    )
    if not all(math.isfinite(v) for v in fields):
        return EMPTY_RECT
    left, top, width, height = (_round_half_up(v) for v in fields)
    return PixelRect(left=left, top=top, width=width, height=height)


def project_all(result: DetectionResult, surface: SurfaceSize) -> list[PixelRect]:
    """Project every box of ``result`` onto ``surface``, preserving order."""
    return [project(box, surface) for box in result.boxes]


def _positive(width: float, height: float) -> bool:
    return math.isfinite(width) and math.isfinite(height) and width > 0 and height > 0


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)
