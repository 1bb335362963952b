"""Response interpreter: free-text model reply -> DetectionResult | DetectionError.

Three reply dialects are accepted. Rather than branching on which prompt or
model version produced the reply, each structural pattern is tried in a fixed
order and the first one that matches wins:

    WRONG_ITEM marker -> dialect A (pixels + image dimensions)
                      -> dialect B (normalized x1/y1/x2/y2)
                      -> dialect C (bare count)

``parse`` never raises; anything it cannot read becomes ``UnparseableResponse``.
"""

from __future__ import annotations

import logging
import re

from shelfcount.vision.types import (
    DetectionBox,
    DetectionOutcome,
    DetectionResult,
    LabelMismatch,
    ReferenceSize,
    UnparseableResponse,
)

logger = logging.getLogger(__name__)

WRONG_ITEM_MARKER = "WRONG_ITEM:"

_NUMBER = r"-?(?:\d+\.?\d*|\.\d+)"

_DIMENSIONS_LIST = re.compile(
    rf"image\s+dimensions\s*:\s*width\s*:\s*(?P<width>{_NUMBER})\s*(?:px)?\s*,\s*"
    rf"height\s*:\s*(?P<height>{_NUMBER})\s*(?:px)?\s*[.,;]?\s*"
    r"(?:[a-z][a-z ]*:\s*)?(?<![\d.])(?P<count>-?\d+)\s*,\s*\[\[(?P<objects>.*?)\]\]",
    re.IGNORECASE | re.DOTALL,
)
_COUNT_LIST = re.compile(
    r"(?<![\d.])(?P<count>-?\d+)\s*,\s*\[\[(?P<objects>.*?)\]\]",
    re.DOTALL,
)
_OBJECT_SEPARATOR = re.compile(r"\]\s*,\s*\[")
# An integer that is not the whole or fractional part of a decimal.
_STANDALONE_INTEGER = re.compile(r"(?<![\d.])-?\d+(?!\.\d|\d)")
_DIGITS = re.compile(r"\d+")

_PIXEL_FIELDS = ("top", "left", "width", "height")
_NORMALIZED_FIELDS = ("x1", "y1", "x2", "y2")


def parse(raw_text: str, expected_label: str) -> DetectionOutcome:
    """Interpret a raw model reply for a capture of ``expected_label``."""
    logger.debug("Raw model reply for %r: %r", expected_label, raw_text)

    mismatch = _parse_mismatch(raw_text, expected_label)
    if mismatch is not None:
        return mismatch

    for dialect in (_parse_dimensioned_list, _parse_normalized_list, _parse_count_only):
        result = dialect(raw_text)
        if result is not None:
            return result

    logger.warning("Could not parse model reply for %r", expected_label)
    return UnparseableResponse(raw_text=raw_text)


def _parse_mismatch(raw_text: str, expected_label: str) -> LabelMismatch | None:
    _, marker, rest = raw_text.partition(WRONG_ITEM_MARKER)
    if not marker:
        return None
    observed = rest.strip().splitlines()[0] if rest.strip() else ""
    observed = observed.strip().strip("'\"`*").rstrip(".!").strip()
    logger.info("Model reported %r instead of %r", observed, expected_label)
    return LabelMismatch(observed_label=observed, expected_label=expected_label)


def _parse_dimensioned_list(raw_text: str) -> DetectionResult | None:
    match = _DIMENSIONS_LIST.search(raw_text)
    if match is None:
        return None
    reference = ReferenceSize(width=float(match["width"]), height=float(match["height"]))

    boxes: list[DetectionBox] = []
    for chunk in _split_objects(match["objects"]):
        fields = _extract_fields(chunk, _PIXEL_FIELDS)
        if fields is None:
            continue
        top, left, width, height = fields
        _keep_valid(boxes, DetectionBox.from_top_left(top, left, width, height, reference), chunk)

    return DetectionResult(count=_clamp_count(match["count"]), boxes=tuple(boxes), reference_size=reference)


def _parse_normalized_list(raw_text: str) -> DetectionResult | None:
    match = _COUNT_LIST.search(raw_text)
    if match is None:
        return None

    boxes: list[DetectionBox] = []
    for chunk in _split_objects(match["objects"]):
        fields = _extract_fields(chunk, _NORMALIZED_FIELDS)
        if fields is None:
            continue
        x1, y1, x2, y2 = fields
        _keep_valid(boxes, DetectionBox(x1=x1, y1=y1, x2=x2, y2=y2), chunk)

    return DetectionResult(count=_clamp_count(match["count"]), boxes=tuple(boxes))


def _parse_count_only(raw_text: str) -> DetectionResult | None:
    match = _STANDALONE_INTEGER.search(raw_text) or _DIGITS.search(raw_text)
    if match is None:
        return None
    return DetectionResult(count=_clamp_count(match.group(0)))


def _split_objects(objects: str) -> list[str]:
    return [chunk.strip(" \t\r\n[]") for chunk in _OBJECT_SEPARATOR.split(objects)]


def _extract_fields(chunk: str, names: tuple[str, ...]) -> tuple[float, ...] | None:
    values: list[float] = []
    for name in names:
        found = re.search(rf"\b{name}\s*:\s*({_NUMBER})(?!\.?\w)", chunk, re.IGNORECASE)
        if found is None:
            logger.warning("Dropping object without a numeric %r field: %r", name, chunk)
            return None
        values.append(float(found.group(1)))
    return tuple(values)


def _keep_valid(boxes: list[DetectionBox], box: DetectionBox, chunk: str) -> None:
    if box.is_valid:
        boxes.append(box)
    else:
        logger.warning("Dropping degenerate box: %r", chunk)


def _clamp_count(literal: str) -> int:
    return max(0, int(literal))
