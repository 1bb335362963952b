"""Core data model for the capture-and-count pipeline.

Everything here is immutable. Failures travel as values (the
``DetectionError`` variants) so callers have to branch on them explicitly.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar


class CoordinateSpace(StrEnum):
    NORMALIZED = "normalized"
    ABSOLUTE_PIXELS = "absolute_pixels"


class SessionStatus(StrEnum):
    LIVE = "live"
    CAPTURED = "captured"
    PROCESSING = "processing"
    RESOLVED = "resolved"
    CLOSED = "closed"


@dataclass(frozen=True)
class ImageCapture:
    """An encoded still frame plus its intrinsic size, if it could be decoded."""

    data: bytes
    width: int | None = None
    height: int | None = None
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class ReferenceSize:
    """Image size the model declared when it reported pixel coordinates."""

    width: float
    height: float


@dataclass(frozen=True)
class DetectionBox:
    """Extent of one detected object.

    ``reference_size`` is only meaningful for ``ABSOLUTE_PIXELS`` boxes.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    space: CoordinateSpace = CoordinateSpace.NORMALIZED
    reference_size: ReferenceSize | None = None

    @property
    def is_valid(self) -> bool:
        coords = (self.x1, self.y1, self.x2, self.y2)
        if not all(math.isfinite(v) for v in coords):
            return False
        return self.x2 > self.x1 and self.y2 > self.y1

    @classmethod
    def from_top_left(
        cls, top: float, left: float, width: float, height: float, reference_size: ReferenceSize
    ) -> DetectionBox:
        """Create an absolute-pixel box from (top, left, width, height) fields."""
        return cls(
            x1=left,
            y1=top,
            x2=left + width,
            y2=top + height,
            space=CoordinateSpace.ABSOLUTE_PIXELS,
            reference_size=reference_size,
        )


@dataclass(frozen=True)
class DetectionResult:
    """A successfully interpreted model reply.

    ``count`` is the model's own figure and is authoritative; ``boxes`` may be
    shorter (or longer) than ``count``.
    """

    count: int
    boxes: tuple[DetectionBox, ...] = ()
    reference_size: ReferenceSize | None = None


@dataclass(frozen=True)
class LabelMismatch:
    """The model saw a different kind of object than the one being counted."""

    observed_label: str
    expected_label: str = ""

    kind: ClassVar[str] = "label_mismatch"

    @property
    def message(self) -> str:
        observed = self.observed_label or "an unknown item"
        if self.expected_label:
            return f"Wrong item detected: found {observed} instead of {self.expected_label}"
        return f"Wrong item detected: found {observed}"


@dataclass(frozen=True)
class UnparseableResponse:
    """The reply matched none of the known grammars. ``raw_text`` is for diagnostics only."""

    raw_text: str

    kind: ClassVar[str] = "unparseable_response"

    @property
    def message(self) -> str:
        return "Invalid response format"


@dataclass(frozen=True)
class TransportFailure:
    """The model service could not be reached or returned no usable reply."""

    cause: str

    kind: ClassVar[str] = "transport_failure"

    @property
    def message(self) -> str:
        return f"Model service unavailable: {self.cause}"


DetectionError = LabelMismatch | UnparseableResponse | TransportFailure
DetectionOutcome = DetectionResult | DetectionError


@dataclass(frozen=True)
class SurfaceSize:
    """Rendered size of the image element overlays are drawn on."""

    width: float
    height: float


@dataclass(frozen=True)
class PixelRect:
    left: int
    top: int
    width: int
    height: int


EMPTY_RECT = PixelRect(left=0, top=0, width=0, height=0)


@dataclass(frozen=True)
class CountReport:
    """What a confirmed session hands to reconciliation."""

    final_count: int
    boxes: tuple[DetectionBox, ...] = ()
