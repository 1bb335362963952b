"""Capture device collaborator.

A session opens a stream when it enters ``live``, takes one snapshot in
``capture()``, and closes the stream whenever it leaves ``live``/``captured``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, TypeVar

logger = logging.getLogger(__name__)

HandleT = TypeVar("HandleT")


class DeviceError(RuntimeError):
    """The device could not open a stream or produce a frame."""


class CaptureDevice(Protocol[HandleT]):
    """Protocol for a still-frame source."""

    def open_stream(self) -> HandleT:
        """Start streaming and return a handle for it."""
        ...

    def snapshot(self, handle: HandleT) -> bytes:
        """Return one encoded still frame from an open stream."""
        ...

    def close_stream(self, handle: HandleT) -> None:
        """Release the stream."""
        ...


@dataclass
class FrameSlot:
    """Stream handle of an ``UploadedFrameDevice``."""

    stream_id: int
    frame: bytes | None = None
    open: bool = True


class UploadedFrameDevice:
    """Device whose stream is fed by uploaded frames instead of a camera.

    The HTTP layer calls ``feed`` with the uploaded bytes; the next snapshot
    returns them.
    """

    def __init__(self) -> None:
        self._slot: FrameSlot | None = None
        self._opened: int = 0

    @property
    def is_streaming(self) -> bool:
        return self._slot is not None and self._slot.open

    def open_stream(self) -> FrameSlot:
        self._opened += 1
        self._slot = FrameSlot(stream_id=self._opened)
        logger.debug("Opened upload stream %d", self._opened)
        return self._slot

    def feed(self, frame: bytes) -> None:
        """Make ``frame`` the next snapshot of the open stream."""
        if not self.is_streaming:
            raise DeviceError("No open stream to feed")
        assert self._slot is not None
        self._slot.frame = frame

    def snapshot(self, handle: FrameSlot) -> bytes:
        if not handle.open:
            raise DeviceError(f"Stream {handle.stream_id} is closed")
        if handle.frame is None:
            raise DeviceError(f"Stream {handle.stream_id} has no frame yet")
        return handle.frame

    def close_stream(self, handle: FrameSlot) -> None:
        handle.open = False
        handle.frame = None
        logger.debug("Closed upload stream %d", handle.stream_id)
