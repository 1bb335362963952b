"""Capture session state machine.

    live --capture()--> captured --> processing --> resolved
      ^                                               |
      +------------------ retake() -------------------+
    resolved --confirm()--> closed
    (any)    --cancel()---> closed

``processing`` is the only state that suspends (awaiting the transport).
``cancel()`` stays effective while suspended: the reply is dropped when it
arrives. Cancelling the task awaiting ``capture()`` cancels the session too.
Every failure lands in ``resolved`` as a ``DetectionError`` value.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

from shelfcount.vision.interpreter import parse
from shelfcount.vision.preprocessing import probe_image
from shelfcount.vision.types import (
    CountReport,
    DetectionResult,
    SessionStatus,
    TransportFailure,
)

if TYPE_CHECKING:
    from shelfcount.ledger import Reconciler
    from shelfcount.vision.device import CaptureDevice
    from shelfcount.vision.pool import ModelCallPool
    from shelfcount.vision.transport import ModelTransport
    from shelfcount.vision.types import DetectionOutcome, ImageCapture

logger = logging.getLogger(__name__)


class SessionStateError(RuntimeError):
    """An operation is not allowed in the session's current state."""


class CaptureSession:
    """One operator's capture/confirm cycle for a single expected label.

    The session owns its device stream and image exclusively and is not
    shared between concurrent captures.
    """

    def __init__(
        self,
        expected_label: str,
        transport: ModelTransport,
        device: CaptureDevice[Any],
        reconciler: Reconciler,
        *,
        pool: ModelCallPool | None = None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self._expected_label = expected_label
        self._transport = transport
        self._device = device
        self._reconciler = reconciler
        self._pool = pool

        self._image: ImageCapture | None = None
        self._outcome: DetectionOutcome | None = None
        self._manual_override_count: int | None = None
        # Bumped whenever an in-flight reply must no longer be applied.
        self._capture_token = 0

        self._stream: Any = None
        self._open_stream()
        self._status = SessionStatus.LIVE

    # -- State --------------------------------------------------------------

    @property
    def expected_label(self) -> str:
        return self._expected_label

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def image(self) -> ImageCapture | None:
        return self._image

    @property
    def outcome(self) -> DetectionOutcome | None:
        """The last ``DetectionResult`` or ``DetectionError``, once resolved."""
        return self._outcome

    @property
    def manual_override_count(self) -> int | None:
        return self._manual_override_count

    @property
    def device(self) -> CaptureDevice[Any]:
        return self._device

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    # -- Transitions --------------------------------------------------------

    async def capture(self) -> DetectionOutcome | None:
        """Snapshot a frame, send it to the model, and resolve.

        Ignored (returns ``None``) unless the session is live, so at most one
        model call is ever in flight per session.

        Raises:
            DeviceError: If the device cannot produce a frame. The session stays live.
        """
        if self._status is not SessionStatus.LIVE:
            logger.debug("Ignoring capture() on session %s in state %s", self.session_id, self._status)
            return None

        frame = self._device.snapshot(self._stream)
        self._image = probe_image(frame)
        self._status = SessionStatus.CAPTURED
        self._close_stream()

        self._status = SessionStatus.PROCESSING
        self._capture_token += 1
        token = self._capture_token
        try:
            outcome = await self._invoke(self._image.data)
        except asyncio.CancelledError:
            self.cancel()
            raise

        if token != self._capture_token or self._status is not SessionStatus.PROCESSING:
            logger.info("Discarding model reply for cancelled session %s", self.session_id)
            return None

        self._outcome = outcome
        self._status = SessionStatus.RESOLVED
        logger.info("Session %s resolved: %s", self.session_id, _describe(outcome))
        return outcome

    def retake(self) -> None:
        """Discard the captured frame and its outcome and go back to live."""
        self._require(SessionStatus.RESOLVED, "retake")
        self._image = None
        self._outcome = None
        self._manual_override_count = None
        self._open_stream()
        self._status = SessionStatus.LIVE

    def set_manual_count(self, count: int | None) -> None:
        """Record (or clear, with ``None``) the operator's own tally."""
        self._require(SessionStatus.RESOLVED, "set a manual count")
        if count is not None and count < 0:
            raise ValueError("Manual count must be non-negative")
        self._manual_override_count = count

    def confirm(self, manual_count: int | None = None) -> CountReport:
        """Report the final count to reconciliation and close the session.

        The final count is ``manual_count`` if given, else the stored manual
        override, else the model's count.

        Raises:
            SessionStateError: If the session is not resolved with a ``DetectionResult``.
        """
        self._require(SessionStatus.RESOLVED, "confirm")
        result = self._outcome
        if not isinstance(result, DetectionResult):
            raise SessionStateError("Cannot confirm a failed detection; retake or cancel instead")
        if manual_count is not None and manual_count < 0:
            raise ValueError("Manual count must be non-negative")

        override = manual_count if manual_count is not None else self._manual_override_count
        final_count = override if override is not None else result.count
        report = CountReport(final_count=final_count, boxes=result.boxes)

        self._reconciler.report(report)
        self._discard()
        self._status = SessionStatus.CLOSED
        logger.info("Session %s confirmed with count %d", self.session_id, final_count)
        return report

    def cancel(self) -> None:
        """Close the session from any state without reporting anything."""
        if self._status is SessionStatus.CLOSED:
            return
        self._close_stream()
        self._capture_token += 1
        self._discard()
        self._status = SessionStatus.CLOSED
        logger.info("Session %s cancelled", self.session_id)

    # -- Internal -----------------------------------------------------------

    async def _invoke(self, image_bytes: bytes) -> DetectionOutcome:
        try:
            if self._pool is not None:
                raw_text = await self._pool.run(self._transport.invoke_model, image_bytes, self._expected_label)
            else:
                raw_text = await self._transport.invoke_model(image_bytes, self._expected_label)
        except TimeoutError:
            return TransportFailure(cause="model service is busy")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Model call failed for session %s: %s", self.session_id, exc)
            return TransportFailure(cause=str(exc) or type(exc).__name__)
        return parse(raw_text, self._expected_label)

    def _require(self, expected: SessionStatus, action: str) -> None:
        if self._status is not expected:
            raise SessionStateError(f"Cannot {action} while session is {self._status}")

    def _open_stream(self) -> None:
        self._stream = self._device.open_stream()

    def _close_stream(self) -> None:
        if self._stream is not None:
            self._device.close_stream(self._stream)
            self._stream = None

    def _discard(self) -> None:
        self._image = None
        self._outcome = None
        self._manual_override_count = None


def _describe(outcome: DetectionOutcome) -> str:
    if isinstance(outcome, DetectionResult):
        return f"count={outcome.count} boxes={len(outcome.boxes)}"
    return outcome.kind
