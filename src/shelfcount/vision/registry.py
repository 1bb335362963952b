"""Session registry: create, look up, close, and evict capture sessions.

Each HTTP client drives its own session by id. Sessions idle for longer than
``session_ttl`` are cancelled so their device streams are always released.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from shelfcount.vision.session import CaptureSession
from shelfcount.vision.types import SessionStatus

if TYPE_CHECKING:
    from collections.abc import Callable

    from shelfcount.config import Settings
    from shelfcount.ledger import Reconciler
    from shelfcount.vision.device import CaptureDevice
    from shelfcount.vision.pool import ModelCallPool
    from shelfcount.vision.transport import ModelTransport

logger = logging.getLogger(__name__)


@dataclass
class _TrackedSession:
    session: CaptureSession
    last_used: float


class SessionRegistry:
    """Owns every open capture session of the process."""

    def __init__(
        self,
        settings: Settings,
        transport: ModelTransport,
        device_factory: Callable[[], CaptureDevice[Any]],
        pool: ModelCallPool | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._device_factory = device_factory
        self._pool = pool

        self._lock = threading.Lock()
        self._sessions: dict[str, _TrackedSession] = {}

    # -- Public API ---------------------------------------------------------

    def create(self, expected_label: str, reconciler: Reconciler) -> CaptureSession:
        """Open a new live session for ``expected_label``."""
        self.evict_idle()
        session = CaptureSession(
            expected_label,
            self._transport,
            self._device_factory(),
            reconciler,
            pool=self._pool,
        )
        with self._lock:
            self._sessions[session.session_id] = _TrackedSession(session=session, last_used=time.monotonic())
        logger.info("Opened session %s for %r", session.session_id, expected_label)
        return session

    def get(self, session_id: str) -> CaptureSession:
        """Return an open session and mark it as recently used."""
        with self._lock:
            tracked = self._sessions.get(session_id)
            if tracked is None:
                raise KeyError(f"Unknown session: {session_id}")
            tracked.last_used = time.monotonic()
            return tracked.session

    def close(self, session_id: str) -> None:
        """Cancel (if still open) and forget a session."""
        with self._lock:
            tracked = self._sessions.pop(session_id, None)
        if tracked is None:
            raise KeyError(f"Unknown session: {session_id}")
        tracked.session.cancel()

    def release_if_closed(self, session_id: str) -> None:
        """Forget a session that reached ``closed`` by confirming."""
        with self._lock:
            tracked = self._sessions.get(session_id)
            if tracked is not None and tracked.session.status is SessionStatus.CLOSED:
                del self._sessions[session_id]

    def open_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def evict_idle(self) -> None:
        """Cancel and drop sessions that have exceeded the configured TTL."""
        ttl = self._settings.session_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [sid for sid, tracked in self._sessions.items() if (now - tracked.last_used) > ttl]
            evicted = [self._sessions.pop(sid) for sid in expired]
        for tracked in evicted:
            tracked.session.cancel()
            logger.info("Evicted idle session %s", tracked.session.session_id)

    def shutdown(self) -> None:
        """Cancel every open session."""
        with self._lock:
            tracked_sessions = list(self._sessions.values())
            self._sessions.clear()
        for tracked in tracked_sessions:
            tracked.session.cancel()
        logger.info("All capture sessions closed")
