"""
Evidence capture buffer.

Records one fixed-duration segment at a time as an ordered list of encoded
chunks. Only one session may be active; the buffer drops its reference once
the session reaches a terminal state.
"""

import logging
import time
import uuid
from typing import Optional

import cv2
import numpy as np

from exceptions import AlreadyCapturing, CaptureError
from models import CaptureSession, CaptureStatus

logger = logging.getLogger(__name__)


class FrameChunkEncoder:
    """Encode BGR frames as JPEG chunks; concatenated they form an MJPEG stream."""

    source_format = "mjpeg"

    def __init__(self, quality: int = 80):
        self.quality = quality

    def encode(self, frame: np.ndarray) -> bytes:
        ok, buffer = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), self.quality])
        if not ok:
            raise CaptureError("Failed to encode frame as JPEG")
        return buffer.tobytes()


class CaptureBuffer:
    """Single-session chunk recorder."""

    def __init__(self, target_duration: float):
        self.target_duration = target_duration
        self._active: Optional[CaptureSession] = None
        self._last: Optional[CaptureSession] = None

    @property
    def is_capturing(self) -> bool:
        return self._active is not None

    @property
    def active_session(self) -> Optional[CaptureSession]:
        return self._active

    def start_capture(self, source_format: str, now: Optional[float] = None) -> CaptureSession:
        if self._active is not None:
            raise AlreadyCapturing(f"Capture session {self._active.session_id} is already active")

        now = time.monotonic() if now is None else now
        session = CaptureSession(
            session_id=uuid.uuid4().hex[:12],
            started_at=now,
            target_duration=self.target_duration,
            source_format=source_format,
        )
        self._active = session
        self._last = None
        logger.info(f"Capture {session.session_id} started ({self.target_duration:.0f}s, {source_format})")
        return session

    def on_chunk(self, data: bytes) -> None:
        if self._active is None:
            logger.debug("Dropping chunk received with no active capture")
            return
        if data:
            self._active.chunks.append(data)

    def elapsed(self, now: float) -> float:
        if self._active is None:
            return 0.0
        return now - self._active.started_at

    def stop_capture(self, now: Optional[float] = None) -> Optional[CaptureSession]:
        """Complete the active session. A repeated stop returns the same session."""
        if self._active is None:
            return self._last

        session = self._active
        session.ended_at = time.monotonic() if now is None else now
        session.status = CaptureStatus.COMPLETE
        self._active = None
        self._last = session
        logger.info(f"Capture {session.session_id} complete: {len(session.chunks)} chunks, "
                    f"{session.total_bytes:,} bytes in {session.duration:.2f}s")
        return session

    def abort_capture(self, reason: str, now: Optional[float] = None) -> Optional[CaptureSession]:
        """Mark the active session aborted and release its chunks."""
        if self._active is None:
            return None

        session = self._active
        session.ended_at = time.monotonic() if now is None else now
        session.status = CaptureStatus.ABORTED
        session.abort_reason = reason
        session.chunks.clear()
        self._active = None
        self._last = session
        logger.warning(f"Capture {session.session_id} aborted: {reason}")
        return session
