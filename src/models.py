"""
Consolidated data models for the intruder monitor.

This module contains all dataclasses used across the system for:
- Pose detections and presence signals
- Capture sessions and the cooldown window
- Encoded evidence, alert messages and delivery results
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List


# =============================================================================
# Detection Models
# =============================================================================

@dataclass(frozen=True)
class Detection:
    """A named keypoint with a 2D position and a confidence score in [0, 1]."""
    name: str
    x: float
    y: float
    score: float
    pose_index: int = 0


@dataclass
class PresenceSignal:
    """Presence decision for a single detection cycle."""
    present: bool
    keypoints: List[Detection] = field(default_factory=list)
    max_score: float = 0.0

    @property
    def keypoint_count(self) -> int:
        return len(self.keypoints)


# =============================================================================
# Capture Models
# =============================================================================

class CaptureStatus(str, Enum):
    ACTIVE = "active"
    COMPLETE = "complete"
    ABORTED = "aborted"


@dataclass
class CaptureSession:
    """One bounded evidence-recording attempt."""
    session_id: str
    started_at: float
    target_duration: float
    source_format: str
    chunks: List[bytes] = field(default_factory=list)
    status: CaptureStatus = CaptureStatus.ACTIVE
    ended_at: Optional[float] = None
    abort_reason: Optional[str] = None
    wall_time: datetime = field(default_factory=datetime.now)

    @property
    def is_active(self) -> bool:
        return self.status == CaptureStatus.ACTIVE

    @property
    def duration(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    @property
    def total_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)


@dataclass
class CooldownWindow:
    """Earliest time at which a new alert cycle may begin."""
    expiry: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.expiry

    def advance(self, now: float, duration: float) -> None:
        self.expiry = now + duration

    def remaining(self, now: float) -> float:
        return max(0.0, self.expiry - now)


# =============================================================================
# Evidence and Delivery Models
# =============================================================================

@dataclass
class EncodedVideo:
    """Transcoded evidence ready to attach to an alert."""
    data: bytes
    filename: str
    mime_type: str = "video/mp4"
    source_format: str = "mjpeg"
    target_format: str = "mp4"


@dataclass(frozen=True)
class AlertMessage:
    """Outbound alert. Never mutated after the send attempt."""
    recipient: str
    subject: str
    html_body: str
    attachment: bytes
    attachment_filename: str
    attachment_mime_type: str = "video/mp4"
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class DeliveryResult:
    """Outcome of a single delivery attempt."""
    success: bool
    delivery_id: Optional[str] = None
    error_kind: Optional[str] = None  # transport | auth | oversize | invalid
    error: Optional[str] = None

    @classmethod
    def ok(cls, delivery_id: str) -> "DeliveryResult":
        return cls(success=True, delivery_id=delivery_id)

    @classmethod
    def failed(cls, error_kind: str, error: str) -> "DeliveryResult":
        return cls(success=False, error_kind=error_kind, error=error)


# =============================================================================
# Controller Models
# =============================================================================

class AlertPhase(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    ENCODING = "encoding"
    DELIVERING = "delivering"
    COOLDOWN = "cooldown"


@dataclass
class ControllerStatus:
    """Snapshot of the alert controller for the status display."""
    phase: AlertPhase
    status_text: str
    last_error: Optional[str]
    cooldown_expiry: float
    suppressed_detections: int
    alerts_sent: int
    delivery_in_flight: bool
