"""
Alert state machine.

Owns the active capture session, the cooldown window and the in-flight
delivery flag. All transitions run on the event loop thread; the only guards
are the phase and the in-flight flag.

    idle -> capturing -> encoding -> delivering -> cooldown -> idle

An aborted capture or a failed encode goes straight back to idle with the
cooldown advanced. A delivery attempt always ends in cooldown, whether it
succeeded or not.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import numpy as np

from capture_buffer import CaptureBuffer, FrameChunkEncoder
from config import Config
from exceptions import AlreadyCapturing, CaptureError, InvalidAlert, TranscodeError
from models import (
    AlertPhase, CaptureSession, ControllerStatus, CooldownWindow, DeliveryResult, PresenceSignal
)
from utils import PerformanceTimer

logger = logging.getLogger(__name__)


class AlertController:
    """Single-camera alert controller."""

    def __init__(self, config: Config, channel, capture_buffer: Optional[CaptureBuffer] = None,
                 chunk_encoder: Optional[FrameChunkEncoder] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.channel = channel
        self.capture = capture_buffer or CaptureBuffer(config.alert.capture_duration)
        self.chunk_encoder = chunk_encoder or FrameChunkEncoder(config.alert.jpeg_quality)
        self.clock = clock

        self.cooldown_seconds = config.alert.cooldown_seconds
        self.capture_duration = config.alert.capture_duration

        self.phase = AlertPhase.IDLE
        self.cooldown = CooldownWindow()
        self.last_error: Optional[str] = None
        self.last_result: Optional[DeliveryResult] = None
        self.suppressed_detections = 0
        self.alerts_sent = 0

        self._status_text = "Monitoring..."
        self._delivery_in_flight = False
        self._pipeline_task: Optional[asyncio.Task] = None
        self._capture_timer: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def delivery_in_flight(self) -> bool:
        return self._delivery_in_flight

    @property
    def status_text(self) -> str:
        if self.last_error and self.phase in (AlertPhase.IDLE, AlertPhase.COOLDOWN):
            return f"{self._status_text} (last error: {self.last_error})"
        return self._status_text

    @property
    def status(self) -> ControllerStatus:
        return ControllerStatus(
            phase=self.phase,
            status_text=self.status_text,
            last_error=self.last_error,
            cooldown_expiry=self.cooldown.expiry,
            suppressed_detections=self.suppressed_detections,
            alerts_sent=self.alerts_sent,
            delivery_in_flight=self._delivery_in_flight,
        )

    @property
    def pipeline_pending(self) -> bool:
        return self._pipeline_task is not None and not self._pipeline_task.done()

    # ------------------------------------------------------------------
    # Transitions driven by the frame loop
    # ------------------------------------------------------------------

    def tick(self, now: Optional[float] = None) -> None:
        """Lazy cooldown -> idle transition."""
        now = self._now(now)
        if self.phase == AlertPhase.COOLDOWN and self.cooldown.is_expired(now):
            self._set_phase(AlertPhase.IDLE, "Monitoring...")

    async def on_presence(self, signal: PresenceSignal, now: Optional[float] = None) -> bool:
        """Handle one cycle's presence signal. Returns True if an alert cycle started."""
        now = self._now(now)
        self.tick(now)
        if not signal.present:
            return False

        if self.phase != AlertPhase.IDLE or self._delivery_in_flight:
            if self.phase == AlertPhase.COOLDOWN:
                self._suppress(now)
            return False

        if not self.cooldown.is_expired(now):
            self._suppress(now)
            return False

        logger.info(f"Person detected ({signal.keypoint_count} keypoints, "
                    f"max score {signal.max_score:.2f}), starting alert cycle")

        if not self.channel.requires_capture:
            self._set_phase(AlertPhase.DELIVERING, "Intruder detected! Sending alert...")
            self._launch_pipeline(None)
            return True

        try:
            session = self.capture.start_capture(self.chunk_encoder.source_format, now)
        except AlreadyCapturing as e:
            logger.error(f"Internal guard failure, capture refused: {e}")
            return False

        self._set_phase(AlertPhase.CAPTURING,
                        f"Intruder detected! Recording {self.capture_duration:.0f}s of video...")
        self._schedule_capture_timer(session)
        return True

    async def on_frame(self, frame: Optional[np.ndarray], now: Optional[float] = None) -> None:
        """Feed a frame to the active capture and stop it once the duration elapsed."""
        now = self._now(now)
        self.tick(now)
        if self.phase != AlertPhase.CAPTURING or frame is None:
            return

        if self.capture.elapsed(now) >= self.capture_duration:
            self._complete_capture(now)
            return

        try:
            self.capture.on_chunk(self.chunk_encoder.encode(frame))
        except CaptureError as e:
            logger.warning(f"Skipping frame: {e}")

    async def stop_capture(self, now: Optional[float] = None) -> Optional[CaptureSession]:
        """Explicit stop. Repeated calls return the same terminal session."""
        if self.phase != AlertPhase.CAPTURING:
            return self.capture.stop_capture()
        return self._complete_capture(self._now(now))

    async def on_stream_error(self, reason: str, now: Optional[float] = None) -> None:
        """The media stream ended or failed; discard any active capture."""
        now = self._now(now)
        if self.phase != AlertPhase.CAPTURING:
            return
        self._abort_capture(f"Stream error: {reason}", now)

    async def shutdown(self) -> None:
        """Abort an active capture. A pending encode or delivery is left to the caller."""
        self._cancel_capture_timer()
        if self.phase == AlertPhase.CAPTURING:
            self.capture.abort_capture("Monitor stopped", self._now(None))
            self._set_phase(AlertPhase.IDLE, "Camera stopped.")
        if self.pipeline_pending:
            logger.info(f"Alert pipeline still running (phase {self.phase.value})")

    async def wait_for_pipeline(self) -> None:
        """Wait until any encode/deliver work has finished."""
        if self._pipeline_task is not None:
            await self._pipeline_task

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    def _set_phase(self, phase: AlertPhase, text: str) -> None:
        if phase != self.phase:
            logger.info(f"Alert phase: {self.phase.value} -> {phase.value}")
        self.phase = phase
        self._status_text = text

    def _suppress(self, now: float) -> None:
        self.suppressed_detections += 1
        logger.debug(f"Presence during cooldown ignored "
                     f"({self.cooldown.remaining(now):.1f}s remaining)")

    def _schedule_capture_timer(self, session: CaptureSession) -> None:
        loop = asyncio.get_running_loop()
        self._capture_timer = loop.call_later(
            self.capture_duration, self._on_capture_timeout, session.session_id)

    def _cancel_capture_timer(self) -> None:
        if self._capture_timer is not None:
            self._capture_timer.cancel()
            self._capture_timer = None

    def _on_capture_timeout(self, session_id: str) -> None:
        active = self.capture.active_session
        if self.phase == AlertPhase.CAPTURING and active is not None and active.session_id == session_id:
            logger.info("Capture timer fired before the frame loop stopped the recording")
            self._complete_capture(self.clock())

    def _complete_capture(self, now: float) -> Optional[CaptureSession]:
        self._cancel_capture_timer()
        session = self.capture.stop_capture(now)
        self._set_phase(AlertPhase.ENCODING, "Converting evidence video...")
        self._launch_pipeline(session)
        return session

    def _abort_capture(self, reason: str, now: float) -> None:
        self._cancel_capture_timer()
        self.capture.abort_capture(reason, now)
        self.cooldown.advance(now, self.cooldown_seconds)
        self.last_error = reason
        self._set_phase(AlertPhase.IDLE, "Capture aborted.")

    def _launch_pipeline(self, session: Optional[CaptureSession]) -> None:
        self._pipeline_task = asyncio.create_task(self._run_pipeline(session))

    async def _run_pipeline(self, session: Optional[CaptureSession]) -> None:
        evidence: Any = None
        detected_at = session.wall_time if session is not None else None

        if session is not None:
            try:
                with PerformanceTimer("Evidence encoding"):
                    evidence = await self.channel.encode(session)
            except TranscodeError as e:
                self._encoding_failed(f"Transcode failed: {e}")
                return
            except Exception as e:
                logger.error(f"Unexpected encoding error: {e}", exc_info=True)
                self._encoding_failed(f"Encoding error: {e}")
                return
            finally:
                session.chunks.clear()
            self._set_phase(AlertPhase.DELIVERING, "Sending intruder alert...")

        self._delivery_in_flight = True
        try:
            try:
                result = await self.channel.deliver(evidence, detected_at)
            except InvalidAlert as e:
                logger.error(f"Alert rejected before sending: {e}")
                result = DeliveryResult.failed("invalid", str(e))
            except Exception as e:
                logger.error(f"Unexpected delivery error: {e}", exc_info=True)
                result = DeliveryResult.failed("transport", str(e))
        finally:
            self._delivery_in_flight = False

        self.cooldown.advance(self.clock(), self.cooldown_seconds)
        self.last_result = result
        if result.success:
            self.alerts_sent += 1
            self.last_error = None
            self._set_phase(AlertPhase.COOLDOWN, "Intruder detected! Email sent.")
        else:
            self.last_error = f"Error sending email: {result.error}"
            self._set_phase(AlertPhase.COOLDOWN, "Alert delivery failed.")
        logger.info(f"Next alert possible in {self.cooldown_seconds:.0f}s")

    def _encoding_failed(self, reason: str) -> None:
        logger.error(reason)
        self.last_error = reason
        self.cooldown.advance(self.clock(), self.cooldown_seconds)
        self._set_phase(AlertPhase.IDLE, "Evidence encoding failed.")
