"""
Tests for the intruder monitor frame loop.
"""

import asyncio
import time
import numpy as np
import pytest
from unittest.mock import AsyncMock, Mock, patch

import sys
sys.path.append('src')

from camera_manager import CameraManager, MockCameraManager, OpenCVCameraManager
from config import Config
from exceptions import CameraInitializationError, StreamEndedError
from intruder_monitor import IntruderMonitor
from models import AlertPhase, CaptureStatus, DeliveryResult, Detection, EncodedVideo, PresenceSignal

FRAME = np.zeros((48, 64, 3), dtype=np.uint8)
PERSON = [Detection(name="nose", x=1.0, y=1.0, score=0.9)]


def make_channel():
    channel = Mock()
    channel.requires_capture = True
    channel.encode = AsyncMock(return_value=EncodedVideo(data=b"mp4", filename="clip.mp4"))
    channel.deliver = AsyncMock(return_value=DeliveryResult.ok("id"))
    return channel


async def max_loop_gap(awaitable):
    """Await while ticking the loop; returns the result and the longest gap between ticks."""
    gaps = []
    finished = asyncio.Event()

    async def ticker():
        last = time.monotonic()
        while not finished.is_set():
            await asyncio.sleep(0.01)
            now = time.monotonic()
            gaps.append(now - last)
            last = now

    task = asyncio.create_task(ticker())
    await asyncio.sleep(0)
    try:
        result = await awaitable
    finally:
        finished.set()
        await task
    return result, max(gaps)


class TestIntruderMonitor:
    """Test detection cycles with fake collaborators."""

    def setup_method(self):
        self.config = Config.create_test_config(DETECTION_FRAME_INTERVAL=0.01)
        self.estimator = Mock()
        self.estimator.estimate.return_value = []
        self.channel = make_channel()
        self.system_monitor = Mock()
        self.system_monitor.should_skip_processing.return_value = False

    def make_monitor(self, frames=None, end_after=None, camera=None):
        camera = camera or CameraManager(
            self.config, camera=MockCameraManager(self.config, frames=frames, end_after=end_after))
        return IntruderMonitor(self.config, camera=camera, estimator=self.estimator,
                               channel=self.channel, system_monitor=self.system_monitor)

    @pytest.mark.asyncio
    async def test_cycle_without_person(self):
        monitor = self.make_monitor(frames=[FRAME])
        monitor.camera.start()
        signal = await monitor.process_cycle()

        assert signal.present is False
        assert monitor.controller.phase == AlertPhase.IDLE
        assert monitor.status_text == "Monitoring..."
        await monitor._shutdown()

    @pytest.mark.asyncio
    async def test_cycle_with_person_starts_capture(self):
        self.estimator.estimate.return_value = PERSON
        monitor = self.make_monitor(frames=[FRAME])
        monitor.camera.start()
        signal = await monitor.process_cycle()

        assert signal.present is True
        assert monitor.controller.phase == AlertPhase.CAPTURING
        assert len(monitor.controller.capture.active_session.chunks) == 1
        await monitor._shutdown()

    @pytest.mark.asyncio
    async def test_camera_not_ready(self):
        monitor = self.make_monitor()
        assert await monitor.process_cycle() is None
        assert monitor.status_text == "Camera not ready"
        await monitor._shutdown()

    @pytest.mark.asyncio
    async def test_detector_error_skips_cycle(self):
        self.estimator.estimate.side_effect = RuntimeError("bad tensor")
        monitor = self.make_monitor(frames=[FRAME])
        monitor.camera.start()

        assert await monitor.process_cycle() is None
        assert monitor.status_text.startswith("Error detecting poses")
        assert monitor.controller.phase == AlertPhase.IDLE
        await monitor._shutdown()

    @pytest.mark.asyncio
    async def test_stream_end_aborts_capture(self):
        self.estimator.estimate.return_value = PERSON
        monitor = self.make_monitor(frames=[FRAME])
        monitor.camera.start()
        await monitor.process_cycle()
        session = monitor.controller.capture.active_session

        with pytest.raises(StreamEndedError):
            await monitor.process_cycle()

        assert session.status == CaptureStatus.ABORTED
        assert session.chunks == []
        assert monitor.controller.phase == AlertPhase.IDLE
        await monitor._shutdown()

    @pytest.mark.asyncio
    async def test_run_stops_when_stream_lost(self):
        monitor = self.make_monitor(frames=[FRAME, FRAME])
        await asyncio.wait_for(monitor.run(), timeout=5)

        assert monitor.status_text == "Camera stream lost"
        self.estimator.close.assert_called_once()
        assert self.estimator.estimate.call_count == 2

    @pytest.mark.asyncio
    async def test_run_camera_failure(self):
        camera = Mock()
        camera.start.side_effect = CameraInitializationError("no device")
        monitor = self.make_monitor(camera=CameraManager(self.config, camera=camera))

        await monitor.run()

        assert monitor.status_text == "Camera access error"
        self.estimator.estimate.assert_not_called()
        self.estimator.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop(self):
        monitor = self.make_monitor()
        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.05)
        monitor.stop()
        await asyncio.wait_for(task, timeout=2)

        assert monitor.status_text == "Camera stopped."
        assert self.estimator.estimate.call_count > 0

    @pytest.mark.asyncio
    async def test_memory_guard_skips_detection(self):
        self.config = Config.create_test_config(DETECTION_FRAME_INTERVAL=0.01, PERFORMANCE_ERROR_SLEEP=0.01)
        self.system_monitor.should_skip_processing.return_value = True
        monitor = self.make_monitor()
        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.05)
        monitor.stop()
        await asyncio.wait_for(task, timeout=2)

        self.estimator.estimate.assert_not_called()
        self.system_monitor.memory_manager.force_cleanup.assert_called()

    @pytest.mark.asyncio
    async def test_restart_keeps_event_loop_responsive(self):
        self.config = Config.create_test_config(DETECTION_FRAME_INTERVAL=0.01, CAMERA_STARTUP_DELAY=0.5)
        with patch('camera_manager.cv2.VideoCapture') as mock_capture_cls:
            mock_capture_cls.return_value.isOpened.return_value = True
            monitor = self.make_monitor(
                camera=CameraManager(self.config, camera=OpenCVCameraManager(self.config)))

            restarted, gap = await max_loop_gap(monitor._restart_stream(StreamEndedError("dropped")))

        assert restarted is True
        assert mock_capture_cls.call_count == 1
        assert gap < 0.2
        await monitor._shutdown()

    @pytest.mark.asyncio
    async def test_camera_start_keeps_event_loop_responsive(self):
        self.config = Config.create_test_config(DETECTION_FRAME_INTERVAL=0.01, CAMERA_STARTUP_DELAY=0.5)
        with patch('camera_manager.cv2.VideoCapture') as mock_capture_cls:
            capture = mock_capture_cls.return_value
            capture.isOpened.return_value = True
            capture.read.return_value = (True, FRAME)
            monitor = self.make_monitor(
                camera=CameraManager(self.config, camera=OpenCVCameraManager(self.config)))

            task = asyncio.create_task(monitor.run())
            _, gap = await max_loop_gap(asyncio.sleep(0.7))
            monitor.stop()
            await asyncio.wait_for(task, timeout=2)

        assert gap < 0.2
        assert monitor.status_text == "Camera stopped."
        capture.release.assert_called_once()


class TestMonitorShutdown:
    """Test that shutdown gives an alert in flight a bounded wait."""

    def setup_method(self):
        self.estimator = Mock()
        self.channel = make_channel()
        self.channel.requires_capture = False

    def make_monitor(self, timeout, delivery_seconds):
        async def slow_deliver(evidence, detected_at=None):
            await asyncio.sleep(delivery_seconds)
            return DeliveryResult.ok("id")

        self.channel.deliver = AsyncMock(side_effect=slow_deliver)
        config = Config.create_test_config(PERFORMANCE_SHUTDOWN_TIMEOUT=timeout)
        return IntruderMonitor(config, camera=CameraManager(config, use_mock=True),
                               estimator=self.estimator, channel=self.channel,
                               system_monitor=Mock())

    @pytest.mark.asyncio
    async def test_delivery_in_flight_completes(self):
        monitor = self.make_monitor(timeout=2, delivery_seconds=0.1)
        await monitor.controller.on_presence(PresenceSignal(present=True, max_score=0.9))
        assert monitor.controller.pipeline_pending

        await monitor._shutdown()

        assert monitor.controller.alerts_sent == 1
        assert monitor.controller.phase == AlertPhase.COOLDOWN
        assert not monitor.controller.pipeline_pending
        self.estimator.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_slow_delivery_abandoned_after_timeout(self, caplog):
        monitor = self.make_monitor(timeout=0.05, delivery_seconds=5)
        await monitor.controller.on_presence(PresenceSignal(present=True, max_score=0.9))

        started = time.monotonic()
        await monitor._shutdown()

        assert time.monotonic() - started < 1
        assert monitor.controller.alerts_sent == 0
        assert "did not finish within" in caplog.text
        self.estimator.close.assert_called_once()
