#!/usr/bin/env python3
"""
Intruder monitor.
Runs pose estimation on a live camera stream and sends a recorded evidence
clip by email when a person is detected.
"""

import argparse
import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from alert_channels import AlertChannel, create_alert_channel
from alert_controller import AlertController
from camera_manager import CameraManager
from config import Config
from exceptions import (
    CameraInitializationError, ConfigurationError, DetectorError, StreamEndedError
)
from models import PresenceSignal
from pose_estimator import PoseEstimator, create_pose_estimator
from presence_classifier import PresenceClassifier
from resource_manager import SystemMonitor
from utils import configure_logging

logger = logging.getLogger(__name__)

MAX_STREAM_RESTARTS = 3


class IntruderMonitor:
    """
    Frame loop: acquire frame, estimate poses, classify presence and feed the
    alert controller. Encoding and delivery run as background tasks.
    """

    def __init__(self, config: Optional[Config] = None, camera: Optional[CameraManager] = None,
                 estimator: Optional[PoseEstimator] = None, channel: Optional[AlertChannel] = None,
                 controller: Optional[AlertController] = None,
                 system_monitor: Optional[SystemMonitor] = None, use_mock_camera: bool = False):
        self.config = config or Config()

        # Thread pool for blocking operations (camera reads, inference, ffmpeg)
        self.executor = ThreadPoolExecutor(max_workers=self.config.performance.executor_workers,
                                           thread_name_prefix="intruder")

        self.camera = camera or CameraManager(self.config, use_mock=use_mock_camera)
        self.estimator = estimator or create_pose_estimator(self.config)
        self.classifier = PresenceClassifier(self.config)
        self.channel = channel or create_alert_channel(self.config, self.executor)
        self.controller = controller or AlertController(self.config, self.channel)
        self.system_monitor = system_monitor or SystemMonitor(self.config)

        self.status_text = "Loading model..."
        self.last_frame_time = 0.0
        self.last_status_log_time = 0.0
        self.last_signal: Optional[PresenceSignal] = None
        self._running = False
        self._stream_restarts = 0

    async def process_cycle(self) -> Optional[PresenceSignal]:
        """One detection cycle. Returns the presence signal, or None if skipped."""
        loop = asyncio.get_running_loop()
        try:
            frame = await loop.run_in_executor(self.executor, self.camera.read_frame)
        except StreamEndedError as e:
            await self.controller.on_stream_error(str(e))
            raise

        if frame is None:
            self.status_text = "Camera not ready"
            return None
        self._stream_restarts = 0

        try:
            signal = await loop.run_in_executor(
                self.executor, self.classifier.classify_frame, self.estimator, frame)
        except DetectorError as e:
            logger.error(f"Pose detection failed: {e}")
            self.status_text = f"Error detecting poses: {e}"
            # A running capture still needs its frames
            await self.controller.on_frame(frame)
            return None

        self.last_signal = signal
        await self.controller.on_presence(signal)
        await self.controller.on_frame(frame)
        self.status_text = self.controller.status_text
        return signal

    def _log_startup(self) -> None:
        logger.info("Intruder monitor is running...")
        summary = self.config.get_summary()
        logger.info(f"- Pose model: {summary['detection']['model']} "
                    f"(keypoint threshold: {summary['detection']['keypoint_threshold']})")
        logger.info(f"- Frame interval: {self.config.detection.frame_interval}s "
                    f"({1 / self.config.detection.frame_interval:.1f} FPS)")
        logger.info(f"- Alert variant: {self.config.alert.variant}")
        logger.info(f"- Capture duration: {self.config.alert.capture_duration:.0f}s")
        logger.info(f"- Cooldown period: {self.config.alert.cooldown_seconds:.0f}s")
        self.system_monitor.log_system_status()

    async def _restart_stream(self, error: StreamEndedError) -> bool:
        self._stream_restarts += 1
        if self._stream_restarts > MAX_STREAM_RESTARTS:
            logger.error(f"Camera stream lost after {MAX_STREAM_RESTARTS} restarts: {error}")
            return False
        logger.warning(f"Camera stream ended ({error}), restarting "
                       f"(attempt {self._stream_restarts}/{MAX_STREAM_RESTARTS})")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self.executor, self.camera.restart)
        except CameraInitializationError as e:
            logger.error(f"Camera restart failed: {e}")
            return False
        return True

    async def run(self) -> None:
        """Main loop for the intruder monitor"""
        self._log_startup()
        loop = asyncio.get_running_loop()

        logger.info("Initializing camera...")
        try:
            # Startup delay and retries sleep, keep them off the loop thread
            await loop.run_in_executor(self.executor, self.camera.start)
            logger.info("Camera initialized successfully!")
            self.status_text = "Monitoring..."
            try:
                await self._frame_loop()
            finally:
                await loop.run_in_executor(self.executor, self.camera.stop)
            if not self._running:
                self.status_text = "Camera stopped."
        except CameraInitializationError as e:
            logger.error(f"Camera access error: {e}")
            self.status_text = "Camera access error"
        finally:
            await self._shutdown()

    async def _frame_loop(self) -> None:
        self._running = True
        while self._running:
            try:
                current_time = time.monotonic()

                # Frame rate control
                if current_time - self.last_frame_time < self.config.detection.frame_interval:
                    await asyncio.sleep(self.config.performance.idle_sleep)
                    continue

                # Memory check
                if self.system_monitor.should_skip_processing():
                    self.system_monitor.memory_manager.force_cleanup()
                    await asyncio.sleep(self.config.performance.error_sleep)
                    continue

                self.last_frame_time = current_time
                signal = await self.process_cycle()

                if current_time - self.last_status_log_time >= self.config.performance.status_log_interval:
                    self.last_status_log_time = current_time
                    keypoints = signal.keypoint_count if signal else 0
                    logger.info(f"{self.status_text} keypoints={keypoints} "
                                f"phase={self.controller.phase.value}")

                await asyncio.sleep(self.config.performance.idle_sleep)

            except StreamEndedError as e:
                if not await self._restart_stream(e):
                    self.status_text = "Camera stream lost"
                    break
            except Exception as e:
                logger.error(f"Error in main loop: {e}", exc_info=True)
                await asyncio.sleep(self.config.performance.error_sleep)

    def stop(self) -> None:
        """Request the frame loop to end after the current cycle."""
        self._running = False

    async def _shutdown(self) -> None:
        logger.info("Cleaning up resources...")
        await self.controller.shutdown()
        if self.controller.pipeline_pending:
            timeout = self.config.performance.shutdown_timeout
            logger.info(f"Waiting up to {timeout:.0f}s for the alert in flight")
            try:
                await asyncio.wait_for(self.controller.wait_for_pipeline(), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Alert delivery did not finish within {timeout:.0f}s, abandoning it")
        self.estimator.close()
        self.executor.shutdown(wait=False)


def main() -> None:
    parser = argparse.ArgumentParser(description="Camera intruder monitor with video email alerts")
    parser.add_argument("--mock-camera", action="store_true", help="Use generated frames instead of a camera")
    parser.add_argument("--model", help="Pose model: movenet, blazepose or yolo-pose")
    parser.add_argument("--log-level", help="Logging level (default from LOG_LEVEL or INFO)")
    args = parser.parse_args()

    try:
        config = Config()
    except ConfigurationError as e:
        configure_logging(args.log_level or "INFO")
        logger.error(f"Configuration error: {e}")
        raise SystemExit(1)

    configure_logging(args.log_level or config.log_level)
    logger.info(f"Configuration: {config.get_summary()}")

    estimator = create_pose_estimator(config, args.model) if args.model else None
    monitor = IntruderMonitor(config, estimator=estimator, use_mock_camera=args.mock_camera)
    try:
        asyncio.run(monitor.run())
    except KeyboardInterrupt:
        logger.info("Intruder monitor stopped by user")


if __name__ == "__main__":
    main()
