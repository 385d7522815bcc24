"""
Camera management for the intruder monitor.
Acquires the live media stream through OpenCV with retry logic and error accounting.
"""

from __future__ import annotations
import time
from abc import ABC, abstractmethod
from typing import Iterable, Optional
import logging

import cv2
import numpy as np

from config import Config
from exceptions import CameraInitializationError, CameraOperationError, StreamEndedError

logger = logging.getLogger(__name__)


class CameraInterface(ABC):
    """Abstract interface for camera implementations."""

    @abstractmethod
    def start(self) -> None:
        """Acquire the media stream."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Release the media stream."""
        pass

    @abstractmethod
    def read_frame(self) -> Optional[np.ndarray]:
        """Read one BGR frame. Raises StreamEndedError once the stream is gone."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if camera is available."""
        pass

    @abstractmethod
    def get_stats(self) -> dict:
        """Camera statistics."""
        pass


class OpenCVCameraManager(CameraInterface):
    """
    Production camera manager using cv2.VideoCapture.
    Works with USB webcams and V4L2 devices.
    """

    def __init__(self, config: Config):
        self.config = config
        self.capture = None
        self._is_running = False
        self._last_error_time = 0.0
        self._error_count = 0
        self._frames_read = 0
        self._max_retries = 3
        self._retry_delay = 1.0
        self._max_consecutive_failures = 10

        logger.info("Initializing OpenCV camera manager")

    def start(self) -> None:
        """Open the capture device with retry logic."""
        if self._is_running:
            logger.warning("Camera is already running")
            return

        retry_count = 0
        while retry_count < self._max_retries:
            try:
                self._initialize_camera()
                self._is_running = True
                self._error_count = 0
                logger.info("Camera started successfully")
                return
            except CameraInitializationError as e:
                retry_count += 1
                logger.error(f"Camera initialization attempt {retry_count} failed: {e}")
                if retry_count < self._max_retries:
                    time.sleep(self._retry_delay * retry_count)
                else:
                    raise CameraInitializationError(
                        f"Failed to initialize camera after {self._max_retries} attempts") from e

    def _initialize_camera(self) -> None:
        capture = cv2.VideoCapture(self.config.camera.device_index)
        if not capture.isOpened():
            capture.release()
            raise CameraInitializationError(
                f"Could not open camera device {self.config.camera.device_index}")

        width, height = self.config.camera.resolution
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        capture.set(cv2.CAP_PROP_FPS, self.config.camera.fps)

        self.capture = capture
        time.sleep(self.config.camera.startup_delay)

    def stop(self) -> None:
        """Release the capture device."""
        if not self._is_running:
            return

        try:
            if self.capture is not None:
                self.capture.release()
                self.capture = None
            self._is_running = False
            logger.info("Camera stopped successfully")
        except Exception as e:
            logger.error(f"Error stopping camera: {e}")

    def read_frame(self) -> Optional[np.ndarray]:
        if not self._is_running or self.capture is None:
            raise CameraOperationError("Camera not initialized")

        ok, frame = self.capture.read()
        if not ok or frame is None:
            self._handle_capture_error("no frame returned")
            if self._error_count >= self._max_consecutive_failures:
                raise StreamEndedError(
                    f"Camera stream ended after {self._error_count} failed reads")
            return None

        self._frames_read += 1
        self._error_count = 0
        return frame

    def is_available(self) -> bool:
        return self._is_running and self.capture is not None

    def get_stats(self) -> dict:
        return {
            "is_running": self._is_running,
            "error_count": self._error_count,
            "frames_read": self._frames_read,
            "last_error_time": self._last_error_time
        }

    def _handle_capture_error(self, error_msg: str) -> None:
        self._error_count += 1
        self._last_error_time = time.time()
        logger.error(f"Camera capture error: {error_msg}")


class MockCameraManager(CameraInterface):
    """Mock camera for testing and development.

    Serves scripted frames when given, otherwise random noise frames. Raises
    StreamEndedError after ``end_after`` frames to simulate a dropped stream.
    """

    def __init__(self, config: Config, frames: Optional[Iterable[np.ndarray]] = None,
                 end_after: Optional[int] = None):
        self.config = config
        self._frames = iter(frames) if frames is not None else None
        self._end_after = end_after
        self._frames_read = 0
        self._is_running = False
        logger.info("Initializing Mock camera manager")

    def start(self) -> None:
        self._is_running = True
        logger.info("Mock camera started")

    def stop(self) -> None:
        self._is_running = False
        logger.info("Mock camera stopped")

    def read_frame(self) -> Optional[np.ndarray]:
        if not self._is_running:
            return None
        if self._end_after is not None and self._frames_read >= self._end_after:
            raise StreamEndedError("Mock stream ended")

        self._frames_read += 1
        if self._frames is not None:
            try:
                return next(self._frames)
            except StopIteration:
                raise StreamEndedError("Mock stream exhausted")

        width, height = self.config.camera.resolution
        return np.random.randint(0, 255, (height, width, 3), dtype=np.uint8)

    def is_available(self) -> bool:
        return self._is_running

    def get_stats(self) -> dict:
        return {
            "is_running": self._is_running,
            "error_count": 0,
            "frames_read": self._frames_read,
            "last_error_time": 0
        }


class CameraManager:
    """
    High-level camera manager used by the frame loop.
    """

    def __init__(self, config: Config, use_mock: bool = False,
                 camera: Optional[CameraInterface] = None):
        self.config = config
        if camera is not None:
            self._camera = camera
        else:
            self._camera = MockCameraManager(config) if use_mock else OpenCVCameraManager(config)

        logger.info(f"Camera manager initialized with {type(self._camera).__name__}")

    def read_frame(self) -> Optional[np.ndarray]:
        return self._camera.read_frame()

    def restart(self) -> None:
        """Stop and re-acquire the stream after it ended."""
        self._camera.stop()
        self._camera.start()

    def start(self) -> None:
        self._camera.start()

    def stop(self) -> None:
        self._camera.stop()

    def get_system_info(self) -> dict:
        return {
            "camera_type": type(self._camera).__name__,
            "configuration": {
                "device_index": self.config.camera.device_index,
                "resolution": self.config.camera.resolution,
                "fps": self.config.camera.fps,
            },
            "stats": self._camera.get_stats(),
        }
