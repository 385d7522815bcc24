"""
Utility helpers for the intruder monitor.

This module contains:
- PerformanceTimer: Timing utility for performance measurement
- Alert filename helpers (intruder_<ISO-8601>.<ext>)
- configure_logging: process-wide logging setup for entry points
"""

import logging
import time
from datetime import datetime
from pathlib import PurePath
from typing import Optional

logger = logging.getLogger(__name__)

NOISY_LOGGERS = ('telegram', 'httpx', 'httpcore', 'urllib3', 'ultralytics', 'multipart')


class PerformanceTimer:
    """Performance timing utility."""

    def __init__(self, operation_name="Operation", threshold: float = 1.0):
        self.operation_name = operation_name
        self.threshold = threshold
        self.start_time = None
        self.end_time = None

    def start(self):
        """Start timing."""
        self.start_time = time.time()
        return self

    def stop(self):
        """Stop timing and return duration."""
        if self.start_time is None:
            return 0.0

        self.end_time = time.time()
        return self.end_time - self.start_time

    @property
    def duration(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return self.end_time - self.start_time

    def __enter__(self):
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        duration = self.stop()
        if duration > self.threshold:  # Log slow operations
            logger.info(f"{self.operation_name} took {duration:.2f}s")


def build_alert_filename(extension: str, when: Optional[datetime] = None,
                         prefix: str = "intruder_") -> str:
    """Build an evidence filename embedding an ISO-8601 timestamp.

    Colons in the time part become dashes (intruder_2024-05-01T12-30-00.000.webm).
    """
    when = when or datetime.now()
    stamp = when.isoformat(timespec="milliseconds").replace(":", "-")
    return f"{prefix}{stamp}.{extension.lstrip('.')}"


def rename_extension(filename: str, extension: str) -> str:
    """Swap the extension of a filename, e.g. clip.webm -> clip.mp4."""
    path = PurePath(filename)
    if not path.suffix:
        return f"{filename}.{extension.lstrip('.')}"
    return str(path.with_suffix(f".{extension.lstrip('.')}"))


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging for an entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
