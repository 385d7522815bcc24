"""
Resource monitoring for the intruder monitor.

Memory pressure guard for the frame loop plus periodic host status logging.
"""

import gc
import logging
import psutil
from datetime import datetime
from typing import Optional

from config import Config

logger = logging.getLogger(__name__)


class MemoryManager:
    """Memory management utilities."""

    def __init__(self, config: Config):
        self.config = config
        self.memory_threshold = config.performance.memory_threshold

    def get_memory_usage(self) -> float:
        """Get current memory usage as a ratio (0.0 to 1.0)."""
        try:
            return psutil.virtual_memory().percent / 100.0
        except Exception as e:
            logger.error(f"Error getting memory usage: {e}")
            return 0.5

    def is_memory_available(self) -> bool:
        return self.get_memory_usage() < self.memory_threshold

    def force_cleanup(self) -> None:
        collected = gc.collect()
        logger.debug(f"Garbage collection freed {collected} objects")

    def get_memory_info(self) -> Optional[dict]:
        try:
            mem = psutil.virtual_memory()
            return {
                'total_mb': mem.total / (1024 * 1024),
                'available_mb': mem.available / (1024 * 1024),
                'percent': mem.percent,
            }
        except Exception as e:
            logger.error(f"Error getting memory info: {e}")
            return None


class SystemMonitor:
    """Host resource monitoring for the frame loop."""

    def __init__(self, config: Config):
        self.config = config
        self.memory_manager = MemoryManager(config)

    def get_system_status(self) -> dict:
        return {
            'timestamp': datetime.now().isoformat(),
            'memory': self.memory_manager.get_memory_info(),
            'cpu_percent': psutil.cpu_percent(interval=None),
            'memory_available': self.memory_manager.is_memory_available(),
            'cpu_temp': self.get_cpu_temperature(),
        }

    def should_skip_processing(self) -> bool:
        """Skip a detection cycle when memory usage is above the threshold."""
        if not self.memory_manager.is_memory_available():
            logger.warning(f"Skipping processing: Memory usage above "
                           f"{self.config.performance.memory_threshold * 100:.0f}%")
            return True
        return False

    def log_system_status(self) -> None:
        status = self.get_system_status()
        if status['memory']:
            logger.info(f"Memory: {status['memory']['percent']:.1f}% used "
                        f"({status['memory']['available_mb']:.0f}MB available)")
        logger.info(f"CPU: {status['cpu_percent']:.1f}%")
        if status['cpu_temp']:
            logger.info(f"CPU Temp: {status['cpu_temp']:.1f}°C")

    def get_cpu_temperature(self) -> Optional[float]:
        """CPU temperature from the first available sensor, None if unsupported."""
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            return None
        try:
            readings = sensors()
        except OSError as e:
            logger.debug(f"Temperature sensors unavailable: {e}")
            return None
        for name in ('cpu_thermal', 'coretemp', 'k10temp'):
            if readings.get(name):
                return readings[name][0].current
        return None
