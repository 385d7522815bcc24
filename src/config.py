"""
Configuration for the intruder monitor.

Settings are grouped into validated dataclass sections. Values come from the
environment (optionally a .env file loaded with python-dotenv); malformed
values fall back to the defaults with a warning, out-of-range values raise.
"""

import logging
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from dotenv import load_dotenv

from exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ALERT_VARIANTS = ("video", "relay", "template")
MAIL_TRANSPORTS = ("smtp", "telegram")
POSE_MODELS = ("movenet", "blazepose", "yolo-pose")


@dataclass
class CameraConfig:
    """Media stream settings."""
    device_index: int = 0
    resolution: Tuple[int, int] = (640, 480)
    fps: int = 15
    startup_delay: float = 1.0

    def __post_init__(self):
        if self.resolution[0] <= 0 or self.resolution[1] <= 0:
            raise ValueError(f"Invalid camera resolution: {self.resolution}")
        if self.fps <= 0:
            raise ValueError("Camera FPS must be positive")
        if self.device_index < 0:
            raise ValueError("Camera device index must not be negative")


@dataclass
class DetectionConfig:
    """Pose estimation and presence classification settings."""
    model_name: str = "movenet"
    model_path: Optional[Path] = None
    keypoint_threshold: float = 0.3
    min_keypoints: int = 1
    frame_interval: float = 0.1  # 10 FPS detection cycle

    def __post_init__(self):
        if self.model_name not in POSE_MODELS:
            raise ValueError(f"Unknown pose model: {self.model_name}")
        if not 0.0 <= self.keypoint_threshold < 1.0:
            raise ValueError("Keypoint threshold must be in [0, 1)")
        if self.min_keypoints < 1:
            raise ValueError("Min keypoints must be at least 1")
        if self.frame_interval <= 0:
            raise ValueError("Frame interval must be positive")


@dataclass
class AlertConfig:
    """Alert state machine settings."""
    variant: str = "video"
    cooldown_seconds: float = 60.0
    capture_duration: float = 10.0
    jpeg_quality: int = 80
    filename_prefix: str = "intruder_"

    def __post_init__(self):
        if self.variant not in ALERT_VARIANTS:
            raise ValueError(f"Invalid alert variant: {self.variant}")
        if self.cooldown_seconds < 0:
            raise ValueError("Cooldown must not be negative")
        if self.capture_duration <= 0:
            raise ValueError("Capture duration must be positive")
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError("JPEG quality must be between 1 and 100")


@dataclass
class TranscodeConfig:
    """ffmpeg transcoding settings."""
    ffmpeg_binary: str = "ffmpeg"
    target_format: str = "mp4"
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    timeout: float = 120.0

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("Transcode timeout must be positive")


@dataclass
class MailConfig:
    """Alert delivery settings."""
    transport: str = "smtp"
    smtp_host: str = "send.one.com"
    smtp_port: int = 465
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    max_attachment_bytes: int = 20 * 1024 * 1024
    send_timeout: float = 60.0
    telegram_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    def __post_init__(self):
        if self.transport not in MAIL_TRANSPORTS:
            raise ValueError(f"Invalid mail transport: {self.transport}")
        if not 0 < self.smtp_port < 65536:
            raise ValueError(f"Invalid SMTP port: {self.smtp_port}")
        if self.max_attachment_bytes <= 0:
            raise ValueError("Max attachment size must be positive")


@dataclass
class TemplateConfig:
    """Transactional email API settings for the still-image variant."""
    endpoint: str = "https://api.emailjs.com/api/v1.0/email/send"
    service_id: Optional[str] = None
    template_id: Optional[str] = None
    user_id: Optional[str] = None
    recipient: Optional[str] = None
    subject: str = "Intruder Alert!"
    message: str = "<b>INTRUDER ALERT!</b> SOMEONE IS IN YOUR ROOM!"
    timeout: float = 15.0


@dataclass
class RelayConfig:
    """Relay endpoint settings (server side and client side)."""
    host: str = "0.0.0.0"
    port: int = 3000
    max_body_bytes: int = 10 * 1024 * 1024
    url: str = "http://127.0.0.1:3000"
    timeout: float = 180.0

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid relay port: {self.port}")
        if self.max_body_bytes <= 0:
            raise ValueError("Max body size must be positive")


@dataclass
class PerformanceConfig:
    """Frame loop pacing and resource guard settings."""
    memory_threshold: float = 0.9
    idle_sleep: float = 0.01
    error_sleep: float = 1.0
    status_log_interval: float = 5.0
    executor_workers: int = 2
    shutdown_timeout: float = 30.0

    def __post_init__(self):
        if not 0.0 < self.memory_threshold < 1.0:
            raise ValueError("Memory threshold must be between 0 and 1")
        if self.executor_workers < 1:
            raise ValueError("Executor needs at least one worker")
        if self.shutdown_timeout < 0:
            raise ValueError("Shutdown timeout cannot be negative")


class Config:
    """Top-level configuration assembled from the environment."""

    def __init__(self, overrides: Optional[Dict[str, str]] = None,
                 require_secrets: bool = True, env_file: Optional[Path] = None):
        if env_file is not None or overrides is None:
            load_dotenv(env_file)
        self._overrides = overrides or {}

        try:
            self.camera = CameraConfig(
                device_index=self._get('CAMERA_DEVICE_INDEX', 0, int),
                resolution=self._get('CAMERA_RESOLUTION', (640, 480), _parse_resolution),
                fps=self._get('CAMERA_FPS', 15, int),
                startup_delay=self._get('CAMERA_STARTUP_DELAY', 1.0, float),
            )
            model_path = self._get('DETECTION_MODEL_PATH', None, str)
            self.detection = DetectionConfig(
                model_name=self._get('DETECTION_MODEL', 'movenet', str).lower(),
                model_path=Path(model_path) if model_path else None,
                keypoint_threshold=self._get('DETECTION_KEYPOINT_THRESHOLD', 0.3, float),
                min_keypoints=self._get('DETECTION_MIN_KEYPOINTS', 1, int),
                frame_interval=self._get('DETECTION_FRAME_INTERVAL', 0.1, float),
            )
            self.alert = AlertConfig(
                variant=self._get('ALERT_VARIANT', 'video', str).lower(),
                cooldown_seconds=self._get('ALERT_COOLDOWN_SECONDS', 60.0, float),
                capture_duration=self._get('ALERT_CAPTURE_DURATION', 10.0, float),
                jpeg_quality=self._get('ALERT_JPEG_QUALITY', 80, int),
            )
            self.transcode = TranscodeConfig(
                ffmpeg_binary=self._get('TRANSCODE_FFMPEG_BINARY', 'ffmpeg', str),
                timeout=self._get('TRANSCODE_TIMEOUT', 120.0, float),
            )
            smtp_user = self._get('SMTP_USER', None, str)
            self.mail = MailConfig(
                transport=self._get('MAIL_TRANSPORT', 'smtp', str).lower(),
                smtp_host=self._get('SMTP_HOST', 'send.one.com', str),
                smtp_port=self._get('SMTP_PORT', 465, int),
                smtp_user=smtp_user,
                smtp_password=self._get('SMTP_PASSWORD', None, str),
                sender=self._get('MAIL_SENDER', smtp_user, str),
                recipient=self._get('MAIL_RECIPIENT', None, str),
                max_attachment_bytes=self._get('MAIL_MAX_ATTACHMENT_BYTES', 20 * 1024 * 1024, int),
                telegram_token=self._get('TELEGRAM_BOT_TOKEN', None, str),
                telegram_chat_id=self._get('TELEGRAM_CHAT_ID', None, str),
            )
            self.template = TemplateConfig(
                endpoint=self._get('EMAILJS_ENDPOINT', TemplateConfig.endpoint, str),
                service_id=self._get('EMAILJS_SERVICE_ID', None, str),
                template_id=self._get('EMAILJS_TEMPLATE_ID', None, str),
                user_id=self._get('EMAILJS_USER_ID', None, str),
                recipient=self._get('MAIL_RECIPIENT', None, str),
            )
            self.relay = RelayConfig(
                host=self._get('RELAY_HOST', '0.0.0.0', str),
                port=self._get('RELAY_PORT', 3000, int),
                max_body_bytes=self._get('RELAY_MAX_BODY_BYTES', 10 * 1024 * 1024, int),
                url=self._get('RELAY_URL', 'http://127.0.0.1:3000', str).rstrip('/'),
            )
            self.performance = PerformanceConfig(
                memory_threshold=self._get('PERFORMANCE_MEMORY_THRESHOLD', 0.9, float),
                error_sleep=self._get('PERFORMANCE_ERROR_SLEEP', 1.0, float),
                shutdown_timeout=self._get('PERFORMANCE_SHUTDOWN_TIMEOUT', 30.0, float),
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        self.log_level = self._get('LOG_LEVEL', 'INFO', str).upper()

        if require_secrets:
            self.check_secrets()

    def _get(self, name: str, default: Any, cast: Callable[[str], Any]) -> Any:
        raw = self._overrides.get(name, os.getenv(name))
        if raw is None or raw == "":
            return default
        try:
            return cast(raw)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for {name}: {raw!r}, using default {default!r}")
            return default

    def check_secrets(self) -> None:
        """Ensure credentials exist for the configured alert variant."""
        variant = self.alert.variant
        if variant == "video":
            self.require_mail_secrets()
        elif variant == "template":
            missing = [name for name, value in (
                ('EMAILJS_SERVICE_ID', self.template.service_id),
                ('EMAILJS_TEMPLATE_ID', self.template.template_id),
                ('EMAILJS_USER_ID', self.template.user_id),
                ('MAIL_RECIPIENT', self.template.recipient),
            ) if not value]
            if missing:
                raise ConfigurationError(f"Please set {', '.join(missing)} in .env file")

    def require_mail_secrets(self) -> None:
        """Ensure the selected mail transport has its credentials."""
        if self.mail.transport == "telegram":
            required = (('TELEGRAM_BOT_TOKEN', self.mail.telegram_token),
                        ('TELEGRAM_CHAT_ID', self.mail.telegram_chat_id))
        else:
            required = (('SMTP_USER', self.mail.smtp_user),
                        ('SMTP_PASSWORD', self.mail.smtp_password),
                        ('MAIL_RECIPIENT', self.mail.recipient))
        missing = [name for name, value in required if not value]
        if missing:
            raise ConfigurationError(f"Please set {', '.join(missing)} in .env file")

    @classmethod
    def create_test_config(cls, **overrides) -> "Config":
        """Create a configuration for tests without touching the environment."""
        values = {
            'SMTP_USER': 'alarm@example.com',
            'SMTP_PASSWORD': 'test_password',
            'MAIL_RECIPIENT': 'owner@example.com',
        }
        values.update({key: str(value) for key, value in overrides.items()})
        return cls(overrides=values, require_secrets=False)

    def get_summary(self) -> dict:
        """Non-secret configuration summary for startup logging."""
        return {
            'camera': asdict(self.camera),
            'detection': {
                'model': self.detection.model_name,
                'keypoint_threshold': self.detection.keypoint_threshold,
                'min_keypoints': self.detection.min_keypoints,
                'frame_interval': self.detection.frame_interval,
            },
            'alert': asdict(self.alert),
            'mail': {
                'transport': self.mail.transport,
                'smtp_host': self.mail.smtp_host,
                'smtp_port': self.mail.smtp_port,
                'recipient': self.mail.recipient,
            },
            'relay': {'url': self.relay.url, 'port': self.relay.port},
        }


def _parse_resolution(value: str) -> Tuple[int, int]:
    width, height = value.lower().split('x')
    return int(width), int(height)
