"""
Alert channels: what evidence is produced and where it goes.

- VideoEmailChannel: local ffmpeg transcode, then mail delivery
- RelayVideoChannel: raw capture posted to a remote /send-email relay
- TemplateEmailChannel: still-image alert through a transactional email API
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from datetime import datetime
from typing import Any, Optional

import requests

from config import Config
from delivery_service import AlertFormatter, DeliveryService, default_recipient
from exceptions import ConfigurationError, InvalidAlert
from models import CaptureSession, DeliveryResult, EncodedVideo
from transcoder import Transcoder
from utils import build_alert_filename

logger = logging.getLogger(__name__)


class AlertChannel(ABC):
    """Evidence pipeline for one alert variant."""

    requires_capture = True

    def __init__(self, config: Config, executor: Optional[Executor] = None):
        self.config = config
        self.executor = executor

    async def _in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, func, *args)

    def _effective_fps(self, session: CaptureSession) -> int:
        # Detection pacing caps the real frame rate below the camera's nominal fps
        if session.duration and session.chunks:
            return max(1, round(len(session.chunks) / session.duration))
        return self.config.camera.fps

    @abstractmethod
    async def encode(self, session: CaptureSession) -> Any:
        """Turn a completed capture into deliverable evidence."""
        pass

    @abstractmethod
    async def deliver(self, evidence: Any, detected_at: Optional[datetime] = None) -> DeliveryResult:
        """Send the alert. Returns a structured result."""
        pass


class VideoEmailChannel(AlertChannel):
    """Transcode locally and mail the clip as an attachment."""

    def __init__(self, config: Config, executor: Optional[Executor] = None,
                 transcoder: Optional[Transcoder] = None,
                 delivery: Optional[DeliveryService] = None):
        super().__init__(config, executor)
        self.transcoder = transcoder or Transcoder(config)
        self.delivery = delivery or DeliveryService(config)
        self.formatter = AlertFormatter()

    async def encode(self, session: CaptureSession) -> EncodedVideo:
        filename = build_alert_filename(session.source_format, session.wall_time,
                                        self.config.alert.filename_prefix)
        return await self._in_executor(
            self.transcoder.transcode, list(session.chunks), session.source_format,
            None, filename, self._effective_fps(session))

    async def deliver(self, evidence: EncodedVideo,
                      detected_at: Optional[datetime] = None) -> DeliveryResult:
        if evidence is None or not evidence.data:
            raise InvalidAlert("No encoded video to deliver")
        message = self.formatter.build_alert_message(
            evidence, default_recipient(self.config), detected_at, self.config.alert.capture_duration)
        return await self.delivery.deliver(message)


class RelayVideoChannel(AlertChannel):
    """Post the raw capture to the relay, which transcodes and mails it."""

    def __init__(self, config: Config, executor: Optional[Executor] = None,
                 session: Optional[requests.Session] = None):
        super().__init__(config, executor)
        self.http = session or requests.Session()
        self.endpoint = f"{config.relay.url}/send-email"

    async def encode(self, session: CaptureSession) -> dict:
        data = b"".join(session.chunks)
        if not data:
            raise InvalidAlert("Capture produced no data")
        return {
            "videoBase64": base64.b64encode(data).decode('ascii'),
            "filename": build_alert_filename(session.source_format, session.wall_time,
                                             self.config.alert.filename_prefix),
            "framerate": self._effective_fps(session),
        }

    def _post(self, payload: dict) -> DeliveryResult:
        try:
            response = self.http.post(self.endpoint, json=payload, timeout=self.config.relay.timeout)
        except requests.RequestException as e:
            logger.error(f"Relay unreachable at {self.endpoint}: {e}")
            return DeliveryResult.failed("transport", str(e))

        if response.status_code == 200:
            logger.info(f"Relay accepted alert {payload['filename']}: {response.text}")
            return DeliveryResult.ok(payload['filename'])
        if response.status_code == 413:
            return DeliveryResult.failed("oversize", response.text)
        if response.status_code == 400:
            return DeliveryResult.failed("invalid", response.text)
        logger.error(f"Relay returned {response.status_code}: {response.text}")
        return DeliveryResult.failed("transport", f"Relay returned {response.status_code}: {response.text}")

    async def deliver(self, evidence: dict, detected_at: Optional[datetime] = None) -> DeliveryResult:
        if not evidence or not evidence.get("videoBase64"):
            raise InvalidAlert("No video payload for the relay")
        return await self._in_executor(self._post, evidence)


class TemplateEmailChannel(AlertChannel):
    """Still-image variant: a templated notification without a recording."""

    requires_capture = False

    def __init__(self, config: Config, executor: Optional[Executor] = None,
                 session: Optional[requests.Session] = None):
        super().__init__(config, executor)
        self.http = session or requests.Session()

    async def encode(self, session: CaptureSession) -> None:
        return None

    def build_payload(self, detected_at: Optional[datetime] = None) -> dict:
        template = self.config.template
        return {
            "service_id": template.service_id,
            "template_id": template.template_id,
            "user_id": template.user_id,
            "template_params": {
                "to": template.recipient,
                "subject": template.subject,
                "message": template.message,
                "time": (detected_at or datetime.now()).strftime('%Y-%m-%d %H:%M:%S'),
            },
        }

    def _post(self, payload: dict) -> DeliveryResult:
        try:
            response = self.http.post(self.config.template.endpoint, json=payload,
                                      timeout=self.config.template.timeout)
        except requests.RequestException as e:
            logger.error(f"Email API unreachable: {e}")
            return DeliveryResult.failed("transport", str(e))

        if response.ok:
            logger.info("Intruder alert email sent through the template API")
            return DeliveryResult.ok(f"template-{response.status_code}")
        if response.status_code in (401, 403):
            return DeliveryResult.failed("auth", response.text)
        if response.status_code == 400:
            return DeliveryResult.failed("invalid", response.text)
        return DeliveryResult.failed("transport", f"Email API returned {response.status_code}: {response.text}")

    async def deliver(self, evidence: Any = None, detected_at: Optional[datetime] = None) -> DeliveryResult:
        return await self._in_executor(self._post, self.build_payload(detected_at))


CHANNELS = {
    "video": VideoEmailChannel,
    "relay": RelayVideoChannel,
    "template": TemplateEmailChannel,
}


def create_alert_channel(config: Config, executor: Optional[Executor] = None) -> AlertChannel:
    """Build the channel for the configured alert variant."""
    try:
        channel_cls = CHANNELS[config.alert.variant]
    except KeyError:
        raise ConfigurationError(f"Unknown alert variant: {config.alert.variant}")
    logger.info(f"Alert variant: {config.alert.variant} ({channel_cls.__name__})")
    return channel_cls(config, executor)
