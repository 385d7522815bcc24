"""
Unit tests for alert channels.
"""

import base64
from datetime import datetime

import pytest
import requests
from unittest.mock import AsyncMock, Mock

import sys
sys.path.append('src')

from alert_channels import (
    RelayVideoChannel, TemplateEmailChannel, VideoEmailChannel, create_alert_channel
)
from config import Config
from exceptions import InvalidAlert
from models import CaptureSession, CaptureStatus, DeliveryResult, EncodedVideo

WALL_TIME = datetime(2024, 5, 1, 12, 30, 0)


def make_session(chunks=(b"\xff\xd8a", b"\xff\xd8b"), duration=10.0):
    return CaptureSession(
        session_id="abc", started_at=0.0, target_duration=10.0, source_format="mjpeg",
        chunks=list(chunks), status=CaptureStatus.COMPLETE, ended_at=duration,
        wall_time=WALL_TIME,
    )


def response(status_code, text=""):
    resp = Mock(status_code=status_code, text=text)
    resp.ok = 200 <= status_code < 300
    return resp


class TestVideoEmailChannel:
    """Test local transcode + mail."""

    def setup_method(self):
        self.config = Config.create_test_config()
        self.transcoder = Mock()
        self.transcoder.transcode.return_value = EncodedVideo(
            data=b"mp4", filename="intruder_2024-05-01T12-30-00.000.mp4")
        self.delivery = Mock()
        self.delivery.deliver = AsyncMock(return_value=DeliveryResult.ok("id-1"))
        self.channel = VideoEmailChannel(self.config, transcoder=self.transcoder,
                                         delivery=self.delivery)

    @pytest.mark.asyncio
    async def test_encode_uses_capture_rate(self):
        session = make_session(chunks=[b"f"] * 100, duration=10.0)
        encoded = await self.channel.encode(session)

        assert encoded.filename.endswith(".mp4")
        args = self.transcoder.transcode.call_args.args
        assert args[1] == "mjpeg"
        assert args[3] == "intruder_2024-05-01T12-30-00.000.mjpeg"
        assert args[4] == 10

    @pytest.mark.asyncio
    async def test_deliver_builds_message(self):
        encoded = EncodedVideo(data=b"mp4", filename="clip.mp4")
        result = await self.channel.deliver(encoded, WALL_TIME)

        assert result.success
        message = self.delivery.deliver.call_args.args[0]
        assert message.recipient == "owner@example.com"
        assert message.attachment == b"mp4"
        assert "2024-05-01 12:30:00" in message.html_body

    @pytest.mark.asyncio
    async def test_deliver_without_video(self):
        with pytest.raises(InvalidAlert):
            await self.channel.deliver(EncodedVideo(data=b"", filename="clip.mp4"))


class TestRelayVideoChannel:
    """Test posting raw captures to the relay."""

    def setup_method(self):
        self.config = Config.create_test_config(ALERT_VARIANT="relay", RELAY_URL="http://relay:3000")
        self.http = Mock()
        self.channel = RelayVideoChannel(self.config, session=self.http)

    @pytest.mark.asyncio
    async def test_encode_payload(self):
        payload = await self.channel.encode(make_session())
        assert base64.b64decode(payload["videoBase64"]) == b"\xff\xd8a\xff\xd8b"
        assert payload["filename"] == "intruder_2024-05-01T12-30-00.000.mjpeg"
        assert payload["framerate"] == 1

    @pytest.mark.asyncio
    async def test_encode_payload_carries_capture_rate(self):
        payload = await self.channel.encode(make_session(chunks=[b"f"] * 100, duration=10.0))
        assert payload["framerate"] == 10

    @pytest.mark.asyncio
    async def test_encode_empty_capture(self):
        with pytest.raises(InvalidAlert):
            await self.channel.encode(make_session(chunks=[]))

    @pytest.mark.asyncio
    async def test_deliver_success(self):
        self.http.post.return_value = response(200, "Email sent successfully")
        payload = {"videoBase64": "eA==", "filename": "intruder_x.mjpeg"}
        result = await self.channel.deliver(payload)

        assert result.success
        self.http.post.assert_called_once_with(
            "http://relay:3000/send-email", json=payload, timeout=self.config.relay.timeout)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,kind", [(400, "invalid"), (413, "oversize"), (500, "transport")])
    async def test_deliver_error_status(self, status, kind):
        self.http.post.return_value = response(status, "Failed to send email")
        result = await self.channel.deliver({"videoBase64": "eA==", "filename": "x.mjpeg"})
        assert result.error_kind == kind

    @pytest.mark.asyncio
    async def test_relay_unreachable(self):
        self.http.post.side_effect = requests.ConnectionError("refused")
        result = await self.channel.deliver({"videoBase64": "eA==", "filename": "x.mjpeg"})
        assert result.error_kind == "transport"


class TestTemplateEmailChannel:
    """Test the still-image template variant."""

    def setup_method(self):
        self.config = Config.create_test_config(
            ALERT_VARIANT="template", EMAILJS_SERVICE_ID="service_x",
            EMAILJS_TEMPLATE_ID="template_y", EMAILJS_USER_ID="user_z")
        self.http = Mock()
        self.channel = TemplateEmailChannel(self.config, session=self.http)

    def test_no_capture_needed(self):
        assert self.channel.requires_capture is False

    def test_payload(self):
        payload = self.channel.build_payload(WALL_TIME)
        assert payload["service_id"] == "service_x"
        assert payload["template_id"] == "template_y"
        assert payload["user_id"] == "user_z"
        assert payload["template_params"]["to"] == "owner@example.com"
        assert payload["template_params"]["subject"] == "Intruder Alert!"
        assert "SOMEONE IS IN YOUR ROOM" in payload["template_params"]["message"]

    @pytest.mark.asyncio
    async def test_deliver(self):
        self.http.post.return_value = response(200, "OK")
        result = await self.channel.deliver(None, WALL_TIME)
        assert result.success
        assert self.http.post.call_args.args[0] == "https://api.emailjs.com/api/v1.0/email/send"

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        self.http.post.return_value = response(403, "The user ID is invalid")
        result = await self.channel.deliver(None)
        assert result.error_kind == "auth"


class TestChannelFactory:

    def test_variants(self):
        assert isinstance(create_alert_channel(Config.create_test_config()), VideoEmailChannel)
        assert isinstance(create_alert_channel(Config.create_test_config(ALERT_VARIANT="relay")),
                          RelayVideoChannel)
        assert isinstance(create_alert_channel(Config.create_test_config(ALERT_VARIANT="template")),
                          TemplateEmailChannel)
