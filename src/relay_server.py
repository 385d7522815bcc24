#!/usr/bin/env python3
"""
Alert relay server.

Accepts a recorded clip as base64 JSON, converts it to MP4 with ffmpeg and
mails it to the configured recipient.

    POST /send-email  {"videoBase64": "...", "filename": "intruder_....webm"}
"""

import argparse
import asyncio
import base64
import binascii
import json
import logging
from pathlib import PurePath
from typing import Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, ValidationError

from config import Config
from delivery_service import AlertFormatter, DeliveryService, default_recipient
from exceptions import ConfigurationError, InvalidAlert, TranscodeError
from transcoder import Transcoder
from utils import configure_logging

logger = logging.getLogger(__name__)

router = APIRouter()

MISSING_FIELDS = "Missing video data or filename"
SEND_OK = "Email sent successfully"
SEND_FAILED = "Failed to send email"


class SendEmailRequest(BaseModel):
    videoBase64: Optional[str] = None
    filename: Optional[str] = None
    # Capture rate of raw mjpeg/h264 input; the camera fps is used when absent
    framerate: Optional[int] = Field(default=None, gt=0)


def _text(status_code: int, message: str) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/send-email")
async def send_email(request: Request) -> PlainTextResponse:
    state = request.app.state
    body = await request.body()
    if len(body) > state.config.relay.max_body_bytes:
        logger.warning(f"Rejected relay request of {len(body):,} bytes")
        return _text(413, "Request body too large")

    try:
        payload = SendEmailRequest.model_validate(json.loads(body or b"{}"))
    except (ValueError, ValidationError):
        return _text(400, MISSING_FIELDS)
    if not payload.videoBase64 or not payload.filename:
        return _text(400, MISSING_FIELDS)

    try:
        raw = base64.b64decode(payload.videoBase64, validate=True)
    except (binascii.Error, ValueError):
        return _text(400, "Invalid video data")

    source_format = PurePath(payload.filename).suffix.lstrip('.').lower() or "webm"
    loop = asyncio.get_running_loop()
    try:
        encoded = await loop.run_in_executor(
            None, state.transcoder.transcode, [raw], source_format, None,
            payload.filename, payload.framerate)
    except TranscodeError as e:
        logger.error(f"Error converting {payload.filename}: {e}")
        return _text(500, SEND_FAILED)

    message = state.formatter.build_alert_message(
        encoded, default_recipient(state.config), clip_seconds=state.config.alert.capture_duration)
    try:
        result = await state.delivery.deliver(message)
    except InvalidAlert as e:
        logger.error(f"Converted video rejected: {e}")
        return _text(500, SEND_FAILED)

    if not result.success:
        logger.error(f"Error sending email ({result.error_kind}): {result.error}")
        return _text(500, SEND_FAILED)
    return _text(200, SEND_OK)


def create_app(config: Optional[Config] = None, transcoder: Optional[Transcoder] = None,
               delivery: Optional[DeliveryService] = None) -> FastAPI:
    config = config or Config(require_secrets=False)
    app = FastAPI(title="Intruder Alert Relay")
    app.state.config = config
    app.state.transcoder = transcoder or Transcoder(config)
    app.state.delivery = delivery or DeliveryService(config)
    app.state.formatter = AlertFormatter()
    app.include_router(router)
    return app


def main() -> None:
    parser = argparse.ArgumentParser(description="Relay that converts alert clips and mails them")
    parser.add_argument("--host", help="Bind address (default from RELAY_HOST)")
    parser.add_argument("--port", type=int, help="Port (default from RELAY_PORT)")
    args = parser.parse_args()

    config = Config(require_secrets=False)
    configure_logging(config.log_level)
    try:
        config.require_mail_secrets()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise SystemExit(1)

    host = args.host or config.relay.host
    port = args.port or config.relay.port
    logger.info(f"Relay listening on {host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
