"""
Alert delivery for the intruder monitor.

Packages transcoded evidence into an AlertMessage and hands it to a mail
transport. One transport call per delivery, no retries: the next alert cycle
after the cooldown is the retry policy.
"""

import asyncio
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional, Protocol

import telegram

from config import Config
from exceptions import AttachmentTooLarge, DeliveryAuthError, DeliveryError, InvalidAlert
from models import AlertMessage, DeliveryResult, EncodedVideo

logger = logging.getLogger(__name__)

TELEGRAM_MAX_VIDEO_BYTES = 50 * 1024 * 1024


class AlertFormatter:
    """Message formatting utilities for alerts."""

    SUBJECT = "⚠️ INTRUDER ALERT - Security Camera Footage"

    @staticmethod
    def format_html_body(detected_at: datetime, clip_seconds: float) -> str:
        time_str = detected_at.strftime('%Y-%m-%d %H:%M:%S')
        return (
            '<div style="background-color: #ff0000; color: white; padding: 20px; text-align: center;">'
            '<h1>⚠️ INTRUDER DETECTED! ⚠️</h1>'
            '<p>An intruder was detected by your security camera.</p>'
            f'<p>Please find the {clip_seconds:.0f}-second video footage attached (MP4 format).</p>'
            f'<p>Detection Time: {time_str}</p>'
            '</div>'
        )

    @staticmethod
    def format_caption(message: AlertMessage) -> str:
        return f"{message.subject}\nDetection Time: {message.created_at.strftime('%Y-%m-%d %H:%M:%S')}"

    def build_alert_message(self, encoded: EncodedVideo, recipient: str,
                            detected_at: Optional[datetime] = None,
                            clip_seconds: float = 10.0) -> AlertMessage:
        detected_at = detected_at or datetime.now()
        return AlertMessage(
            recipient=recipient,
            subject=self.SUBJECT,
            html_body=self.format_html_body(detected_at, clip_seconds),
            attachment=encoded.data,
            attachment_filename=encoded.filename,
            attachment_mime_type=encoded.mime_type,
            created_at=detected_at,
        )


class MailTransport(Protocol):
    """Outbound transport contract. Returns a delivery identifier."""

    async def send(self, message: AlertMessage) -> str: ...


class SmtpMailTransport:
    """SMTP over implicit TLS."""

    def __init__(self, config: Config):
        self.config = config

    def build_email(self, message: AlertMessage) -> EmailMessage:
        email = EmailMessage()
        email['From'] = self.config.mail.sender or self.config.mail.smtp_user
        email['To'] = message.recipient
        email['Subject'] = message.subject
        email['Message-ID'] = make_msgid(domain=self.config.mail.smtp_host)
        email.set_content("An intruder was detected by your security camera. Video attached.")
        email.add_alternative(message.html_body, subtype='html')

        maintype, subtype = message.attachment_mime_type.split('/', 1)
        email.add_attachment(message.attachment, maintype=maintype, subtype=subtype,
                             filename=message.attachment_filename)
        return email

    def _send_sync(self, message: AlertMessage) -> str:
        email = self.build_email(message)
        mail = self.config.mail
        try:
            with smtplib.SMTP_SSL(mail.smtp_host, mail.smtp_port, timeout=mail.send_timeout) as server:
                server.login(mail.smtp_user, mail.smtp_password)
                server.send_message(email)
        except smtplib.SMTPAuthenticationError as e:
            raise DeliveryAuthError(f"SMTP authentication failed: {e.smtp_code}") from e
        except smtplib.SMTPDataError as e:
            if e.smtp_code == 552:
                raise AttachmentTooLarge(f"SMTP server rejected message size: {e.smtp_error!r}") from e
            raise DeliveryError(f"SMTP data error {e.smtp_code}: {e.smtp_error!r}") from e
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP transport error: {e}") from e
        return email['Message-ID']

    async def send(self, message: AlertMessage) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._send_sync, message)


class TelegramTransport:
    """Sends the evidence clip as a Telegram video with a short caption."""

    def __init__(self, config: Config, bot: Optional[telegram.Bot] = None):
        self.config = config
        self.bot = bot or telegram.Bot(token=config.mail.telegram_token)
        self.formatter = AlertFormatter()

    async def send(self, message: AlertMessage) -> str:
        if len(message.attachment) > TELEGRAM_MAX_VIDEO_BYTES:
            raise AttachmentTooLarge("Telegram bots cannot upload videos above 50 MB")
        try:
            sent = await self.bot.send_video(
                chat_id=self.config.mail.telegram_chat_id,
                video=message.attachment,
                filename=message.attachment_filename,
                caption=self.formatter.format_caption(message),
                supports_streaming=True,
                read_timeout=self.config.mail.send_timeout,
                write_timeout=self.config.mail.send_timeout,
                connect_timeout=30
            )
        except telegram.error.TimedOut as e:
            # Uploads often complete despite the client-side timeout
            logger.warning(f"Telegram API timeout (video may still have been sent): {e}")
            return "telegram-timeout"
        except (telegram.error.InvalidToken, telegram.error.Forbidden) as e:
            raise DeliveryAuthError(f"Telegram rejected the bot credentials: {e}") from e
        except telegram.error.BadRequest as e:
            if "too big" in str(e).lower():
                raise AttachmentTooLarge(f"Telegram rejected the video size: {e}") from e
            raise DeliveryError(f"Telegram bad request: {e}") from e
        except telegram.error.TelegramError as e:
            raise DeliveryError(f"Telegram transport error: {e}") from e
        return str(sent.message_id)


def create_mail_transport(config: Config) -> MailTransport:
    if config.mail.transport == "telegram":
        return TelegramTransport(config)
    return SmtpMailTransport(config)


class DeliveryService:
    """Single-attempt alert delivery with structured results."""

    def __init__(self, config: Config, transport: Optional[MailTransport] = None):
        self.config = config
        self.transport = transport or create_mail_transport(config)
        self.formatter = AlertFormatter()

    async def deliver(self, message: AlertMessage) -> DeliveryResult:
        """Send one alert. Raises InvalidAlert for an empty attachment."""
        if not message.attachment:
            raise InvalidAlert("Alert message has no attachment")

        size = len(message.attachment)
        if size > self.config.mail.max_attachment_bytes:
            logger.error(f"Attachment {message.attachment_filename} is {size:,} bytes, "
                         f"limit is {self.config.mail.max_attachment_bytes:,}")
            return DeliveryResult.failed("oversize", f"Attachment too large: {size} bytes")

        try:
            delivery_id = await self.transport.send(message)
        except DeliveryAuthError as e:
            logger.error(f"Alert delivery failed (auth): {e}")
            return DeliveryResult.failed("auth", str(e))
        except AttachmentTooLarge as e:
            logger.error(f"Alert delivery failed (oversize): {e}")
            return DeliveryResult.failed("oversize", str(e))
        except Exception as e:
            logger.error(f"Alert delivery failed (transport): {e}", exc_info=True)
            return DeliveryResult.failed("transport", str(e))

        logger.info(f"Alert email sent successfully: {delivery_id} "
                    f"({message.attachment_filename}, {size:,} bytes)")
        return DeliveryResult.ok(delivery_id)


def default_recipient(config: Config) -> str:
    """Mail address, or chat id when alerts go out through Telegram."""
    if config.mail.transport == "telegram":
        return config.mail.telegram_chat_id or ""
    return config.mail.recipient or ""
