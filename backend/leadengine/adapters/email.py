"""Email adapter - SMTP delivery plus a log-only transport for development."""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

import aiosmtplib
import structlog

from leadengine.config import settings
from leadengine.errors import DeliveryError

logger = structlog.get_logger()


class SmtpTransport:
    """Sends auto-responses over SMTP. Any failure surfaces as DeliveryError."""

    channel = "email"

    def __init__(self, host: str | None = None, port: int | None = None, user: str | None = None,
                 password: str | None = None, use_tls: bool | None = None, timeout: float = 10.0):
        self.host = host if host is not None else settings.smtp_host
        self.port = port or settings.smtp_port
        self.user = user if user is not None else settings.smtp_user
        self.password = password if password is not None else settings.smtp_password
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls
        self.timeout = timeout

    def build_message(self, to_email: str, subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((settings.sender_name, settings.sender_email))
        msg["To"] = to_email
        msg.attach(MIMEText(body, "plain"))
        return msg

    async def send(self, lead, subject: str, body: str) -> None:
        if not self.host:
            raise DeliveryError("SMTP host not configured")

        msg = self.build_message(lead.email, subject, body)
        # Implicit TLS on 465, STARTTLS elsewhere
        implicit_tls = self.use_tls and self.port == 465
        try:
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.user or None,
                password=self.password or None,
                use_tls=implicit_tls,
                start_tls=self.use_tls and not implicit_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", error=str(e), to=lead.email)
            raise DeliveryError(f"SMTP delivery failed: {e}") from e
        logger.info("email_sent", to=lead.email, subject=subject)


class LogTransport:
    """Draft mode: logs the message instead of delivering it."""

    def __init__(self, channel: str = "email"):
        self.channel = channel

    async def send(self, lead, subject: str, body: str) -> None:
        logger.info("auto_response_logged", channel=self.channel, to=lead.email,
                    subject=subject, body_preview=body[:120])
