"""
Outbound mail channel

SMTP delivery for Last Wish digests (HTML + plain-text alternative +
attachments).
"""

from __future__ import annotations

import smtplib
from collections.abc import Sequence
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from typing import Any, Protocol

from lastwish import config
from lastwish.delivery.errors import MailSendError
from lastwish.delivery.models import Attachment
from lastwish.observability.logging import get_logger
from lastwish.utils.redaction import mask_email
from lastwish.utils.validators import ValidationError, validate_email_address

logger = get_logger(__name__)


class MailChannel(Protocol):
    """Anything that can send one message and return its transport id."""

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str,
        attachments: Sequence[Attachment] = (),
    ) -> str: ...

    def get_config_status(self) -> dict[str, Any]: ...


class SMTPMailChannel:
    """Sends mail through an SMTP server with STARTTLS"""

    def __init__(
        self,
        smtp_host: str | None = None,
        smtp_port: int | None = None,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        from_email: str | None = None,
        from_name: str | None = None,
        timeout: float | None = None,
    ):
        """
        Initialize SMTP delivery

        Falls back to the SMTP_* settings for anything not passed in:
        - SMTP_HOST: SMTP server hostname
        - SMTP_PORT: SMTP server port (default: 587)
        - SMTP_USER / SMTP_PASSWORD: credentials
        - SMTP_FROM_EMAIL: From address (default: SMTP_USER)
        - SMTP_FROM_NAME: From name (default: "Last Wish")
        - SMTP_TIMEOUT_SECONDS: socket timeout per connection
        """
        self.smtp_host = smtp_host or config.SMTP_HOST
        self.smtp_port = smtp_port or config.SMTP_PORT
        self.smtp_user = smtp_user or config.SMTP_USER
        self.smtp_password = smtp_password or config.SMTP_PASSWORD
        self.from_email = from_email or config.SMTP_FROM_EMAIL or self.smtp_user
        self.from_name = from_name or config.SMTP_FROM_NAME
        self.timeout = timeout or config.SMTP_TIMEOUT_SECONDS

        if not all([self.smtp_host, self.smtp_user, self.smtp_password, self.from_email]):
            logger.warning("SMTP not fully configured. Set SMTP_* environment variables.")
            self.enabled = False
        else:
            self.enabled = True
            logger.info("SMTP delivery configured: %s:%s", self.smtp_host, self.smtp_port)

    def _build_message(
        self,
        to: str,
        subject: str,
        html: str,
        text: str,
        attachments: Sequence[Attachment],
        message_id: str,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg["Date"] = formatdate(localtime=False, usegmt=True)
        msg["Message-ID"] = message_id

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(text, "plain", "utf-8"))
        body.attach(MIMEText(html, "html", "utf-8"))
        msg.attach(body)

        for attachment in attachments:
            _, _, subtype = attachment.mime_type.partition("/")
            part = MIMEApplication(attachment.content, _subtype=subtype or "octet-stream")
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)

        return msg

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str,
        attachments: Sequence[Attachment] = (),
    ) -> str:
        """
        Send one message

        Args:
            to: Recipient address (validated before connecting)
            subject: Email subject
            html: HTML body
            text: Plain-text alternative
            attachments: Files to attach

        Returns:
            The Message-ID header of the sent message

        Raises:
            MailSendError: SMTP not configured, invalid address, or any SMTP/socket failure
        """
        if not self.enabled:
            raise MailSendError("SMTP delivery not configured", recipient=to)

        try:
            to = validate_email_address(to)
        except ValidationError as e:
            raise MailSendError(str(e), recipient=to) from e

        assert self.smtp_user is not None
        assert self.smtp_password is not None

        domain = (self.from_email or "lastwish.local").partition("@")[2] or None
        message_id = make_msgid(domain=domain)
        msg = self._build_message(to, subject, html, text, attachments, message_id)

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                refused = server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            # OSError covers socket timeouts and refused connections
            logger.warning("SMTP send to %s failed: %s", mask_email(to), e)
            raise MailSendError(f"{type(e).__name__}: {e}", recipient=to) from e

        if refused:
            raise MailSendError(f"Recipient refused: {refused}", recipient=to)

        logger.info("Digest sent to %s", mask_email(to))
        return message_id

    def get_config_status(self) -> dict[str, Any]:
        """Get SMTP configuration status"""
        return {
            "enabled": self.enabled,
            "smtp_host": self.smtp_host,
            "smtp_port": self.smtp_port,
            "smtp_user_set": bool(self.smtp_user),
            "smtp_password_set": bool(self.smtp_password),
            "from_email": self.from_email,
            "from_name": self.from_name,
        }
