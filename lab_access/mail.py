"""Mail transports: SMTP delivery and a local outbox of ``.eml`` files."""

from __future__ import annotations

import logging
import re
import smtplib
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import ExternalServiceError
from .ports import Attachment

__all__ = ["build_message", "SmtpMailer", "OutboxMailer"]

logger = logging.getLogger(__name__)


def build_message(
    to: str,
    subject: str,
    body: str,
    *,
    sender: str,
    html_body: str,
    name: str,
    attachments: Sequence[Attachment] = (),
) -> EmailMessage:
    """Assemble a MIME message with an HTML alternative and attachments."""
    message = EmailMessage()
    message["From"] = formataddr((name, sender))
    message["To"] = to
    message["Subject"] = subject
    message["Message-ID"] = make_msgid()
    message.set_content(body)
    message.add_alternative(html_body, subtype="html")
    for attachment in attachments:
        maintype, _, subtype = attachment.mime_type.partition("/")
        message.add_attachment(
            attachment.content,
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return message


class SmtpMailer:
    """Sends mail through an SMTP relay using STARTTLS when credentials are set."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    def send_email(self, to, subject, body, *, sender, html_body, name, attachments=()):
        message = build_message(
            to, subject, body, sender=sender, html_body=html_body, name=name, attachments=attachments
        )
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.user:
                    smtp.starttls()
                    smtp.login(self.user, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"SMTP delivery to {to} failed: {exc}")
            raise ExternalServiceError("mail", f"Unable to send '{subject}' to {to}: {exc}") from exc
        logger.debug(f"Delivered '{subject}' to {to} via {self.host}:{self.port}")


class OutboxMailer:
    """Writes each message to an outbox directory instead of delivering it."""

    def __init__(self, outbox_dir: str):
        self.outbox_dir = Path(outbox_dir)
        self.sent: List[Path] = []

    def send_email(self, to, subject, body, *, sender, html_body, name, attachments=()):
        message = build_message(
            to, subject, body, sender=sender, html_body=html_body, name=name, attachments=attachments
        )
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        recipient = re.sub(r"[^a-z0-9]+", "_", to.lower()).strip("_")
        path = self.outbox_dir / f"{stamp}_{len(self.sent) + 1:03d}_{recipient}.eml"
        try:
            self.outbox_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(message.as_bytes())
        except OSError as exc:
            raise ExternalServiceError("mail", f"Unable to write '{path}': {exc}") from exc
        self.sent.append(path)
        logger.debug(f"Queued '{subject}' for {to} at {path}")
