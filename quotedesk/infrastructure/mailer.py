from __future__ import annotations

import logging
import mimetypes
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import List, Mapping, Sequence, Tuple


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailAttachment:
    filename: str
    path: Path


@dataclass(frozen=True)
class OutboundEmail:
    to: Tuple[str, ...]
    subject: str
    html: str
    text: str = ""
    attachments: Tuple[MailAttachment, ...] = field(default_factory=tuple)
    category: str = "general"


class LogMailer:
    """Mailer used when no SMTP host is configured: records what would be sent."""

    def __init__(self) -> None:
        self.sent: List[OutboundEmail] = []

    def send(self, message: OutboundEmail) -> None:
        self.sent.append(message)
        logger.info(
            "mail_logged",
            extra={
                "mail_category": message.category,
                "mail_to": list(message.to),
                "mail_subject": message.subject,
                "mail_attachments": [item.filename for item in message.attachments],
            },
        )


class SmtpMailer:
    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: int = 20,
        sender: str = "no-reply@localhost",
    ) -> None:
        self.host = host
        self.port = int(port)
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = int(timeout)
        self.sender = sender

    def build_message(self, message: OutboundEmail) -> EmailMessage:
        mime = EmailMessage()
        mime["Subject"] = message.subject
        mime["From"] = self.sender
        mime["To"] = ", ".join(message.to)
        mime.set_content(message.text or "This message requires an HTML capable mail client.")
        mime.add_alternative(message.html, subtype="html")
        for attachment in message.attachments:
            content_type, _ = mimetypes.guess_type(attachment.filename)
            maintype, subtype = (content_type or "application/octet-stream").split("/", 1)
            mime.add_attachment(
                attachment.path.read_bytes(),
                maintype=maintype,
                subtype=subtype,
                filename=attachment.filename,
            )
        return mime

    def send(self, message: OutboundEmail) -> None:
        mime = self.build_message(message)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(mime)
        logger.info(
            "mail_sent",
            extra={
                "mail_category": message.category,
                "mail_to": list(message.to),
                "mail_attachments": len(message.attachments),
            },
        )


def format_sender(raw: str | None, fallback_name: str = "QuoteDesk") -> str:
    value = str(raw or "").strip()
    if "<" in value or not value:
        return value or formataddr((fallback_name, "no-reply@localhost"))
    return formataddr((fallback_name, value))


def build_mailer(config: Mapping[str, object]):
    host = str(config.get("MAIL_SMTP_HOST") or "").strip()
    if not host:
        return LogMailer()
    return SmtpMailer(
        host=host,
        port=int(config.get("MAIL_SMTP_PORT") or 587),
        username=config.get("MAIL_SMTP_USERNAME") or None,
        password=config.get("MAIL_SMTP_PASSWORD") or None,
        use_tls=bool(config.get("MAIL_USE_TLS", True)),
        timeout=int(config.get("MAIL_TIMEOUT_SECONDS") or 20),
        sender=format_sender(config.get("MAIL_FROM")),
    )


def recipients(addresses: Sequence[str | None]) -> Tuple[str, ...]:
    seen: List[str] = []
    for address in addresses:
        value = str(address or "").strip().lower()
        if value and value not in seen:
            seen.append(value)
    return tuple(seen)
