"""SMTP transport for ticket emails."""
from __future__ import annotations

import logging
import smtplib
import socket
import ssl
from email.message import EmailMessage
from typing import Optional

from .errors import DeliveryFailure

logger = logging.getLogger(__name__)


def build_message(*, sender: str, to: str, subject: str, html: str, text: str = "") -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to
    msg.set_content(text or "This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")
    return msg


class SMTPMailer:
    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 20.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, message: EmailMessage) -> None:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls(context=ssl.create_default_context())
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError, socket.error) as exc:
            raise DeliveryFailure(f"Could not send mail to {message['To']}: {exc!r}") from exc
        logger.debug("Sent %r to %s via %s:%s", message["Subject"], message["To"], self.host, self.port)


__all__ = ["SMTPMailer", "build_message"]
