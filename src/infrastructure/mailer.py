"""
Email sink  (Strategy Pattern)
==============================

* ``LogNotifier``  -- writes the message to the log (default; dev / tests).
* ``SmtpNotifier`` -- delivers through an SMTP relay.

Delivery is a best-effort side channel: callers go through
``services.notifications.deliver`` which logs and swallows failures, so a
dead mail relay never undoes a committed booking.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage

from src.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    to: str
    subject: str
    body: str


# ── Strategy hierarchy ────────────────────────────────────────────────


class Notifier(ABC):
    @abstractmethod
    async def send(self, notification: Notification) -> None: ...


class LogNotifier(Notifier):
    async def send(self, notification: Notification) -> None:
        logger.info(
            "Email to %s: %s -- %s",
            notification.to,
            notification.subject,
            notification.body,
        )


class SmtpNotifier(Notifier):
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def _build(self, notification: Notification) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = notification.to
        msg["Subject"] = notification.subject
        msg.set_content(notification.body)
        return msg

    def _send_blocking(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

    async def send(self, notification: Notification) -> None:
        await asyncio.to_thread(self._send_blocking, self._build(notification))


def build_notifier(cfg: Settings) -> Notifier:
    if cfg.email_backend == "smtp":
        return SmtpNotifier(
            host=cfg.smtp_host,
            port=cfg.smtp_port,
            sender=cfg.email_from,
            username=cfg.smtp_username,
            password=cfg.smtp_password,
            use_tls=cfg.smtp_use_tls,
        )
    return LogNotifier()
