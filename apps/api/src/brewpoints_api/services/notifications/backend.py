"""Outbound email transports for loyalty notifications."""

from __future__ import annotations

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Protocol

from brewpoints_api.core.settings import Settings


class EmailBackend(Protocol):
    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        ...


def compose_message(
    recipient: str,
    subject: str,
    body_text: str,
    body_html: str | None = None,
    *,
    sender: str | None = None,
) -> EmailMessage:
    message = EmailMessage()
    if sender:
        message["From"] = sender
    message["To"] = recipient
    message["Subject"] = subject
    message["Message-ID"] = make_msgid(domain="brewpoints.local")
    message.set_content(body_text)
    if body_html:
        message.add_alternative(body_html, subtype="html")
    return message


class SMTPEmailBackend:
    """Deliver notification mail through an SMTP relay off the event loop."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender_email: str,
        sender_name: str | None = None,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = formataddr((sender_name, sender_email)) if sender_name else sender_email
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "SMTPEmailBackend | None":
        """Build the relay backend, or ``None`` when email delivery is switched off."""

        if not settings.notification_email_enabled:
            return None
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender_email=settings.smtp_sender_email,
            sender_name=settings.smtp_sender_name,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        message = compose_message(recipient, subject, body_text, body_html, sender=self._sender)
        await asyncio.to_thread(self._relay, message)

    def _relay(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)


class InMemoryEmailBackend:
    """Collects composed messages instead of sending them."""

    def __init__(self, sender: str = "Brewpoints <rewards@brewpoints.local>") -> None:
        self._sender = sender
        self.sent_messages: list[EmailMessage] = []

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        self.sent_messages.append(compose_message(recipient, subject, body_text, body_html, sender=self._sender))

    def recipients(self) -> list[str]:
        return [str(message["To"]) for message in self.sent_messages]
