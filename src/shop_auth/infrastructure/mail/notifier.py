"""Email notifier adapter with a pluggable SMTP transport."""

from __future__ import annotations

import asyncio
import html
import logging
import re
import smtplib
from collections.abc import Mapping
from email.message import EmailMessage
from email.utils import formataddr
from typing import Protocol

from shop_auth.application.ports.notifier_port import (
    MailRecipient,
    MailTemplateKind,
    NotifierError,
    NotifierPort,
)
from shop_auth.infrastructure.mail.templates import MailTemplateRenderer

logger = logging.getLogger(__name__)

_TAG_PATTERN = re.compile(r"<[^>]+>")
_BLANK_LINES_PATTERN = re.compile(r"\n\s*\n+")


class MailTransportPort(Protocol):
    """Transport protocol used by the mail notifier."""

    async def deliver(self, message: EmailMessage) -> None:
        """Hand one fully built message to the mail relay."""


class SmtpMailTransport:
    """smtplib-based async transport delivering from a worker thread."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout_seconds = timeout_seconds

    async def deliver(self, message: EmailMessage) -> None:
        """Send one message without blocking the event loop."""

        await asyncio.to_thread(self._deliver_sync, message)

    def _deliver_sync(self, message: EmailMessage) -> None:
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout_seconds) as client:
                if self._use_tls:
                    client.starttls()
                if self._username:
                    client.login(self._username, self._password or "")
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotifierError(f"smtp delivery failure: {exc}") from exc


class LogOnlyMailTransport:
    """Transport for environments without a mail relay; records headers only."""

    async def deliver(self, message: EmailMessage) -> None:
        logger.warning(
            "mail_delivery_skipped reason=no_smtp_host subject=%s",
            message["Subject"],
        )


class MailNotifier(NotifierPort):
    """Render account templates and deliver them as multipart emails."""

    def __init__(
        self,
        *,
        sender: MailRecipient,
        transport: MailTransportPort,
        renderer: MailTemplateRenderer | None = None,
    ) -> None:
        self._sender = sender
        self._transport = transport
        self._renderer = renderer or MailTemplateRenderer()

    def render_template(self, kind: MailTemplateKind, variables: Mapping[str, str]) -> str:
        return self._renderer.render(kind, variables)

    async def send(self, *, recipient: MailRecipient, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = formataddr((self._sender.name, self._sender.email))
        message["To"] = formataddr((recipient.name, recipient.email))
        message["Subject"] = subject
        message.set_content(_plain_text(body))
        message.add_alternative(body, subtype="html")

        logger.info("mail_dispatch_started subject=%s", subject)
        await self._transport.deliver(message)
        logger.info("mail_dispatch_completed subject=%s", subject)


def _plain_text(body: str) -> str:
    """Derive the text/plain alternative from an HTML body."""

    text = html.unescape(_TAG_PATTERN.sub("", body))
    lines = (line.strip() for line in text.splitlines())
    return _BLANK_LINES_PATTERN.sub("\n\n", "\n".join(lines)).strip() + "\n"
