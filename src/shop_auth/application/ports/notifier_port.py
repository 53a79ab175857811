"""Port for outbound account notifications."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol


class MailTemplateKind(StrEnum):
    """Message templates the authentication core dispatches."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


@dataclass(frozen=True)
class MailRecipient:
    """Addressee of one outbound message."""

    name: str
    email: str


class NotifierError(RuntimeError):
    """Raised when a message cannot be rendered or delivered."""


class NotifierPort(Protocol):
    """Templated message delivery contract."""

    def render_template(self, kind: MailTemplateKind, variables: Mapping[str, str]) -> str:
        """Render one message body for the given template kind."""

    async def send(self, *, recipient: MailRecipient, subject: str, body: str) -> None:
        """Deliver one message or raise `NotifierError`."""
