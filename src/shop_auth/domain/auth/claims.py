"""Claim model carried by signed auth tokens."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from uuid import uuid4


class TokenPurpose(StrEnum):
    """Operation a signed token was issued for."""

    ACCESS = "access"
    REFRESH = "refresh"
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


SESSION_PURPOSES = frozenset({TokenPurpose.ACCESS, TokenPurpose.REFRESH})


@dataclass(frozen=True)
class AuthClaims:
    """Claims embedded in one token.

    `signed_at` (ms since epoch) is only set on access and refresh tokens and
    anchors them to the password epoch of the account. `expires_at` (seconds
    since epoch) is filled in by the codec when a token is verified.
    """

    request_id: str
    identity_id: str
    email: str
    purpose: TokenPurpose
    signed_at: int | None = None
    expires_at: int | None = None
    token_id: str = field(default_factory=lambda: uuid4().hex)
