"""Port for signing and verifying self-contained expiring tokens."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from shop_auth.domain.auth.claims import AuthClaims


class TokenCodecPort(Protocol):
    """Stateless token codec contract.

    `verify` raises `InvalidTokenError` when the signature does not verify or
    the embedded expiry has passed. Revocation is not the codec's concern.
    """

    def issue(self, claims: AuthClaims, *, expires_in: timedelta | datetime) -> str:
        """Sign claims; `timedelta` is an offset from now, `datetime` is absolute."""

    def verify(self, token: str) -> AuthClaims:
        """Return claims of one structurally valid token."""
