"""Signed JWT codec for auth tokens backed by python-jose."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import jwt
from jose.exceptions import JWTError

from shop_auth.application.ports.token_codec_port import TokenCodecPort
from shop_auth.domain.auth.claims import AuthClaims, TokenPurpose
from shop_auth.domain.auth.errors import InvalidTokenError

DEFAULT_ALGORITHM = "HS256"

# jose checks exp/iat against the wall clock; both are checked here against
# the injected clock instead.
_DECODE_OPTIONS = {"verify_exp": False, "verify_iat": False}


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class JoseTokenCodec(TokenCodecPort):
    """Issue and verify compact HMAC-signed tokens with an embedded expiry."""

    def __init__(
        self,
        *,
        secret: str,
        algorithm: str = DEFAULT_ALGORITHM,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        if not secret:
            raise ValueError("token secret cannot be blank")
        self._secret = secret
        self._algorithm = algorithm
        self._now = now or _utc_now

    def issue(self, claims: AuthClaims, *, expires_in: timedelta | datetime) -> str:
        issued_at = self._now()
        if isinstance(expires_in, timedelta):
            expires_at = issued_at + expires_in
        else:
            expires_at = expires_in if expires_in.tzinfo else expires_in.replace(tzinfo=UTC)
        if expires_at <= issued_at:
            raise ValueError("token expiry must be in the future")

        payload: dict[str, Any] = {
            "rid": claims.request_id,
            "sub": claims.identity_id,
            "email": claims.email,
            "pur": claims.purpose.value,
            "jti": claims.token_id,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        if claims.signed_at is not None:
            payload["sat"] = claims.signed_at
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> AuthClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options=_DECODE_OPTIONS,
            )
        except JWTError as exc:
            raise InvalidTokenError(str(exc) or "malformed token") from exc

        expires_at = payload.get("exp")
        if not isinstance(expires_at, int):
            raise InvalidTokenError("missing expiry claim")
        if expires_at <= int(self._now().timestamp()):
            raise InvalidTokenError("token has expired")

        return _claims_from_payload(payload, expires_at=expires_at)


def _claims_from_payload(payload: dict[str, Any], *, expires_at: int) -> AuthClaims:
    try:
        purpose = TokenPurpose(payload["pur"])
        identity_id = str(payload["sub"])
        email = str(payload["email"])
    except (KeyError, ValueError) as exc:
        raise InvalidTokenError("malformed claims") from exc

    signed_at = payload.get("sat")
    if signed_at is not None and not isinstance(signed_at, int):
        raise InvalidTokenError("malformed signed-at claim")

    return AuthClaims(
        request_id=str(payload.get("rid", "")),
        identity_id=identity_id,
        email=email,
        purpose=purpose,
        signed_at=signed_at,
        expires_at=expires_at,
        token_id=str(payload.get("jti", "")),
    )
