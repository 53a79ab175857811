"""Normalization helpers for account email and password inputs."""

from __future__ import annotations

from shop_auth.domain.auth.errors import InvalidInputError

MIN_PASSWORD_LENGTH = 8
# bcrypt only reads the first 72 bytes of the UTF-8 encoded password.
MAX_PASSWORD_BYTES = 72


def normalize_user_email(*, email: str) -> str:
    """Return the case-insensitive lookup form of one email address."""

    normalized = email.strip().lower()
    if not normalized:
        raise InvalidInputError("email cannot be blank")
    local_part, separator, domain = normalized.partition("@")
    if not separator or not local_part or not domain:
        raise InvalidInputError("email must contain a local part and a domain")
    return normalized


def validate_new_password(*, password: str) -> str:
    """Reject blank, too-short or too-long plaintext passwords before hashing."""

    if not password.strip():
        raise InvalidInputError("password cannot be blank")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInputError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise InvalidInputError(f"password cannot be longer than {MAX_PASSWORD_BYTES} bytes")
    return password
