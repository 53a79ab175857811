"""Typed failure taxonomy raised by the authentication core."""

from __future__ import annotations

from enum import StrEnum


class AuthErrorKind(StrEnum):
    """Stable failure kinds preserved end-to-end for status mapping."""

    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_TOKEN = "invalid_token"
    TOKEN_REUSED = "token_reused"
    ALREADY_VERIFIED = "already_verified"
    NOT_VERIFIED = "not_verified"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


class AuthError(Exception):
    """Base class for authentication and authorization failures."""

    kind: AuthErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UserAlreadyExistsError(AuthError):
    """Raised when sign-up targets an email owned by an active account."""

    kind = AuthErrorKind.ALREADY_EXISTS

    def __init__(self) -> None:
        super().__init__("an account with this email already exists")


class UserNotFoundError(AuthError):
    """Raised when no active account matches the supplied identity."""

    kind = AuthErrorKind.NOT_FOUND

    def __init__(self, message: str = "user not found") -> None:
        super().__init__(message)


class InvalidCredentialsError(AuthError):
    """Raised when a password does not match the stored hash."""

    kind = AuthErrorKind.INVALID_CREDENTIALS

    def __init__(self, message: str = "invalid email or password") -> None:
        super().__init__(message)


class InvalidTokenError(AuthError):
    """Raised when a token fails signature, expiry, shape or purpose checks."""

    kind = AuthErrorKind.INVALID_TOKEN

    def __init__(self, reason: str, *, subject: str = "token") -> None:
        super().__init__(f"invalid {subject}: {reason}")
        self.reason = reason
        self.subject = subject


class TokenReusedError(AuthError):
    """Raised when a single-use token was already consumed."""

    kind = AuthErrorKind.TOKEN_REUSED

    def __init__(self) -> None:
        super().__init__("token was already used")


class AlreadyVerifiedError(AuthError):
    """Raised when email verification targets an already verified account."""

    kind = AuthErrorKind.ALREADY_VERIFIED

    def __init__(self) -> None:
        super().__init__("email address is already verified")


class NotVerifiedError(AuthError):
    """Raised when an operation requires a verified email address."""

    kind = AuthErrorKind.NOT_VERIFIED

    def __init__(self) -> None:
        super().__init__("email address is not verified")


class UnauthorizedError(AuthError):
    """Raised when a request carries no acceptable bearer token."""

    kind = AuthErrorKind.UNAUTHORIZED


class ForbiddenError(AuthError):
    """Raised when an authenticated caller may not perform the operation."""

    kind = AuthErrorKind.FORBIDDEN


class InvalidInputError(ValueError):
    """Raised when caller-supplied credentials fail shape or length rules."""
