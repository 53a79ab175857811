"""Mapping of core failures onto HTTP responses."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException

from shop_auth.application.ports.notifier_port import NotifierError
from shop_auth.domain.auth.errors import AuthError, AuthErrorKind, InvalidInputError

STATUS_BY_KIND: dict[AuthErrorKind, int] = {
    AuthErrorKind.UNAUTHORIZED: 401,
    AuthErrorKind.INVALID_TOKEN: 401,
    AuthErrorKind.INVALID_CREDENTIALS: 401,
    AuthErrorKind.FORBIDDEN: 403,
    AuthErrorKind.NOT_VERIFIED: 403,
    AuthErrorKind.NOT_FOUND: 404,
    AuthErrorKind.ALREADY_EXISTS: 409,
    AuthErrorKind.TOKEN_REUSED: 409,
    AuthErrorKind.ALREADY_VERIFIED: 409,
}


def to_http_exception(error: AuthError) -> HTTPException:
    """Translate one typed core failure preserving its kind in the status code."""

    status_code = STATUS_BY_KIND[error.kind]
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return HTTPException(status_code=status_code, detail=error.message, headers=headers)


@contextmanager
def translate_core_errors() -> Iterator[None]:
    """Re-raise core failures raised inside the block as `HTTPException`."""

    try:
        yield
    except AuthError as exc:
        raise to_http_exception(exc) from exc
    except NotifierError as exc:
        raise HTTPException(status_code=502, detail="notification delivery failed") from exc
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
