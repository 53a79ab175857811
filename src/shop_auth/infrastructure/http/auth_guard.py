"""FastAPI dependencies gating protected routes on the authorization core."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, Header

from shop_auth.application.ports.user_repository_port import UserRecord
from shop_auth.application.request_context import RequestContext
from shop_auth.application.services.auth_service import (
    AccessRequirement,
    AuthOperation,
    AuthService,
)
from shop_auth.infrastructure.http.errors import translate_core_errors
from shop_auth.infrastructure.http.request_context import get_request_context

PrincipalDependency = Callable[..., Awaitable[UserRecord]]


def build_principal_dependency(
    *,
    auth_service: AuthService,
    requirement: AccessRequirement,
    operation: AuthOperation = AuthOperation.DEFAULT,
) -> PrincipalDependency:
    """Build a dependency that authorizes the caller for one route."""

    async def require_principal(
        context: Annotated[RequestContext, Depends(get_request_context)],
        authorization: Annotated[str | None, Header()] = None,
    ) -> UserRecord:
        with translate_core_errors():
            return await auth_service.authorize(
                authorization_header=authorization,
                requirement=requirement,
                context=context,
                operation=operation,
            )

    return require_principal
