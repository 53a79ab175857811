"""Middleware seeding one explicit request context per inbound request."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import FastAPI, Request, Response

from shop_auth.application.request_context import RequestContext, new_request_context

REQUEST_ID_HEADER = "X-Request-ID"


def install_request_context(app: FastAPI) -> None:
    """Create a context for every request and echo its correlation id back."""

    @app.middleware("http")
    async def seed_request_context(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        context = new_request_context(request.headers.get(REQUEST_ID_HEADER))
        request.state.auth_context = context
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = context.request_id
        return response


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency returning the context seeded for this request."""

    context = getattr(request.state, "auth_context", None)
    if context is None:
        context = new_request_context(request.headers.get(REQUEST_ID_HEADER))
        request.state.auth_context = context
    return context
