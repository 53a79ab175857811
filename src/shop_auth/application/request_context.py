"""Per-request context carrying the correlation id and resolved principal."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import uuid4

from shop_auth.application.ports.user_repository_port import UserRecord
from shop_auth.domain.auth.errors import UnauthorizedError


@dataclass
class RequestContext:
    """Explicit request-scoped state.

    One instance is created per inbound request and passed down the call
    chain. Only the authorization gate attaches a principal.
    """

    request_id: str
    principal: UserRecord | None = None

    def attach_principal(self, user: UserRecord) -> None:
        """Record the authenticated user for the rest of the request."""

        self.principal = user

    def require_principal(self) -> UserRecord:
        """Return the authenticated user or raise when none is attached."""

        if self.principal is None:
            raise UnauthorizedError("request is not authenticated")
        return self.principal


def new_request_context(request_id: str | None = None) -> RequestContext:
    """Create a context, minting a correlation id when the caller has none."""

    resolved = request_id.strip() if request_id is not None else ""
    return RequestContext(request_id=resolved or uuid4().hex)
