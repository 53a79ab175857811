"""auth-api entrypoint and HTTP route wiring."""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI

from shop_auth.application.ports.notifier_port import MailRecipient, NotifierPort
from shop_auth.application.services.auth_service import AuthService, TokenPolicy
from shop_auth.config.settings import Settings, load_settings
from shop_auth.infrastructure.db.session import create_session_factory
from shop_auth.infrastructure.db.user_repository import SqlAlchemyUserRepository
from shop_auth.infrastructure.http.auth_router import build_auth_router
from shop_auth.infrastructure.http.request_context import install_request_context
from shop_auth.infrastructure.logging import configure_logging
from shop_auth.infrastructure.mail.notifier import (
    LogOnlyMailTransport,
    MailNotifier,
    MailTransportPort,
    SmtpMailTransport,
)
from shop_auth.infrastructure.security.password_hasher import BcryptPasswordHasher
from shop_auth.infrastructure.security.token_codec import JoseTokenCodec

AUTH_API_HOST = "0.0.0.0"
AUTH_API_PORT = 8000
logger = logging.getLogger(__name__)


def build_token_policy(settings: Settings) -> TokenPolicy:
    """Build token expiry and callback policy from settings."""

    return TokenPolicy(
        access_token_ttl=settings.access_token_ttl,
        refresh_token_ttl=settings.refresh_token_ttl,
        email_verification_token_ttl=settings.email_verification_token_ttl,
        password_reset_token_ttl=settings.password_reset_token_ttl,
        email_verification_url=str(settings.email_verification_url),
        password_reset_url=str(settings.password_reset_url),
        refresh_revocation_check=settings.refresh_token_revocation_check,
    )


def build_notifier(settings: Settings) -> NotifierPort:
    """Build the mail notifier, falling back to log-only delivery without SMTP."""

    transport: MailTransportPort
    if settings.smtp_host is None:
        logger.warning("smtp_host_not_configured mail_delivery=log_only")
        transport = LogOnlyMailTransport()
    else:
        transport = SmtpMailTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    return MailNotifier(
        sender=MailRecipient(
            name=settings.mail_sender_name,
            email=settings.mail_sender_address,
        ),
        transport=transport,
    )


def build_auth_service(settings: Settings) -> AuthService:
    """Build authentication service with SQLAlchemy-backed dependencies."""

    session_factory = create_session_factory(settings.database_url)
    return AuthService(
        users=SqlAlchemyUserRepository(session_factory),
        password_hasher=BcryptPasswordHasher(rounds=settings.bcrypt_rounds),
        token_codec=JoseTokenCodec(
            secret=settings.auth_token_secret,
            algorithm=settings.auth_token_algorithm,
        ),
        notifier=build_notifier(settings),
        policy=build_token_policy(settings),
    )


def create_app(*, auth_service: AuthService | None = None) -> FastAPI:
    """Create FastAPI app exposing the auth routes."""

    if auth_service is None:
        settings = load_settings()
        configure_logging(level=settings.log_level)
        auth_service = build_auth_service(settings)

    app = FastAPI(title="shop-auth")
    install_request_context(app)
    app.include_router(build_auth_router(auth_service=auth_service))

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def run_asgi_server(*, host: str = AUTH_API_HOST, port: int = AUTH_API_PORT) -> None:
    """Run auth-api as a long-lived ASGI process using application factory mode."""

    uvicorn.run(
        "apps.auth_api.main:create_app",
        host=host,
        port=port,
        factory=True,
    )


def main() -> None:
    """Run auth-api runtime process."""

    run_asgi_server()


if __name__ == "__main__":
    main()
