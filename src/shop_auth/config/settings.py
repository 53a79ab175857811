"""Runtime settings loaded from environment variables."""

from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from pydantic import Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

NonEmptyStr = Annotated[str, Field(min_length=1)]
PositiveInt = Annotated[int, Field(gt=0)]
SecretKeyStr = Annotated[str, Field(min_length=32)]


class Settings(BaseSettings):
    """Environment-driven application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: NonEmptyStr = Field(validation_alias="DATABASE_URL")
    auth_token_secret: SecretKeyStr = Field(validation_alias="AUTH_TOKEN_SECRET")
    auth_token_algorithm: NonEmptyStr = Field(
        default="HS256",
        validation_alias="AUTH_TOKEN_ALGORITHM",
    )
    access_token_ttl_seconds: PositiveInt = Field(
        default=15 * 60,
        validation_alias="ACCESS_TOKEN_TTL_SECONDS",
    )
    refresh_token_ttl_seconds: PositiveInt = Field(
        default=7 * 24 * 60 * 60,
        validation_alias="REFRESH_TOKEN_TTL_SECONDS",
    )
    email_verification_token_ttl_seconds: PositiveInt = Field(
        default=24 * 60 * 60,
        validation_alias="EMAIL_VERIFICATION_TOKEN_TTL_SECONDS",
    )
    password_reset_token_ttl_seconds: PositiveInt = Field(
        default=60 * 60,
        validation_alias="PASSWORD_RESET_TOKEN_TTL_SECONDS",
    )
    refresh_token_revocation_check: bool = Field(
        default=False,
        validation_alias="REFRESH_TOKEN_REVOCATION_CHECK",
    )
    email_verification_url: HttpUrl = Field(validation_alias="EMAIL_VERIFICATION_URL")
    password_reset_url: HttpUrl = Field(validation_alias="PASSWORD_RESET_URL")
    smtp_host: NonEmptyStr | None = Field(default=None, validation_alias="SMTP_HOST")
    smtp_port: PositiveInt = Field(default=587, validation_alias="SMTP_PORT")
    smtp_username: NonEmptyStr | None = Field(default=None, validation_alias="SMTP_USERNAME")
    smtp_password: NonEmptyStr | None = Field(default=None, validation_alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, validation_alias="SMTP_USE_TLS")
    mail_sender_address: NonEmptyStr = Field(
        default="no-reply@shop.example",
        validation_alias="MAIL_SENDER_ADDRESS",
    )
    mail_sender_name: NonEmptyStr = Field(default="Shop", validation_alias="MAIL_SENDER_NAME")
    bcrypt_rounds: Annotated[int, Field(ge=4, le=31)] = Field(
        default=12,
        validation_alias="BCRYPT_ROUNDS",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(seconds=self.access_token_ttl_seconds)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(seconds=self.refresh_token_ttl_seconds)

    @property
    def email_verification_token_ttl(self) -> timedelta:
        return timedelta(seconds=self.email_verification_token_ttl_seconds)

    @property
    def password_reset_token_ttl(self) -> timedelta:
        return timedelta(seconds=self.password_reset_token_ttl_seconds)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache application settings."""

    return Settings()  # type: ignore[call-arg]
