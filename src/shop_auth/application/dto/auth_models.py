"""Pydantic models for the auth HTTP contracts."""

from __future__ import annotations

from typing import Annotated, Literal
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from shop_auth.domain.auth.credentials import MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH

RoleName = Literal["customer", "seller"]


def _within_hash_limit(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password cannot be longer than {MAX_PASSWORD_BYTES} bytes")
    return value


NewPassword = Annotated[
    str,
    Field(min_length=MIN_PASSWORD_LENGTH),
    AfterValidator(_within_hash_limit),
]


class StrictModel(BaseModel):
    """Base model with strict unknown-field rejection."""

    model_config = ConfigDict(extra="forbid")


class SignUpRequest(StrictModel):
    """Account creation payload."""

    email: str = Field(min_length=3, max_length=320)
    password: NewPassword
    role: RoleName
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    store_name: str | None = Field(default=None, min_length=1, max_length=200)

    @model_validator(mode="after")
    def _require_display_name(self) -> SignUpRequest:
        """Sellers need a store name and customers a first name."""

        if self.role == "seller" and not self.store_name:
            raise ValueError("role=seller requires store_name")
        if self.role == "customer" and not self.first_name:
            raise ValueError("role=customer requires first_name")
        return self


class LoginRequest(StrictModel):
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=72)


class TokenPairModel(StrictModel):
    """Access and refresh token pair."""

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)


class RefreshTokenRequest(StrictModel):
    refresh_token: str = Field(min_length=1)


class VerifyEmailRequest(StrictModel):
    token: str = Field(min_length=1)


class ForgotPasswordRequest(StrictModel):
    email: str = Field(min_length=1, max_length=320)


class ResetPasswordRequest(StrictModel):
    token: str = Field(min_length=1)
    new_password: NewPassword


class UpdatePasswordRequest(StrictModel):
    current_password: str = Field(min_length=1, max_length=72)
    new_password: NewPassword


class UserInfoResponse(StrictModel):
    """Public identity of one account."""

    id: UUID
    email: str
    role: RoleName


class AuthInfoResponse(StrictModel):
    """Sign-up and sign-in response body."""

    user_info: UserInfoResponse
    tokens: TokenPairModel
