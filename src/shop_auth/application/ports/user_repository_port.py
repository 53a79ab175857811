"""Port for the user directory consumed by the authentication core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol
from uuid import UUID

from shop_auth.domain.auth.roles import Role


@dataclass(frozen=True)
class BlockedToken:
    """Token string that must be rejected until its own expiry passes."""

    token: str
    expires_at: int


@dataclass(frozen=True)
class UserProfile:
    """Display fields used when addressing one account holder."""

    first_name: str | None = None
    last_name: str | None = None
    store_name: str | None = None


@dataclass(frozen=True)
class UserRecord:
    """User persistence model."""

    user_id: UUID
    email: str
    password_hash: str
    role: Role
    verified: bool
    is_active: bool
    password_updated_at: datetime | None
    tokens_blocklist: tuple[BlockedToken, ...]
    profile: UserProfile
    created_at: datetime
    updated_at: datetime

    def is_blocked(self, token: str) -> bool:
        """Return whether one token string is present in the blocklist."""

        return any(entry.token == token for entry in self.tokens_blocklist)


@dataclass(frozen=True)
class UserCreateInput:
    """Input payload for inserting one account."""

    email: str
    password_hash: str
    role: Role
    profile: UserProfile = field(default_factory=UserProfile)


@dataclass(frozen=True)
class UserUpdateInput:
    """Partial update keyed by id; `None` fields are left untouched."""

    user_id: UUID
    password_hash: str | None = None
    password_updated_at: datetime | None = None
    verified: bool | None = None
    tokens_blocklist: tuple[BlockedToken, ...] | None = None


class UserRepositoryPort(Protocol):
    """User directory contract."""

    async def get_by_id(self, *, user_id: UUID) -> UserRecord | None:
        """Return active user by id or None."""

    async def get_by_email(
        self,
        *,
        email: str,
        include_inactive: bool = False,
    ) -> UserRecord | None:
        """Return user by normalized email, active accounts only by default."""

    async def create_user(self, payload: UserCreateInput) -> UserRecord:
        """Persist one new account and return the stored row."""

    async def update_user(self, payload: UserUpdateInput) -> UserRecord | None:
        """Apply one partial update and return the stored row, or None when missing."""


def display_name_for(user: UserRecord) -> str:
    """Return the recipient-facing name chosen by account role."""

    if user.role is Role.SELLER and user.profile.store_name:
        return user.profile.store_name
    if user.role is Role.CUSTOMER and user.profile.first_name:
        return user.profile.first_name
    return user.email.partition("@")[0]
