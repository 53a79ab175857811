"""SQLAlchemy adapter for the account directory."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, cast
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shop_auth.application.ports.user_repository_port import (
    BlockedToken,
    UserCreateInput,
    UserProfile,
    UserRecord,
    UserRepositoryPort,
    UserUpdateInput,
)
from shop_auth.domain.auth.errors import UserAlreadyExistsError
from shop_auth.domain.auth.roles import Role
from shop_auth.infrastructure.db.metadata import users


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class SqlAlchemyUserRepository(UserRepositoryPort):
    """User repository backed by SQLAlchemy async sessions.

    Blocklist updates overwrite the whole list; two concurrent writers for the
    same account can lose one another's entries.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._now = now or _utc_now

    async def get_by_id(self, *, user_id: UUID) -> UserRecord | None:
        """Return active user by id or None."""

        statement = (
            sa.select(*users.c)
            .where(users.c.id == user_id, users.c.is_active.is_(True))
            .limit(1)
        )

        async with self._session_factory() as session:
            result = await session.execute(statement)

        row = result.mappings().first()
        if row is None:
            return None
        return _to_user_record(row)

    async def get_by_email(
        self,
        *,
        email: str,
        include_inactive: bool = False,
    ) -> UserRecord | None:
        """Return user by normalized email, preferring the active account."""

        statement = sa.select(*users.c).where(users.c.email == email)
        if not include_inactive:
            statement = statement.where(users.c.is_active.is_(True))
        statement = statement.order_by(
            users.c.is_active.desc(),
            users.c.created_at.desc(),
        ).limit(1)

        async with self._session_factory() as session:
            result = await session.execute(statement)

        row = result.mappings().first()
        if row is None:
            return None
        return _to_user_record(row)

    async def create_user(self, payload: UserCreateInput) -> UserRecord:
        """Insert one account and return the stored row."""

        now = self._now()
        statement = (
            sa.insert(users)
            .values(
                id=uuid4(),
                email=payload.email,
                password_hash=payload.password_hash,
                role=payload.role.value,
                verified=False,
                is_active=True,
                tokens_blocklist=[],
                profile=_profile_to_json(payload.profile),
                created_at=now,
                updated_at=now,
            )
            .returning(*users.c)
        )

        async with self._session_factory() as session:
            try:
                result = await session.execute(statement)
                row = result.mappings().one()
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise UserAlreadyExistsError() from exc

        return _to_user_record(row)

    async def update_user(self, payload: UserUpdateInput) -> UserRecord | None:
        """Apply non-None fields of one partial update in a single statement."""

        values: dict[str, Any] = {"updated_at": self._now()}
        if payload.password_hash is not None:
            values["password_hash"] = payload.password_hash
        if payload.password_updated_at is not None:
            values["password_updated_at"] = payload.password_updated_at
        if payload.verified is not None:
            values["verified"] = payload.verified
        if payload.tokens_blocklist is not None:
            values["tokens_blocklist"] = _blocklist_to_json(payload.tokens_blocklist)

        statement = (
            sa.update(users)
            .where(users.c.id == payload.user_id)
            .values(**values)
            .returning(*users.c)
        )

        async with self._session_factory() as session:
            result = await session.execute(statement)
            row = result.mappings().first()
            await session.commit()

        if row is None:
            return None
        return _to_user_record(row)


def _to_user_record(row: sa.RowMapping) -> UserRecord:
    raw_user_id = row["id"]
    user_id = raw_user_id if isinstance(raw_user_id, UUID) else UUID(str(raw_user_id))
    return UserRecord(
        user_id=user_id,
        email=cast(str, row["email"]),
        password_hash=cast(str, row["password_hash"]),
        role=Role(cast(str, row["role"])),
        verified=bool(row["verified"]),
        is_active=bool(row["is_active"]),
        password_updated_at=_as_utc(cast(datetime | None, row["password_updated_at"])),
        tokens_blocklist=_blocklist_from_json(row["tokens_blocklist"] or []),
        profile=_profile_from_json(row["profile"] or {}),
        created_at=cast(datetime, _as_utc(row["created_at"])),
        updated_at=cast(datetime, _as_utc(row["updated_at"])),
    )


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round-trip; stored values are always UTC."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _blocklist_to_json(entries: Iterable[BlockedToken]) -> list[dict[str, Any]]:
    return [{"token": entry.token, "expires_at": entry.expires_at} for entry in entries]


def _blocklist_from_json(raw: Iterable[Mapping[str, Any]]) -> tuple[BlockedToken, ...]:
    return tuple(
        BlockedToken(token=str(item["token"]), expires_at=int(item["expires_at"]))
        for item in raw
    )


def _profile_to_json(profile: UserProfile) -> dict[str, str]:
    fields = {
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "store_name": profile.store_name,
    }
    return {key: value for key, value in fields.items() if value is not None}


def _profile_from_json(raw: Mapping[str, Any]) -> UserProfile:
    return UserProfile(
        first_name=raw.get("first_name"),
        last_name=raw.get("last_name"),
        store_name=raw.get("store_name"),
    )
