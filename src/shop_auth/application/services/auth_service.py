"""Authentication core: session tokens, revocation, verification and passwords."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from uuid import UUID

from shop_auth.application.ports.notifier_port import (
    MailRecipient,
    MailTemplateKind,
    NotifierPort,
)
from shop_auth.application.ports.password_hasher_port import PasswordHasherPort
from shop_auth.application.ports.token_codec_port import TokenCodecPort
from shop_auth.application.ports.user_repository_port import (
    BlockedToken,
    UserCreateInput,
    UserProfile,
    UserRecord,
    UserRepositoryPort,
    UserUpdateInput,
    display_name_for,
)
from shop_auth.application.request_context import RequestContext
from shop_auth.domain.auth.claims import AuthClaims, TokenPurpose
from shop_auth.domain.auth.credentials import normalize_user_email, validate_new_password
from shop_auth.domain.auth.errors import (
    AlreadyVerifiedError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidTokenError,
    NotVerifiedError,
    TokenReusedError,
    UnauthorizedError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from shop_auth.domain.auth.roles import Permission, Role, role_has_permission

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_BEARER_PREFIX = "bearer "
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class TokenPolicy:
    """Expiry policies per token purpose and outbound callback URLs."""

    access_token_ttl: timedelta
    refresh_token_ttl: timedelta
    email_verification_token_ttl: timedelta
    password_reset_token_ttl: timedelta
    email_verification_url: str
    password_reset_url: str
    refresh_revocation_check: bool = False


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh tokens handed to the caller."""

    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class UserInfo:
    """Public identity fields returned with a token pair."""

    id: UUID
    email: str
    role: Role


@dataclass(frozen=True)
class AuthInfo:
    """Result of sign-up and sign-in."""

    user_info: UserInfo
    tokens: TokenPair


@dataclass(frozen=True)
class SignUpInput:
    """Account creation payload with a plaintext password."""

    email: str
    password: str
    role: Role
    profile: UserProfile = field(default_factory=UserProfile)


class AuthOperation(StrEnum):
    """Operation identifiers the authorization gate treats specially."""

    DEFAULT = "default"
    SIGN_OUT = "sign_out"


@dataclass(frozen=True)
class AccessRequirement:
    """Roles, optional capability and denial message guarding one operation."""

    roles: frozenset[Role]
    permission: Permission | None = None
    disclaimer: str | None = None

    @classmethod
    def any_role(cls, *, disclaimer: str | None = None) -> AccessRequirement:
        """Build a requirement satisfied by every authenticated role."""

        return cls(roles=frozenset(Role), disclaimer=disclaimer)


def extract_bearer_token(authorization_header: str | None) -> str:
    """Return the token from an authorization header, `Bearer ` prefix optional."""

    if authorization_header is None:
        raise UnauthorizedError("missing authorization token")

    token = authorization_header.strip()
    if token.lower().startswith(_BEARER_PREFIX):
        token = token[len(_BEARER_PREFIX):].strip()
    elif token.lower() == _BEARER_PREFIX.strip():
        token = ""

    if not token:
        raise UnauthorizedError("missing authorization token")
    return token


class AuthService:
    """Issue, accept and revoke session tokens and manage password lifecycle."""

    def __init__(
        self,
        *,
        users: UserRepositoryPort,
        password_hasher: PasswordHasherPort,
        token_codec: TokenCodecPort,
        notifier: NotifierPort,
        policy: TokenPolicy,
        now: Clock | None = None,
    ) -> None:
        self._users = users
        self._password_hasher = password_hasher
        self._token_codec = token_codec
        self._notifier = notifier
        self._policy = policy
        self._now = now or _utc_now

    async def sign_up(self, payload: SignUpInput, *, context: RequestContext) -> AuthInfo:
        """Create one account, send its verification link and open a session."""

        email = normalize_user_email(email=payload.email)
        password = validate_new_password(password=payload.password)
        logger.info("sign_up_started request_id=%s email=%s", context.request_id, email)

        if await self._users.get_by_email(email=email) is not None:
            logger.info("sign_up_rejected_existing request_id=%s", context.request_id)
            raise UserAlreadyExistsError()

        user = await self._users.create_user(
            UserCreateInput(
                email=email,
                password_hash=self._password_hasher.hash_password(password),
                role=payload.role,
                profile=payload.profile,
            )
        )

        verification_token = self._issue_single_purpose_token(
            user=user,
            purpose=TokenPurpose.EMAIL_VERIFICATION,
            expires_in=self._policy.email_verification_token_ttl,
            context=context,
        )
        await self._dispatch(
            user=user,
            kind=MailTemplateKind.EMAIL_VERIFICATION,
            subject="Verify your email",
            callback_url=_with_token(self._policy.email_verification_url, verification_token),
        )
        logger.info(
            "sign_up_completed request_id=%s user_id=%s role=%s",
            context.request_id,
            user.user_id,
            user.role.value,
        )

        return AuthInfo(
            user_info=_user_info(user),
            tokens=self._issue_session_tokens(user=user, context=context),
        )

    async def sign_in(self, *, email: str, password: str, context: RequestContext) -> AuthInfo:
        """Verify credentials, prune expired blocklist entries and open a session."""

        user = await self._find_by_email(email)
        if user is None:
            logger.info("sign_in_unknown_email request_id=%s", context.request_id)
            raise UserNotFoundError("invalid email or password")

        user = await self._prune_blocklist(user)

        if not self._password_hasher.verify_password(
            password=password,
            password_hash=user.password_hash,
        ):
            logger.info(
                "sign_in_invalid_credentials request_id=%s user_id=%s",
                context.request_id,
                user.user_id,
            )
            raise InvalidCredentialsError()

        logger.info("sign_in_succeeded request_id=%s user_id=%s", context.request_id, user.user_id)
        return AuthInfo(
            user_info=_user_info(user),
            tokens=self._issue_session_tokens(user=user, context=context),
        )

    async def sign_out(
        self,
        tokens: TokenPair,
        *,
        context: RequestContext | None = None,
    ) -> None:
        """Blocklist both tokens of one session on the owning account.

        When the context carries an authenticated principal, the pair must
        belong to that principal.
        """

        access = self._verify(
            tokens.access_token,
            purpose=TokenPurpose.ACCESS,
            subject="access token",
        )
        refresh = self._verify(
            tokens.refresh_token,
            purpose=TokenPurpose.REFRESH,
            subject="refresh token",
        )
        if refresh.identity_id != access.identity_id:
            raise InvalidTokenError(
                "token pair belongs to different accounts",
                subject="refresh token",
            )
        principal = context.principal if context is not None else None
        if principal is not None and str(principal.user_id) != access.identity_id:
            raise ForbiddenError("token pair belongs to another account")

        user = await self._users.get_by_id(user_id=_identity_of(access, subject="access token"))
        if user is None:
            raise UserNotFoundError()

        blocklist = _append_unique(
            user.tokens_blocklist,
            BlockedToken(token=tokens.access_token, expires_at=_expiry_of(access)),
            BlockedToken(token=tokens.refresh_token, expires_at=_expiry_of(refresh)),
        )
        await self._users.update_user(
            UserUpdateInput(user_id=user.user_id, tokens_blocklist=blocklist)
        )
        logger.info("sign_out_completed user_id=%s blocklist_size=%s", user.user_id, len(blocklist))

    async def authorize(
        self,
        *,
        authorization_header: str | None,
        requirement: AccessRequirement,
        context: RequestContext,
        operation: AuthOperation = AuthOperation.DEFAULT,
    ) -> UserRecord:
        """Gate one protected operation and attach the caller to the request context."""

        token = extract_bearer_token(authorization_header)

        try:
            claims = self._token_codec.verify(token)
        except InvalidTokenError as exc:
            raise UnauthorizedError(f"failed to verify authorization token, {exc.reason}") from exc
        if claims.purpose is not TokenPurpose.ACCESS:
            raise UnauthorizedError("authorization token is not an access token")

        user = await self._users.get_by_email(email=claims.email)
        if user is None:
            raise UnauthorizedError("authorization token does not match an account")

        if self._is_revoked(user=user, token=token, claims=claims):
            logger.info(
                "authorize_revoked_token request_id=%s user_id=%s",
                context.request_id,
                user.user_id,
            )
            raise UnauthorizedError("authorization token is no longer valid")

        if not user.verified and operation is not AuthOperation.SIGN_OUT:
            raise ForbiddenError("user not verified")

        if user.role not in requirement.roles:
            raise ForbiddenError(requirement.disclaimer or "user does not have the required role")
        if requirement.permission is not None and not role_has_permission(
            role=user.role,
            permission=requirement.permission,
        ):
            raise ForbiddenError(
                requirement.disclaimer or "user does not have the required permission"
            )

        context.attach_principal(user)
        logger.info(
            "authorize_succeeded request_id=%s user_id=%s operation=%s",
            context.request_id,
            user.user_id,
            operation.value,
        )
        return user

    async def refresh_access_token(
        self,
        refresh_token: str,
        *,
        context: RequestContext,
    ) -> TokenPair:
        """Mint a new access token for the session a refresh token belongs to.

        The new access token keeps the session's `signed_at`, so a password
        change still invalidates it at the authorization gate. Blocklist and
        password-epoch checks on the refresh token itself only run when the
        policy enables them.
        """

        claims = self._verify(refresh_token, purpose=TokenPurpose.REFRESH, subject="refresh token")

        if self._policy.refresh_revocation_check:
            user = await self._users.get_by_email(email=claims.email)
            if user is None or self._is_revoked(user=user, token=refresh_token, claims=claims):
                raise InvalidTokenError("token is no longer valid", subject="refresh token")

        access_token = self._token_codec.issue(
            AuthClaims(
                request_id=context.request_id,
                identity_id=claims.identity_id,
                email=claims.email,
                purpose=TokenPurpose.ACCESS,
                signed_at=claims.signed_at,
            ),
            expires_in=self._policy.access_token_ttl,
        )
        logger.info("access_token_refreshed request_id=%s", context.request_id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def verify_email(self, token: str) -> None:
        """Mark the account a verification token was issued for as verified."""

        claims = self._verify(
            token,
            purpose=TokenPurpose.EMAIL_VERIFICATION,
            subject="verification token",
        )
        user = await self._resolve_token_owner(claims)
        if user.verified:
            raise AlreadyVerifiedError()

        await self._users.update_user(UserUpdateInput(user_id=user.user_id, verified=True))
        logger.info("email_verified user_id=%s", user.user_id)

    async def send_password_reset_link(self, email: str, *, context: RequestContext) -> None:
        """Send a single-use password reset link to one verified account."""

        user = await self._find_by_email(email)
        if user is None:
            raise UserNotFoundError()
        if not user.verified:
            raise NotVerifiedError()

        reset_token = self._issue_single_purpose_token(
            user=user,
            purpose=TokenPurpose.PASSWORD_RESET,
            expires_in=self._policy.password_reset_token_ttl,
            context=context,
        )
        await self._dispatch(
            user=user,
            kind=MailTemplateKind.PASSWORD_RESET,
            subject="Reset your password",
            callback_url=_with_token(self._policy.password_reset_url, reset_token),
        )
        logger.info(
            "password_reset_link_sent request_id=%s user_id=%s",
            context.request_id,
            user.user_id,
        )

    async def reset_password(self, *, token: str, new_password: str) -> None:
        """Consume one reset token and replace the password.

        Moving `password_updated_at` forward invalidates every session token
        signed before this moment.
        """

        password = validate_new_password(password=new_password)
        claims = self._verify(token, purpose=TokenPurpose.PASSWORD_RESET, subject="reset token")
        user = await self._resolve_token_owner(claims)

        if not user.verified:
            raise NotVerifiedError()
        if user.is_blocked(token):
            raise TokenReusedError()

        blocklist = _append_unique(
            user.tokens_blocklist,
            BlockedToken(token=token, expires_at=_expiry_of(claims)),
        )
        await self._users.update_user(
            UserUpdateInput(
                user_id=user.user_id,
                password_hash=self._password_hasher.hash_password(password),
                password_updated_at=self._now(),
                tokens_blocklist=blocklist,
            )
        )
        logger.info("password_reset_completed user_id=%s", user.user_id)

    async def update_password(
        self,
        *,
        current_password: str,
        new_password: str,
        context: RequestContext,
    ) -> None:
        """Replace the password of the authenticated caller."""

        user = context.require_principal()
        password = validate_new_password(password=new_password)

        if not self._password_hasher.verify_password(
            password=current_password,
            password_hash=user.password_hash,
        ):
            raise InvalidCredentialsError("current password is incorrect")

        await self._users.update_user(
            UserUpdateInput(
                user_id=user.user_id,
                password_hash=self._password_hasher.hash_password(password),
                password_updated_at=self._now(),
            )
        )
        logger.info("password_updated request_id=%s user_id=%s", context.request_id, user.user_id)

    def me(self, *, context: RequestContext) -> UserInfo:
        """Return public identity fields of the authenticated caller."""

        return _user_info(context.require_principal())

    async def _find_by_email(self, email: str) -> UserRecord | None:
        try:
            normalized = normalize_user_email(email=email)
        except InvalidInputError:
            return None
        return await self._users.get_by_email(email=normalized)

    async def _resolve_token_owner(self, claims: AuthClaims) -> UserRecord:
        user = await self._users.get_by_email(email=claims.email)
        if user is None or str(user.user_id) != claims.identity_id:
            raise UserNotFoundError()
        return user

    async def _prune_blocklist(self, user: UserRecord) -> UserRecord:
        """Drop blocklist entries whose tokens have expired on their own."""

        now_seconds = int(self._now().timestamp())
        live = tuple(entry for entry in user.tokens_blocklist if entry.expires_at > now_seconds)
        if len(live) == len(user.tokens_blocklist):
            return user

        updated = await self._users.update_user(
            UserUpdateInput(user_id=user.user_id, tokens_blocklist=live)
        )
        logger.info(
            "blocklist_pruned user_id=%s removed=%s",
            user.user_id,
            len(user.tokens_blocklist) - len(live),
        )
        return updated or user

    def _verify(self, token: str, *, purpose: TokenPurpose, subject: str) -> AuthClaims:
        try:
            claims = self._token_codec.verify(token)
        except InvalidTokenError as exc:
            raise InvalidTokenError(exc.reason, subject=subject) from exc
        if claims.purpose is not purpose:
            raise InvalidTokenError(f"expected a {purpose.value} token", subject=subject)
        return claims

    def _is_revoked(self, *, user: UserRecord, token: str, claims: AuthClaims) -> bool:
        if str(user.user_id) != claims.identity_id or claims.signed_at is None:
            return True
        if user.password_updated_at is not None and claims.signed_at <= _epoch_millis(
            user.password_updated_at
        ):
            return True
        return user.is_blocked(token)

    def _issue_session_tokens(self, *, user: UserRecord, context: RequestContext) -> TokenPair:
        # Sessions opened after a password change must sort strictly after it.
        signed_at = _epoch_millis(self._now())
        if user.password_updated_at is not None:
            signed_at = max(signed_at, _epoch_millis(user.password_updated_at) + 1)

        def issue(purpose: TokenPurpose, expires_in: timedelta) -> str:
            return self._token_codec.issue(
                AuthClaims(
                    request_id=context.request_id,
                    identity_id=str(user.user_id),
                    email=user.email,
                    purpose=purpose,
                    signed_at=signed_at,
                ),
                expires_in=expires_in,
            )

        return TokenPair(
            access_token=issue(TokenPurpose.ACCESS, self._policy.access_token_ttl),
            refresh_token=issue(TokenPurpose.REFRESH, self._policy.refresh_token_ttl),
        )

    def _issue_single_purpose_token(
        self,
        *,
        user: UserRecord,
        purpose: TokenPurpose,
        expires_in: timedelta,
        context: RequestContext,
    ) -> str:
        return self._token_codec.issue(
            AuthClaims(
                request_id=context.request_id,
                identity_id=str(user.user_id),
                email=user.email,
                purpose=purpose,
            ),
            expires_in=expires_in,
        )

    async def _dispatch(
        self,
        *,
        user: UserRecord,
        kind: MailTemplateKind,
        subject: str,
        callback_url: str,
    ) -> None:
        name = display_name_for(user)
        body = self._notifier.render_template(
            kind,
            {"user_name": name, "call_to_action_url": callback_url},
        )
        await self._notifier.send(
            recipient=MailRecipient(name=name, email=user.email),
            subject=subject,
            body=body,
        )


def _user_info(user: UserRecord) -> UserInfo:
    return UserInfo(id=user.user_id, email=user.email, role=user.role)


def _identity_of(claims: AuthClaims, *, subject: str) -> UUID:
    try:
        return UUID(claims.identity_id)
    except ValueError as exc:
        raise InvalidTokenError("malformed identity claim", subject=subject) from exc


def _expiry_of(claims: AuthClaims) -> int:
    if claims.expires_at is None:  # pragma: no cover - codec always sets exp.
        raise InvalidTokenError("missing expiry claim")
    return claims.expires_at


def _append_unique(
    blocklist: tuple[BlockedToken, ...],
    *entries: BlockedToken,
) -> tuple[BlockedToken, ...]:
    """Append entries preserving order and skipping tokens already listed."""

    known = {entry.token for entry in blocklist}
    appended = list(blocklist)
    for entry in entries:
        if entry.token not in known:
            appended.append(entry)
            known.add(entry.token)
    return tuple(appended)


def _epoch_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def _with_token(url: str, token: str) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("token", token))
    return urlunsplit(parts._replace(query=urlencode(query)))
