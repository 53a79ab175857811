from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlsplit
from uuid import UUID, uuid4

import pytest

from shop_auth.application.ports.notifier_port import (
    MailRecipient,
    MailTemplateKind,
    NotifierError,
)
from shop_auth.application.ports.password_hasher_port import PasswordHasherPort
from shop_auth.application.ports.user_repository_port import (
    BlockedToken,
    UserCreateInput,
    UserProfile,
    UserRecord,
    UserUpdateInput,
)
from shop_auth.application.request_context import RequestContext, new_request_context
from shop_auth.application.services.auth_service import (
    AccessRequirement,
    AuthOperation,
    AuthService,
    SignUpInput,
    TokenPair,
    TokenPolicy,
)
from shop_auth.domain.auth.claims import AuthClaims, TokenPurpose
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
from shop_auth.domain.auth.roles import Permission, Role
from shop_auth.infrastructure.security.password_hasher import BcryptPasswordHasher
from shop_auth.infrastructure.security.token_codec import JoseTokenCodec

SECRET = "unit-test-secret-unit-test-secret-0123"
START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
POLICY = TokenPolicy(
    access_token_ttl=timedelta(minutes=15),
    refresh_token_ttl=timedelta(days=7),
    email_verification_token_ttl=timedelta(days=1),
    password_reset_token_ttl=timedelta(hours=1),
    email_verification_url="https://shop.example/verify-email",
    password_reset_url="https://shop.example/reset-password?lang=en",
)
CUSTOMERS_ONLY = AccessRequirement(
    roles=frozenset({Role.CUSTOMER}),
    disclaimer="User must be a customer to add an item to their wishlist",
)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class InMemoryUserRepository:
    def __init__(self) -> None:
        self.users: dict[UUID, UserRecord] = {}
        self.updates: list[UserUpdateInput] = []

    async def get_by_id(self, *, user_id: UUID) -> UserRecord | None:
        user = self.users.get(user_id)
        if user is None or not user.is_active:
            return None
        return user

    async def get_by_email(
        self,
        *,
        email: str,
        include_inactive: bool = False,
    ) -> UserRecord | None:
        for user in self.users.values():
            if user.email == email and (include_inactive or user.is_active):
                return user
        return None

    async def create_user(self, payload: UserCreateInput) -> UserRecord:
        user = UserRecord(
            user_id=uuid4(),
            email=payload.email,
            password_hash=payload.password_hash,
            role=payload.role,
            verified=False,
            is_active=True,
            password_updated_at=None,
            tokens_blocklist=(),
            profile=payload.profile,
            created_at=START,
            updated_at=START,
        )
        self.users[user.user_id] = user
        return user

    async def update_user(self, payload: UserUpdateInput) -> UserRecord | None:
        user = self.users.get(payload.user_id)
        if user is None:
            return None
        changes = {
            name: value
            for name in ("password_hash", "password_updated_at", "verified", "tokens_blocklist")
            if (value := getattr(payload, name)) is not None
        }
        updated = replace(user, **changes)
        self.users[user.user_id] = updated
        self.updates.append(payload)
        return updated

    def by_email(self, email: str) -> UserRecord:
        return next(user for user in self.users.values() if user.email == email)


class FakePasswordHasher:
    def hash_password(self, password: str) -> str:
        return f"hashed::{password}"

    def verify_password(self, *, password: str, password_hash: str) -> bool:
        return password_hash == f"hashed::{password}"


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.rendered: list[tuple[MailTemplateKind, dict[str, str]]] = []
        self.sent: list[tuple[MailRecipient, str, str]] = []

    def render_template(self, kind: MailTemplateKind, variables: Mapping[str, str]) -> str:
        self.rendered.append((kind, dict(variables)))
        return f"{kind.value}:{variables['call_to_action_url']}"

    async def send(self, *, recipient: MailRecipient, subject: str, body: str) -> None:
        if self.fail:
            raise NotifierError("smtp delivery failure: connection refused")
        self.sent.append((recipient, subject, body))

    def last_token(self) -> str:
        url = self.rendered[-1][1]["call_to_action_url"]
        return parse_qs(urlsplit(url).query)["token"][0]


@dataclass
class Harness:
    service: AuthService
    users: InMemoryUserRepository
    notifier: RecordingNotifier
    clock: FakeClock
    codec: JoseTokenCodec


def _harness(
    *,
    policy: TokenPolicy = POLICY,
    notifier: RecordingNotifier | None = None,
    password_hasher: PasswordHasherPort | None = None,
) -> Harness:
    clock = FakeClock(START)
    users = InMemoryUserRepository()
    resolved_notifier = notifier or RecordingNotifier()
    codec = JoseTokenCodec(secret=SECRET, now=clock)
    service = AuthService(
        users=users,
        password_hasher=password_hasher or FakePasswordHasher(),
        token_codec=codec,
        notifier=resolved_notifier,
        policy=policy,
        now=clock,
    )
    return Harness(
        service=service,
        users=users,
        notifier=resolved_notifier,
        clock=clock,
        codec=codec,
    )


def _context() -> RequestContext:
    return new_request_context("req-test")


async def _sign_up(
    harness: Harness,
    *,
    email: str = "ana@example.com",
    password: str = "password-1",
    role: Role = Role.CUSTOMER,
    verify: bool = False,
) -> TokenPair:
    profile = (
        UserProfile(store_name="Ana's Antiques")
        if role is Role.SELLER
        else UserProfile(first_name="Ana", last_name="Lima")
    )
    auth_info = await harness.service.sign_up(
        SignUpInput(email=email, password=password, role=role, profile=profile),
        context=_context(),
    )
    if verify:
        await harness.service.verify_email(harness.notifier.last_token())
    return auth_info.tokens


async def _authorize(
    harness: Harness,
    token: str,
    *,
    requirement: AccessRequirement | None = None,
    context: RequestContext | None = None,
    operation: AuthOperation = AuthOperation.DEFAULT,
) -> UserRecord:
    return await harness.service.authorize(
        authorization_header=f"Bearer {token}",
        requirement=requirement or AccessRequirement.any_role(),
        context=context or _context(),
        operation=operation,
    )


@pytest.mark.asyncio
async def test_sign_up_creates_user_sends_verification_link_and_returns_session() -> None:
    harness = _harness()

    auth_info = await harness.service.sign_up(
        SignUpInput(
            email="  Ana@Example.COM ",
            password="password-1",
            role=Role.CUSTOMER,
            profile=UserProfile(first_name="Ana", last_name="Lima"),
        ),
        context=new_request_context("req-signup"),
    )

    stored = harness.users.by_email("ana@example.com")
    assert auth_info.user_info.id == stored.user_id
    assert auth_info.user_info.email == "ana@example.com"
    assert auth_info.user_info.role is Role.CUSTOMER
    assert stored.password_hash == "hashed::password-1"
    assert stored.verified is False

    assert len(harness.notifier.sent) == 1
    recipient, subject, _ = harness.notifier.sent[0]
    assert recipient == MailRecipient(name="Ana", email="ana@example.com")
    assert subject == "Verify your email"
    kind, variables = harness.notifier.rendered[0]
    assert kind is MailTemplateKind.EMAIL_VERIFICATION
    assert variables["user_name"] == "Ana"
    assert variables["call_to_action_url"].startswith("https://shop.example/verify-email?token=")

    verification = harness.codec.verify(harness.notifier.last_token())
    assert verification.purpose is TokenPurpose.EMAIL_VERIFICATION
    assert verification.signed_at is None
    assert verification.identity_id == str(stored.user_id)
    assert verification.expires_at == int((START + timedelta(days=1)).timestamp())

    access = harness.codec.verify(auth_info.tokens.access_token)
    refresh = harness.codec.verify(auth_info.tokens.refresh_token)
    assert access.purpose is TokenPurpose.ACCESS
    assert refresh.purpose is TokenPurpose.REFRESH
    assert access.request_id == "req-signup"
    assert access.signed_at == int(START.timestamp() * 1000)
    assert access.expires_at == int((START + timedelta(minutes=15)).timestamp())
    assert refresh.expires_at == int((START + timedelta(days=7)).timestamp())


@pytest.mark.asyncio
async def test_sign_up_addresses_sellers_by_store_name() -> None:
    harness = _harness()

    await _sign_up(harness, email="shop@example.com", role=Role.SELLER)

    recipient, _, _ = harness.notifier.sent[0]
    assert recipient.name == "Ana's Antiques"
    assert harness.users.by_email("shop@example.com").role is Role.SELLER


@pytest.mark.asyncio
async def test_second_sign_up_with_case_insensitive_same_email_fails() -> None:
    harness = _harness()
    await _sign_up(harness, email="A@x.com")

    with pytest.raises(UserAlreadyExistsError):
        await _sign_up(harness, email="a@X.COM")

    assert len(harness.users.users) == 1
    assert len(harness.notifier.sent) == 1


@pytest.mark.asyncio
async def test_sign_up_ignores_inactive_account_with_same_email() -> None:
    harness = _harness()
    await _sign_up(harness, email="ana@example.com")
    old = harness.users.by_email("ana@example.com")
    harness.users.users[old.user_id] = replace(old, is_active=False)

    await _sign_up(harness, email="ana@example.com")

    assert len(harness.users.users) == 2


@pytest.mark.asyncio
async def test_sign_up_rejects_short_password_before_persisting() -> None:
    harness = _harness()

    with pytest.raises(InvalidInputError, match="at least 8 characters"):
        await _sign_up(harness, password="short")

    assert harness.users.users == {}


@pytest.mark.asyncio
async def test_sign_up_rejects_password_longer_than_bcrypt_reads() -> None:
    harness = _harness(password_hasher=BcryptPasswordHasher(rounds=4))

    # 40 characters but 80 UTF-8 bytes.
    with pytest.raises(InvalidInputError, match="72 bytes"):
        await _sign_up(harness, password="é" * 40)

    assert harness.users.users == {}
    assert harness.notifier.sent == []


@pytest.mark.asyncio
async def test_sign_up_with_multibyte_password_round_trips_through_bcrypt() -> None:
    harness = _harness(password_hasher=BcryptPasswordHasher(rounds=4))
    password = "é" * 36
    await _sign_up(harness, password=password)

    auth_info = await harness.service.sign_in(
        email="ana@example.com",
        password=password,
        context=_context(),
    )

    assert auth_info.user_info.email == "ana@example.com"
    with pytest.raises(InvalidCredentialsError):
        await harness.service.sign_in(
            email="ana@example.com",
            password="é" * 35 + "e",
            context=_context(),
        )


@pytest.mark.asyncio
async def test_update_password_rejects_new_password_over_byte_limit() -> None:
    harness = _harness(password_hasher=BcryptPasswordHasher(rounds=4))
    tokens = await _sign_up(harness, verify=True)
    context = _context()
    await _authorize(harness, tokens.access_token, context=context)
    original_hash = harness.users.by_email("ana@example.com").password_hash

    with pytest.raises(InvalidInputError, match="72 bytes"):
        await harness.service.update_password(
            current_password="password-1",
            new_password="ü" * 37,
            context=context,
        )

    assert harness.users.by_email("ana@example.com").password_hash == original_hash


@pytest.mark.asyncio
async def test_sign_up_surfaces_notifier_failure_without_rollback() -> None:
    harness = _harness(notifier=RecordingNotifier(fail=True))

    with pytest.raises(NotifierError):
        await _sign_up(harness)

    assert len(harness.users.users) == 1


@pytest.mark.asyncio
async def test_sign_in_matches_email_case_insensitively_and_returns_new_session() -> None:
    harness = _harness()
    sign_up_tokens = await _sign_up(harness, email="A@x.com", password="password-1")

    auth_info = await harness.service.sign_in(
        email="a@x.com",
        password="password-1",
        context=_context(),
    )

    assert auth_info.user_info.email == "a@x.com"
    assert auth_info.tokens.access_token != sign_up_tokens.access_token
    assert auth_info.tokens.refresh_token != sign_up_tokens.refresh_token


@pytest.mark.asyncio
async def test_sign_in_does_not_require_verified_email() -> None:
    harness = _harness()
    await _sign_up(harness)

    auth_info = await harness.service.sign_in(
        email="ana@example.com",
        password="password-1",
        context=_context(),
    )

    assert auth_info.user_info.email == "ana@example.com"


@pytest.mark.asyncio
async def test_sign_in_unknown_email_raises_not_found() -> None:
    harness = _harness()

    with pytest.raises(UserNotFoundError, match="invalid email or password"):
        await harness.service.sign_in(
            email="nobody@example.com",
            password="password-1",
            context=_context(),
        )


@pytest.mark.asyncio
async def test_sign_in_wrong_password_raises_generic_invalid_credentials() -> None:
    harness = _harness()
    await _sign_up(harness)

    with pytest.raises(InvalidCredentialsError, match="invalid email or password"):
        await harness.service.sign_in(
            email="ana@example.com",
            password="wrong-password",
            context=_context(),
        )


@pytest.mark.asyncio
async def test_sign_in_prunes_expired_blocklist_entries() -> None:
    harness = _harness()
    await _sign_up(harness)
    user = harness.users.by_email("ana@example.com")
    now_seconds = int(START.timestamp())
    expired = BlockedToken(token="expired-token", expires_at=now_seconds - 10)
    live = BlockedToken(token="live-token", expires_at=now_seconds + 600)
    harness.users.users[user.user_id] = replace(user, tokens_blocklist=(expired, live))

    await harness.service.sign_in(
        email="ana@example.com",
        password="password-1",
        context=_context(),
    )

    assert harness.users.by_email("ana@example.com").tokens_blocklist == (live,)


@pytest.mark.asyncio
async def test_sign_in_prunes_even_when_password_is_wrong() -> None:
    harness = _harness()
    await _sign_up(harness)
    user = harness.users.by_email("ana@example.com")
    expired = BlockedToken(token="expired-token", expires_at=int(START.timestamp()) - 1)
    harness.users.users[user.user_id] = replace(user, tokens_blocklist=(expired,))

    with pytest.raises(InvalidCredentialsError):
        await harness.service.sign_in(
            email="ana@example.com",
            password="wrong-password",
            context=_context(),
        )

    assert harness.users.by_email("ana@example.com").tokens_blocklist == ()


@pytest.mark.asyncio
async def test_sign_in_skips_write_when_nothing_expired() -> None:
    harness = _harness()
    await _sign_up(harness)

    await harness.service.sign_in(
        email="ana@example.com",
        password="password-1",
        context=_context(),
    )

    assert harness.users.updates == []


@pytest.mark.asyncio
async def test_sign_out_blocklists_both_tokens_with_their_expiry() -> None:
    harness = _harness()
    tokens = await _sign_up(harness)

    await harness.service.sign_out(tokens)

    blocklist = harness.users.by_email("ana@example.com").tokens_blocklist
    assert blocklist == (
        BlockedToken(
            token=tokens.access_token,
            expires_at=int((START + timedelta(minutes=15)).timestamp()),
        ),
        BlockedToken(
            token=tokens.refresh_token,
            expires_at=int((START + timedelta(days=7)).timestamp()),
        ),
    )


@pytest.mark.asyncio
async def test_sign_out_twice_is_safe_and_keeps_blocklist_a_set() -> None:
    harness = _harness()
    tokens = await _sign_up(harness)

    await harness.service.sign_out(tokens)
    await harness.service.sign_out(tokens)

    assert len(harness.users.by_email("ana@example.com").tokens_blocklist) == 2


@pytest.mark.asyncio
async def test_sign_out_fails_once_tokens_expire_naturally() -> None:
    harness = _harness()
    tokens = await _sign_up(harness)
    await harness.service.sign_out(tokens)
    harness.clock.advance(minutes=16)

    with pytest.raises(InvalidTokenError, match="access token") as exc_info:
        await harness.service.sign_out(tokens)

    assert exc_info.value.reason == "token has expired"
    assert isinstance(exc_info.value.__cause__, InvalidTokenError)


@pytest.mark.asyncio
async def test_sign_out_rejects_swapped_token_pair() -> None:
    harness = _harness()
    tokens = await _sign_up(harness)

    with pytest.raises(InvalidTokenError, match="expected a access token"):
        await harness.service.sign_out(
            TokenPair(access_token=tokens.refresh_token, refresh_token=tokens.access_token)
        )


@pytest.mark.asyncio
async def test_sign_out_rejects_tokens_of_different_accounts() -> None:
    harness = _harness()
    ana = await _sign_up(harness, email="ana@example.com")
    bia = await _sign_up(harness, email="bia@example.com")

    with pytest.raises(InvalidTokenError, match="different accounts"):
        await harness.service.sign_out(
            TokenPair(access_token=ana.access_token, refresh_token=bia.refresh_token)
        )

    assert harness.users.updates == []


@pytest.mark.asyncio
async def test_sign_out_rejects_pair_owned_by_another_principal() -> None:
    harness = _harness()
    ana = await _sign_up(harness, email="ana@example.com", verify=True)
    bia = await _sign_up(harness, email="bia@example.com", verify=True)
    context = _context()
    await _authorize(harness, bia.access_token, context=context)

    with pytest.raises(ForbiddenError, match="another account"):
        await harness.service.sign_out(ana, context=context)

    assert harness.users.by_email("ana@example.com").tokens_blocklist == ()
    assert await _authorize(harness, ana.access_token) is not None


@pytest.mark.asyncio
async def test_sign_out_accepts_pair_owned_by_the_principal() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    context = _context()
    await _authorize(harness, tokens.access_token, context=context)

    await harness.service.sign_out(tokens, context=context)

    assert harness.users.by_email("ana@example.com").is_blocked(tokens.access_token)


@pytest.mark.asyncio
async def test_sign_out_rejects_tampered_refresh_token() -> None:
    harness = _harness()
    tokens = await _sign_up(harness)

    with pytest.raises(InvalidTokenError, match="refresh token"):
        await harness.service.sign_out(
            TokenPair(access_token=tokens.access_token, refresh_token=tokens.refresh_token + "x")
        )


@pytest.mark.asyncio
async def test_authorize_attaches_principal_to_request_context() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    context = _context()

    user = await _authorize(
        harness,
        tokens.access_token,
        requirement=CUSTOMERS_ONLY,
        context=context,
    )

    assert user.email == "ana@example.com"
    assert context.principal == user
    assert context.require_principal() == user


@pytest.mark.asyncio
async def test_authorize_accepts_header_without_bearer_prefix() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)

    user = await harness.service.authorize(
        authorization_header=tokens.access_token,
        requirement=AccessRequirement.any_role(),
        context=_context(),
    )

    assert user.email == "ana@example.com"


@pytest.mark.parametrize("header", [None, "", "   ", "Bearer", "Bearer   "])
@pytest.mark.asyncio
async def test_authorize_rejects_missing_token(header: str | None) -> None:
    harness = _harness()
    context = _context()

    with pytest.raises(UnauthorizedError, match="missing authorization token"):
        await harness.service.authorize(
            authorization_header=header,
            requirement=AccessRequirement.any_role(),
            context=context,
        )

    assert context.principal is None


@pytest.mark.asyncio
async def test_authorize_wraps_verification_failure() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    harness.clock.advance(minutes=15)

    with pytest.raises(UnauthorizedError, match="token has expired") as exc_info:
        await _authorize(harness, tokens.access_token)

    assert isinstance(exc_info.value.__cause__, InvalidTokenError)


@pytest.mark.asyncio
async def test_authorize_rejects_single_purpose_token_as_bearer() -> None:
    harness = _harness()
    await _sign_up(harness)
    verification_token = harness.notifier.last_token()

    with pytest.raises(UnauthorizedError, match="not an access token"):
        await _authorize(harness, verification_token)


@pytest.mark.asyncio
async def test_authorize_rejects_token_of_unknown_account() -> None:
    harness = _harness()
    token = harness.codec.issue(
        AuthClaims(
            request_id="req",
            identity_id=str(uuid4()),
            email="ghost@example.com",
            purpose=TokenPurpose.ACCESS,
            signed_at=int(START.timestamp() * 1000),
        ),
        expires_in=timedelta(minutes=5),
    )

    with pytest.raises(UnauthorizedError, match="does not match an account"):
        await _authorize(harness, token)


@pytest.mark.asyncio
async def test_authorize_rejects_signed_out_access_token() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    await harness.service.sign_out(tokens)

    with pytest.raises(UnauthorizedError, match="no longer valid"):
        await _authorize(harness, tokens.access_token)


@pytest.mark.asyncio
async def test_authorize_rejects_token_signed_before_password_change() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    user = harness.users.by_email("ana@example.com")
    harness.users.users[user.user_id] = replace(
        user,
        password_updated_at=START + timedelta(milliseconds=1),
    )

    with pytest.raises(UnauthorizedError, match="no longer valid"):
        await _authorize(harness, tokens.access_token)


@pytest.mark.asyncio
async def test_authorize_rejects_unverified_user() -> None:
    harness = _harness()
    tokens = await _sign_up(harness)
    context = _context()

    with pytest.raises(ForbiddenError, match="user not verified"):
        await _authorize(harness, tokens.access_token, context=context)

    assert context.principal is None


@pytest.mark.asyncio
async def test_authorize_lets_unverified_user_sign_out() -> None:
    harness = _harness()
    tokens = await _sign_up(harness)

    user = await _authorize(harness, tokens.access_token, operation=AuthOperation.SIGN_OUT)

    assert user.verified is False


@pytest.mark.asyncio
async def test_authorize_surfaces_disclaimer_for_role_mismatch() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, email="shop@example.com", role=Role.SELLER, verify=True)

    with pytest.raises(ForbiddenError) as exc_info:
        await _authorize(harness, tokens.access_token, requirement=CUSTOMERS_ONLY)

    assert str(exc_info.value) == "User must be a customer to add an item to their wishlist"


@pytest.mark.asyncio
async def test_authorize_uses_default_message_without_disclaimer() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, email="shop@example.com", role=Role.SELLER, verify=True)

    with pytest.raises(ForbiddenError, match="does not have the required role"):
        await _authorize(
            harness,
            tokens.access_token,
            requirement=AccessRequirement(roles=frozenset({Role.CUSTOMER})),
        )


@pytest.mark.asyncio
async def test_authorize_checks_role_capabilities() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)

    with pytest.raises(ForbiddenError, match="required permission"):
        await _authorize(
            harness,
            tokens.access_token,
            requirement=AccessRequirement(
                roles=frozenset(Role),
                permission=Permission.ITEMS_WRITE,
            ),
        )


@pytest.mark.asyncio
async def test_refresh_mints_new_access_token_and_keeps_refresh_token() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    harness.clock.advance(minutes=20)

    refreshed = await harness.service.refresh_access_token(
        tokens.refresh_token,
        context=new_request_context("req-refresh"),
    )

    assert refreshed.refresh_token == tokens.refresh_token
    assert refreshed.access_token != tokens.access_token
    claims = harness.codec.verify(refreshed.access_token)
    assert claims.purpose is TokenPurpose.ACCESS
    assert claims.request_id == "req-refresh"
    assert claims.signed_at == int(START.timestamp() * 1000)
    user = await _authorize(harness, refreshed.access_token)
    assert user.email == "ana@example.com"


@pytest.mark.asyncio
async def test_refresh_rejects_access_token() -> None:
    harness = _harness()
    tokens = await _sign_up(harness)

    with pytest.raises(InvalidTokenError, match="refresh token"):
        await harness.service.refresh_access_token(tokens.access_token, context=_context())


@pytest.mark.asyncio
async def test_refresh_skips_blocklist_by_default() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    await harness.service.sign_out(tokens)

    refreshed = await harness.service.refresh_access_token(tokens.refresh_token, context=_context())

    assert refreshed.refresh_token == tokens.refresh_token


@pytest.mark.asyncio
async def test_refresh_with_revocation_check_rejects_signed_out_session() -> None:
    harness = _harness(policy=replace(POLICY, refresh_revocation_check=True))
    tokens = await _sign_up(harness, verify=True)
    await harness.service.sign_out(tokens)

    with pytest.raises(InvalidTokenError, match="no longer valid"):
        await harness.service.refresh_access_token(tokens.refresh_token, context=_context())


@pytest.mark.asyncio
async def test_access_token_refreshed_after_password_reset_is_rejected() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    await harness.service.send_password_reset_link("ana@example.com", context=_context())
    harness.clock.advance(seconds=1)
    await harness.service.reset_password(
        token=harness.notifier.last_token(),
        new_password="new-password-1",
    )

    refreshed = await harness.service.refresh_access_token(tokens.refresh_token, context=_context())

    with pytest.raises(UnauthorizedError, match="no longer valid"):
        await _authorize(harness, refreshed.access_token)


@pytest.mark.asyncio
async def test_verify_email_marks_account_verified_once() -> None:
    harness = _harness()
    await _sign_up(harness)
    token = harness.notifier.last_token()

    await harness.service.verify_email(token)

    assert harness.users.by_email("ana@example.com").verified is True
    with pytest.raises(AlreadyVerifiedError):
        await harness.service.verify_email(token)


@pytest.mark.asyncio
async def test_verify_email_rejects_expired_token() -> None:
    harness = _harness()
    await _sign_up(harness)
    harness.clock.advance(days=1, seconds=1)

    with pytest.raises(InvalidTokenError, match="verification token"):
        await harness.service.verify_email(harness.notifier.last_token())

    assert harness.users.by_email("ana@example.com").verified is False


@pytest.mark.asyncio
async def test_verify_email_rejects_session_token() -> None:
    harness = _harness()
    tokens = await _sign_up(harness)

    with pytest.raises(InvalidTokenError, match="expected a email_verification token"):
        await harness.service.verify_email(tokens.access_token)


@pytest.mark.asyncio
async def test_send_password_reset_link_dispatches_single_purpose_token() -> None:
    harness = _harness()
    await _sign_up(harness, verify=True)

    await harness.service.send_password_reset_link("ANA@example.com", context=_context())

    kind, variables = harness.notifier.rendered[-1]
    assert kind is MailTemplateKind.PASSWORD_RESET
    url = urlsplit(variables["call_to_action_url"])
    assert f"{url.scheme}://{url.netloc}{url.path}" == "https://shop.example/reset-password"
    assert parse_qs(url.query)["lang"] == ["en"]
    _, subject, _ = harness.notifier.sent[-1]
    assert subject == "Reset your password"
    claims = harness.codec.verify(harness.notifier.last_token())
    assert claims.purpose is TokenPurpose.PASSWORD_RESET
    assert claims.expires_at == int((START + timedelta(hours=1)).timestamp())


@pytest.mark.asyncio
async def test_send_password_reset_link_requires_known_verified_account() -> None:
    harness = _harness()
    await _sign_up(harness)

    with pytest.raises(UserNotFoundError):
        await harness.service.send_password_reset_link("nobody@example.com", context=_context())
    with pytest.raises(NotVerifiedError):
        await harness.service.send_password_reset_link("ana@example.com", context=_context())

    assert len(harness.notifier.sent) == 1


@pytest.mark.asyncio
async def test_reset_password_replaces_hash_and_consumes_token() -> None:
    harness = _harness()
    await _sign_up(harness, verify=True)
    await harness.service.send_password_reset_link("ana@example.com", context=_context())
    reset_token = harness.notifier.last_token()
    harness.clock.advance(seconds=1)

    await harness.service.reset_password(token=reset_token, new_password="new-password-1")

    user = harness.users.by_email("ana@example.com")
    assert user.password_hash == "hashed::new-password-1"
    assert user.password_updated_at == START + timedelta(seconds=1)
    assert user.is_blocked(reset_token)
    with pytest.raises(InvalidCredentialsError):
        await harness.service.sign_in(
            email="ana@example.com",
            password="password-1",
            context=_context(),
        )
    auth_info = await harness.service.sign_in(
        email="ana@example.com",
        password="new-password-1",
        context=_context(),
    )
    assert await _authorize(harness, auth_info.tokens.access_token) is not None


@pytest.mark.asyncio
async def test_reset_password_token_is_single_use() -> None:
    harness = _harness()
    await _sign_up(harness, verify=True)
    await harness.service.send_password_reset_link("ana@example.com", context=_context())
    reset_token = harness.notifier.last_token()
    await harness.service.reset_password(token=reset_token, new_password="new-password-1")

    with pytest.raises(TokenReusedError):
        await harness.service.reset_password(token=reset_token, new_password="new-password-2")

    assert harness.users.by_email("ana@example.com").password_hash == "hashed::new-password-1"


@pytest.mark.asyncio
async def test_reset_password_logs_out_every_prior_session() -> None:
    harness = _harness()
    first = await _sign_up(harness, verify=True)
    second = (
        await harness.service.sign_in(
            email="ana@example.com",
            password="password-1",
            context=_context(),
        )
    ).tokens
    await harness.service.send_password_reset_link("ana@example.com", context=_context())
    harness.clock.advance(seconds=1)

    await harness.service.reset_password(
        token=harness.notifier.last_token(),
        new_password="new-password-1",
    )

    for tokens in (first, second):
        with pytest.raises(UnauthorizedError, match="no longer valid"):
            await _authorize(harness, tokens.access_token, requirement=CUSTOMERS_ONLY)


@pytest.mark.asyncio
async def test_reset_password_revokes_token_signed_earlier_in_same_millisecond() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    await harness.service.send_password_reset_link("ana@example.com", context=_context())
    harness.clock.advance(microseconds=500)

    await harness.service.reset_password(
        token=harness.notifier.last_token(),
        new_password="new-password-1",
    )

    with pytest.raises(UnauthorizedError, match="no longer valid"):
        await _authorize(harness, tokens.access_token)


@pytest.mark.asyncio
async def test_update_password_revokes_token_signed_earlier_in_same_millisecond() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    context = _context()
    await _authorize(harness, tokens.access_token, context=context)
    harness.clock.advance(microseconds=250)

    await harness.service.update_password(
        current_password="password-1",
        new_password="new-password-1",
        context=context,
    )

    with pytest.raises(UnauthorizedError, match="no longer valid"):
        await _authorize(harness, tokens.access_token)


@pytest.mark.asyncio
async def test_sign_in_right_after_reset_orders_session_after_password_change() -> None:
    harness = _harness()
    await _sign_up(harness, verify=True)
    await harness.service.send_password_reset_link("ana@example.com", context=_context())
    harness.clock.advance(microseconds=500)
    await harness.service.reset_password(
        token=harness.notifier.last_token(),
        new_password="new-password-1",
    )

    auth_info = await harness.service.sign_in(
        email="ana@example.com",
        password="new-password-1",
        context=_context(),
    )

    # The change landed 500 microseconds into the millisecond that START opens.
    epoch = int(START.timestamp()) * 1000
    assert harness.codec.verify(auth_info.tokens.access_token).signed_at == epoch + 1
    assert await _authorize(harness, auth_info.tokens.access_token) is not None


@pytest.mark.asyncio
async def test_reset_password_requires_verified_account() -> None:
    harness = _harness()
    await _sign_up(harness)
    user = harness.users.by_email("ana@example.com")
    reset_token = harness.codec.issue(
        AuthClaims(
            request_id="req",
            identity_id=str(user.user_id),
            email=user.email,
            purpose=TokenPurpose.PASSWORD_RESET,
        ),
        expires_in=timedelta(hours=1),
    )

    with pytest.raises(NotVerifiedError):
        await harness.service.reset_password(token=reset_token, new_password="new-password-1")


@pytest.mark.asyncio
async def test_reset_password_rejects_verification_token() -> None:
    harness = _harness()
    await _sign_up(harness, verify=False)

    with pytest.raises(InvalidTokenError, match="reset token"):
        await harness.service.reset_password(
            token=harness.notifier.last_token(),
            new_password="new-password-1",
        )


@pytest.mark.asyncio
async def test_update_password_uses_principal_from_request_context() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    context = _context()
    await _authorize(harness, tokens.access_token, context=context)
    harness.clock.advance(seconds=1)

    await harness.service.update_password(
        current_password="password-1",
        new_password="new-password-1",
        context=context,
    )

    user = harness.users.by_email("ana@example.com")
    assert user.password_hash == "hashed::new-password-1"
    assert user.password_updated_at == START + timedelta(seconds=1)
    with pytest.raises(UnauthorizedError, match="no longer valid"):
        await _authorize(harness, tokens.access_token)


@pytest.mark.asyncio
async def test_update_password_rejects_wrong_current_password() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    context = _context()
    await _authorize(harness, tokens.access_token, context=context)

    with pytest.raises(InvalidCredentialsError, match="current password is incorrect"):
        await harness.service.update_password(
            current_password="not-my-password",
            new_password="new-password-1",
            context=context,
        )

    assert harness.users.by_email("ana@example.com").password_hash == "hashed::password-1"


@pytest.mark.asyncio
async def test_update_password_requires_authenticated_context() -> None:
    harness = _harness()

    with pytest.raises(UnauthorizedError, match="not authenticated"):
        await harness.service.update_password(
            current_password="password-1",
            new_password="new-password-1",
            context=_context(),
        )


@pytest.mark.asyncio
async def test_me_returns_principal_identity() -> None:
    harness = _harness()
    tokens = await _sign_up(harness, verify=True)
    context = _context()
    user = await _authorize(harness, tokens.access_token, context=context)

    info = harness.service.me(context=context)

    assert info.id == user.user_id
    assert info.email == "ana@example.com"
    assert info.role is Role.CUSTOMER
