from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from authix.config import Settings
from authix.logging import get_logger
from authix.service.codes import (
    CodeSender,
    OneTimeTokens,
    VerificationCodeLedger,
    VerificationScene,
)
from authix.service.errors import (
    NotFoundError,
    UnauthorizedError,
    UnknownStrategyError,
    ValidationError,
)
from authix.service.sessions import SessionAccounting, now_ms
from authix.service.strategies import (
    CodeLoginStrategy,
    ContactRegisterStrategy,
    CredentialHasher,
    CredentialStore,
    LoginStrategy,
    PasswordLoginStrategy,
    PasswordRegisterStrategy,
    RegisterStrategy,
)
from authix.service.tokens import ACCESS, TokenIssuer
from authix.service.validation import validate_email, validate_phone
from authix.storage.models import PageResult, ProfileInfo, TokenClaims, TokenPair

logger = get_logger(__name__)


class AuthStrategyKind(str, Enum):
    """Credential kind; selects both the login and the register algorithm."""

    PASSWORD = "password"
    SMS = "sms"
    EMAIL = "email"

    @classmethod
    def parse(cls, value: "AuthStrategyKind | str") -> "AuthStrategyKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownStrategyError(value) from None


@dataclass(frozen=True)
class LoginRequest:
    kind: AuthStrategyKind | str
    identifier: str
    credential: str


@dataclass(frozen=True)
class RegisterRequest:
    kind: AuthStrategyKind | str
    identifier: str
    credential: str


class LoginDispatcher:
    """Routes a login request to the strategy registered for its kind.

    The registry is frozen at construction and only read afterwards.
    """

    def __init__(self, strategies: Mapping[AuthStrategyKind, LoginStrategy]) -> None:
        self._strategies = MappingProxyType(dict(strategies))

    async def login(self, request: LoginRequest) -> TokenPair:
        kind = AuthStrategyKind.parse(request.kind)
        strategy = self._strategies.get(kind)
        if strategy is None:
            raise UnknownStrategyError(kind.value)
        return await strategy.login(request.identifier, request.credential)


class RegisterDispatcher:
    def __init__(self, strategies: Mapping[AuthStrategyKind, RegisterStrategy]) -> None:
        self._strategies = MappingProxyType(dict(strategies))

    async def register(self, request: RegisterRequest) -> int:
        kind = AuthStrategyKind.parse(request.kind)
        strategy = self._strategies.get(kind)
        if strategy is None:
            raise UnknownStrategyError(kind.value)
        return await strategy.register(request.identifier, request.credential)


class AuthService:
    """Login, registration, verification codes and token lifecycle.

    Wires the strategy registries, the code ledger, the token issuer and
    session accounting over one credential store and one shared cache.
    """

    def __init__(
        self,
        store: CredentialStore,
        cache,
        settings: Settings,
        *,
        sender: Optional[CodeSender] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.cache = cache
        self.settings = settings
        self.logger = logger
        self.hasher = CredentialHasher(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
            parallelism=settings.password_hash_parallelism,
        )
        self.sessions = SessionAccounting(cache, clock=clock)
        self.tokens = TokenIssuer(
            settings.jwt_secret,
            cache=cache,
            sessions=self.sessions,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            clock=clock,
        )
        self.ledger = VerificationCodeLedger(
            cache, ttl_seconds=settings.verify_code_ttl_seconds, sender=sender
        )
        self.one_time_tokens = OneTimeTokens(
            cache, ttl_seconds=settings.one_time_token_ttl_seconds
        )
        tenant_id = settings.default_tenant_id
        self.login_dispatcher = LoginDispatcher(
            {
                AuthStrategyKind.PASSWORD: PasswordLoginStrategy(store, self.hasher, self.tokens),
                AuthStrategyKind.SMS: CodeLoginStrategy(
                    store, self.ledger, self.tokens, lookup=store.get_user_by_phone
                ),
                AuthStrategyKind.EMAIL: CodeLoginStrategy(
                    store, self.ledger, self.tokens, lookup=store.get_user_by_email
                ),
            }
        )
        self.register_dispatcher = RegisterDispatcher(
            {
                AuthStrategyKind.PASSWORD: PasswordRegisterStrategy(
                    store, self.hasher, tenant_id=tenant_id
                ),
                AuthStrategyKind.SMS: ContactRegisterStrategy(
                    store, self.hasher, self.ledger, field="phone", tenant_id=tenant_id
                ),
                AuthStrategyKind.EMAIL: ContactRegisterStrategy(
                    store, self.hasher, self.ledger, field="email", tenant_id=tenant_id
                ),
            }
        )

    async def login(self, kind: AuthStrategyKind | str, identifier: str, credential: str) -> TokenPair:
        return await self.login_dispatcher.login(LoginRequest(kind, identifier, credential))

    async def register(self, kind: AuthStrategyKind | str, identifier: str, credential: str) -> int:
        return await self.register_dispatcher.register(RegisterRequest(kind, identifier, credential))

    async def send_code(self, identifier: str, verify_type: AuthStrategyKind | str) -> str:
        """Issue a code for a phone (``sms``) or email (``email``) identifier."""
        kind = AuthStrategyKind.parse(verify_type)
        if kind is AuthStrategyKind.SMS:
            validate_phone(identifier)
        elif kind is AuthStrategyKind.EMAIL:
            validate_email(identifier)
        else:
            raise ValidationError(
                "verification codes are sent by sms or email",
                detail={"verify_type": kind.value},
            )
        return await self.ledger.send(identifier, channel=kind.value)

    async def verify_code(
        self, identifier: str, credential: str, scene: VerificationScene | str
    ) -> bool:
        return await self.ledger.verify(identifier, credential, scene)

    async def refresh(self, refresh_token: str) -> TokenPair:
        return await self.tokens.refresh(refresh_token)

    def _extract_bearer(self, header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        lower = header.lower()
        if not lower.startswith("bearer "):
            return None
        token = header.split(" ", 1)[1].strip()
        return token or None

    def bearer_token(self, authorization: Optional[str]) -> str:
        token = self._extract_bearer(authorization)
        if token is None:
            raise UnauthorizedError("missing bearer token")
        return token

    def authenticate(self, authorization: Optional[str]) -> TokenClaims:
        """Resolve an ``Authorization: Bearer <access token>`` header to its claims."""
        return self.tokens.verify(self.bearer_token(authorization), ACCESS)

    async def logout(self, user_id: str) -> None:
        await self.tokens.revoke(user_id)

    def profile(self, user_id: int) -> ProfileInfo:
        profile = self.store.get_profile(int(user_id))
        if profile is None:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        return profile

    async def delete_account(self, user_id: int) -> None:
        if not self.store.delete_user(int(user_id)):
            raise NotFoundError("user not found", detail={"user_id": user_id})
        await self.tokens.revoke(str(user_id))
        self.logger.info("account_deleted", user_id=user_id)

    async def online_count(self) -> int:
        return await self.sessions.count()

    async def online_page(self, page: int, page_size: int) -> PageResult:
        """One page of online users with their profiles, ordered by session expiry.

        Members whose account no longer exists are dropped from ``records`` but
        still counted in ``total`` until their session expires, so a page can
        be shorter than ``page_size`` even when more pages follow.
        """
        result = await self.sessions.page(page, page_size)
        user_ids = result.records
        result.records = self.store.get_profiles(user_ids)
        if len(result.records) != len(user_ids):
            found = {profile.id for profile in result.records}
            self.logger.warning(
                "online_profiles_missing",
                user_ids=[uid for uid in user_ids if uid not in found],
            )
        return result

    async def issue_one_time_token(self, claims: TokenClaims) -> str:
        return await self.one_time_tokens.issue(claims.tenant_id, claims.sub)

    async def consume_one_time_token(self, tenant_id: str, user_id: str, token: str) -> bool:
        return await self.one_time_tokens.consume(tenant_id, user_id, token)
