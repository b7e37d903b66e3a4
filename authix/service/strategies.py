from __future__ import annotations

import asyncio
from typing import Callable, Iterable, List, Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from authix.logging import get_logger
from authix.service.codes import VerificationCodeLedger, VerificationScene
from authix.service.errors import (
    CodeExpiredError,
    ConflictError,
    InvalidCredentialsError,
)
from authix.service.tokens import TokenIssuer
from authix.service.validation import (
    validate_email,
    validate_password,
    validate_phone,
    validate_username,
)
from authix.storage.errors import BackendUnavailable, ConstraintViolation
from authix.storage.models import ProfileInfo, TokenPair, UserRecord

logger = get_logger(__name__)

# Same message for unknown user and wrong password
_BAD_PASSWORD_LOGIN = "invalid username or password"


class CredentialStore(Protocol):
    def get_user_by_username(self, username: str) -> Optional[UserRecord]: ...

    def get_user_by_phone(self, phone: str) -> Optional[UserRecord]: ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]: ...

    def create_user(self, record: UserRecord) -> UserRecord: ...

    def update_last_login(self, user_id: int) -> Optional[UserRecord]: ...

    def delete_user(self, user_id: int) -> bool: ...

    def get_profile(self, user_id: int) -> Optional[ProfileInfo]: ...

    def get_profiles(self, user_ids: Iterable[int]) -> List[ProfileInfo]: ...


class LoginStrategy(Protocol):
    async def login(self, identifier: str, credential: str) -> TokenPair: ...


class RegisterStrategy(Protocol):
    async def register(self, identifier: str, credential: str) -> int: ...


class CredentialHasher:
    """argon2id hashing run on worker threads so the event loop keeps serving."""

    def __init__(
        self, *, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4
    ) -> None:
        self._pwd_hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        self._dummy_hash: Optional[str] = None

    def _verify_sync(self, stored_hash: str, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHashError, VerificationError):
            return False

    async def hash(self, password: str) -> str:
        return await asyncio.to_thread(self._pwd_hasher.hash, password)

    async def verify(self, stored_hash: str, password: str) -> bool:
        return await asyncio.to_thread(self._verify_sync, stored_hash, password)

    async def burn(self, password: str) -> None:
        """Spend one verification against a throwaway hash.

        Keeps a login for an unknown username as slow as a wrong password.
        """
        if self._dummy_hash is None:
            self._dummy_hash = await self.hash("authix-dummy-credential")
        await self.verify(self._dummy_hash, password)


async def _complete_login(store: CredentialStore, tokens: TokenIssuer, user: UserRecord) -> TokenPair:
    try:
        store.update_last_login(user.id)
    except BackendUnavailable as exc:
        logger.warning("last_login_update_failed", user_id=user.id, error=exc.message)
    pair = await tokens.issue(str(user.id), user.tenant_id)
    logger.info("login_succeeded", user_id=user.id, tenant_id=user.tenant_id)
    return pair


class PasswordLoginStrategy:
    def __init__(self, store: CredentialStore, hasher: CredentialHasher, tokens: TokenIssuer) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens

    async def login(self, identifier: str, credential: str) -> TokenPair:
        user = self.store.get_user_by_username(identifier)
        if user is None:
            await self.hasher.burn(credential)
            logger.warning("login_failed", reason="unknown_user", identifier=identifier)
            raise InvalidCredentialsError(_BAD_PASSWORD_LOGIN)
        if not await self.hasher.verify(user.password_hash, credential):
            logger.warning("login_failed", reason="password_mismatch", user_id=user.id)
            raise InvalidCredentialsError(_BAD_PASSWORD_LOGIN)
        return await _complete_login(self.store, self.tokens, user)


class CodeLoginStrategy:
    """Login by consuming a LOGIN-scene code sent to a phone or email."""

    def __init__(
        self,
        store: CredentialStore,
        ledger: VerificationCodeLedger,
        tokens: TokenIssuer,
        *,
        lookup: Callable[[str], Optional[UserRecord]],
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.tokens = tokens
        self._lookup = lookup

    async def login(self, identifier: str, credential: str) -> TokenPair:
        if not await self.ledger.verify(identifier, credential, VerificationScene.LOGIN):
            raise InvalidCredentialsError("invalid verification code")
        user = self._lookup(identifier)
        if user is None:
            logger.warning("login_failed", reason="unregistered_contact", identifier=identifier)
            raise InvalidCredentialsError("account not registered")
        return await _complete_login(self.store, self.tokens, user)


class _AccountCreator:
    def __init__(
        self,
        store: CredentialStore,
        hasher: CredentialHasher,
        *,
        field: str,
        tenant_id: str,
        lookup: Callable[[str], Optional[UserRecord]],
        validate_identifier: Callable[[str], str],
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.field = field
        self.tenant_id = tenant_id
        self._lookup = lookup
        self._validate_identifier = validate_identifier

    def _ensure_unregistered(self, identifier: str) -> None:
        if self._lookup(identifier) is not None:
            raise ConflictError(
                f"{self.field} already exists", detail={"identifier": identifier}
            )

    async def _create(self, identifier: str, credential: str) -> int:
        password_hash = await self.hasher.hash(credential)
        record = UserRecord(
            id=0,
            tenant_id=self.tenant_id,
            password_hash=password_hash,
            created_by=identifier,
            **{self.field: identifier},
        )
        try:
            created = self.store.create_user(record)
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration of the same identifier
            raise ConflictError(exc.message, detail={"identifier": identifier}) from exc
        logger.info("account_registered", user_id=created.id, kind=self.field)
        return created.id


class PasswordRegisterStrategy(_AccountCreator):
    def __init__(self, store: CredentialStore, hasher: CredentialHasher, *, tenant_id: str) -> None:
        super().__init__(
            store,
            hasher,
            field="username",
            tenant_id=tenant_id,
            lookup=store.get_user_by_username,
            validate_identifier=validate_username,
        )

    async def register(self, identifier: str, credential: str) -> int:
        self._validate_identifier(identifier)
        validate_password(credential)
        self._ensure_unregistered(identifier)
        return await self._create(identifier, credential)


class ContactRegisterStrategy(_AccountCreator):
    """Phone or email registration gated on a verified REGISTER-scene code.

    The eligibility flag is checked before the uniqueness lookup, so a repeat
    attempt after a successful registration reports an expired code rather
    than confirming the contact is taken.
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: CredentialHasher,
        ledger: VerificationCodeLedger,
        *,
        field: str,
        tenant_id: str,
    ) -> None:
        if field == "phone":
            lookup, validator = store.get_user_by_phone, validate_phone
        elif field == "email":
            lookup, validator = store.get_user_by_email, validate_email
        else:
            raise ValueError(f"unsupported contact field: {field}")
        super().__init__(
            store,
            hasher,
            field=field,
            tenant_id=tenant_id,
            lookup=lookup,
            validate_identifier=validator,
        )
        self.ledger = ledger

    async def register(self, identifier: str, credential: str) -> int:
        self._validate_identifier(identifier)
        validate_password(credential)
        if not await self.ledger.is_registration_eligible(identifier):
            raise CodeExpiredError(
                "verification code has expired; request a new one",
                detail={"identifier": identifier},
            )
        self._ensure_unregistered(identifier)
        user_id = await self._create(identifier, credential)
        try:
            await self.ledger.clear_registration_flag(identifier)
        except BackendUnavailable as exc:
            logger.warning(
                "registration_flag_clear_failed", identifier=identifier, error=exc.message
            )
        return user_id
