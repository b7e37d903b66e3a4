from __future__ import annotations

import secrets
import uuid
from enum import Enum
from typing import Protocol

from authix.logging import get_logger
from authix.service.errors import UnknownSceneError

logger = get_logger(__name__)

CODE_LENGTH = 6


class VerificationScene(str, Enum):
    """What a successful code check is for; REGISTER also grants the eligibility flag."""

    LOGIN = "login"
    REGISTER = "register"

    @classmethod
    def parse(cls, value: "VerificationScene | str") -> "VerificationScene":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownSceneError(value) from None


class CodeSender(Protocol):
    async def deliver(self, identifier: str, code: str, *, channel: str) -> None: ...


class LoggingCodeSender:
    """Default sender: records that a code went out without carrying the code.

    Real SMS/email gateways plug in through the CodeSender protocol.
    """

    async def deliver(self, identifier: str, code: str, *, channel: str) -> None:
        logger.info("verification_code_dispatched", identifier=identifier, channel=channel)


def generate_code(length: int = CODE_LENGTH) -> str:
    """Uniform over 0..10**length-1, zero-padded to ``length`` digits."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class VerificationCodeLedger:
    """Issues and consumes one-time codes keyed by identifier.

    At most one live code exists per identifier; a new send overwrites it. A
    matching check deletes the code in the same cache step, so a code can be
    redeemed once. Checks in the REGISTER scene also set the registration
    eligibility flag with the same TTL as the code.

    Cache failures raise ``BackendUnavailable`` and are never reported as a
    mismatch.
    """

    def __init__(
        self,
        cache,
        *,
        ttl_seconds: int = 300,
        sender: CodeSender | None = None,
    ) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.sender: CodeSender = sender or LoggingCodeSender()

    async def send(self, identifier: str, *, channel: str = "sms") -> str:
        code = generate_code()
        await self.cache.set_verification_code(identifier, code, self.ttl_seconds)
        await self.sender.deliver(identifier, code, channel=channel)
        logger.info(
            "verification_code_issued",
            identifier=identifier,
            channel=channel,
            ttl_seconds=self.ttl_seconds,
        )
        return code

    async def verify(
        self, identifier: str, candidate: str, scene: VerificationScene | str
    ) -> bool:
        scene = VerificationScene.parse(scene)
        if not candidate:
            return False
        registration_ttl = (
            self.ttl_seconds if scene is VerificationScene.REGISTER else None
        )
        consumed = await self.cache.consume_verification_code(
            identifier, candidate, registration_ttl_seconds=registration_ttl
        )
        if consumed:
            logger.info("verification_code_consumed", identifier=identifier, scene=scene.value)
        else:
            logger.warning("verification_code_rejected", identifier=identifier, scene=scene.value)
        return consumed

    async def is_registration_eligible(self, identifier: str) -> bool:
        return await self.cache.has_register_flag(identifier)

    async def clear_registration_flag(self, identifier: str) -> None:
        await self.cache.clear_register_flag(identifier)


class OneTimeTokens:
    """Opaque single-use tokens scoped to a tenant and user."""

    def __init__(self, cache, *, ttl_seconds: int = 300) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def issue(self, tenant_id: str, user_id: str) -> str:
        token = uuid.uuid4().hex
        await self.cache.set_one_time_token(tenant_id, user_id, token, self.ttl_seconds)
        return token

    async def consume(self, tenant_id: str, user_id: str, token: str) -> bool:
        if not token:
            return False
        return await self.cache.consume_one_time_token(tenant_id, user_id, token)
