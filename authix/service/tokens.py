from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Any, Callable, Optional

from authix.logging import get_logger
from authix.service.errors import UnauthorizedError
from authix.service.sessions import SessionAccounting, now_ms
from authix.storage.models import TokenClaims, TokenPair

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


class TokenIssuer:
    """Mints and verifies HS256 access/refresh tokens.

    Claim times are epoch milliseconds. Minting an access token also caches it
    under the user id (TTL = access lifetime) and records the user as online
    until the token expires. Refresh tokens have no cache side effect and are
    not rotated.

    Revocation is soft: ``revoke`` drops the cached token and the online entry,
    but a signed token stays verifiable until it expires.
    """

    def __init__(
        self,
        secret: str,
        *,
        cache,
        sessions: SessionAccounting,
        access_ttl_seconds: int = 300,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret.encode()
        self.cache = cache
        self.sessions = sessions
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self._clock = clock

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            return None

        # Reject anything but HS256 to rule out algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return None

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, sig_b64):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        return payload if isinstance(payload, dict) else None

    def _mint(self, subject: str, tenant_id: str, iat: int, ttl_seconds: int, token_type: str) -> str:
        return self._encode_jwt(
            {
                "sub": subject,
                "tenant_id": tenant_id,
                "iat": iat,
                "exp": iat + ttl_seconds * 1000,
                "token_type": token_type,
            }
        )

    async def _register_access(self, subject: str, token: str, expiry_ms: int) -> None:
        await self.cache.cache_access_token(subject, token, self.access_ttl_seconds)
        await self.sessions.record_session(subject, expiry_ms)

    async def issue(self, subject: str, tenant_id: str) -> TokenPair:
        """Mint an access/refresh pair sharing one issue time."""
        subject = str(subject)
        iat = self._clock()
        access_token = self._mint(subject, tenant_id, iat, self.access_ttl_seconds, ACCESS)
        refresh_token = self._mint(subject, tenant_id, iat, self.refresh_ttl_seconds, REFRESH)
        access_exp = iat + self.access_ttl_seconds * 1000
        await self._register_access(subject, access_token, access_exp)
        logger.info("tokens_issued", user_id=subject, tenant_id=tenant_id, exp=access_exp)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            exp=access_exp,
            iat=iat,
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Mint a new access token from a valid refresh token.

        The new ``iat`` is strictly greater than the refresh token's, even when
        the clock has not advanced. The refresh token is returned unchanged.
        """
        claims = self.verify(refresh_token, REFRESH)
        iat = max(self._clock(), claims.iat + 1)
        access_token = self._mint(claims.sub, claims.tenant_id, iat, self.access_ttl_seconds, ACCESS)
        access_exp = iat + self.access_ttl_seconds * 1000
        await self._register_access(claims.sub, access_token, access_exp)
        logger.info("access_token_refreshed", user_id=claims.sub, exp=access_exp)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            exp=access_exp,
            iat=iat,
        )

    def verify(self, token: str, expected_type: str) -> TokenClaims:
        payload = self._decode_jwt(token)
        if payload is None:
            raise UnauthorizedError("invalid token")
        try:
            claims = TokenClaims(
                sub=str(payload["sub"]),
                tenant_id=str(payload["tenant_id"]),
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
                token_type=str(payload["token_type"]),
            )
        except (KeyError, TypeError, ValueError):
            raise UnauthorizedError("invalid token claims") from None
        if claims.token_type != expected_type:
            logger.warning(
                "jwt_token_type_mismatch",
                expected=expected_type,
                actual=claims.token_type,
            )
            raise UnauthorizedError("invalid token type")
        if claims.exp <= self._clock():
            raise UnauthorizedError("token expired")
        return claims

    async def revoke(self, user_id: str) -> None:
        user_id = str(user_id)
        await self.cache.revoke_access_token(user_id)
        await self.sessions.remove(user_id)
        logger.info("session_revoked", user_id=user_id)
