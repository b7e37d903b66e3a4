from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from authix.storage.redis_cache import (
    ACCESS_TOKEN_KEY,
    ONE_TIME_TOKEN_KEY,
    REGISTER_FLAG_KEY,
    VERIFY_CODE_KEY,
)


class MemoryCache:
    """Process-local stand-in for RedisCache used under TEST_MODE or
    ALLOW_REDIS_FALLBACK_DEV.

    Exposes the same awaitable methods and key layout. Expiry is evaluated
    lazily against ``clock`` (epoch seconds), which tests can replace.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._online: Dict[str, int] = {}

    def verify_connection(self) -> None:
        return None

    def _get(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._values.pop(key, None)
            return None
        return value

    def _set(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._values[key] = (value, expires_at)

    async def set_verification_code(
        self, identifier: str, code: str, ttl_seconds: int
    ) -> None:
        with self._lock:
            self._set(VERIFY_CODE_KEY.format(identifier=identifier), code, ttl_seconds)

    async def consume_verification_code(
        self,
        identifier: str,
        candidate: str,
        *,
        registration_ttl_seconds: Optional[int] = None,
    ) -> bool:
        key = VERIFY_CODE_KEY.format(identifier=identifier)
        with self._lock:
            current = self._get(key)
            if current is None or current != candidate:
                return False
            self._values.pop(key, None)
            if registration_ttl_seconds:
                self._set(
                    REGISTER_FLAG_KEY.format(identifier=identifier),
                    "1",
                    registration_ttl_seconds,
                )
            return True

    async def has_register_flag(self, identifier: str) -> bool:
        with self._lock:
            return self._get(REGISTER_FLAG_KEY.format(identifier=identifier)) is not None

    async def clear_register_flag(self, identifier: str) -> None:
        with self._lock:
            self._values.pop(REGISTER_FLAG_KEY.format(identifier=identifier), None)

    async def cache_access_token(self, user_id: str, token: str, ttl_seconds: int) -> None:
        with self._lock:
            self._set(ACCESS_TOKEN_KEY.format(user_id=user_id), token, ttl_seconds)

    async def get_access_token(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._get(ACCESS_TOKEN_KEY.format(user_id=user_id))

    async def revoke_access_token(self, user_id: str) -> None:
        with self._lock:
            self._values.pop(ACCESS_TOKEN_KEY.format(user_id=user_id), None)

    async def mark_online(self, user_id: str, expiry_ms: int) -> None:
        with self._lock:
            self._online[user_id] = expiry_ms

    async def mark_offline(self, user_id: str) -> None:
        with self._lock:
            self._online.pop(user_id, None)

    def _prune_online(self, now_ms: int) -> List[Tuple[str, int]]:
        for member, score in list(self._online.items()):
            if score <= now_ms:
                self._online.pop(member, None)
        return sorted(self._online.items(), key=lambda item: (item[1], item[0]))

    async def count_online(self, now_ms: int) -> int:
        with self._lock:
            return len(self._prune_online(now_ms))

    async def list_online(
        self, now_ms: int, offset: int, limit: int
    ) -> Tuple[int, List[str]]:
        with self._lock:
            live = self._prune_online(now_ms)
            return len(live), [member for member, _ in live[offset : offset + limit]]

    async def set_one_time_token(
        self, tenant_id: str, user_id: str, token: str, ttl_seconds: int
    ) -> None:
        key = ONE_TIME_TOKEN_KEY.format(tenant_id=tenant_id, user_id=user_id, token=token)
        with self._lock:
            self._set(key, "1", ttl_seconds)

    async def consume_one_time_token(self, tenant_id: str, user_id: str, token: str) -> bool:
        key = ONE_TIME_TOKEN_KEY.format(tenant_id=tenant_id, user_id=user_id, token=token)
        with self._lock:
            present = self._get(key) is not None
            self._values.pop(key, None)
            return present

    async def close(self) -> None:
        with self._lock:
            self._values.clear()
            self._online.clear()
