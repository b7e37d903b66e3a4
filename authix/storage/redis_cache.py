from __future__ import annotations

import functools
from typing import List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from authix.logging import get_logger
from authix.storage.errors import BackendUnavailable

logger = get_logger(__name__)

VERIFY_CODE_KEY = "user:verify:code:{identifier}"
REGISTER_FLAG_KEY = "user:register:flag:{identifier}"
ACCESS_TOKEN_KEY = "user:session:token:{user_id}"
ONLINE_USERS_KEY = "user:online"
ONE_TIME_TOKEN_KEY = "one_time_token:{tenant_id}:{user_id}:{token}"


def _cache_op(fn):
    """Surface connection errors and timeouts as BackendUnavailable."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except RedisError as exc:
            logger.error(
                "cache_operation_failed",
                operation=fn.__name__,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise BackendUnavailable(
                "shared cache unavailable", {"operation": fn.__name__}
            ) from exc

    return wrapper


class RedisCache:
    """Redis-backed shared state for codes, registration flags and sessions."""

    # Consume a code only if it matches; optionally grant the registration flag
    # in the same step so the two writes cannot be observed apart.
    _CONSUME_CODE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current or current ~= ARGV[1] then
  return 0
end
redis.call('DEL', KEYS[1])
local flag_ttl = tonumber(ARGV[2])
if flag_ttl > 0 then
  redis.call('SET', KEYS[2], '1', 'EX', flag_ttl)
end
return 1
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._consume_code = self.client.register_script(self._CONSUME_CODE_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        from redis import Redis

        # Short-lived sync client so the async pool is not bound to a startup loop
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    # verification codes

    @_cache_op
    async def set_verification_code(
        self, identifier: str, code: str, ttl_seconds: int
    ) -> None:
        await self.client.set(
            VERIFY_CODE_KEY.format(identifier=identifier), code, ex=ttl_seconds
        )

    @_cache_op
    async def consume_verification_code(
        self,
        identifier: str,
        candidate: str,
        *,
        registration_ttl_seconds: Optional[int] = None,
    ) -> bool:
        consumed = await self._consume_code(
            keys=[
                VERIFY_CODE_KEY.format(identifier=identifier),
                REGISTER_FLAG_KEY.format(identifier=identifier),
            ],
            args=[candidate, registration_ttl_seconds or 0],
        )
        return bool(consumed)

    @_cache_op
    async def has_register_flag(self, identifier: str) -> bool:
        return bool(await self.client.exists(REGISTER_FLAG_KEY.format(identifier=identifier)))

    @_cache_op
    async def clear_register_flag(self, identifier: str) -> None:
        await self.client.delete(REGISTER_FLAG_KEY.format(identifier=identifier))

    # access tokens

    @_cache_op
    async def cache_access_token(self, user_id: str, token: str, ttl_seconds: int) -> None:
        await self.client.set(
            ACCESS_TOKEN_KEY.format(user_id=user_id), token, ex=ttl_seconds
        )

    @_cache_op
    async def get_access_token(self, user_id: str) -> Optional[str]:
        return await self.client.get(ACCESS_TOKEN_KEY.format(user_id=user_id))

    @_cache_op
    async def revoke_access_token(self, user_id: str) -> None:
        await self.client.delete(ACCESS_TOKEN_KEY.format(user_id=user_id))

    # online sessions, scored by expiry in epoch milliseconds

    @_cache_op
    async def mark_online(self, user_id: str, expiry_ms: int) -> None:
        await self.client.zadd(ONLINE_USERS_KEY, {user_id: expiry_ms})

    @_cache_op
    async def mark_offline(self, user_id: str) -> None:
        await self.client.zrem(ONLINE_USERS_KEY, user_id)

    @_cache_op
    async def count_online(self, now_ms: int) -> int:
        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(ONLINE_USERS_KEY, "-inf", now_ms)
        pipe.zcount(ONLINE_USERS_KEY, f"({now_ms}", "+inf")
        _, count = await pipe.execute()
        return int(count)

    @_cache_op
    async def list_online(
        self, now_ms: int, offset: int, limit: int
    ) -> Tuple[int, List[str]]:
        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(ONLINE_USERS_KEY, "-inf", now_ms)
        pipe.zcount(ONLINE_USERS_KEY, f"({now_ms}", "+inf")
        pipe.zrangebyscore(
            ONLINE_USERS_KEY, f"({now_ms}", "+inf", start=offset, num=limit
        )
        _, total, members = await pipe.execute()
        return int(total), list(members)

    # one-time tokens

    @_cache_op
    async def set_one_time_token(
        self, tenant_id: str, user_id: str, token: str, ttl_seconds: int
    ) -> None:
        key = ONE_TIME_TOKEN_KEY.format(tenant_id=tenant_id, user_id=user_id, token=token)
        await self.client.set(key, "1", ex=ttl_seconds)

    @_cache_op
    async def consume_one_time_token(self, tenant_id: str, user_id: str, token: str) -> bool:
        key = ONE_TIME_TOKEN_KEY.format(tenant_id=tenant_id, user_id=user_id, token=token)
        return bool(await self.client.delete(key))

    async def close(self) -> None:
        """Close the Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()
