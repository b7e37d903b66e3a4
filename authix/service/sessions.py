from __future__ import annotations

import time
from typing import Callable

from authix.service.errors import ValidationError
from authix.storage.models import PageResult


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionAccounting:
    """Expiry-ordered set of online users.

    Each member is a user id scored by the expiry (epoch ms) of that user's
    latest access token. Entries whose expiry is at or before "now" are pruned
    before every read, so an expired session never counts as online even if
    nobody removed it. Ties in expiry have no defined order.
    """

    def __init__(self, cache, *, clock: Callable[[], int] = now_ms) -> None:
        self.cache = cache
        self._clock = clock

    async def record_session(self, user_id: str, expiry_ms: int) -> None:
        await self.cache.mark_online(str(user_id), int(expiry_ms))

    async def remove(self, user_id: str) -> None:
        await self.cache.mark_offline(str(user_id))

    async def count(self) -> int:
        return await self.cache.count_online(self._clock())

    async def page(self, page: int, page_size: int) -> PageResult:
        """Return one page of live user ids ordered by ascending expiry.

        ``total`` is the post-prune count. Pages are 1-based.
        """
        if page < 1:
            raise ValidationError("page must be >= 1", detail={"field": "page"})
        if page_size < 1:
            raise ValidationError("page_size must be >= 1", detail={"field": "page_size"})
        offset = (page - 1) * page_size
        total, members = await self.cache.list_online(self._clock(), offset, page_size)
        return PageResult(total=total, records=[int(m) for m in members])
