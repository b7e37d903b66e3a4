"""Tests for online-session accounting."""

import pytest

from authix.service.errors import ValidationError
from authix.service.sessions import SessionAccounting
from authix.storage.memory_cache import MemoryCache


@pytest.fixture
def sessions(clock):
    return SessionAccounting(MemoryCache(clock=clock.seconds), clock=clock)


class TestSessionAccounting:
    async def test_count_reflects_live_sessions(self, sessions, clock):
        await sessions.record_session("1", clock.now + 1000)
        await sessions.record_session("2", clock.now + 2000)

        assert await sessions.count() == 2

    async def test_expired_sessions_are_pruned(self, sessions, clock):
        await sessions.record_session("1", clock.now + 1000)
        await sessions.record_session("2", clock.now + 5000)
        clock.advance(1000)

        # Expiry equal to now is no longer online
        assert await sessions.count() == 1
        page = await sessions.page(1, 10)
        assert page.total == 1
        assert page.records == [2]

    async def test_record_session_moves_expiry(self, sessions, clock):
        await sessions.record_session("1", clock.now + 1000)
        await sessions.record_session("1", clock.now + 9000)
        clock.advance(5000)

        assert await sessions.count() == 1

    async def test_remove_takes_user_offline(self, sessions, clock):
        await sessions.record_session("1", clock.now + 1000)
        await sessions.remove("1")
        await sessions.remove("missing")

        assert await sessions.count() == 0

    async def test_page_orders_by_ascending_expiry(self, sessions, clock):
        await sessions.record_session("3", clock.now + 3000)
        await sessions.record_session("1", clock.now + 1000)
        await sessions.record_session("2", clock.now + 2000)

        page = await sessions.page(1, 10)
        assert page.records == [1, 2, 3]

    async def test_second_page_of_twenty_five(self, sessions, clock):
        for user_id in range(1, 26):
            await sessions.record_session(str(user_id), clock.now + user_id * 1000)

        page = await sessions.page(2, 10)
        assert page.total == 25
        assert page.records == list(range(11, 21))

    async def test_page_past_end_is_empty(self, sessions, clock):
        for user_id in range(1, 4):
            await sessions.record_session(str(user_id), clock.now + user_id * 1000)

        page = await sessions.page(5, 10)
        assert page.total == 3
        assert page.records == []

    async def test_invalid_paging_raises(self, sessions):
        with pytest.raises(ValidationError):
            await sessions.page(0, 10)
        with pytest.raises(ValidationError):
            await sessions.page(1, 0)
