"""Unit tests for the in-memory credential store and cache."""

from datetime import timezone

import pytest

from authix.storage.errors import ConstraintViolation
from authix.storage.memory import MemoryStore
from authix.storage.memory_cache import MemoryCache
from authix.storage.models import UserRecord


def _record(**identifier):
    return UserRecord(id=0, tenant_id="0", password_hash="$argon2id$fake", **identifier)


class TestMemoryStore:
    def test_create_assigns_increasing_ids(self):
        store = MemoryStore()
        first = store.create_user(_record(username="alice_01"))
        second = store.create_user(_record(phone="+15551234567"))

        assert first.id == 1
        assert second.id == 2
        assert store.get_user_by_username("alice_01") is first
        assert store.get_user_by_phone("+15551234567") is second
        assert store.get_user_by_email("alice@example.com") is None

    def test_duplicate_identifier_violates_constraint(self):
        store = MemoryStore()
        store.create_user(_record(email="bob@example.com"))

        with pytest.raises(ConstraintViolation) as exc_info:
            store.create_user(_record(email="bob@example.com"))
        assert exc_info.value.detail == {"field": "email"}

    def test_delete_user(self):
        store = MemoryStore()
        user = store.create_user(_record(username="alice_01"))

        assert store.delete_user(user.id) is True
        assert store.delete_user(user.id) is False
        assert store.get_user(user.id) is None
        assert store.get_profile(user.id) is None

    def test_update_last_login(self):
        store = MemoryStore()
        user = store.create_user(_record(username="alice_01"))

        updated = store.update_last_login(user.id)
        assert updated.last_login_at is not None
        assert store.update_last_login(999) is None

    def test_timestamps_are_timezone_aware(self):
        store = MemoryStore()
        user = store.create_user(_record(username="alice_01"))

        assert user.created_at.tzinfo is timezone.utc
        assert store.update_last_login(user.id).last_login_at.tzinfo is timezone.utc

    def test_profiles_keep_requested_order_and_skip_missing(self):
        store = MemoryStore()
        ids = [store.create_user(_record(username=f"user_{i:04d}")).id for i in range(3)]

        profiles = store.get_profiles([ids[2], 999, ids[0]])
        assert [p.id for p in profiles] == [ids[2], ids[0]]
        assert not hasattr(profiles[0], "password_hash")

    def test_state_survives_reload(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path))
        user = store.create_user(_record(username="alice_01"))
        store.update_last_login(user.id)

        reloaded = MemoryStore(fs_root=str(tmp_path))
        restored = reloaded.get_user_by_username("alice_01")
        assert restored.id == user.id
        assert restored.password_hash == user.password_hash
        assert restored.last_login_at == user.last_login_at
        assert reloaded.create_user(_record(username="bob_0002")).id == user.id + 1


class TestMemoryCache:
    async def test_values_expire_lazily(self, clock):
        cache = MemoryCache(clock=clock.seconds)
        await cache.cache_access_token("1", "tok", 10)

        clock.advance(9_999)
        assert await cache.get_access_token("1") == "tok"
        clock.advance(1)
        assert await cache.get_access_token("1") is None

    async def test_consume_code_requires_exact_match(self, clock):
        cache = MemoryCache(clock=clock.seconds)
        await cache.set_verification_code("+15551234567", "123456", 300)

        assert await cache.consume_verification_code("+15551234567", "654321") is False
        assert await cache.consume_verification_code("+15551234567", "123456") is True
        assert await cache.consume_verification_code("+15551234567", "123456") is False
        assert await cache.has_register_flag("+15551234567") is False

    async def test_consume_code_can_grant_flag(self, clock):
        cache = MemoryCache(clock=clock.seconds)
        await cache.set_verification_code("bob@example.com", "123456", 300)

        assert await cache.consume_verification_code(
            "bob@example.com", "123456", registration_ttl_seconds=300
        )
        assert await cache.has_register_flag("bob@example.com") is True
        await cache.clear_register_flag("bob@example.com")
        assert await cache.has_register_flag("bob@example.com") is False

    async def test_online_listing_prunes_and_orders(self, clock):
        cache = MemoryCache(clock=clock.seconds)
        await cache.mark_online("b", clock.now + 200)
        await cache.mark_online("a", clock.now + 200)
        await cache.mark_online("c", clock.now + 100)
        await cache.mark_online("stale", clock.now)

        total, members = await cache.list_online(clock.now, 0, 10)
        assert total == 3
        assert members == ["c", "a", "b"]
        assert await cache.count_online(clock.now + 100) == 2

    async def test_close_drops_state(self, clock):
        cache = MemoryCache(clock=clock.seconds)
        await cache.mark_online("1", clock.now + 1000)
        await cache.close()

        assert await cache.count_online(clock.now) == 0
