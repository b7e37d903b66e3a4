import json

import pytest

from authix.service.runtime import Runtime, _mask_url_password, reset_runtime_for_tests
from authix.storage.memory import MemoryStore
from authix.storage.memory_cache import MemoryCache


async def test_memory_store_persists_under_shared_root(monkeypatch, tmp_path):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    runtime = reset_runtime_for_tests()
    assert isinstance(runtime.store, MemoryStore)

    user_id = await runtime.auth.register("password", "alice_01", "Str0ng#Pass")

    state_path = tmp_path / "state" / "users.json"
    state = json.loads(state_path.read_text())
    assert [u["username"] for u in state["users"]] == ["alice_01"]

    # A fresh runtime over the same root sees the account
    reloaded = reset_runtime_for_tests()
    assert reloaded.store.get_user_by_username("alice_01").id == user_id


def test_test_mode_falls_back_to_memory_cache():
    runtime = reset_runtime_for_tests()
    assert isinstance(runtime.cache, MemoryCache)


def test_missing_redis_without_fallback_refuses_to_start(monkeypatch):
    from authix.config import reset_settings_cache

    monkeypatch.setenv("TEST_MODE", "false")
    monkeypatch.setenv("ALLOW_REDIS_FALLBACK_DEV", "false")
    monkeypatch.setenv("REDIS_URL", "")
    reset_settings_cache()

    with pytest.raises(RuntimeError):
        Runtime()


def test_url_password_is_masked():
    assert _mask_url_password("redis://:hunter2@cache:6379/0") == "redis://:***@cache:6379/0"
    assert _mask_url_password("postgresql://app:pw@db:5432/authix") == "postgresql://app:***@db:5432/authix"
    assert _mask_url_password("redis://cache:6379/0") == "redis://cache:6379/0"
