from authix.config import Settings


def test_from_env_reads_named_variables(monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "60")
    monkeypatch.setenv("DEFAULT_TENANT_ID", "7")
    monkeypatch.setenv("USE_MEMORY_STORE", "true")

    settings = Settings.from_env()
    assert settings.access_token_ttl_seconds == 60
    assert settings.default_tenant_id == "7"
    assert settings.use_memory_store is True


def test_lifetime_defaults():
    settings = Settings(jwt_secret="x" * 32)
    assert settings.access_token_ttl_seconds == 300
    assert settings.refresh_token_ttl_seconds == 7 * 24 * 60 * 60
    assert settings.verify_code_ttl_seconds == 300
    assert settings.default_tenant_id == "0"


def test_blank_redis_url_disables_cache():
    assert Settings(jwt_secret="x" * 32, redis_url="  ").redis_url is None
    assert Settings(jwt_secret="x" * 32, redis_url="redis://r:6379/0").redis_url == "redis://r:6379/0"


def test_verification_code_reveal_follows_test_mode():
    assert Settings(jwt_secret="x" * 32).reveal_verification_code is False
    assert Settings(jwt_secret="x" * 32, test_mode=True).reveal_verification_code is True
    assert Settings(jwt_secret="x" * 32, expose_verification_code=True).reveal_verification_code is True


def test_missing_jwt_secret_is_generated_and_persisted(monkeypatch, tmp_path):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))

    first = Settings(jwt_secret=None).jwt_secret
    second = Settings(jwt_secret="").jwt_secret

    assert len(first) >= 32
    assert first == second
    assert (tmp_path / ".jwt_secret").read_text().strip() == first
