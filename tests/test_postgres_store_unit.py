from contextlib import contextmanager
from datetime import datetime
from types import SimpleNamespace

import psycopg
import pytest
from psycopg import errors

from authix.logging import get_logger
from authix.storage.errors import BackendUnavailable, ConstraintViolation
from authix.storage.models import UserRecord
from authix.storage.postgres import PostgresStore


class FakeCursor:
    def __init__(self, rows=None, rowcount=0):
        self._rows = rows or []
        self.rowcount = rowcount

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    def __init__(self, responses):
        self.responses = responses
        self.statements = []

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        response = self.responses.pop(0) if self.responses else FakeCursor()
        if isinstance(response, Exception):
            raise response
        return response


class FakePool:
    def __init__(self, *responses, error=None):
        self.conn = FakeConnection(list(responses))
        self.error = error

    @contextmanager
    def connection(self):
        if self.error is not None:
            raise self.error
        yield self.conn


def _store(pool) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.dsn = "postgresql://test"
    store.logger = get_logger(__name__)
    store.pool = pool
    return store


def _row(**overrides):
    row = {
        "id": 7,
        "tenant_id": "0",
        "username": "alice_01",
        "phone": None,
        "email": None,
        "password_hash": "$argon2id$fake",
        "created_by": "alice_01",
        "created_at": datetime(2024, 1, 1),
        "last_login_at": None,
    }
    row.update(overrides)
    return row


class PhoneTaken(errors.UniqueViolation):
    diag = SimpleNamespace(constraint_name="auth_user_phone_key")


def test_lookup_by_username_maps_row():
    pool = FakePool(FakeCursor([_row()]))
    user = _store(pool).get_user_by_username("alice_01")

    assert user.id == 7
    assert user.username == "alice_01"
    sql, params = pool.conn.statements[0]
    assert "WHERE username = %s" in sql
    assert params == ("alice_01",)


def test_lookup_miss_returns_none():
    pool = FakePool(FakeCursor([]))
    assert _store(pool).get_user_by_email("nobody@example.com") is None


def test_create_user_returns_generated_id():
    created_at = datetime(2024, 5, 1)
    pool = FakePool(FakeCursor([{"id": 11, "created_at": created_at}]))
    record = UserRecord(
        id=0, tenant_id="0", password_hash="h", phone="+15551234567", created_by="+15551234567"
    )

    created = _store(pool).create_user(record)
    assert created.id == 11
    assert created.created_at == created_at
    sql, params = pool.conn.statements[0]
    assert sql.startswith("INSERT INTO auth_user")
    assert params == ("0", None, "+15551234567", None, "h", "+15551234567")


def test_unique_violation_becomes_constraint_violation():
    pool = FakePool(PhoneTaken("duplicate key"))
    record = UserRecord(id=0, tenant_id="0", password_hash="h", phone="+15551234567")

    with pytest.raises(ConstraintViolation) as exc_info:
        _store(pool).create_user(record)
    assert exc_info.value.detail == {"field": "phone"}


def test_pool_failure_becomes_backend_unavailable():
    pool = FakePool(error=psycopg.OperationalError("connection refused"))

    with pytest.raises(BackendUnavailable):
        _store(pool).get_user(1)


def test_delete_user_reports_rowcount():
    pool = FakePool(FakeCursor(rowcount=1), FakeCursor(rowcount=0))
    store = _store(pool)

    assert store.delete_user(7) is True
    assert store.delete_user(7) is False


def test_get_profiles_preserves_requested_order():
    pool = FakePool(FakeCursor([_row(id=3, username="c_user_03"), _row(id=1)]))
    profiles = _store(pool).get_profiles([1, 2, 3])

    assert [p.id for p in profiles] == [1, 3]
    sql, params = pool.conn.statements[0]
    assert "id = ANY(%s)" in sql
    assert params == ([1, 2, 3],)


def test_get_profiles_with_no_ids_skips_query():
    pool = FakePool()
    assert _store(pool).get_profiles([]) == []
    assert pool.conn.statements == []
