from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from authix.logging import get_logger
from authix.storage.errors import BackendUnavailable, ConstraintViolation
from authix.storage.models import ProfileInfo, UserRecord, utcnow

_USER_COLUMNS = (
    "id, tenant_id, username, phone, email, password_hash, created_by, "
    "created_at, last_login_at"
)

# Maps the unique constraint name Postgres reports to the identifier field
_UNIQUE_CONSTRAINT_FIELDS = {
    "auth_user_username_key": "username",
    "auth_user_phone_key": "phone",
    "auth_user_email_key": "email",
}


class PostgresStore:
    """Postgres-backed credential store over a psycopg connection pool."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[psycopg.Connection]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except (psycopg.OperationalError, PoolTimeout) as exc:
            self.logger.error(
                "credential_store_unavailable",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise BackendUnavailable(
                "credential store unavailable", {"error_type": type(exc).__name__}
            ) from exc

    def _ensure_schema(self) -> None:
        """Create the ``auth_user`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS auth_user (
                    id BIGSERIAL PRIMARY KEY,
                    tenant_id TEXT NOT NULL DEFAULT '0',
                    username TEXT UNIQUE,
                    phone TEXT UNIQUE,
                    email TEXT UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_by TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    last_login_at TIMESTAMPTZ
                )
                """
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> UserRecord:
        return UserRecord(
            id=int(row["id"]),
            tenant_id=str(row.get("tenant_id", "0")),
            password_hash=row["password_hash"],
            username=row.get("username"),
            phone=row.get("phone"),
            email=row.get("email"),
            created_by=row.get("created_by"),
            created_at=row.get("created_at") or utcnow(),
            last_login_at=row.get("last_login_at"),
        )

    def _get_user_where(self, column: str, value: Any) -> Optional[UserRecord]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM auth_user WHERE {column} = %s",
                (value,),
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        return self._get_user_where("username", username)

    def get_user_by_phone(self, phone: str) -> Optional[UserRecord]:
        return self._get_user_where("phone", phone)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        return self._get_user_where("email", email)

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        return self._get_user_where("id", user_id)

    def create_user(self, record: UserRecord) -> UserRecord:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO auth_user (tenant_id, username, phone, email, password_hash, created_by)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING id, created_at
                    """,
                    (
                        record.tenant_id,
                        record.username,
                        record.phone,
                        record.email,
                        record.password_hash,
                        record.created_by,
                    ),
                ).fetchone()
        except errors.UniqueViolation as exc:
            constraint = getattr(getattr(exc, "diag", None), "constraint_name", None)
            field_name = _UNIQUE_CONSTRAINT_FIELDS.get(constraint or "", "identifier")
            raise ConstraintViolation(
                f"{field_name} already exists", {"field": field_name}
            ) from exc
        record.id = int(row["id"])
        record.created_at = row.get("created_at") or record.created_at
        return record

    def update_last_login(self, user_id: int) -> Optional[UserRecord]:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE auth_user SET last_login_at = now()
                WHERE id = %s
                RETURNING {_USER_COLUMNS}
                """,
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def delete_user(self, user_id: int) -> bool:
        with self._connect() as conn:
            result = conn.execute("DELETE FROM auth_user WHERE id = %s", (user_id,))
            return result.rowcount > 0

    def get_profile(self, user_id: int) -> Optional[ProfileInfo]:
        user = self.get_user(user_id)
        return user.to_profile() if user else None

    def get_profiles(self, user_ids: Iterable[int]) -> List[ProfileInfo]:
        ids = list(user_ids)
        if not ids:
            return []
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM auth_user WHERE id = ANY(%s)",
                (ids,),
            ).fetchall()
        by_id = {int(row["id"]): self._user_from_row(row) for row in rows}
        return [by_id[uid].to_profile() for uid in ids if uid in by_id]
