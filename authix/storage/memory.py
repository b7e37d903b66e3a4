from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from authix.logging import get_logger
from authix.storage.errors import ConstraintViolation
from authix.storage.models import ProfileInfo, UserRecord, utcnow

_IDENTIFIER_FIELDS = ("username", "phone", "email")


class MemoryStore:
    """In-memory credential store for tests and single-process deployments.

    When ``fs_root`` is given the user table is mirrored to
    ``<fs_root>/state/users.json`` and reloaded on start.
    """

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, UserRecord] = {}
        self._user_id_seq: int = 1
        # RLock so helpers can re-enter while the caller holds the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "users.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    def _serialize_user(self, user: UserRecord) -> dict:
        return {
            "id": user.id,
            "tenant_id": user.tenant_id,
            "password_hash": user.password_hash,
            "username": user.username,
            "phone": user.phone,
            "email": user.email,
            "created_by": user.created_by,
            "created_at": self._serialize_datetime(user.created_at),
            "last_login_at": self._serialize_datetime(user.last_login_at),
        }

    def _deserialize_user(self, data: dict) -> UserRecord:
        return UserRecord(
            id=int(data["id"]),
            tenant_id=data.get("tenant_id", "0"),
            password_hash=data["password_hash"],
            username=data.get("username"),
            phone=data.get("phone"),
            email=data.get("email"),
            created_by=data.get("created_by"),
            created_at=self._deserialize_datetime(data.get("created_at")) or utcnow(),
            last_login_at=self._deserialize_datetime(data.get("last_login_at")),
        )

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self._user_id_seq = max(self.users.keys(), default=0) + 1
        return True

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {"users": [self._serialize_user(u) for u in self.users.values()]}
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            self.logger.error("memory_store_persist_failed", error=str(exc), path=str(path))

    def _find_by(self, field_name: str, value: str) -> Optional[UserRecord]:
        with self._data_lock:
            return next(
                (u for u in self.users.values() if getattr(u, field_name) == value),
                None,
            )

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        return self._find_by("username", username)

    def get_user_by_phone(self, phone: str) -> Optional[UserRecord]:
        return self._find_by("phone", phone)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        return self._find_by("email", email)

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._data_lock:
            return self.users.get(user_id)

    def create_user(self, record: UserRecord) -> UserRecord:
        with self._data_lock:
            for field_name in _IDENTIFIER_FIELDS:
                value = getattr(record, field_name)
                if value is not None and self._find_by(field_name, value):
                    raise ConstraintViolation(
                        f"{field_name} already exists", {"field": field_name}
                    )
            record.id = self._user_id_seq
            self._user_id_seq += 1
            self.users[record.id] = record
            self._persist_state()
            return record

    def update_last_login(self, user_id: int) -> Optional[UserRecord]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.last_login_at = utcnow()
            self._persist_state()
            return user

    def delete_user(self, user_id: int) -> bool:
        with self._data_lock:
            if user_id not in self.users:
                return False
            self.users.pop(user_id, None)
            self._persist_state()
            return True

    def get_profile(self, user_id: int) -> Optional[ProfileInfo]:
        user = self.get_user(user_id)
        return user.to_profile() if user else None

    def get_profiles(self, user_ids: Iterable[int]) -> List[ProfileInfo]:
        with self._data_lock:
            return [
                self.users[uid].to_profile() for uid in user_ids if uid in self.users
            ]

    def verify_connection(self) -> None:
        return None
