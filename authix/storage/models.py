from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserRecord:
    """A persisted account; exactly one of username, phone or email is set.

    ``id == 0`` marks a record that has not been written yet.
    """

    id: int
    tenant_id: str
    password_hash: str
    username: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None

    def to_profile(self) -> "ProfileInfo":
        return ProfileInfo(
            id=self.id,
            tenant_id=self.tenant_id,
            username=self.username,
            phone=self.phone,
            email=self.email,
            created_at=self.created_at,
            last_login_at=self.last_login_at,
        )


@dataclass
class ProfileInfo:
    id: int
    tenant_id: str
    username: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


@dataclass
class TokenClaims:
    sub: str
    tenant_id: str
    iat: int
    exp: int
    token_type: str


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    exp: int
    iat: int


@dataclass
class PageResult:
    total: int
    records: List = field(default_factory=list)
