from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from authix.logging import get_correlation_id
from authix.storage.models import ProfileInfo, TokenPair

_VALID_ERROR_CODES = frozenset({
    "validation_error",
    "unknown_strategy",
    "unknown_scene",
    "code_expired",
    "unauthorized",
    "invalid_credentials",
    "not_found",
    "conflict",
    "infrastructure_error",
    "server_error",
})

# Identifiers and credentials are short; anything longer is rejected outright
MAX_FIELD_LENGTH = 256


class Envelope(BaseModel):
    """Response envelope shared by every endpoint.

    Success: ``{"success": true, "code": "ok", "message": "ok", "data": ...}``.
    Failure: ``{"success": false, "code": <stable error code>, "message": ..., "data": null}``.
    """

    success: bool = True
    code: str = "ok"
    message: str = "ok"
    data: Optional[Any] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))

    @field_validator("code")
    @classmethod
    def _validate_code(cls, value: str) -> str:
        if value != "ok" and value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value

    @classmethod
    def ok(cls, data: Any = None, message: str = "ok") -> "Envelope":
        return cls(success=True, code="ok", message=message, data=data)

    @classmethod
    def error(cls, code: str, message: str, **kwargs: Any) -> "Envelope":
        return cls(success=False, code=code, message=message, data=None, **kwargs)


class _AuthRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(..., min_length=1, max_length=MAX_FIELD_LENGTH)
    credential: str = Field(..., min_length=1, max_length=MAX_FIELD_LENGTH)


class RegisterRequest(_AuthRequest):
    # Free-form so unknown kinds surface as unknown_strategy, not a schema error
    register_type: str = Field(..., max_length=32)


class LoginRequest(_AuthRequest):
    login_type: str = Field(..., max_length=32)


class SendCodeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(..., min_length=1, max_length=MAX_FIELD_LENGTH)
    verify_type: str = Field(..., max_length=32)


class VerifyCodeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(..., min_length=1, max_length=MAX_FIELD_LENGTH)
    credential: str = Field(..., min_length=1, max_length=16)
    verify_type: str = Field(..., max_length=32)


class OneTimeTokenConsumeRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=32)
    token: str = Field(..., min_length=1, max_length=64)
    tenant_id: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    exp: int
    iat: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            exp=pair.exp,
            iat=pair.iat,
        )


class ProfileResponse(BaseModel):
    id: int
    tenant_id: str
    username: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_profile(cls, profile: ProfileInfo) -> "ProfileResponse":
        return cls(
            id=profile.id,
            tenant_id=profile.tenant_id,
            username=profile.username,
            phone=profile.phone,
            email=profile.email,
            created_at=profile.created_at,
            last_login_at=profile.last_login_at,
        )


class OnlineUsersResponse(BaseModel):
    total: int
    records: List[ProfileResponse]
