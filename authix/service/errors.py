from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``
    that clients can switch on:
    - validation_error (400)
    - unknown_strategy (400)
    - unknown_scene (400)
    - code_expired (400)
    - unauthorized (401)
    - invalid_credentials (401)
    - not_found (404)
    - conflict (409)

    Infrastructure failures are not ServiceErrors; see
    ``authix.storage.errors.BackendUnavailable``.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Identifier, credential or paging input failed validation (400)."""
    status_code = 400
    error_code = "validation_error"


class UnknownStrategyError(ValidationError):
    """No login/register strategy is registered for the requested kind (400)."""
    error_code = "unknown_strategy"

    def __init__(self, kind: object) -> None:
        super().__init__(f"unknown auth strategy: {kind}", detail={"kind": str(kind)})
        self.kind = kind


class UnknownSceneError(ValidationError):
    """Verification scene is not login or register (400)."""
    error_code = "unknown_scene"

    def __init__(self, scene: object) -> None:
        super().__init__(f"unknown verification scene: {scene}", detail={"scene": str(scene)})
        self.scene = scene


class CodeExpiredError(ServiceError):
    """Contact registration attempted without a live eligibility flag (400)."""
    status_code = 400
    error_code = "code_expired"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class UnauthorizedError(AuthenticationError):
    """Bearer token missing, malformed, expired or of the wrong type (401)."""
    pass


class InvalidCredentialsError(AuthenticationError):
    """Login credential rejected; never says which field was wrong (401)."""
    error_code = "invalid_credentials"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """An account already exists for the identifier (409)."""
    status_code = 409
    error_code = "conflict"


__all__ = [
    "ServiceError",
    "ValidationError",
    "UnknownStrategyError",
    "UnknownSceneError",
    "CodeExpiredError",
    "AuthenticationError",
    "UnauthorizedError",
    "InvalidCredentialsError",
    "NotFoundError",
    "ConflictError",
]
