"""Tests for the error envelope format and error handling.

Error responses share the success envelope shape:
{
    "success": false,
    "code": "<stable_code>",
    "message": "<human_readable>",
    "data": null,
    "request_id": "<id>"
}
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import ValidationError

from authix.api.error_handling import (
    _STATUS_TO_CODE,
    _error_code_for_status,
    _error_response,
    register_exception_handlers,
)
from authix.api.schemas import Envelope
from authix.service.errors import (
    CodeExpiredError,
    ConflictError,
    InvalidCredentialsError,
    NotFoundError,
    ServiceError,
    UnauthorizedError,
    UnknownSceneError,
    UnknownStrategyError,
)
from authix.storage.errors import BackendUnavailable, ConstraintViolation


class TestEnvelope:
    def test_ok_envelope(self):
        envelope = Envelope.ok({"id": 1})
        assert envelope.success is True
        assert envelope.code == "ok"
        assert envelope.data == {"id": 1}
        assert envelope.request_id

    def test_error_envelope(self):
        envelope = Envelope.error("conflict", "username already exists", request_id="r-1")
        assert envelope.success is False
        assert envelope.data is None
        assert envelope.request_id == "r-1"

    def test_unknown_error_code_is_rejected(self):
        with pytest.raises(ValidationError):
            Envelope.error("teapot", "short and stout")


class TestStatusMapping:
    @pytest.mark.parametrize(
        "status,code",
        [
            (400, "validation_error"),
            (401, "unauthorized"),
            (404, "not_found"),
            (409, "conflict"),
            (503, "infrastructure_error"),
            (500, "server_error"),
            (418, "server_error"),
        ],
    )
    def test_error_code_for_status(self, status, code):
        assert _error_code_for_status(status) == code

    def test_mapped_codes_are_valid_envelope_codes(self):
        for code in _STATUS_TO_CODE.values():
            Envelope.error(code, "message")

    def test_error_response_body(self):
        response = _error_response(404, "user not found")
        body = json.loads(response.body)

        assert response.status_code == 404
        assert body["success"] is False
        assert body["code"] == "not_found"
        assert body["message"] == "user not found"
        assert body["data"] is None


class TestServiceErrors:
    @pytest.mark.parametrize(
        "exc,status,code",
        [
            (UnknownStrategyError("oauth"), 400, "unknown_strategy"),
            (UnknownSceneError("reset"), 400, "unknown_scene"),
            (CodeExpiredError("expired"), 400, "code_expired"),
            (UnauthorizedError("missing bearer token"), 401, "unauthorized"),
            (InvalidCredentialsError("bad"), 401, "invalid_credentials"),
            (NotFoundError("missing"), 404, "not_found"),
            (ConflictError("taken"), 409, "conflict"),
        ],
    )
    def test_status_and_code(self, exc, status, code):
        assert isinstance(exc, ServiceError)
        assert exc.status_code == status
        assert exc.error_code == code


@pytest.fixture
def failing_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/service")
    async def service_failure():
        raise CodeExpiredError("verification code has expired")

    @app.get("/constraint")
    async def constraint_failure():
        raise ConstraintViolation("email already exists", {"field": "email"})

    @app.get("/backend")
    async def backend_failure():
        raise BackendUnavailable("connection to redis://:hunter2@10.0.0.5:6379 refused")

    @app.get("/boom")
    async def unexpected_failure():
        raise RuntimeError("boom")

    return TestClient(app, raise_server_exceptions=False)


class TestExceptionHandlers:
    def test_service_error_uses_its_code(self, failing_client):
        response = failing_client.get("/service")

        assert response.status_code == 400
        assert response.json()["code"] == "code_expired"

    def test_constraint_violation_is_conflict(self, failing_client):
        response = failing_client.get("/constraint")

        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

    def test_backend_failure_is_sanitized(self, failing_client):
        response = failing_client.get("/backend")

        assert response.status_code == 503
        body = response.json()
        assert body["code"] == "infrastructure_error"
        assert "hunter2" not in body["message"]
        assert "10.0.0.5" not in body["message"]

    def test_unexpected_error_is_server_error(self, failing_client):
        response = failing_client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "server_error"
        assert "boom" not in body["message"]
