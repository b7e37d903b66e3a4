from authix.logging import _redact_pii, sanitize_error_message


def test_credentials_and_contacts_are_masked():
    event = _redact_pii(
        None,
        "info",
        {
            "event": "login_failed",
            "identifier": "+15551234567",
            "password": "Str0ng#Pass",
            "refresh_token": "eyJhbGciOi.abc.def",
            "code": "123456",
        },
    )

    assert event["event"] == "login_failed"
    assert event["identifier"] == "+1***67"
    assert "Str0ng" not in event["password"]
    assert event["refresh_token"].startswith("ey***")
    assert event["code"] == "12***56"


def test_operational_fields_are_kept():
    event = _redact_pii(
        None,
        "info",
        {"status_code": 401, "error_code": "invalid_credentials", "token_type": "access"},
    )

    assert event == {"status_code": 401, "error_code": "invalid_credentials", "token_type": "access"}


def test_sanitize_error_message_strips_connection_details():
    message = sanitize_error_message(
        "Error 111 connecting to redis://:pw@10.1.2.3:6379/0. Connection refused."
    )
    assert "pw@" not in message
    assert "10.1.2.3" not in message


def test_sanitize_error_message_handles_empty():
    assert sanitize_error_message("") == "An error occurred"
