"""Format checks for identifiers and passwords.

All checks run before any store or cache access so malformed input never
costs a round trip.
"""

from __future__ import annotations

import re

from authix.service.errors import ValidationError

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-.@#$%^&*]{6,32}$")
PASSWORD_PATTERN = re.compile(r"^[A-Za-z0-9_\-.@#$%^&*]{8,32}$")
E164_PATTERN = re.compile(r"^\+[1-9][0-9]{7,14}$")
# Mainland China mobile numbers: +86 followed by 1[3-9] and nine digits
CN_MOBILE_PATTERN = re.compile(r"^\+86(1[3-9][0-9]{9})$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_username(value: str) -> bool:
    return bool(USERNAME_PATTERN.fullmatch(value))


def is_valid_password(value: str) -> bool:
    return bool(PASSWORD_PATTERN.fullmatch(value))


def is_valid_phone(value: str) -> bool:
    if not E164_PATTERN.fullmatch(value):
        return False
    if value.startswith("+86"):
        return bool(CN_MOBILE_PATTERN.fullmatch(value))
    return True


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.fullmatch(value))


def validate_username(value: str) -> str:
    if not is_valid_username(value):
        raise ValidationError(
            "username must be 6-32 characters of letters, digits or _-.@#$%^&*",
            detail={"field": "identifier"},
        )
    return value


def validate_password(value: str) -> str:
    if not is_valid_password(value):
        raise ValidationError(
            "password must be 8-32 characters of letters, digits or _-.@#$%^&*",
            detail={"field": "credential"},
        )
    return value


def validate_phone(value: str) -> str:
    if not is_valid_phone(value):
        raise ValidationError(
            "phone number must be in E.164 format", detail={"field": "identifier"}
        )
    return value


def validate_email(value: str) -> str:
    if not is_valid_email(value):
        raise ValidationError("invalid email address", detail={"field": "identifier"})
    return value
