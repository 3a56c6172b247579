"""
Input validation for values sent to the vendor API.

Every validator returns the normalised value or raises ``ValidationError``
naming the offending field. Validation errors are never retried.
"""

import math
import re
from typing import Any, Literal, TypeVar

from switchlink.services.errors import ValidationError

T = TypeVar("T")

PowerState = Literal["ON", "OFF"]

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEVICE_ID_REGEX = re.compile(r"^[a-zA-Z0-9-]+$")
SERIAL_REGEX = re.compile(r"^[A-Za-z0-9]+$")


def _non_empty_string(value: Any, field: str) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError(field, "must be a non-empty string")
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(field, "cannot be empty")
    return trimmed


def validate_email(email: Any) -> str:
    trimmed = _non_empty_string(email, "email")
    if len(trimmed) > 254:
        raise ValidationError("email", "exceeds maximum length of 254 characters")
    if not EMAIL_REGEX.match(trimmed):
        raise ValidationError("email", "invalid format")
    return trimmed.lower()


def validate_password(password: Any) -> str:
    if not password or not isinstance(password, str):
        raise ValidationError("password", "must be a non-empty string")
    if len(password) > 128:
        raise ValidationError("password", "exceeds maximum length of 128 characters")
    return password


def validate_device_id(device_id: Any, field: str = "deviceId") -> str:
    """Accepts strings or integers; the API hands out numeric ids."""
    if isinstance(device_id, int) and not isinstance(device_id, bool):
        return str(device_id)

    if not device_id or not isinstance(device_id, str):
        raise ValidationError(field, "must be a non-empty string or number")

    trimmed = device_id.strip()
    if not trimmed:
        raise ValidationError(field, "cannot be empty")
    if not DEVICE_ID_REGEX.match(trimmed):
        raise ValidationError(field, "contains invalid characters", device_id)
    return trimmed


def validate_serial(serial: Any) -> str:
    trimmed = _non_empty_string(serial, "serial")
    if not SERIAL_REGEX.match(trimmed):
        raise ValidationError("serial", "contains invalid characters", serial)
    return trimmed


def validate_token(token: Any) -> str:
    return _non_empty_string(token, "token")


def validate_power_state(power: Any) -> PowerState:
    if power not in ("ON", "OFF"):
        raise ValidationError("power", "must be 'ON' or 'OFF'", power)
    return power


def validate_brightness(brightness: Any) -> int:
    """Brightness percentage, rounded to an integer in 0..100."""
    if isinstance(brightness, bool) or not isinstance(brightness, (int, float)):
        raise ValidationError("brightness", "must be a number", brightness)
    if not math.isfinite(brightness):
        raise ValidationError("brightness", "must be a finite number", brightness)
    if brightness < 0 or brightness > 100:
        raise ValidationError("brightness", "must be between 0 and 100", brightness)
    return round(brightness)


def assert_defined(value: T | None, name: str) -> T:
    if value is None:
        raise ValidationError(name, "is required but was not provided")
    return value
