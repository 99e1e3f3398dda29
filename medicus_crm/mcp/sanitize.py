"""Shared sanitization utilities for MCP layer.

These functions provide input validation and sanitization
for all MCP tools to ensure consistent security handling.
Every helper raises ValueError on rejection.
"""

import math
import re
import uuid
from typing import Any, Dict, List, Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MAX_UPDATE_KEYS = 50


def sanitize_string(
    value: Any, field_name: str, max_length: int = 1000, required: bool = True
) -> str:
    """Sanitize and validate string inputs.

    Args:
        value: The value to sanitize.
        field_name: Name of the field for error messages.
        max_length: Maximum allowed string length.
        required: If True, empty strings are rejected.

    Returns:
        Sanitized string ("" for an omitted optional value).

    Raises:
        ValueError: If validation fails.
    """
    if value is None and not required:
        return ""

    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {type(value).__name__}")

    if len(value) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} characters, got {len(value)})")

    # Remove null bytes and control characters except newlines and tabs
    sanitized = _CONTROL_CHARS.sub("", value)

    if required and not sanitized.strip():
        raise ValueError(f"{field_name} cannot be empty")

    return sanitized


def optional_string(value: Any, field_name: str, max_length: int = 1000) -> Optional[str]:
    """Like sanitize_string, but an omitted or empty value becomes None."""
    return sanitize_string(value, field_name, max_length, required=False) or None


def validate_uuid(value: Any, field_name: str, required: bool = True) -> Optional[str]:
    """Validate an identifier in UUID format and return its canonical form."""
    if value is None:
        if required:
            raise ValueError(f"{field_name} is required")
        return None

    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {type(value).__name__}")

    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise ValueError(f"{field_name} must be a valid UUID, got '{value[:64]}'") from None


def validate_email(value: Any, field_name: str = "email") -> Optional[str]:
    """Validate an optional email address."""
    email = optional_string(value, field_name, 320)
    if email is None:
        return None
    email = email.strip()
    if not _EMAIL.match(email):
        raise ValueError(f"{field_name} must be a valid email address")
    return email


def validate_enum(
    value: Any,
    field_name: str,
    valid_values: List[str],
    default: Optional[str] = None,
    required: bool = False,
) -> str:
    """Validate enum values.

    Args:
        value: The value to validate
        field_name: Name of the field for error messages
        valid_values: List of valid enum values
        default: Default value if value is None
        required: If True, value must be provided (no default)

    Returns:
        Validated enum value

    Raises:
        ValueError: If validation fails
    """
    if value is None:
        if required:
            raise ValueError(f"{field_name} is required")
        if default is not None:
            return default
        raise ValueError(f"{field_name} is required")

    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")

    if value not in valid_values:
        raise ValueError(f"{field_name} must be one of {valid_values}, got '{value}'")

    return value


def validate_number(
    value: Any,
    field_name: str,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
    default: Optional[float] = None,
) -> float:
    """Validate numeric values.

    Args:
        value: The value to validate
        field_name: Name of the field for error messages
        min_val: Minimum allowed value
        max_val: Maximum allowed value
        default: Default value if value is None

    Returns:
        Validated number

    Raises:
        ValueError: If validation fails
    """
    if value is None:
        if default is not None:
            return default
        raise ValueError(f"{field_name} is required")

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number, got {type(value).__name__}")

    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        raise ValueError(f"{field_name} must be a finite number, got {value}")

    if min_val is not None and value < min_val:
        raise ValueError(f"{field_name} must be >= {min_val}, got {value}")

    if max_val is not None and value > max_val:
        raise ValueError(f"{field_name} must be <= {max_val}, got {value}")

    return float(value)


def optional_number(value: Any, field_name: str) -> Optional[float]:
    if value is None:
        return None
    validate_number(value, field_name)
    return value


def validate_limit(value: Any, default: int, max_val: int = 100) -> int:
    """Validate a result-count limit in ``[1, max_val]``."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if value is not None and not isinstance(value, int):
        raise ValueError(f"limit must be an integer, got {type(value).__name__}")
    return int(validate_number(value, "limit", 1, max_val, default))


def validate_boolean(value: Any, field_name: str, default: bool = False) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"{field_name} must be a boolean, got {type(value).__name__}")
    return value


def validate_updates(value: Any, field_name: str = "updates") -> Dict[str, Any]:
    """Validate a free-form update mapping (contents are filtered later)."""
    if not isinstance(value, dict):
        raise ValueError(f"{field_name} must be an object, got {type(value).__name__}")
    if len(value) > MAX_UPDATE_KEYS:
        raise ValueError(f"{field_name} has too many keys (max {MAX_UPDATE_KEYS})")
    for key in value:
        if not isinstance(key, str):
            raise ValueError(f"{field_name} keys must be strings")
    return dict(value)
