"""Identifier and timestamp helpers."""

import time
import uuid

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def to_base36(value: int) -> str:
    """
    Encode a non-negative integer in base 36.

    Args:
        value: Integer to encode

    Returns:
        Lowercase base-36 string
    """
    if value < 0:
        raise ValueError(f"Cannot base36-encode negative value: {value}")
    if value == 0:
        return "0"

    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def _short_uuid(length: int) -> str:
    return uuid.uuid4().hex[:length]


def generate_checkpoint_id(prefix: str) -> str:
    """
    Generate a unique checkpoint ID.

    Format: {prefix}_{base36 millis}_{6 hex chars}

    Args:
        prefix: Checkpoint type value

    Returns:
        Checkpoint ID string
    """
    return f"{prefix}_{to_base36(now_ms())}_{_short_uuid(6)}"


def generate_session_id() -> str:
    """Generate a session ID: session_{base36 millis}_{8 hex chars}."""
    return f"session_{to_base36(now_ms())}_{_short_uuid(8)}"


def generate_recovery_id() -> str:
    """Generate a recovery attempt ID: recovery_{base36 millis}_{4 hex chars}."""
    return f"recovery_{to_base36(now_ms())}_{_short_uuid(4)}"
