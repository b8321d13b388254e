from __future__ import annotations

import os
from datetime import UTC, datetime
from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    FETCH_FAILED = "FETCH_FAILED"


class StopReason(StrEnum):
    NO_EVENTS_RECEIVED = "no_events_received"
    END_SEQUENCE_NUMBER_REACHED = "end_sequence_number_reached"
    END_TIME_REACHED = "end_time_reached"
    USER_ABORTED = "user_aborted"


class ConfigError(ValueError):
    """Invalid session configuration, detected before polling starts."""

    code = ErrorCode.INVALID_ARGUMENT


def parse_instant(raw: str, *, option: str) -> datetime:
    """Parse an absolute ISO-8601 instant (``2024-05-01T12:00:00Z``) into an aware UTC datetime."""
    value = raw.strip()
    if not value:
        raise ConfigError(f"{option} must be an ISO-8601 instant, got blank value")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ConfigError(f"{option} must be an ISO-8601 instant, got {raw!r}") from e
    if parsed.tzinfo is None:
        raise ConfigError(f"{option} must include a UTC offset or 'Z', got {raw!r}")
    return parsed.astimezone(UTC)


def format_instant(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def env_int(name: str, *, default: int, min_value: int | None = None) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as e:
            raise ConfigError(f"{name} must be an int") from e
    if min_value is not None and value < min_value:
        raise ConfigError(f"{name} must be >= {min_value}")
    return value


def env_str(name: str, *, default: str) -> str:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value
