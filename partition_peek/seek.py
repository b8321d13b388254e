from __future__ import annotations

from datetime import UTC, datetime

from partition_peek.common import ConfigError, parse_instant
from partition_peek.models import (
    MAX_SEQUENCE_NUMBER,
    CursorPosition,
    FromEnqueuedTime,
    FromSequenceNumber,
    Latest,
)


class SeekValidationError(ConfigError):
    pass


def resolve_initial_position(
    sequence_number: int | None = None,
    timestamp: datetime | str | None = None,
) -> CursorPosition:
    """Resolve where the first fetch starts.

    An explicit sequence number wins over a timestamp when both are given; the two are
    never combined. Without either, reading begins after the newest event.
    """
    if sequence_number is not None:
        if sequence_number < 0:
            raise SeekValidationError(
                f"--seek-start-sequence-number must be >= 0, got {sequence_number}"
            )
        if sequence_number > MAX_SEQUENCE_NUMBER:
            raise SeekValidationError(
                f"--seek-start-sequence-number must be <= {MAX_SEQUENCE_NUMBER}, got {sequence_number}"
            )
        return FromSequenceNumber(sequence_number, inclusive=True)

    if timestamp is not None:
        if isinstance(timestamp, str):
            try:
                instant = parse_instant(timestamp, option="--seek-start-time")
            except ConfigError as e:
                raise SeekValidationError(str(e)) from e
        else:
            if timestamp.tzinfo is None:
                raise SeekValidationError("--seek-start-time must be timezone-aware")
            instant = timestamp.astimezone(UTC)
        return FromEnqueuedTime(instant)

    return Latest()
