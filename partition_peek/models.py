from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from partition_peek.common import format_instant

LATEST_SEQUENCE_NUMBER = -1
MAX_SEQUENCE_NUMBER = 2**63 - 1


@dataclass(frozen=True, slots=True)
class FromSequenceNumber:
    sequence_number: int
    inclusive: bool

    def __str__(self) -> str:
        op = ">=" if self.inclusive else ">"
        return f"sequence_number {op} {self.sequence_number}"


@dataclass(frozen=True, slots=True)
class FromEnqueuedTime:
    enqueued_time: datetime

    def __str__(self) -> str:
        return f"enqueued_time >= {format_instant(self.enqueued_time)}"


@dataclass(frozen=True, slots=True)
class Latest:
    sequence_number: int = LATEST_SEQUENCE_NUMBER

    def __str__(self) -> str:
        return "latest"


CursorPosition = FromSequenceNumber | FromEnqueuedTime | Latest


@dataclass(frozen=True, slots=True)
class Event:
    sequence_number: int
    enqueued_time: datetime
    body: bytes

    @property
    def body_text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class Batch:
    events: tuple[Event, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.events

    @property
    def last_event(self) -> Event | None:
        return self.events[-1] if self.events else None

    @property
    def last_sequence_number(self) -> int | None:
        last = self.last_event
        return None if last is None else last.sequence_number

    @property
    def last_enqueued_time(self) -> datetime | None:
        last = self.last_event
        return None if last is None else last.enqueued_time

    def __len__(self) -> int:
        return len(self.events)


@dataclass(frozen=True, slots=True)
class StopConditions:
    max_sequence_number: int | None = None
    max_enqueued_time: datetime | None = None
    stop_if_empty_batch: bool = True
    stop_on_user_decline: bool = True

    def in_range(self, event: Event) -> bool:
        """Whether ``event`` lies within the configured upper bounds (inclusive)."""
        if self.max_enqueued_time is not None and event.enqueued_time > self.max_enqueued_time:
            return False
        if self.max_sequence_number is not None and event.sequence_number > self.max_sequence_number:
            return False
        return True


@dataclass(frozen=True, slots=True)
class PollSettings:
    partition_id: str = "0"
    max_messages_per_poll: int = 2
    poll_timeout: timedelta = timedelta(seconds=10)
