from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from partition_peek.broker import ConnectionSettings
from partition_peek.models import Batch, CursorPosition, Event

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)


def ev(seq: int, *, at: datetime | None = None, body: str | None = None) -> Event:
    return Event(
        sequence_number=seq,
        enqueued_time=at if at is not None else T0 + timedelta(seconds=seq),
        body=(body if body is not None else f"event-{seq}").encode("utf-8"),
    )


def batch(*events: Event) -> Batch:
    return Batch(tuple(events))


class FakeBroker:
    """Replays scripted batches (or raises scripted errors) and records every fetch."""

    def __init__(self, batches: list[Batch | Exception], *, partitions: list[str] | None = None) -> None:
        self._batches = list(batches)
        self.partitions = partitions if partitions is not None else ["0", "1"]
        self.calls: list[tuple[str, int, CursorPosition, timedelta]] = []
        self.closed = False

    def fetch_batch(
        self,
        partition_id: str,
        max_messages: int,
        from_position: CursorPosition,
        timeout: timedelta,
    ) -> Batch:
        self.calls.append((partition_id, max_messages, from_position, timeout))
        if not self._batches:
            raise AssertionError("unexpected fetch: no batches left")
        nxt = self._batches.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    def partition_ids(self) -> list[str]:
        return list(self.partitions)


class ScriptedConfirm:
    def __init__(self, answers: list[bool]) -> None:
        self._answers = list(answers)
        self.prompts: list[str] = []

    def ask_yes_no(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self._answers.pop(0)


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[int, datetime, str]] = []

    @property
    def sequence_numbers(self) -> list[int]:
        return [seq for seq, _, _ in self.events]

    def emit(self, sequence_number: int, enqueued_time: datetime, body: str) -> None:
        self.events.append((sequence_number, enqueued_time, body))


class FakeOpener:
    """Stands in for ``open_broker``; remembers the settings and whether the client was released."""

    def __init__(self, broker: FakeBroker) -> None:
        self.broker = broker
        self.connections: list[ConnectionSettings] = []

    @contextmanager
    def __call__(self, connection: ConnectionSettings) -> Iterator[FakeBroker]:
        self.connections.append(connection)
        try:
            yield self.broker
        finally:
            self.broker.closed = True


@pytest.fixture
def no_connection_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PARTITION_PEEK_CONNECTION_STRING", raising=False)


def cli_obj(broker: FakeBroker) -> dict[str, Any]:
    return {"open_broker": FakeOpener(broker)}
