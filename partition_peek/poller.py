from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from partition_peek.common import ErrorCode, StopReason
from partition_peek.logging_config import get_logger
from partition_peek.models import (
    Batch,
    CursorPosition,
    FromSequenceNumber,
    PollSettings,
    StopConditions,
)

if TYPE_CHECKING:
    from partition_peek.broker import BrokerClient
    from partition_peek.render import Confirm, EventSink

CONTINUE_PROMPT = "Continue?"


class LoopState(StrEnum):
    SEEKING = "seeking"
    POLLING = "polling"
    DELIVERING = "delivering"
    EVALUATING_STOP = "evaluating_stop"
    TERMINATED = "terminated"
    FAILED = "failed"


class FetchError(RuntimeError):
    """A fetch against the broker failed; the loop is over and must not be retried."""

    code = ErrorCode.FETCH_FAILED

    def __init__(self, message: str, *, stage: str, cursor: CursorPosition) -> None:
        super().__init__(message)
        self.stage = stage
        self.cursor = cursor


@dataclass(frozen=True, slots=True)
class PeekResult:
    stop_reason: StopReason
    iterations: int
    delivered: int
    cursor: CursorPosition


def advance_cursor(cursor: CursorPosition, batch: Batch) -> CursorPosition:
    last = batch.last_event
    if last is None:
        return cursor
    return FromSequenceNumber(last.sequence_number, inclusive=False)


def evaluate_stop(
    batch: Batch,
    conditions: StopConditions,
    confirm: Confirm | None,
) -> StopReason | None:
    """Return the first stop condition that fires for ``batch``, in priority order.

    Bounds are checked against the last event of the raw batch, not the filtered one.
    The confirmation prompt is only reached when no other condition fired.
    """
    if batch.is_empty and conditions.stop_if_empty_batch:
        return StopReason.NO_EVENTS_RECEIVED

    last_seq = batch.last_sequence_number
    if (
        conditions.max_sequence_number is not None
        and last_seq is not None
        and last_seq >= conditions.max_sequence_number
    ):
        return StopReason.END_SEQUENCE_NUMBER_REACHED

    last_time = batch.last_enqueued_time
    if (
        conditions.max_enqueued_time is not None
        and last_time is not None
        and last_time >= conditions.max_enqueued_time
    ):
        return StopReason.END_TIME_REACHED

    if conditions.stop_on_user_decline:
        if confirm is None:
            raise ValueError("stop_on_user_decline requires a confirmation prompt")
        if not confirm.ask_yes_no(CONTINUE_PROMPT):
            return StopReason.USER_ABORTED

    return None


class PollLoop:
    def __init__(
        self,
        *,
        client: BrokerClient,
        settings: PollSettings,
        stop_conditions: StopConditions,
        sink: EventSink,
        start: CursorPosition,
        confirm: Confirm | None = None,
        on_poll: Callable[[PollSettings, CursorPosition], None] | None = None,
    ) -> None:
        if stop_conditions.stop_on_user_decline and confirm is None:
            raise ValueError("stop_on_user_decline requires a confirmation prompt")
        self._client = client
        self._settings = settings
        self._conditions = stop_conditions
        self._sink = sink
        self._confirm = confirm
        self._on_poll = on_poll
        self._log = get_logger(__name__, partition=settings.partition_id)

        self.cursor: CursorPosition = start
        self.state = LoopState.SEEKING
        self.iterations = 0
        self.delivered = 0

    def run(self) -> PeekResult:
        if self.state in (LoopState.TERMINATED, LoopState.FAILED):
            raise RuntimeError(f"poll loop already {self.state}")

        while True:
            batch = self._fetch()
            self.iterations += 1
            self.cursor = advance_cursor(self.cursor, batch)

            self.state = LoopState.DELIVERING
            self._deliver(batch)

            self.state = LoopState.EVALUATING_STOP
            reason = evaluate_stop(batch, self._conditions, self._confirm)
            if reason is not None:
                self.state = LoopState.TERMINATED
                self._log.info(
                    "stop polling: stop_reason=%s iterations=%d delivered=%d",
                    reason,
                    self.iterations,
                    self.delivered,
                )
                return PeekResult(
                    stop_reason=reason,
                    iterations=self.iterations,
                    delivered=self.delivered,
                    cursor=self.cursor,
                )

    def _fetch(self) -> Batch:
        self.state = LoopState.POLLING
        settings = self._settings
        if self._on_poll is not None:
            self._on_poll(settings, self.cursor)
        self._log.debug(
            "poll max_messages=%d from=%s timeout=%s",
            settings.max_messages_per_poll,
            self.cursor,
            settings.poll_timeout,
        )
        try:
            batch = self._client.fetch_batch(
                settings.partition_id,
                settings.max_messages_per_poll,
                self.cursor,
                settings.poll_timeout,
            )
        except Exception as e:
            self.state = LoopState.FAILED
            self._log.error("fetch failed: stage=fetch from=%s error=%s", self.cursor, e)
            raise FetchError(
                f"fetch from partition {settings.partition_id} at {self.cursor} failed: {e}",
                stage="fetch",
                cursor=self.cursor,
            ) from e
        self._log.debug("received %d event(s)", len(batch))
        return batch

    def _deliver(self, batch: Batch) -> None:
        for event in batch.events:
            if not self._conditions.in_range(event):
                continue
            self._sink.emit(event.sequence_number, event.enqueued_time, event.body_text)
            self.delivered += 1
