from __future__ import annotations

from datetime import datetime
from typing import Protocol

import click

from partition_peek.common import StopReason, format_instant
from partition_peek.models import CursorPosition, PollSettings


class EventSink(Protocol):
    def emit(self, sequence_number: int, enqueued_time: datetime, body: str) -> None: ...


class Confirm(Protocol):
    def ask_yes_no(self, prompt: str) -> bool: ...


def format_event(sequence_number: int, enqueued_time: datetime, body: str) -> str:
    """Format one event as ``<seq>/<enqueued time> => <body>``."""
    seq_styled = click.style(str(sequence_number), fg="cyan", bold=True)
    ts_styled = click.style(format_instant(enqueued_time), dim=True)
    return f"{seq_styled}/{ts_styled} => {body}"


def format_poll(settings: PollSettings, cursor: CursorPosition) -> str:
    seconds = int(settings.poll_timeout.total_seconds())
    return (
        f"=> poll max_messages: {settings.max_messages_per_poll}"
        f" from partition: {settings.partition_id}"
        f" from_position: {cursor}"
        f" timeout: {seconds}s ..."
    )


def qualified_name(*, consumer_group: str, endpoint: str, topic: str, partition_id: str) -> str:
    return f"{consumer_group}@{':'.join([endpoint, topic, partition_id])}"


def format_stop(reason: StopReason, *, detail: str) -> str:
    return f"stop polling. reason: {reason} ({detail})"


class ConsoleSink:
    def __init__(self, *, err: bool = False) -> None:
        self._err = err

    def emit(self, sequence_number: int, enqueued_time: datetime, body: str) -> None:
        click.echo(format_event(sequence_number, enqueued_time, body), err=self._err)
        click.echo(err=self._err)


class ClickConfirm:
    """Blocking yes/no prompt on the terminal; an empty answer means yes.

    End of input or Ctrl-C at the prompt counts as "no", so the session ends with a
    normal stop instead of click's abort exit.
    """

    def ask_yes_no(self, prompt: str) -> bool:
        try:
            return click.confirm(prompt, default=True)
        except click.Abort:
            click.echo()
            return False
