from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from partition_peek.broker import DEFAULT_CONSUMER_GROUP, ConnectionSettings
from partition_peek.common import ConfigError, parse_instant
from partition_peek.models import (
    MAX_SEQUENCE_NUMBER,
    CursorPosition,
    PollSettings,
    StopConditions,
)
from partition_peek.seek import resolve_initial_position


def _option_name(field: str) -> str:
    return "--" + field.replace("_", "-")


class PeekConfig(BaseModel):
    """Session configuration for ``peek``, validated once before any polling happens."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    connection_string: str | None = None
    bootstrap_servers: str | None = None
    topic: str | None = None
    consumer_group: str = DEFAULT_CONSUMER_GROUP
    partition_id: str = "0"

    seek_start_time: datetime | None = None
    seek_start_sequence_number: int | None = Field(default=None, ge=0, le=MAX_SEQUENCE_NUMBER)

    poll_max_wait_time_in_seconds: int = Field(default=10, ge=1, le=60)
    poll_max_messages: int = Field(default=2, ge=1, le=100)

    poll_stop_on_no_events_received: bool = True
    poll_stop_on_seek_end_time: datetime | None = None
    poll_stop_on_seek_end_sequence_number: int | None = Field(
        default=None, ge=0, le=MAX_SEQUENCE_NUMBER
    )
    poll_stop_on_user_confirmation_prompt: bool = True

    @field_validator("consumer_group", "partition_id")
    @classmethod
    def _not_blank(cls, value: str, info: ValidationInfo) -> str:
        if not value.strip():
            raise ValueError(f"{_option_name(info.field_name)} must not be blank")
        return value.strip()

    @field_validator("partition_id")
    @classmethod
    def _numeric_partition(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError(f"--partition-id must be a non-negative integer, got {value!r}")
        return value

    @field_validator("seek_start_time", "poll_stop_on_seek_end_time", mode="before")
    @classmethod
    def _instant(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, str):
            return parse_instant(value, option=_option_name(info.field_name))
        if isinstance(value, datetime):
            if value.tzinfo is None:
                raise ValueError(f"{_option_name(info.field_name)} must be timezone-aware")
            return value.astimezone(UTC)
        return value

    @model_validator(mode="after")
    def _validate_connection(self) -> PeekConfig:
        if self.connection_string is not None:
            if self.bootstrap_servers is not None:
                raise ValueError("use either --connection-string or --bootstrap-servers, not both")
            # raises ConfigError on a malformed string or a missing EntityPath
            ConnectionSettings.from_connection_string(
                self.connection_string, consumer_group=self.consumer_group
            )
            return self
        if not (self.bootstrap_servers or "").strip():
            raise ValueError("either --connection-string or --bootstrap-servers is required")
        if not (self.topic or "").strip():
            raise ValueError("--topic is required together with --bootstrap-servers")
        return self

    @classmethod
    def from_options(cls, **options: Any) -> PeekConfig:
        try:
            return cls(**options)
        except ValidationError as e:
            raise ConfigError(describe_validation_error(e)) from e

    def connection(self) -> ConnectionSettings:
        if self.connection_string is not None:
            return ConnectionSettings.from_connection_string(
                self.connection_string, consumer_group=self.consumer_group
            )
        return ConnectionSettings(
            bootstrap_servers=(self.bootstrap_servers or "").strip(),
            topic=(self.topic or "").strip(),
            consumer_group=self.consumer_group,
        )

    def poll_settings(self) -> PollSettings:
        return PollSettings(
            partition_id=self.partition_id,
            max_messages_per_poll=self.poll_max_messages,
            poll_timeout=timedelta(seconds=self.poll_max_wait_time_in_seconds),
        )

    def stop_conditions(self) -> StopConditions:
        return StopConditions(
            max_sequence_number=self.poll_stop_on_seek_end_sequence_number,
            max_enqueued_time=self.poll_stop_on_seek_end_time,
            stop_if_empty_batch=self.poll_stop_on_no_events_received,
            stop_on_user_decline=self.poll_stop_on_user_confirmation_prompt,
        )

    def start_position(self) -> CursorPosition:
        return resolve_initial_position(self.seek_start_sequence_number, self.seek_start_time)


def describe_validation_error(error: ValidationError) -> str:
    messages: list[str] = []
    for err in error.errors():
        msg = str(err.get("msg", "invalid value")).removeprefix("Value error, ")
        loc = err.get("loc") or ()
        if loc and isinstance(loc[0], str):
            name = _option_name(loc[0])
            if not msg.startswith(name):
                msg = f"{name}: {msg}"
        messages.append(msg)
    return "; ".join(messages)
