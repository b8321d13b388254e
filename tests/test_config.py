from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from partition_peek.common import ConfigError, env_int, parse_instant
from partition_peek.config import PeekConfig
from partition_peek.models import FromEnqueuedTime, FromSequenceNumber, Latest

KAFKA = {"bootstrap_servers": "localhost:9092", "topic": "orders"}


def test_defaults() -> None:
    config = PeekConfig.from_options(**KAFKA)
    settings = config.poll_settings()
    assert settings.partition_id == "0"
    assert settings.max_messages_per_poll == 2
    assert settings.poll_timeout == timedelta(seconds=10)

    stop = config.stop_conditions()
    assert stop.stop_if_empty_batch is True
    assert stop.stop_on_user_decline is True
    assert stop.max_sequence_number is None
    assert stop.max_enqueued_time is None
    assert config.start_position() == Latest()


@pytest.mark.parametrize(
    ("field", "value", "option"),
    [
        ("poll_max_messages", 0, "--poll-max-messages"),
        ("poll_max_messages", 101, "--poll-max-messages"),
        ("poll_max_wait_time_in_seconds", 0, "--poll-max-wait-time-in-seconds"),
        ("poll_max_wait_time_in_seconds", 61, "--poll-max-wait-time-in-seconds"),
        ("seek_start_sequence_number", -1, "--seek-start-sequence-number"),
        ("poll_stop_on_seek_end_sequence_number", -5, "--poll-stop-on-seek-end-sequence-number"),
        ("seek_start_sequence_number", 2**63, "--seek-start-sequence-number"),
        ("poll_stop_on_seek_end_sequence_number", 2**63, "--poll-stop-on-seek-end-sequence-number"),
        ("consumer_group", "   ", "--consumer-group"),
        ("partition_id", "", "--partition-id"),
        ("partition_id", "abc", "--partition-id"),
        ("seek_start_time", "not-a-time", "--seek-start-time"),
        ("poll_stop_on_seek_end_time", "2024-01-01T00:00:00", "--poll-stop-on-seek-end-time"),
    ],
)
def test_invalid_values_name_the_option(field: str, value: object, option: str) -> None:
    with pytest.raises(ConfigError) as info:
        PeekConfig.from_options(**KAFKA, **{field: value})
    assert option in str(info.value)


def test_connection_source_required() -> None:
    with pytest.raises(ConfigError, match="--connection-string or --bootstrap-servers"):
        PeekConfig.from_options()
    with pytest.raises(ConfigError, match="--topic"):
        PeekConfig.from_options(bootstrap_servers="localhost:9092")


def test_connection_string_needs_entity_path() -> None:
    with pytest.raises(ConfigError, match="EntityPath"):
        PeekConfig.from_options(
            connection_string="Endpoint=sb://ns.servicebus.windows.net/;SharedAccessKeyName=a;SharedAccessKey=b"
        )


def test_connection_string_and_bootstrap_are_exclusive() -> None:
    with pytest.raises(ConfigError, match="not both"):
        PeekConfig.from_options(
            connection_string="Endpoint=sb://ns.servicebus.windows.net/;EntityPath=t",
            bootstrap_servers="localhost:9092",
        )


def test_full_mapping() -> None:
    config = PeekConfig.from_options(
        connection_string="Endpoint=sb://ns.servicebus.windows.net/;SharedAccessKeyName=a;SharedAccessKey=b;EntityPath=t",
        consumer_group="peek",
        partition_id=" 4 ",
        seek_start_time="2024-05-01T12:00:00Z",
        poll_max_messages=100,
        poll_max_wait_time_in_seconds=60,
        poll_stop_on_no_events_received=False,
        poll_stop_on_seek_end_time="2024-05-02T00:00:00+02:00",
        poll_stop_on_seek_end_sequence_number=0,
        poll_stop_on_user_confirmation_prompt=False,
    )
    conn = config.connection()
    assert conn.topic == "t"
    assert conn.consumer_group == "peek"
    assert config.poll_settings().partition_id == "4"

    stop = config.stop_conditions()
    assert stop.max_sequence_number == 0
    assert stop.max_enqueued_time == datetime(2024, 5, 1, 22, 0, tzinfo=UTC)
    assert stop.stop_if_empty_batch is False
    assert stop.stop_on_user_decline is False
    assert config.start_position() == FromEnqueuedTime(datetime(2024, 5, 1, 12, 0, tzinfo=UTC))


def test_sequence_number_wins_over_time_in_config() -> None:
    config = PeekConfig.from_options(
        **KAFKA, seek_start_time="2024-05-01T12:00:00Z", seek_start_sequence_number=3
    )
    assert config.start_position() == FromSequenceNumber(3, inclusive=True)


def test_parse_instant_normalizes_to_utc() -> None:
    assert parse_instant("2024-05-01T14:00:00+02:00", option="--x") == datetime(2024, 5, 1, 12, tzinfo=UTC)


def test_env_int(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PARTITION_PEEK_TEST_INT", "7")
    assert env_int("PARTITION_PEEK_TEST_INT", default=1, min_value=1) == 7
    monkeypatch.setenv("PARTITION_PEEK_TEST_INT", "x")
    with pytest.raises(ConfigError, match="must be an int"):
        env_int("PARTITION_PEEK_TEST_INT", default=1)
    monkeypatch.setenv("PARTITION_PEEK_TEST_INT", "0")
    with pytest.raises(ConfigError, match=">= 1"):
        env_int("PARTITION_PEEK_TEST_INT", default=1, min_value=1)
