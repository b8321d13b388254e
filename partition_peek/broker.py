from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from confluent_kafka import (
    OFFSET_END,
    TIMESTAMP_NOT_AVAILABLE,
    Consumer,
    KafkaError,
    KafkaException,
    TopicPartition,
)

from partition_peek.common import ConfigError, ErrorCode, env_int
from partition_peek.models import (
    Batch,
    CursorPosition,
    Event,
    FromEnqueuedTime,
    FromSequenceNumber,
    Latest,
)

EVENT_HUBS_KAFKA_PORT = 9093
DEFAULT_CONSUMER_GROUP = "$Default"


class BrokerConnectionError(RuntimeError):
    code = ErrorCode.CONNECTION_FAILED


class BrokerClient(Protocol):
    def fetch_batch(
        self,
        partition_id: str,
        max_messages: int,
        from_position: CursorPosition,
        timeout: timedelta,
    ) -> Batch: ...

    def partition_ids(self) -> list[str]: ...


@dataclass(frozen=True, slots=True)
class ConnectionSettings:
    bootstrap_servers: str
    topic: str
    consumer_group: str = DEFAULT_CONSUMER_GROUP
    sasl_username: str | None = None
    sasl_password: str | None = None

    @property
    def endpoint(self) -> str:
        return self.bootstrap_servers.split(",")[0]

    @classmethod
    def from_connection_string(
        cls, connection_string: str, *, consumer_group: str = DEFAULT_CONSUMER_GROUP
    ) -> ConnectionSettings:
        """Build settings from an Event Hubs connection string, via its Kafka endpoint.

        ``Endpoint=sb://<ns>.servicebus.windows.net/;SharedAccessKeyName=..;SharedAccessKey=..;EntityPath=<topic>``
        """
        props = parse_connection_string(connection_string)
        endpoint = props.get("endpoint", "")
        if not endpoint:
            raise ConfigError("--connection-string must contain 'Endpoint'")
        entity_path = props.get("entitypath", "")
        if not entity_path.strip():
            raise ConfigError("--connection-string must contain 'EntityPath'")

        host = endpoint.split("://", 1)[-1].strip("/")
        return cls(
            bootstrap_servers=f"{host}:{EVENT_HUBS_KAFKA_PORT}",
            topic=entity_path,
            consumer_group=consumer_group,
            sasl_username="$ConnectionString",
            sasl_password=connection_string.strip(),
        )

    def consumer_config(self) -> dict[str, Any]:
        cfg: dict[str, Any] = {
            "bootstrap.servers": self.bootstrap_servers,
            "group.id": self.consumer_group,
            "enable.auto.commit": False,
            "enable.auto.offset.store": False,
            "auto.offset.reset": "earliest",
        }
        if self.sasl_username is not None:
            cfg.update(
                {
                    "security.protocol": "SASL_SSL",
                    "sasl.mechanisms": "PLAIN",
                    "sasl.username": self.sasl_username,
                    "sasl.password": self.sasl_password,
                }
            )
        return cfg


def parse_connection_string(connection_string: str) -> dict[str, str]:
    if not connection_string.strip():
        raise ConfigError("--connection-string must not be blank")
    props: dict[str, str] = {}
    for part in connection_string.strip().split(";"):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ConfigError(f"--connection-string has a malformed segment: {key.strip()!r}")
        props[key.strip().lower()] = value.strip()
    return props


def _to_event(msg: Any) -> Event:
    ts_type, ts_ms = msg.timestamp()
    if ts_type == TIMESTAMP_NOT_AVAILABLE:
        ts_ms = 0
    return Event(
        sequence_number=msg.offset(),
        enqueued_time=datetime.fromtimestamp(ts_ms / 1000, UTC),
        body=msg.value() or b"",
    )


class KafkaPartitionClient:
    """Reads bounded batches from one Kafka partition, reusing a single consumer."""

    def __init__(self, consumer: Consumer, *, topic: str, metadata_timeout: float = 10.0) -> None:
        self._consumer = consumer
        self._topic = topic
        self._metadata_timeout = metadata_timeout
        # (partition, position) the consumer will continue from without a new assignment
        self._expected: tuple[int, CursorPosition] | None = None

    @property
    def topic(self) -> str:
        return self._topic

    def partition_ids(self) -> list[str]:
        try:
            md = self._consumer.list_topics(self._topic, timeout=self._metadata_timeout)
        except KafkaException as e:
            raise BrokerConnectionError(f"cannot read metadata for topic {self._topic}: {e}") from e
        topic_md = md.topics.get(self._topic)
        if topic_md is None:
            raise BrokerConnectionError(f"topic not found: {self._topic}")
        if topic_md.error is not None:
            raise BrokerConnectionError(f"topic {self._topic} is unavailable: {topic_md.error}")
        return [str(p) for p in sorted(topic_md.partitions)]

    def fetch_batch(
        self,
        partition_id: str,
        max_messages: int,
        from_position: CursorPosition,
        timeout: timedelta,
    ) -> Batch:
        partition = int(partition_id)
        seconds = timeout.total_seconds()
        if self._expected != (partition, from_position):
            offset = self.resolve_offset(partition, from_position, timeout=seconds)
            self._consumer.assign([TopicPartition(self._topic, partition, offset)])

        events: list[Event] = []
        for msg in self._consumer.consume(num_messages=max_messages, timeout=seconds):
            err = msg.error()
            if err is not None:
                if err.code() == KafkaError._PARTITION_EOF:
                    continue
                raise KafkaException(err)
            events.append(_to_event(msg))

        if events:
            self._expected = (partition, FromSequenceNumber(events[-1].sequence_number, inclusive=False))
        else:
            self._expected = (partition, from_position)
        return Batch(tuple(events))

    def resolve_offset(self, partition: int, position: CursorPosition, *, timeout: float) -> int:
        if isinstance(position, FromSequenceNumber):
            n = position.sequence_number if position.inclusive else position.sequence_number + 1
            # past the high watermark: wait for new events instead of letting
            # auto.offset.reset rewind to the start of the log
            low, high = self._consumer.get_watermark_offsets(
                TopicPartition(self._topic, partition), timeout=timeout
            )
            return min(max(n, low), high)
        if isinstance(position, FromEnqueuedTime):
            ts_ms = int(position.enqueued_time.timestamp() * 1000)
            query = TopicPartition(self._topic, partition, ts_ms)
            (found,) = self._consumer.offsets_for_times([query], timeout=timeout)
            if found.error is not None:
                raise KafkaException(found.error)
            # no record at or after the instant: wait for new ones
            return found.offset if found.offset >= 0 else OFFSET_END
        if isinstance(position, Latest):
            return OFFSET_END
        raise TypeError(f"unsupported cursor position: {position!r}")

    def close(self) -> None:
        self._consumer.close()


@contextmanager
def open_broker(connection: ConnectionSettings) -> Iterator[KafkaPartitionClient]:
    """Hold one consumer for the whole session and close it on every exit path."""
    metadata_timeout = env_int("PARTITION_PEEK_METADATA_TIMEOUT_SECONDS", default=10, min_value=1)
    try:
        consumer = Consumer(connection.consumer_config())
    except KafkaException as e:
        raise BrokerConnectionError(f"cannot create consumer for {connection.endpoint}: {e}") from e
    client = KafkaPartitionClient(consumer, topic=connection.topic, metadata_timeout=metadata_timeout)
    try:
        yield client
    finally:
        client.close()
