from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import click

from partition_peek.broker import (
    DEFAULT_CONSUMER_GROUP,
    BrokerConnectionError,
    ConnectionSettings,
    open_broker,
)
from partition_peek.common import ConfigError, ErrorCode, StopReason, format_instant
from partition_peek.config import PeekConfig
from partition_peek.logging_config import get_logger, setup_logging
from partition_peek.models import CursorPosition, PollSettings
from partition_peek.poller import FetchError, PeekResult, PollLoop
from partition_peek.render import (
    ClickConfirm,
    ConsoleSink,
    format_poll,
    format_stop,
    qualified_name,
)

CONNECTION_STRING_ENVVAR = "PARTITION_PEEK_CONNECTION_STRING"

log = get_logger(__name__)


class BrokerFailure(click.ClickException):
    """Transport failure after startup; exits with a code distinct from config errors."""

    exit_code = 3

    def __init__(self, message: str, *, code: ErrorCode) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Diagnostics level on stderr (defaults to $PARTITION_PEEK_LOG_LEVEL or WARNING).",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Inspect a single partition of an event stream."""
    ctx.ensure_object(dict)
    setup_logging(level=log_level)


def _opener(ctx: click.Context) -> Callable[[ConnectionSettings], Any]:
    if ctx.obj and ctx.obj.get("open_broker") is not None:
        return ctx.obj["open_broker"]
    return open_broker


def connection_options(f: Callable[..., Any]) -> Callable[..., Any]:
    f = click.option(
        "--consumer-group",
        default=DEFAULT_CONSUMER_GROUP,
        show_default=True,
        help="Consumer group to read as. Offsets are never committed.",
    )(f)
    f = click.option("--topic", default=None, help="Topic name (with --bootstrap-servers).")(f)
    f = click.option(
        "--bootstrap-servers",
        default=None,
        help="Kafka bootstrap servers, e.g. localhost:9092.",
    )(f)
    f = click.option(
        "--connection-string",
        envvar=CONNECTION_STRING_ENVVAR,
        default=None,
        help=(
            "Event Hubs connection string incl. EntityPath, e.g. "
            "Endpoint=sb://<ns>.servicebus.windows.net/;SharedAccessKeyName=<name>;"
            "SharedAccessKey=<key>;EntityPath=<topic>"
        ),
    )(f)
    return f


def _broker_failure(e: Exception) -> BrokerFailure:
    if isinstance(e, FetchError):
        return BrokerFailure(f"stage={e.stage} from={e.cursor}: {e}", code=e.code)
    return BrokerFailure(f"stage=connect: {e}", code=ErrorCode.CONNECTION_FAILED)


@cli.command("partitions")
@connection_options
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of text.")
@click.pass_context
def partitions(
    ctx: click.Context,
    *,
    connection_string: str | None,
    bootstrap_servers: str | None,
    topic: str | None,
    consumer_group: str,
    as_json: bool,
) -> None:
    """List the partition ids of a topic."""
    try:
        config = PeekConfig.from_options(
            connection_string=connection_string,
            bootstrap_servers=bootstrap_servers,
            topic=topic,
            consumer_group=consumer_group,
        )
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    connection = config.connection()
    try:
        with _opener(ctx)(connection) as client:
            ids = client.partition_ids()
    except BrokerConnectionError as e:
        raise _broker_failure(e) from e
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(
            json.dumps(
                {"endpoint": connection.endpoint, "topic": connection.topic, "partition_ids": ids},
                ensure_ascii=True,
                sort_keys=True,
                indent=2,
            )
        )
        return

    click.echo(f"{connection.endpoint}:{connection.topic} partitions: {len(ids)}")
    for pid in ids:
        click.echo(f"- {pid}")


def _stop_detail(reason: StopReason, config: PeekConfig) -> str:
    if reason is StopReason.NO_EVENTS_RECEIVED:
        return f"--poll-stop-on-no-events-received: {config.poll_stop_on_no_events_received}"
    if reason is StopReason.END_SEQUENCE_NUMBER_REACHED:
        return f"--poll-stop-on-seek-end-sequence-number: {config.poll_stop_on_seek_end_sequence_number}"
    if reason is StopReason.END_TIME_REACHED:
        end = config.poll_stop_on_seek_end_time
        return f"--poll-stop-on-seek-end-time: {format_instant(end) if end else None}"
    return (
        "--poll-stop-on-user-confirmation-prompt: "
        f"{config.poll_stop_on_user_confirmation_prompt}"
    )


@cli.command("peek")
@connection_options
@click.option(
    "--partition-id",
    "--partitionId",
    "partition_id",
    default="0",
    show_default=True,
    help="Partition to read.",
)
@click.option(
    "--seek-start-time",
    default=None,
    help="Start at the first event enqueued at or after this instant, e.g. 2024-05-01T12:00:00Z.",
)
@click.option(
    "--seek-start-sequence-number",
    type=int,
    default=None,
    help="Start at this sequence number, inclusive (aka kafka 'start-offset'). Wins over --seek-start-time.",
)
@click.option("--poll-max-wait-time-in-seconds", type=int, default=10, show_default=True)
@click.option("--poll-max-messages", type=int, default=2, show_default=True)
@click.option("--poll-stop-on-no-events-received", type=click.BOOL, default=True, show_default=True)
@click.option(
    "--poll-stop-on-seek-end-time",
    default=None,
    help="Stop once an event enqueued at or after this instant is read; later events are not shown.",
)
@click.option(
    "--poll-stop-on-seek-end-sequence-number",
    type=int,
    default=None,
    help="Stop once this sequence number is read (aka kafka 'end-offset'); later events are not shown.",
)
@click.option(
    "--poll-stop-on-user-confirmation-prompt",
    type=click.BOOL,
    default=True,
    show_default=True,
    help="Ask 'Continue?' after every batch.",
)
@click.pass_context
def peek(ctx: click.Context, **options: Any) -> None:
    """Poll events from one partition, batch by batch, until a stop condition fires.

    Examples:

        partition-peek peek --bootstrap-servers localhost:9092 --topic orders
        partition-peek peek --topic orders --bootstrap-servers localhost:9092 --seek-start-sequence-number 100
        partition-peek peek --seek-start-time 2024-05-01T12:00:00Z --poll-stop-on-user-confirmation-prompt false
    """
    try:
        config = PeekConfig.from_options(**options)
        start = config.start_position()
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    connection = config.connection()
    settings = config.poll_settings()
    name = qualified_name(
        consumer_group=config.consumer_group,
        endpoint=connection.endpoint,
        topic=connection.topic,
        partition_id=settings.partition_id,
    )

    def _on_poll(poll: PollSettings, cursor: CursorPosition) -> None:
        click.echo(click.style(f"partition: {name}", dim=True))
        click.echo(format_poll(poll, cursor))
        click.echo()

    click.echo(click.style("==== partition-peek START ... ====", fg="green", bold=True))
    click.echo()
    try:
        with _opener(ctx)(connection) as client:
            ids = client.partition_ids()
            click.echo(f"{connection.endpoint}:{connection.topic} has the following partition ids: {ids}")
            click.echo()
            if settings.partition_id not in ids:
                raise ConfigError(
                    f"--partition-id {settings.partition_id} not found in {connection.topic}; available: {ids}"
                )
            loop = PollLoop(
                client=client,
                settings=settings,
                stop_conditions=config.stop_conditions(),
                sink=ConsoleSink(),
                confirm=ClickConfirm(),
                start=start,
                on_poll=_on_poll,
            )
            result: PeekResult = loop.run()
    except (BrokerConnectionError, FetchError) as e:
        raise _broker_failure(e) from e
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    log.info("peek finished: %s", result)
    click.echo()
    click.echo(format_stop(result.stop_reason, detail=_stop_detail(result.stop_reason, config)))
    click.echo(
        click.style(
            f"=== partition-peek DONE. polls: {result.iterations} shown: {result.delivered} ===",
            fg="green",
            bold=True,
        )
    )