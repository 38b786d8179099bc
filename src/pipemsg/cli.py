"""
Command-line interface for pipemsg using Click.

Two small drivers exercise both ends of a pipe: `send` runs a server that
pushes CSV rows, one row per message, and `receive` runs a client that
prints every message it gets.
"""

import csv
import functools
import random
import sys
import threading
from pathlib import Path
from typing import Iterator, Optional

import click

from .client import PipeClient
from .config import PipeEndpointConfig, Role
from .event_handlers import StatisticsHandler
from .logging_config import configure_logging
from .server import PipeServer

PROGRESS_EVERY = 500

_NAMES = ["Alice", "Bob", "Carol", "Dave", "Erin", "Frank", "Grace", "Heidi"]
_CITIES = ["London", "Paris", "Berlin", "Madrid", "Rome", "Oslo", "Vienna", "Prague"]


def version_callback(ctx, _, value):
    """Callback for the version option that prints the version and exits."""
    if not value or ctx.resilient_parsing:
        return
    from . import __version__

    click.echo(f"pipemsg version {__version__}")
    ctx.exit()


def logging_options(func):
    """Attach the shared logging options to a command."""

    @click.option(
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (use -v, -vv for more verbose)",
    )
    @click.option(
        "--quiet", "-q", is_flag=True, help="Reduce output to warnings and errors only"
    )
    @click.option(
        "--log-level",
        type=click.Choice(
            ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
        ),
        help="Set explicit log level (overrides verbose/quiet)",
    )
    @click.option(
        "--log-format",
        type=click.Choice(["json", "simple", "detailed"], case_sensitive=False),
        default="simple",
        help="Log output format",
    )
    @click.option(
        "--log-file", type=click.Path(), help="Write logs to file (in addition to console)"
    )
    @functools.wraps(func)
    def wrapper(*args, verbose, quiet, log_level, log_format, log_file, **kwargs):
        configure_logging(verbose, quiet, log_level, log_format, log_file)
        return func(*args, **kwargs)

    return wrapper


def sample_rows(count: int, seed: Optional[int] = None) -> Iterator[str]:
    """Generate `id,name,age,city` rows of sample data."""
    rng = random.Random(seed)
    for row_id in range(1, count + 1):
        name = f"{rng.choice(_NAMES)}_{rng.randint(1, 999)}"
        city = f"{rng.choice(_CITIES)}_{rng.randint(1, 99)}"
        yield f"{row_id},{name},{rng.randint(18, 90)},{city}"


def csv_rows(path: Path, limit: Optional[int] = None) -> Iterator[str]:
    """Yield the data rows of a CSV file as comma-joined lines, skipping the header."""
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        next(reader, None)
        for index, row in enumerate(reader, 1):
            if limit is not None and index > limit:
                break
            yield ",".join(row)


@click.group()
@click.option(
    "--version",
    is_flag=True,
    expose_value=False,
    is_eager=True,
    callback=version_callback,
    help="Show version and exit",
)
@click.help_option("--help", "-h")
def cli():
    """Pipemsg - framed messages over named pipes."""


@cli.command()
@click.argument("name")
@click.option(
    "--file",
    "csv_file",
    type=click.Path(exists=True, dir_okay=False, readable=True, path_type=Path),
    help="CSV file to send instead of generated rows (header is skipped)",
)
@click.option(
    "--rows",
    type=click.IntRange(min=1),
    default=10000,
    show_default=True,
    help="Number of rows to send",
)
@click.option("--timeout", type=float, help="Seconds to wait for a client to connect")
@click.option(
    "--no-wait",
    is_flag=True,
    help="Start sending without waiting for a client; unsent rows are counted as failed",
)
@logging_options
def send(
    name: str,
    csv_file: Optional[Path],
    rows: int,
    timeout: Optional[float],
    no_wait: bool,
) -> None:
    """
    Serve rows of CSV data on the pipe NAME, one row per message.

    Examples:

        pipemsg send t1

        pipemsg send t1 --rows 100 --timeout 30

        pipemsg send t1 --file people.csv -v
    """
    overrides = {"timeout": timeout} if timeout else {}
    try:
        config = PipeEndpointConfig.from_env(name, Role.SERVER, **overrides)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    server = PipeServer(config)
    server.setup_signal_handlers()

    click.echo(f"Serving on {config.endpoint_path()}")
    if not server.start(wait_for_connection=not no_wait) and not no_wait:
        click.echo(f"No client connected within {config.timeout}s", err=True)
        server.stop()
        sys.exit(1)

    source = csv_rows(csv_file, rows) if csv_file else sample_rows(rows)
    sent = failed = 0
    try:
        for index, row in enumerate(source, 1):
            if server.stop_requested:
                break
            if server.send(row):
                sent += 1
            else:
                failed += 1
            if index % PROGRESS_EVERY == 0:
                click.echo(f"Sent {sent} rows ({failed} failed)")
    finally:
        server.stop()

    click.echo(f"Done: {sent} sent, {failed} failed, {server.bytes_sent} bytes")
    sys.exit(0 if failed == 0 else 1)


@cli.command()
@click.argument("name")
@click.option(
    "--count",
    type=click.IntRange(min=1),
    help="Exit after this many messages (default: run until interrupted)",
)
@click.option("--timeout", type=float, help="Seconds to wait for the server on each connect")
@click.option("--stats", is_flag=True, help="Print message and connection statistics on exit")
@logging_options
def receive(name: str, count: Optional[int], timeout: Optional[float], stats: bool) -> None:
    """
    Print every message received on the pipe NAME.

    Examples:

        pipemsg receive t1

        pipemsg receive t1 --count 100 --stats
    """
    overrides = {"timeout": timeout} if timeout else {}
    try:
        config = PipeEndpointConfig.from_env(name, Role.CLIENT, **overrides)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    client = PipeClient(config)
    statistics = StatisticsHandler()
    statistics.attach(client.notifier)

    done = threading.Event()
    received = 0

    def on_message(message):
        nonlocal received
        click.echo(message.text)
        received += 1
        if count is not None and received >= count:
            done.set()

    client.subscribe_messages(on_message)
    client.start()
    try:
        while not done.wait(0.2):
            pass
    except KeyboardInterrupt:
        click.echo("\nReceived interrupt signal, shutting down...", err=True)
    finally:
        client.stop()

    if stats:
        click.echo("\nStatistics:")
        for key, value in statistics.get_statistics().items():
            click.echo(f"  {key}: {value}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
