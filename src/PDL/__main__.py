"""
Command-line interface for the PICU data loader.

`pdl run` performs one reconciliation pass: new HL7 files under rootDir are
ingested, their observations PUT to OpenTSDB, and the subject registry and
processed-file ledger rewritten. Meant to be scheduled at a fixed interval.
"""

import logging
import sys
import typing

import click
from stairval.notepad import create_notepad

from .config import DEFAULT_CONFIG_PATH, ConfigurationError, load_config
from .ingest import prepare, run
from .loader import PersistenceError, load_catalog
from .measurement import UnknownChannel, normalize
from .tsdb import OpenTSDBSink, SinkUnavailable

config_option = click.option(
    "-c",
    "--config",
    "config_path",
    default=DEFAULT_CONFIG_PATH,
    envvar="PDL_CONFIG",
    show_default=True,
    type=click.Path(dir_okay=False),
    help="server.properties file (or set PDL_CONFIG)",
)


@click.group()
def main():
    """PDL: load PICU HL7 vitals into OpenTSDB under de-identified subject keys."""
    pass


def _configure_logging(verbose_logging: bool, log_file_path: typing.Optional[str]) -> None:
    handlers: list[logging.Handler] = []
    if log_file_path:
        handlers.append(logging.FileHandler(log_file_path, mode="a", encoding="utf-8"))
    if verbose_logging:
        handlers.append(logging.StreamHandler(sys.stderr))
    if handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose_logging else logging.INFO,
            format="%(asctime)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=handlers,
        )


def _fail(message: str) -> typing.NoReturn:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


def _report_issues(notepad, verbose: bool):
    # local recoveries: summarised, listed only on request
    warnings = list(notepad.warnings())
    if not warnings:
        return
    click.echo(f"Skipped {len(warnings)} message(s)/observation(s) during ingestion")
    if verbose:
        for w in warnings:
            click.echo(click.style(f"- {w}", fg="yellow"))


@main.command(name="run")
@config_option
@click.option("--verbose", is_flag=True, help="List every skipped message and observation")
@click.option("--verbose-logging", is_flag=True, help="Also emit debug logs to stderr")
@click.option(
    "--log-file-path",
    type=click.Path(dir_okay=False, writable=True),
    help="Append timestamped logs to this file",
)
def run_command(config_path: str, verbose: bool, verbose_logging: bool, log_file_path: typing.Optional[str]):
    """
    Ingest every new message file under rootDir and persist the updated
    subject registry and processed-file ledger.
    """
    _configure_logging(verbose_logging, log_file_path)
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        _fail(str(e))

    notepad = create_notepad("ingestion")
    sink = OpenTSDBSink(config.tsdb_url, config.api_put)
    try:
        state = run(config, sink, notepad, progress=click.echo)
    except SinkUnavailable as e:
        _fail(f"{e}. No files were marked as processed.")
    except PersistenceError as e:
        _fail(f"{e}. This run's files are not recorded as processed.")
    except (OSError, ValueError) as e:
        _fail(f"{e}. No files were marked as processed.")
    finally:
        sink.close()

    _report_issues(notepad, verbose)
    if state.files:
        click.echo(f"Processed {len(state.files)} file(s), stored {state.points} data point(s)")


@main.command(name="pending")
@config_option
def pending(config_path: str):
    """List the message files the next run would ingest."""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        _fail(str(e))
    try:
        state = prepare(config)
    except (OSError, ValueError) as e:
        _fail(str(e))
    for path in state.worklist:
        click.echo(path)
    click.echo(f"{len(state.worklist)} new file(s), {len(state.ledger)} already processed", err=True)


@main.command(name="normalize")
@click.argument("channel")
@click.argument("unit", required=False)
@click.option(
    "-c",
    "--catalog",
    "catalog_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="path to the supported-parameters workbook",
)
def normalize_command(channel: str, unit: typing.Optional[str], catalog_path: str):
    """Print the metric name CHANNEL/UNIT would be stored under."""
    catalog = load_catalog(catalog_path)
    try:
        click.echo(normalize(catalog, channel, unit))
    except UnknownChannel as e:
        _fail(str(e))


if __name__ == "__main__":
    main()
