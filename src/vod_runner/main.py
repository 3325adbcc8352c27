"""CLI entrypoint for vod-runner."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from vod_runner import __version__
from vod_runner.logging_config import configure_logging
from vod_runner.pipeline.config_store import ConfigError
from vod_runner.pipeline.controllers import (
    ErrorsCommand,
    PlanCommand,
    RunCommand,
    RunnerCliController,
    ValidateCommand,
)

click.rich_click.USE_MARKDOWN = True
RUNNER_CONTROLLER = RunnerCliController()

logger = logging.getLogger(__name__)

CONFIG_OPTION_HELP = "Task configuration JSON (default: $VOD_RUNNER_CONFIG_PATH or configure.json)."
DB_OPTION_HELP = "SQLite error log path (default: $VOD_RUNNER_DB_PATH or .vod_runner.db)."

CONFIG_OPTION = click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help=CONFIG_OPTION_HELP,
)


@click.group()
@click.version_option(version=__version__, prog_name="vod-runner")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def vod_runner(verbose: bool) -> None:
    """Recorded-stream post-processing runner.

    Polls `configure.json` and dispatches **convert**, **combine**, **upload**
    and **move** tasks, one batch per lane at a time.
    """

    configure_logging(verbose=verbose)


@vod_runner.command("run")
@CONFIG_OPTION
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_OPTION_HELP)
@click.option(
    "--once",
    is_flag=True,
    default=False,
    help="Run a single tick, wait for started lanes, then exit.",
)
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def run(config_path: Path | None, db_path: Path | None, once: bool, verbose: bool) -> None:
    """Start the scheduler loop (Ctrl+C stops after running lanes finish)."""

    if verbose:
        configure_logging(verbose=True)
    _emit_lines(
        _guarded(
            lambda: RUNNER_CONTROLLER.run(
                RunCommand(config_path=config_path, db_path=db_path, once=once),
            ),
        ),
    )


@vod_runner.command("plan")
@CONFIG_OPTION
def plan(config_path: Path | None) -> None:
    """Show what the next tick would start, without moving or spawning anything."""

    _emit_lines(_guarded(lambda: RUNNER_CONTROLLER.plan(PlanCommand(config_path=config_path))))


@vod_runner.command("errors")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_OPTION_HELP)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="How many latest records to print.",
)
@click.option(
    "--category",
    type=click.Choice(["transform", "merge", "upload", "relocate"]),
    default=None,
    help="Only records for this task category.",
)
def errors(db_path: Path | None, limit: int, category: str | None) -> None:
    """List recorded terminal failures, newest first."""

    _emit_lines(
        RUNNER_CONTROLLER.errors(
            ErrorsCommand(db_path=db_path, limit=limit, category=category),
        ),
    )


@vod_runner.command("validate")
@CONFIG_OPTION
def validate(config_path: Path | None) -> None:
    """Check runtime settings and the task configuration."""

    _emit_lines(
        _guarded(lambda: RUNNER_CONTROLLER.validate(ValidateCommand(config_path=config_path))),
    )


def _guarded(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except ConfigError as error:
        logger.error("Configuration error: %s", error)
        raise SystemExit(1) from error
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    vod_runner()
