"""Command-line entry point: global options and log setup for ``infra-provisioner``."""

from __future__ import annotations

import logging
import os
from typing import Annotated

import typer

from infra_provisioner import __version__
from infra_provisioner.engine.scheduler import WORKER_THREAD_PREFIX

LOG_ENV_VAR = "INFRA_LOG"

_LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(worker)s] %(name)s: %(message)s"
# Index is the number of -v flags.
_VERBOSITY_LEVELS = (None, logging.INFO, logging.DEBUG)

app = typer.Typer(
    name="infra-provisioner",
    help="Plan and apply declarative resource graphs over pluggable providers.",
    no_args_is_help=True,
    add_completion=False,
)


class _WorkerFilter(logging.Filter):
    """Tag each record with the apply worker that emitted it, or ``main``."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.threadName or ""
        is_worker = name.startswith(WORKER_THREAD_PREFIX)
        record.worker = f"w{name.removeprefix(WORKER_THREAD_PREFIX)}" if is_worker else "main"
        return True


def _requested_level(verbose: int) -> int | None:
    """Package log level from ``INFRA_LOG`` or the ``-v`` count; None stays silent."""
    raw = os.environ.get(LOG_ENV_VAR, "").strip()
    if not raw:
        return _VERBOSITY_LEVELS[min(verbose, len(_VERBOSITY_LEVELS) - 1)]

    name = raw.upper()
    level = logging.getLevelNamesMapping().get(name)
    if level is None or level == logging.NOTSET:
        typer.echo(
            f"WARNING: invalid {LOG_ENV_VAR} level '{name}', "
            "expected DEBUG, INFO, WARNING, ERROR or CRITICAL; defaulting to INFO",
            err=True,
        )
        return logging.INFO
    return level


def _configure_logging(verbose: int) -> None:
    level = _requested_level(verbose)
    if level is None:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    handler.addFilter(_WorkerFilter())
    # Third-party loggers stay at WARNING; only this package follows the flag.
    logging.basicConfig(level=logging.WARNING, handlers=[handler], force=True)
    logging.getLogger("infra_provisioner").setLevel(level)


def _show_version(value: bool) -> None:
    if value:
        typer.echo(f"infra-provisioner {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_show_version,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="-v logs progress, -vv every decision."),
    ] = 0,
) -> None:
    """Plan and apply declarative resource graphs over pluggable providers."""
    _ = version
    _configure_logging(verbose)


# Commands register themselves on ``app``.
from infra_provisioner.cli import commands as _commands  # noqa: E402, F401
