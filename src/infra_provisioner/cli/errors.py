"""Map exceptions to clean stderr messages and exit codes."""

from __future__ import annotations

import typer


def _err(msg: str, *, fg: str | None) -> None:
    """Print a styled message to stderr."""
    typer.echo(typer.style(msg, fg=fg), err=True)


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Print a clean error message to stderr and return an exit code.

    All errors map to exit code 1.  No tracebacks are printed.
    """
    from infra_provisioner.config.loader import ConfigError
    from infra_provisioner.errors import (
        CycleError,
        LoadError,
        ResolutionError,
        StalePlanError,
        StateCorruptionError,
        StateLockError,
        ValidationError,
    )

    fg = typer.colors.RED if color else None

    if isinstance(exc, ConfigError):
        _err(f"Configuration error: {exc}", fg=fg)
    elif isinstance(exc, ValidationError):
        _err("Validation failed:", fg=fg)
        for e in exc.errors:
            _err(f"  - {e}", fg=fg)
    elif isinstance(exc, CycleError):
        _err(str(exc), fg=fg)
    elif isinstance(exc, ResolutionError):
        _err(f"Reference error: {exc}", fg=fg)
    elif isinstance(exc, LoadError):
        _err(f"Load error: {exc}", fg=fg)
    elif isinstance(exc, StateCorruptionError):
        _err(f"State is corrupt: {exc}", fg=fg)
    elif isinstance(exc, StateLockError):
        _err(f"State is locked: {exc}", fg=fg)
    elif isinstance(exc, StalePlanError):
        _err(f"State is stale: {exc}", fg=fg)
    else:
        _err(f"Error: {exc}", fg=fg)

    return 1
