"""CLI command implementations."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from infra_provisioner.cli import app
from infra_provisioner.cli.errors import handle_error

if TYPE_CHECKING:
    from infra_provisioner.config.schema import Config
    from infra_provisioner.engine.scheduler import ProgressEvent
    from infra_provisioner.engine.types import ApplyResult, Plan, ResourceChange

ConfigPath = Annotated[
    Path,
    typer.Option("--config", "-c", help="Path to the configuration file."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]

AutoApprove = Annotated[
    bool,
    typer.Option("--auto-approve", help="Skip interactive approval."),
]

Concurrency = Annotated[
    int | None,
    typer.Option("--concurrency", min=1, help="Maximum provider calls in flight."),
]

Timeout = Annotated[
    float | None,
    typer.Option("--timeout", min=0, help="Per-call provider timeout in seconds (0 disables)."),
]


def _use_color(no_color: bool) -> bool:
    """Determine whether to use color output."""
    return not (no_color or os.environ.get("NO_COLOR"))


def _override_settings(cfg: Config, *, concurrency: int | None, timeout: float | None) -> None:
    """Apply command-line overrides on top of the loaded settings."""
    update: dict[str, object] = {}
    if concurrency is not None:
        update["concurrency"] = concurrency
    if timeout is not None:
        update["timeout"] = timeout or None
    if update:
        cfg.settings = cfg.settings.model_copy(update=update)


def _apply_with_progress(plan_obj: Plan, cfg: Config, *, color: bool) -> ApplyResult:
    """Apply a plan with a Rich progress bar and per-resource status lines."""
    from rich.console import Console
    from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

    from infra_provisioner.cli.formatting import _ACTION_STYLES
    from infra_provisioner.config import apply
    from infra_provisioner.engine.types import Action

    console = Console(no_color=not color)
    actionable = [c for c in plan_obj.changes if c.action != Action.NOOP]

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Applying", total=len(actionable))

        def on_progress(change: ResourceChange, event: ProgressEvent) -> None:
            s = _ACTION_STYLES[change.action.value]
            if event == "start":
                progress.update(task, description=f"{change.address}: {s.progress_verb}...")
            elif event == "done":
                progress.console.print(f"  {change.address}: {s.done_verb}")
                progress.advance(task)
            elif event == "failed":
                progress.console.print(f"  {change.address}: {s.progress_verb} failed")
                progress.advance(task)

        return apply(plan_obj, cfg, progress=on_progress)


def _confirm_and_apply(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    confirm_msg: str,
    empty_msg: str,
) -> None:
    """Shared flow: show plan -> confirm -> apply with progress -> print result.

    Exits with code 0 if no actionable changes, 1 if any action did not succeed.
    """
    from infra_provisioner.cli.formatting import (
        format_apply_result,
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )

    if not has_actionable_changes(plan_obj):
        typer.echo(empty_msg)
        raise typer.Exit(0)

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm(confirm_msg, abort=True)
        except typer.Abort as e:
            typer.echo("Apply canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        result = _apply_with_progress(plan_obj, cfg, color=color)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo()
    typer.echo(format_apply_result(result, color=color))
    if result.canceled:
        typer.echo("Interrupted: in-flight calls finished, nothing else was started.", err=True)
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def plan(
    config: ConfigPath = Path("infra.yaml"),
    no_color: NoColor = False,
    detailed_exitcode: Annotated[
        bool,
        typer.Option(
            "--detailed-exitcode",
            help="Exit with code 2 when the plan contains changes.",
        ),
    ] = False,
) -> None:
    """Show changes required by the current configuration."""
    from infra_provisioner.cli.formatting import (
        format_plan,
        format_plan_summary,
        has_actionable_changes,
    )
    from infra_provisioner.config import load
    from infra_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        plan_obj = plan_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    typer.echo(format_plan(plan_obj, color=color))
    typer.echo()
    typer.echo(format_plan_summary(plan_obj.summary(), color=color))

    if detailed_exitcode and has_actionable_changes(plan_obj):
        raise typer.Exit(2)


@app.command(name="apply")
def apply_cmd(
    config: ConfigPath = Path("infra.yaml"),
    auto_approve: AutoApprove = False,
    concurrency: Concurrency = None,
    timeout: Timeout = None,
    no_color: NoColor = False,
) -> None:
    """Apply the changes required by the current configuration."""
    from infra_provisioner.config import load
    from infra_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        _override_settings(cfg, concurrency=concurrency, timeout=timeout)
        plan_obj = plan_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you want to apply these changes?",
        empty_msg="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    config: ConfigPath = Path("infra.yaml"),
    auto_approve: AutoApprove = False,
    concurrency: Concurrency = None,
    timeout: Timeout = None,
    no_color: NoColor = False,
) -> None:
    """Destroy all managed resources."""
    from infra_provisioner.config import load
    from infra_provisioner.config import plan as plan_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        _override_settings(cfg, concurrency=concurrency, timeout=timeout)
        plan_obj = plan_fn(cfg, destroy=True)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    _confirm_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        confirm_msg="Do you really want to destroy all resources?",
        empty_msg="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    config: ConfigPath = Path("infra.yaml"),
    auto_approve: AutoApprove = False,
    no_color: NoColor = False,
) -> None:
    """Refresh state from the providers."""
    from infra_provisioner.cli.formatting import (
        changes_summary,
        format_changes,
        format_plan_summary,
    )
    from infra_provisioner.config import load, save_state
    from infra_provisioner.config import refresh as refresh_fn

    color = _use_color(no_color)
    try:
        cfg = load(config)
        changes, state = refresh_fn(cfg)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    if not changes:
        typer.echo("No changes. State is up-to-date with the providers.")
        raise typer.Exit(0)

    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()

    if not auto_approve:
        try:
            typer.confirm("Do you want to update the state file?", abort=True)
        except typer.Abort as e:
            typer.echo("Refresh canceled.", err=True)
            raise typer.Exit(1) from e

    try:
        save_state(cfg, state)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc
    count = len(state.records)
    typer.echo(f"State refreshed. {count} resource{'s' if count != 1 else ''} tracked.")


@app.command()
def validate(
    config: ConfigPath = Path("infra.yaml"),
    no_color: NoColor = False,
) -> None:
    """Check the configuration without reading state or calling providers' mutators."""
    from infra_provisioner.config import build_engine, load

    color = _use_color(no_color)
    try:
        cfg = load(config)
        graph = build_engine(cfg).graph(cfg.resources)
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc

    count = len(graph)
    typer.echo(f"Configuration is valid. {count} resource{'s' if count != 1 else ''} declared.")
