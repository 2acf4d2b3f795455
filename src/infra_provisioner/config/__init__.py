"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from infra_provisioner.config.loader import ConfigError, load_config
from infra_provisioner.config.providers import ProviderLoadError, build_registry
from infra_provisioner.config.schema import Config, ProviderBinding, Settings
from infra_provisioner.core.provider import RunContext
from infra_provisioner.core.state import State
from infra_provisioner.engine.engine import Engine
from infra_provisioner.engine.types import Action, ResourceChange

if TYPE_CHECKING:
    from pathlib import Path

    from infra_provisioner.engine.scheduler import ProgressCallback
    from infra_provisioner.engine.types import ApplyResult, Plan

__all__ = [
    "Config",
    "ConfigError",
    "ProviderBinding",
    "Settings",
    "State",
    "apply",
    "build_engine",
    "destroy",
    "drift",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def build_engine(config: Config, *, ctx: RunContext | None = None) -> Engine:
    """Build an ``Engine`` from a ``Config`` instance."""
    try:
        registry = build_registry(config.providers, config.config_dir)
    except ProviderLoadError as exc:
        raise ConfigError(str(exc)) from exc

    settings = config.settings
    if ctx is None:
        ctx = RunContext(
            working_dir=config.config_dir,
            variables=dict(config.variables),
            timeout=settings.timeout,
        )
    return Engine(
        registry=registry,
        state_path=config.state_path,
        ctx=ctx,
        concurrency=settings.concurrency,
        lock_timeout=settings.lock_timeout,
    )


def plan(config: Config, *, destroy: bool = False) -> Plan:
    """Plan changes for the given configuration."""
    return build_engine(config).plan(config.resources, destroy=destroy)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    ctx: RunContext | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    return build_engine(config, ctx=ctx).apply(plan_obj, progress=progress)


def plan_and_apply(config: Config, *, destroy: bool = False, check: bool = False) -> ApplyResult:
    """Plan and apply in one step.

    With ``check=True`` a partially failed apply raises ``ApplyFailedError``.
    """
    engine = build_engine(config)
    result = engine.apply(engine.plan(config.resources, destroy=destroy))
    if check:
        result.raise_for_failures()
    return result


def destroy(config: Config, *, check: bool = False) -> ApplyResult:
    """Delete every resource tracked in state."""
    return plan_and_apply(config, destroy=True, check=check)


def refresh(config: Config) -> tuple[list[ResourceChange], State]:
    """Refresh state from the providers (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state to disk.
    """
    old_state, new_state = build_engine(config).refresh()
    return _build_drift_changes(old_state, new_state), new_state


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    build_engine(config).save_state(state)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between state file and the live resources."""
    changes, _ = refresh(config)
    return changes


def _build_drift_changes(old_state: State, new_state: State) -> list[ResourceChange]:
    """Compare old vs new state and return a list of drift changes."""
    changes: list[ResourceChange] = []
    for addr, rec in sorted(new_state.records.items()):
        old = old_state.records.get(addr)
        if old is None or old.attributes == rec.attributes:
            continue
        all_keys = sorted(set(old.attributes) | set(rec.attributes))
        diff = {
            k: {"from": old.attributes.get(k), "to": rec.attributes.get(k)}
            for k in all_keys
            if old.attributes.get(k) != rec.attributes.get(k)
        }
        changes.append(
            ResourceChange(
                address=addr,
                kind=rec.kind,
                name=rec.name,
                action=Action.UPDATE,
                prior=dict(old.attributes),
                planned=dict(rec.attributes),
                diff=diff,
            )
        )
    for addr in sorted(set(old_state.records) - set(new_state.records)):
        old = old_state.records[addr]
        changes.append(
            ResourceChange(
                address=addr,
                kind=old.kind,
                name=old.name,
                action=Action.DELETE,
                prior=dict(old.attributes),
            )
        )
    return changes
