"""Plan engine: diff the desired graph against a state snapshot."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from infra_provisioner.engine.graph import DependencyGraph, ResourceGraph
from infra_provisioner.engine.types import Action, ResourceChange
from infra_provisioner.errors import CycleError, StateCorruptionError, ValidationError
from infra_provisioner.resources.refs import (
    UNKNOWN,
    AttributeNotFound,
    Reference,
    contains_unknown,
    lookup_path,
    resolve_references,
)

if TYPE_CHECKING:
    from infra_provisioner.core.provider import RunContext
    from infra_provisioner.core.state import State
    from infra_provisioner.engine.registry import ProviderRegistry
    from infra_provisioner.resources.base import ResourceSpec

logger = logging.getLogger(__name__)


def _values_differ(desired: Any, prior: Any) -> bool:
    """Deep value equality; anything not yet known always differs."""
    if contains_unknown(desired):
        return True
    return desired != prior


def validate_specs(graph: ResourceGraph, registry: ProviderRegistry, ctx: RunContext) -> None:
    """Ask each spec's provider to validate it.

    Raises:
        UnknownResourceKindError: A spec's kind has no provider.
        ValidationError: One or more providers reported errors.
    """
    errors: list[str] = []
    for spec in graph:
        provider = registry.get(spec.kind)
        errors.extend(f"{spec.address}: {e}" for e in provider.validate(ctx, spec))
    if errors:
        raise ValidationError(errors)


class _Planner:
    def __init__(self, graph: ResourceGraph, state: State) -> None:
        self._graph = graph
        self._state = state
        # address -> attributes as they will be once the plan is applied
        self._planned_values: dict[str, dict[str, Any]] = {}

    def _lookup(self, ref: Reference) -> Any:
        target = self._graph.resolve_name(ref.name)
        if target is None:  # pragma: no cover - build_graph rejects these
            return UNKNOWN
        values = self._planned_values.get(target.address, {})
        try:
            return lookup_path(values, ref.path)
        except AttributeNotFound:
            return UNKNOWN

    def classify(self, spec: ResourceSpec) -> ResourceChange:
        """Classify a single resource as CREATE, UPDATE, or NOOP."""
        addr = spec.address
        planned = resolve_references(spec.attributes, self._lookup)
        prior_rec = self._state.get(addr)
        prior = dict(prior_rec.attributes) if prior_rec is not None else {}
        # Keys dropped from the config are unset on apply.
        dropped = prior_rec.dropped_keys(spec.attributes) if prior_rec is not None else []
        values = {k: v for k, v in prior.items() if k not in dropped}
        self._planned_values[addr] = {**values, **planned}

        common = {
            "address": addr,
            "kind": spec.kind,
            "name": spec.name,
            "depends_on": self._graph.dependencies(addr),
            "desired": dict(spec.attributes),
            "planned": planned,
        }

        if prior_rec is None:
            logger.debug("Classified %s as create", addr)
            return ResourceChange(action=Action.CREATE, **common)

        diff = {
            k: {"from": prior.get(k), "to": v}
            for k, v in planned.items()
            if _values_differ(v, prior.get(k))
        }
        diff.update({k: {"from": prior[k], "to": None} for k in dropped})
        action = Action.UPDATE if diff else Action.NOOP
        logger.debug("Classified %s as %s", addr, action.value)
        return ResourceChange(action=action, prior=prior, diff=diff or None, **common)

    def deletes(self, addrs: set[str]) -> list[ResourceChange]:
        """Plan delete changes for the given addresses in reverse dependency order."""
        dep_map = {a: self._state.records[a].dependencies for a in addrs}
        try:
            order = DependencyGraph(addrs, dep_map).reverse_topological_order()
        except CycleError as exc:
            raise StateCorruptionError(f"State dependencies contain a cycle: {exc}") from exc

        changes: list[ResourceChange] = []
        for addr in order:
            rec = self._state.records[addr]
            changes.append(
                ResourceChange(
                    address=addr,
                    kind=rec.kind,
                    name=rec.name,
                    action=Action.DELETE,
                    depends_on=[d for d in rec.dependencies if d in addrs],
                    prior=dict(rec.attributes),
                )
            )
        return changes


def plan_changes(
    graph: ResourceGraph,
    state: State,
    registry: ProviderRegistry,
    *,
    destroy: bool = False,
) -> list[ResourceChange]:
    """Produce the ordered changes reconciling *state* with *graph*.

    Creates, updates and no-ops come first in topological order (dependencies
    before dependents); deletes follow in reverse dependency order. With
    ``destroy=True`` the desired graph is treated as empty.

    The state snapshot is only read. Planning twice with the same inputs yields
    the same changes.
    """
    desired = ResourceGraph.empty() if destroy else graph
    for spec in desired:
        registry.get(spec.kind)

    stale = set(state.records) - {s.address for s in desired}
    for addr in sorted(stale):
        registry.get(state.records[addr].kind)  # fail early if unknown

    planner = _Planner(desired, state)
    changes = [planner.classify(desired.get(addr)) for addr in desired.topological_order()]
    changes.extend(planner.deletes(stale))

    for rank, change in enumerate(changes):
        change.rank = rank
    logger.debug("Planned %d changes (destroy=%s)", len(changes), destroy)
    return changes
