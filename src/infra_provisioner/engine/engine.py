"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from infra_provisioner import __version__
from infra_provisioner.core.provider import RunContext
from infra_provisioner.core.state import State, StateStore
from infra_provisioner.engine.graph import ResourceGraph, build_graph
from infra_provisioner.engine.lock import StateLock
from infra_provisioner.engine.planner import plan_changes, validate_specs
from infra_provisioner.engine.scheduler import ProgressCallback, Scheduler
from infra_provisioner.engine.types import Plan, PlanMetadata
from infra_provisioner.errors import StalePlanError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from infra_provisioner.engine.registry import ProviderRegistry
    from infra_provisioner.engine.types import ApplyResult
    from infra_provisioner.resources.base import ResourceSpec

logger = logging.getLogger(__name__)


class Engine:
    """Terraform-like plan/apply engine over pluggable providers."""

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        state_path: Path,
        ctx: RunContext | None = None,
        concurrency: int = 4,
        lock_timeout: float = 0.0,
    ) -> None:
        self._registry = registry
        self._store = StateStore(state_path)
        self._ctx = ctx if ctx is not None else RunContext()
        self._concurrency = concurrency
        self._lock_timeout = lock_timeout

    @property
    def state_path(self) -> Path:
        return self._store.path

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def ctx(self) -> RunContext:
        return self._ctx

    def _lock(self) -> StateLock:
        return StateLock(self._store.path, timeout=self._lock_timeout)

    def graph(self, specs: Sequence[ResourceSpec]) -> ResourceGraph:
        """Build and validate the resource graph without touching state."""
        graph = build_graph(specs)
        validate_specs(graph, self._registry, self._ctx)
        return graph

    def plan(self, specs: Sequence[ResourceSpec], *, destroy: bool = False) -> Plan:
        logger.info("Planning %d resources (destroy=%s)", len(specs), destroy)
        graph = ResourceGraph.empty() if destroy else self.graph(specs)
        state = self._store.load()
        changes = plan_changes(graph, state, self._registry, destroy=destroy)

        metadata = PlanMetadata(
            created_at=datetime.now(UTC),
            destroy=destroy,
            state_lineage=state.lineage,
            state_serial=state.serial,
            engine_version=__version__,
        )
        return Plan(metadata=metadata, changes=changes)

    def _check_fresh(self, lineage: str, serial: int, *, rerun: str) -> None:
        """Raise ``StalePlanError`` unless state on disk is still at *lineage*/*serial*."""
        if not self._store.path.exists():
            if serial != 0:
                raise StalePlanError(f"State file disappeared; re-run {rerun}")
            # No state yet: adopt the lineage the caller read.
            self._store.initialize(lineage=lineage)
            return

        state = self._store.load()
        if state.lineage != lineage:
            raise StalePlanError(f"State lineage changed; re-run {rerun}")
        if state.serial != serial:
            raise StalePlanError(f"State serial changed; re-run {rerun}")

    def apply(self, plan: Plan, *, progress: ProgressCallback | None = None) -> ApplyResult:
        """Execute *plan*. Provider failures are reported in the result, not raised."""
        with self._lock():
            self._check_fresh(
                plan.metadata.state_lineage, plan.metadata.state_serial, rerun="plan"
            )
            scheduler = Scheduler(
                registry=self._registry,
                store=self._store,
                ctx=self._ctx,
                concurrency=self._concurrency,
                progress=progress,
            )
            return scheduler.run(plan.changes)

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from providers")
        changed = False

        for address, rec in list(state.records.items()):
            provider = self._registry.get(rec.kind)
            try:
                attrs = provider.read(self._ctx, rec)
            except NotImplementedError:
                logger.debug("Provider for %s cannot read; keeping stored state", rec.kind)
                continue
            if attrs is None:
                logger.info("%s no longer exists", address)
                del state.records[address]
                changed = True
                continue

            if attrs != rec.attributes:
                rec.attributes = attrs
                rec.updated_at = datetime.now(UTC)
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from providers. Returns (pre_refresh, post_refresh)."""
        lock_cm = self._lock() if persist else contextlib.nullcontext()
        with lock_cm:
            state = self._store.load()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                self._store.replace(state)
            return snapshot, state

    def save_state(self, state: State) -> None:
        """Persist a state document returned by :meth:`refresh`.

        Raises:
            StalePlanError: State was written since *state* was read.
        """
        with self._lock():
            self._check_fresh(state.lineage, state.serial, rerun="refresh")
            self._store.replace(state)
