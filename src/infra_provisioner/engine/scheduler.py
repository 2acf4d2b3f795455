"""Execution scheduler.

Runs the actions of a plan against providers on worker threads, with at most
`concurrency` calls inside their deadline at any time.

Workers only call providers; each reports its outcome over a queue to a
single coordinator (the calling thread), which owns all scheduling state and
is the only caller of the state store. An action is dispatched once every
action it depends on has completed successfully. When an action fails, every
action that transitively depends on it is marked blocked and never attempted,
while unrelated actions keep running.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from infra_provisioner.core.provider import ProviderResult
from infra_provisioner.core.state import StateRecord
from infra_provisioner.engine.graph import DependencyGraph
from infra_provisioner.engine.types import Action, ActionResult, ActionStatus, ApplyResult
from infra_provisioner.errors import (
    ProviderError,
    ProviderTimeoutError,
    ResolutionError,
    StateCorruptionError,
)
from infra_provisioner.resources.refs import AttributeNotFound, lookup_path, resolve_references

if TYPE_CHECKING:
    from collections.abc import Sequence

    from infra_provisioner.core.provider import RunContext
    from infra_provisioner.core.state import StateStore
    from infra_provisioner.engine.registry import ProviderRegistry
    from infra_provisioner.engine.types import ResourceChange
    from infra_provisioner.resources.refs import Reference

logger = logging.getLogger(__name__)

WORKER_THREAD_PREFIX = "infra-apply-"

ProgressEvent = Literal["start", "done", "failed"]
ProgressCallback = Callable[["ResourceChange", ProgressEvent], None]


@dataclass
class _Operation:
    change: ResourceChange
    deps: set[str] = field(default_factory=set)
    dependents: set[str] = field(default_factory=set)
    record: StateRecord | None = None

    @property
    def key(self) -> str:
        return self.change.address


@dataclass(frozen=True)
class _Outcome:
    """Message from a worker to the coordinator."""

    key: str
    result: Any = None
    error: Exception | None = None


def _invoke(key: str, call: Callable[[], Any], outbox: queue.Queue[_Outcome]) -> None:
    try:
        result = call()
    except Exception as exc:  # reported to the coordinator as this action's failure
        outbox.put(_Outcome(key, error=exc))
    else:
        outbox.put(_Outcome(key, result=result))


def build_operations(
    changes: Sequence[ResourceChange], store: StateStore
) -> dict[str, _Operation]:
    """Build the operation graph for *changes*.

    Create/update/no-op operations depend on the operations of their graph
    dependencies. A delete of X depends on the operation of every resource
    whose stored record still lists X as a dependency, so dependents are
    deleted (or updated away from X) first.
    """
    ops: dict[str, _Operation] = {}
    for c in changes:
        if c.address in ops:
            raise ValueError(f"Duplicate operation key in plan: {c.address}")
        ops[c.address] = _Operation(change=c)

    for op in ops.values():
        if op.change.action == Action.DELETE:
            continue
        op.deps.update(
            d for d in op.change.depends_on if d in ops and ops[d].change.action != Action.DELETE
        )

    deletes = {k for k, op in ops.items() if op.change.action == Action.DELETE}
    if deletes:
        snapshot = store.load()
        for addr, rec in snapshot.records.items():
            if addr not in ops:
                continue
            for dep in rec.dependencies:
                if dep in deletes and dep != addr:
                    ops[dep].deps.add(addr)

    cycle = DependencyGraph(ops, {k: op.deps for k, op in ops.items()}).find_cycle()
    if cycle is not None:
        raise ValueError(f"Operation graph contains a cycle: {', '.join(cycle)}")

    for op in ops.values():
        for dep in op.deps:
            ops[dep].dependents.add(op.key)
    return ops


class Scheduler:
    """Execute plan changes respecting dependency order and a concurrency cap."""

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        store: StateStore,
        ctx: RunContext,
        concurrency: int = 4,
        progress: ProgressCallback | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._registry = registry
        self._store = store
        self._ctx = ctx
        self._concurrency = concurrency
        self._progress = progress

    # -- coordinator state (reset per run) -------------------------------------------

    def _reset(self, changes: Sequence[ResourceChange]) -> None:
        self._ops = build_operations(changes, self._store)
        self._names = {c.name: c.address for c in changes if c.action != Action.DELETE}
        self._remaining = {k: len(op.deps) for k, op in self._ops.items()}
        self._results: dict[str, ActionResult] = {}
        self._ready: list[tuple[int, str]] = []
        self._inflight: dict[str, float | None] = {}  # key -> deadline
        self._busy: set[str] = set()  # keys whose provider call has not returned
        self._worker_ids = itertools.count(1)
        self._outbox: queue.Queue[_Outcome] = queue.Queue()
        self._current = ""  # address whose references are being resolved
        for k, n in self._remaining.items():
            if n == 0:
                heapq.heappush(self._ready, (self._ops[k].change.rank, k))

    def _notify(self, change: ResourceChange, event: ProgressEvent) -> None:
        if self._progress is not None:
            self._progress(change, event)

    def _finish(self, key: str, status: ActionStatus, **extra: Any) -> None:
        change = self._ops[key].change
        self._results[key] = ActionResult(
            address=key, action=change.action, status=status, **extra
        )

    def _succeed(self, key: str, provider_id: str | None = None) -> None:
        op = self._ops[key]
        status = ActionStatus.SKIPPED if op.change.action == Action.NOOP else ActionStatus.APPLIED
        self._finish(key, status, provider_id=provider_id)
        if status == ActionStatus.APPLIED:
            self._notify(op.change, "done")
        for child in sorted(op.dependents):
            if child in self._results:
                continue
            self._remaining[child] -= 1
            if self._remaining[child] == 0:
                heapq.heappush(self._ready, (self._ops[child].change.rank, child))

    def _fail(self, key: str, exc: Exception) -> None:
        op = self._ops[key]
        logger.warning("%s %s failed: %s", op.change.action.value, key, exc)
        message = str(exc) if isinstance(exc, ProviderError) else f"{type(exc).__name__}: {exc}"
        self._finish(key, ActionStatus.FAILED, error=message)
        self._notify(op.change, "failed")

        stack = sorted(op.dependents)
        while stack:
            child = stack.pop()
            if child in self._results:
                continue
            logger.info("Blocking %s: depends on failed %s", child, key)
            self._finish(child, ActionStatus.BLOCKED, blocked_by=key)
            stack.extend(self._ops[child].dependents)

    def _cancel_pending(self) -> None:
        for key in self._ops:
            if key not in self._results and key not in self._inflight:
                self._finish(key, ActionStatus.CANCELED)
        self._ready.clear()

    # -- provider calls --------------------------------------------------------------

    def _lookup(self, ref: Reference) -> Any:
        address = self._names.get(ref.name)
        record = self._store.get(address) if address is not None else None
        if record is None:
            raise ResolutionError(self._current, str(ref), reason="resource missing from state")
        try:
            return lookup_path(record.attributes, ref.path)
        except AttributeNotFound as exc:
            raise ResolutionError(self._current, str(ref), reason="unknown attribute") from exc

    def _resolve(self, change: ResourceChange) -> dict[str, Any]:
        self._current = change.address
        return resolve_references(change.desired or {}, self._lookup)

    def _prepare(self, op: _Operation) -> Callable[[], Any] | None:
        """Return the provider call for *op*, or None if there is nothing to do."""
        change = op.change
        provider = self._registry.get(change.kind)
        ctx = self._ctx

        if change.action == Action.CREATE:
            attrs = self._resolve(change)
            return lambda: provider.create(ctx, change.kind, change.name, attrs)

        record = self._store.get(change.address)
        op.record = record

        if change.action == Action.UPDATE:
            if record is None:
                raise StateCorruptionError(f"Missing state for update: {change.address}")
            attrs = self._resolve(change)
            diff = {k: v for k, v in attrs.items() if record.attributes.get(k) != v}
            diff.update(dict.fromkeys(record.dropped_keys(attrs)))
            if not diff:
                logger.debug("Update of %s has nothing left to change", change.address)
                return None
            return lambda: provider.update(ctx, record, diff)

        if record is None:
            logger.debug("Delete of %s: already absent from state", change.address)
            return None
        return lambda: provider.delete(ctx, record)

    def _commit(self, op: _Operation, result: Any) -> str | None:
        """Fold a successful provider result into the state store."""
        change = op.change
        now = datetime.now(UTC)
        if change.action == Action.CREATE:
            if not isinstance(result, ProviderResult):
                raise ProviderError(
                    f"Provider for {change.kind} returned {type(result).__name__} from create",
                    address=change.address,
                )
            self._store.commit(
                StateRecord(
                    kind=change.kind,
                    name=change.name,
                    provider_id=result.provider_id,
                    attributes=dict(result.attributes),
                    dependencies=list(change.depends_on),
                    declared=sorted(change.desired or {}),
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.provider_id

        assert op.record is not None
        if change.action == Action.UPDATE:
            if not isinstance(result, dict):
                raise ProviderError(
                    f"Provider for {change.kind} returned {type(result).__name__} from update",
                    address=change.address,
                )
            self._store.commit(
                op.record.model_copy(
                    update={
                        "attributes": dict(result),
                        "dependencies": list(change.depends_on),
                        "declared": sorted(change.desired or {}),
                        "updated_at": now,
                    }
                )
            )
            return op.record.provider_id

        self._store.remove(change.kind, change.name)
        return op.record.provider_id

    def _sync_record(self, op: _Operation) -> None:
        """Rewrite bookkeeping of an unchanged record when the config moved on."""
        change = op.change
        record = op.record if op.record is not None else self._store.get(change.address)
        if record is None:
            return
        dependencies = list(change.depends_on)
        declared = sorted(change.desired or {})
        if record.dependencies == dependencies and record.declared == declared:
            return
        logger.debug("Refreshing dependencies of unchanged %s", change.address)
        self._store.commit(
            record.model_copy(update={"dependencies": dependencies, "declared": declared})
        )

    # -- coordinator loop ------------------------------------------------------------

    def _start(self, key: str, call: Callable[[], Any]) -> None:
        # One daemon thread per call; a call past its deadline leaves the cap.
        worker = threading.Thread(
            target=_invoke,
            args=(key, call, self._outbox),
            name=f"{WORKER_THREAD_PREFIX}{next(self._worker_ids)}",
            daemon=True,
        )
        self._busy.add(key)
        worker.start()

    def _dispatch(self) -> None:
        while self._ready and len(self._inflight) < self._concurrency and not self._ctx.canceled:
            _, key = heapq.heappop(self._ready)
            op = self._ops[key]
            if op.change.action == Action.NOOP:
                self._sync_record(op)
                self._succeed(key)
                continue

            try:
                call = self._prepare(op)
            except Exception as exc:  # resolution problems fail this action only
                self._fail(key, exc)
                continue
            if call is None:
                if op.change.action == Action.UPDATE:
                    self._sync_record(op)
                self._succeed(key, provider_id=op.record.provider_id if op.record else None)
                continue

            logger.debug("Dispatching %s %s", op.change.action.value, key)
            self._notify(op.change, "start")
            timeout = self._ctx.timeout
            self._inflight[key] = time.monotonic() + timeout if timeout else None
            self._start(key, call)

    def _expire(self) -> None:
        now = time.monotonic()
        for key, deadline in list(self._inflight.items()):
            if deadline is not None and deadline <= now:
                del self._inflight[key]
                assert self._ctx.timeout is not None
                self._fail(key, ProviderTimeoutError(key, self._ctx.timeout))

    def _next_outcome(self) -> _Outcome | None:
        deadlines = [d for d in self._inflight.values() if d is not None]
        wait = max(0.0, min(deadlines) - time.monotonic()) if deadlines else None
        try:
            return self._outbox.get(timeout=wait)
        except queue.Empty:
            self._expire()
            return None

    def _handle(self, outcome: _Outcome) -> None:
        key = outcome.key
        self._busy.discard(key)
        if key not in self._inflight:
            logger.warning("Discarding late completion of %s after its timeout", key)
            return
        del self._inflight[key]

        if outcome.error is not None:
            self._fail(key, outcome.error)
            return
        try:
            provider_id = self._commit(self._ops[key], outcome.result)
        except ProviderError as exc:
            self._fail(key, exc)
            return
        logger.debug("Committed %s %s", self._ops[key].change.action.value, key)
        self._succeed(key, provider_id=provider_id)

    def run(self, changes: Sequence[ResourceChange]) -> ApplyResult:
        """Execute *changes*; provider failures are reported, not raised.

        Returns once every action has a result. Calls still running past their
        deadline are abandoned: whatever they eventually return is ignored.
        """
        self._reset(changes)
        logger.info(
            "Applying %d actions (concurrency=%d)",
            sum(1 for c in changes if c.action != Action.NOOP),
            self._concurrency,
        )

        while len(self._results) < len(self._ops):
            if self._ctx.canceled:
                self._cancel_pending()
            self._dispatch()
            if not self._inflight:
                if len(self._results) < len(self._ops):
                    # Nothing running and nothing dispatchable.
                    self._cancel_pending()
                break
            try:
                outcome = self._next_outcome()
            except KeyboardInterrupt:
                logger.warning("Interrupted; waiting for in-flight provider calls")
                self._ctx.cancel()
                continue
            if outcome is not None:
                self._handle(outcome)

        if self._busy:
            logger.warning(
                "Abandoning timed-out provider calls still running: %s",
                ", ".join(sorted(self._busy)),
            )

        ordered = sorted(self._results.values(), key=lambda r: self._ops[r.address].change.rank)
        result = ApplyResult(results=ordered, canceled=self._ctx.canceled)
        logger.info("Apply finished: %s", result.status_summary())
        return result
