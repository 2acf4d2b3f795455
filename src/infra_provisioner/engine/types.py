"""Engine types (plan, changes, apply results)."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


class ActionStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELED = "canceled"
    SKIPPED = "skipped"


class PlanMetadata(BaseModel):
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool = False
    state_lineage: str
    state_serial: int
    engine_version: str


class ResourceChange(BaseModel):
    address: str
    kind: str
    name: str
    action: Action
    rank: int = 0
    depends_on: list[str] = Field(default_factory=list)
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def actions(self) -> list[tuple[Action, str]]:
        """``(action, address)`` pairs in plan order."""
        return [(c.action, c.address) for c in self.changes]

    def has_changes(self) -> bool:
        return any(c.action != Action.NOOP for c in self.changes)


class ActionResult(BaseModel):
    address: str
    action: Action
    status: ActionStatus
    provider_id: str | None = None
    error: str | None = None
    blocked_by: str | None = None


class ApplyResult(BaseModel):
    results: list[ActionResult] = Field(default_factory=list)
    canceled: bool = False

    def _with_status(self, status: ActionStatus) -> list[ActionResult]:
        return [r for r in self.results if r.status == status]

    @property
    def applied(self) -> list[ActionResult]:
        return self._with_status(ActionStatus.APPLIED)

    @property
    def failed(self) -> list[ActionResult]:
        return self._with_status(ActionStatus.FAILED)

    @property
    def blocked(self) -> list[ActionResult]:
        return self._with_status(ActionStatus.BLOCKED)

    @property
    def not_attempted(self) -> list[ActionResult]:
        return self._with_status(ActionStatus.CANCELED)

    @property
    def ok(self) -> bool:
        return not (self.failed or self.blocked or self.not_attempted)

    def status_of(self, address: str) -> ActionStatus:
        for r in self.results:
            if r.address == address:
                return r.status
        raise KeyError(address)

    def summary(self) -> dict[str, int]:
        """Count applied actions by action type."""
        counts = {a.value: 0 for a in Action}
        for r in self.applied:
            counts[r.action.value] += 1
        return counts

    def status_summary(self) -> dict[str, int]:
        counts = {s.value: 0 for s in ActionStatus}
        for r in self.results:
            counts[r.status.value] += 1
        return counts

    def raise_for_failures(self) -> None:
        """Raise :class:`ApplyFailedError` unless every action succeeded."""
        from infra_provisioner.errors import ApplyFailedError

        if not self.ok:
            raise ApplyFailedError(self)
