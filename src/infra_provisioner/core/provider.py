"""Provider interface - the contract every backend implements."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from infra_provisioner.core.state import StateRecord
    from infra_provisioner.resources.base import ResourceSpec


@dataclass(frozen=True)
class RunContext:
    """Per-run values passed explicitly to the engine and to providers.

    Attributes:
        working_dir: Directory relative paths are resolved against
        variables: Run-wide values (credentials, region, ...) providers may read
        timeout: Deadline in seconds for each provider call (``None`` disables)
        cancel_event: Set to stop dispatching new actions
    """

    working_dir: Path = field(default_factory=Path)
    variables: Mapping[str, Any] = field(default_factory=dict)
    timeout: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event, compare=False)

    @property
    def canceled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()


@dataclass(frozen=True)
class ProviderResult:
    """What a provider returns from ``create``."""

    provider_id: str
    attributes: dict[str, Any]


class ResourceProvider:
    """Base class for providers.

    One instance is registered per resource kind (an instance may serve several
    kinds). Subclass and override the CRUD methods; ``validate`` and ``read``
    are optional. Raise :class:`~infra_provisioner.errors.ProviderError` (or any
    exception) to report a failure; the engine never retries.
    """

    def validate(self, ctx: RunContext, spec: ResourceSpec) -> list[str]:
        """Check a spec against the kind's schema.

        Return list of error messages (empty = valid).
        """
        _ = ctx, spec
        return []

    def create(
        self, ctx: RunContext, kind: str, name: str, attributes: dict[str, Any]
    ) -> ProviderResult:
        """Create the resource. Return its id and resulting attributes."""
        raise NotImplementedError

    def read(self, ctx: RunContext, record: StateRecord) -> dict[str, Any] | None:
        """Read the live attributes. Return None if the resource no longer exists."""
        raise NotImplementedError

    def update(
        self, ctx: RunContext, record: StateRecord, diff: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply the changed attributes in *diff*. Return the full resulting attributes.

        A ``None`` value means the key is no longer declared and should be unset.
        """
        raise NotImplementedError

    def delete(self, ctx: RunContext, record: StateRecord) -> None:
        """Delete the resource."""
        raise NotImplementedError
