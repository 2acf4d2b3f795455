"""Error types.

Load-time errors (:class:`LoadError` and subclasses) are fatal to a run and no
partial plan is produced. Provider-time errors (:class:`ProviderError`) are
local to a single action and only block that action's dependents.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from infra_provisioner.engine.types import ApplyResult


class EngineError(Exception):
    """Base exception for engine errors."""


class LoadError(EngineError):
    """Raised when the declared resources are malformed."""


class DuplicateNameError(LoadError):
    """Raised when multiple resources share the same logical name."""

    def __init__(self, name: str, addresses: Sequence[str]) -> None:
        super().__init__(f"Duplicate resource name '{name}': declared by {', '.join(addresses)}")
        self.name = name
        self.addresses = list(addresses)


class UnknownResourceKindError(LoadError):
    """Raised when a resource kind has no registered provider."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"No provider registered for resource kind: {kind}")
        self.kind = kind


class ResolutionError(LoadError):
    """Raised when a resource refers to a resource that is not declared."""

    def __init__(
        self, address: str, reference: str, *, reason: str = "undeclared resource"
    ) -> None:
        super().__init__(f"Resource '{address}' refers to {reason}: {reference}")
        self.address = address
        self.reference = reference


class CycleError(LoadError):
    """Raised when dependencies contain a cycle.

    ``names`` lists the participating resources in cycle order.
    """

    def __init__(self, names: list[str]) -> None:
        msg = "Dependency cycle detected"
        if names:
            msg += f": {' -> '.join([*names, names[0]])}"
        super().__init__(msg)
        self.names = names


class ValidationError(LoadError):
    """One or more resources were rejected by their provider."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class ProviderError(EngineError):
    """Raised when a provider call fails (network, auth, quota, conflict, ...)."""

    def __init__(self, message: str, *, address: str | None = None) -> None:
        super().__init__(message)
        self.address = address


class ProviderTimeoutError(ProviderError, TimeoutError):
    """Raised when a provider call exceeds its deadline."""

    def __init__(self, address: str, timeout: float) -> None:
        super().__init__(
            f"Provider call for {address} timed out after {timeout:g}s", address=address
        )
        self.timeout = timeout


class StateCorruptionError(EngineError):
    """Raised when the persisted state cannot be read or is inconsistent."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class ApplyFailedError(EngineError):
    """Raised by callers that want an exception for a partially failed apply.

    The engine itself returns an :class:`ApplyResult`; this wraps one.
    """

    def __init__(self, result: ApplyResult) -> None:
        self.result = result
        failed = ", ".join(r.address for r in result.failed) or "none"
        super().__init__(
            f"Apply finished with {len(result.failed)} failed and "
            f"{len(result.blocked)} blocked actions (failed: {failed})"
        )
