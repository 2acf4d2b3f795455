"""Provider registry for kind dispatch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from infra_provisioner.errors import UnknownResourceKindError

if TYPE_CHECKING:
    from infra_provisioner.core.provider import ResourceProvider


class ProviderRegistry:
    """Registry mapping resource kind -> provider."""

    def __init__(self) -> None:
        self._providers: dict[str, ResourceProvider] = {}

    def register(self, kind: str, provider: ResourceProvider) -> None:
        if not isinstance(kind, str) or not kind:
            raise ValueError("Resource kind must be a non-empty string")

        if kind in self._providers:
            raise ValueError(f"Resource kind already registered: {kind}")

        self._providers[kind] = provider

    def get(self, kind: str) -> ResourceProvider:
        try:
            return self._providers[kind]
        except KeyError as e:
            raise UnknownResourceKindError(kind) from e

    def __contains__(self, kind: object) -> bool:
        return kind in self._providers

    def kinds(self) -> list[str]:
        return sorted(self._providers)
