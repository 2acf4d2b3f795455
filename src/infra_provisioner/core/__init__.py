"""Core infrastructure components: state and the provider contract."""

from infra_provisioner.core.provider import ProviderResult, ResourceProvider, RunContext
from infra_provisioner.core.state import State, StateRecord, StateStore

__all__ = [
    "ProviderResult",
    "ResourceProvider",
    "RunContext",
    "State",
    "StateRecord",
    "StateStore",
]
