"""Providers bundled with the engine."""

from infra_provisioner.providers.local import LocalProvider

__all__ = ["LocalProvider"]
