"""Resolve provider bindings to provider instances."""

from __future__ import annotations

import importlib
import importlib.metadata
import importlib.util
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from infra_provisioner.core.provider import ResourceProvider
from infra_provisioner.engine.registry import ProviderRegistry

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import ModuleType

    from infra_provisioner.config.schema import ProviderBinding

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "infra_provisioner.providers"


class ProviderLoadError(Exception):
    """Raised when a provider binding cannot be resolved or instantiated."""


def _load_local_module(module_path: str, config_dir: Path) -> ModuleType:
    """Load a Python module from a file relative to *config_dir*."""
    parts = module_path.split(".")
    candidates = [
        config_dir / Path(*parts).with_suffix(".py"),
        config_dir / Path(*parts) / "__init__.py",
    ]
    file_path = next((p for p in candidates if p.exists()), None)
    if file_path is None:
        raise ProviderLoadError(f"Module '{module_path}' not found relative to {config_dir}")

    spec = importlib.util.spec_from_file_location(module_path, file_path)
    if spec is None or spec.loader is None:
        raise ProviderLoadError(f"Failed to create module spec for '{file_path}'")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def resolve_factory(call: str, config_dir: Path) -> Callable[..., Any]:
    """Resolve a *call* string to a provider class or factory.

    Resolution order:

    1. No ``:``: entry-point lookup (group ``infra_provisioner.providers``).
    2. Has ``:``: split into ``module_path:attribute``.
       a. Try ``importlib.import_module`` (installed packages).
       b. Fall back to ``spec_from_file_location`` (local files relative to *config_dir*).
    """
    if ":" not in call:
        eps = list(importlib.metadata.entry_points(group=ENTRY_POINT_GROUP, name=call))
        if not eps:
            raise ProviderLoadError(
                f"No entry point found for '{call}' in group '{ENTRY_POINT_GROUP}'"
            )
        return eps[0].load()

    module_path, _, attr = call.rpartition(":")
    if not module_path or not attr:
        raise ProviderLoadError(f"Invalid call syntax '{call}': expected 'module.path:attribute'")

    try:
        mod = importlib.import_module(module_path)
    except ModuleNotFoundError:
        mod = _load_local_module(module_path, config_dir)

    obj = getattr(mod, attr, None)
    if not callable(obj):
        raise ProviderLoadError(
            f"'{call}' is not callable"
            if obj is not None
            else f"Module has no attribute '{attr}' (from '{call}')"
        )
    return obj


def _instantiate(binding: ProviderBinding, config_dir: Path) -> ResourceProvider:
    factory = resolve_factory(binding.call, config_dir)
    try:
        provider = factory(**binding.options)
    except Exception as exc:
        raise ProviderLoadError(
            f"Provider '{binding.call}' raised {type(exc).__name__}: {exc}"
        ) from exc

    if not isinstance(provider, ResourceProvider):
        raise ProviderLoadError(f"Provider '{binding.call}' must produce a ResourceProvider")
    return provider


def build_registry(bindings: Sequence[ProviderBinding], config_dir: Path) -> ProviderRegistry:
    """Instantiate every binding and register it for its kinds."""
    registry = ProviderRegistry()
    for binding in bindings:
        provider = _instantiate(binding, config_dir)
        for kind in binding.kinds:
            try:
                registry.register(kind, provider)
            except ValueError as exc:
                raise ProviderLoadError(str(exc)) from exc
        logger.debug("Bound %s to %s", ", ".join(binding.kinds), binding.call)
    return registry
