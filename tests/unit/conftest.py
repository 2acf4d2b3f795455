"""Shared fixtures for unit tests."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any

import pytest

from infra_provisioner.config import load
from infra_provisioner.core.provider import ProviderResult, ResourceProvider, RunContext
from infra_provisioner.engine import Engine, ProviderRegistry
from infra_provisioner.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from infra_provisioner.config.schema import Config
    from infra_provisioner.core.state import StateRecord
    from infra_provisioner.resources.base import ResourceSpec

_INFRA_ENV_VARS = (
    "INFRA_STATE_PATH",
    "INFRA_CONCURRENCY",
    "INFRA_TIMEOUT",
    "INFRA_LOCK_TIMEOUT",
    "INFRA_LOG",
)

KINDS = ("net", "subnet", "vm", "disk")


@pytest.fixture(autouse=True)
def _clean_infra_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove INFRA_* env vars so unit tests don't leak host config."""
    for var in _INFRA_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class InMemoryProvider(ResourceProvider):
    """Provider that keeps objects in a dict and records every call.

    ``fail`` holds addresses whose mutating calls raise, ``delay`` per-address
    sleep times. ``max_active`` is the highest number of concurrent calls seen.
    """

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail: set[str] = set()
        self.delay: dict[str, float] = {}
        self.errors: dict[str, list[str]] = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _call(self, op: str, address: str) -> None:
        with self._lock:
            self.calls.append((op, address))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay.get(address, 0.0))
            if address in self.fail:
                raise ProviderError(f"{op} of {address} rejected", address=address)
        finally:
            with self._lock:
                self.active -= 1

    def validate(self, ctx: RunContext, spec: ResourceSpec) -> list[str]:
        _ = ctx
        return list(self.errors.get(spec.address, []))

    def create(
        self, ctx: RunContext, kind: str, name: str, attributes: dict[str, Any]
    ) -> ProviderResult:
        _ = ctx
        address = f"{kind}.{name}"
        self._call("create", address)
        attrs = {**attributes, "id": f"{kind}-{name}-id"}
        with self._lock:
            self.objects[address] = dict(attrs)
        return ProviderResult(provider_id=attrs["id"], attributes=attrs)

    def read(self, ctx: RunContext, record: StateRecord) -> dict[str, Any] | None:
        _ = ctx
        with self._lock:
            obj = self.objects.get(record.address)
        return dict(obj) if obj is not None else None

    def update(
        self, ctx: RunContext, record: StateRecord, diff: dict[str, Any]
    ) -> dict[str, Any]:
        _ = ctx
        self._call("update", record.address)
        with self._lock:
            attrs = {**self.objects.get(record.address, record.attributes), **diff}
            attrs = {k: v for k, v in attrs.items() if v is not None}
            self.objects[record.address] = attrs
        return dict(attrs)

    def delete(self, ctx: RunContext, record: StateRecord) -> None:
        _ = ctx
        self._call("delete", record.address)
        with self._lock:
            self.objects.pop(record.address, None)

    def ops(self, op: str) -> list[str]:
        return [address for name, address in self.calls if name == op]


@pytest.fixture
def provider() -> InMemoryProvider:
    return InMemoryProvider()


@pytest.fixture
def registry(provider: InMemoryProvider) -> ProviderRegistry:
    """Registry binding ``provider`` to every test kind."""
    registry = ProviderRegistry()
    for kind in KINDS:
        registry.register(kind, provider)
    return registry


@pytest.fixture
def make_engine(tmp_path: Path, registry: ProviderRegistry) -> Callable[..., Engine]:
    """Factory fixture: an Engine over ``registry`` with state in ``tmp_path``."""

    def _make(
        *, concurrency: int = 4, timeout: float | None = None, ctx: RunContext | None = None
    ) -> Engine:
        return Engine(
            registry=registry,
            state_path=tmp_path / "state.json",
            ctx=ctx if ctx is not None else RunContext(working_dir=tmp_path, timeout=timeout),
            concurrency=concurrency,
        )

    return _make


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make
