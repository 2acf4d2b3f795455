"""Kind-agnostic provider that keeps resources as JSON files on local disk.

Each resource lives at ``<root>/<kind>/<name>.json``. Useful for dry runs,
demos and tests: it behaves like a real backend (assigns ids, rejects
duplicates, forgets deleted objects) without any network access.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from infra_provisioner.core.provider import ProviderResult, ResourceProvider
from infra_provisioner.errors import ProviderError

if TYPE_CHECKING:
    from infra_provisioner.core.provider import RunContext
    from infra_provisioner.core.state import StateRecord
    from infra_provisioner.resources.base import ResourceSpec

logger = logging.getLogger(__name__)


class LocalProvider(ResourceProvider):
    """Store resources under *root* (relative paths resolve against the run's working dir)."""

    def __init__(self, root: str | Path = ".infra-local", latency: float = 0.0) -> None:
        self._root = Path(root)
        self._latency = latency
        self._lock = threading.Lock()

    def _path(self, ctx: RunContext, kind: str, name: str) -> Path:
        root = self._root if self._root.is_absolute() else ctx.working_dir / self._root
        return root / kind / f"{name}.json"

    def _load(self, path: Path) -> dict[str, Any] | None:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None

    def _save(self, path: Path, doc: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(doc, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    def _simulate_latency(self) -> None:
        if self._latency:
            time.sleep(self._latency)

    def validate(self, ctx: RunContext, spec: ResourceSpec) -> list[str]:
        _ = ctx
        try:
            json.dumps(spec.attributes)
        except TypeError as exc:
            return [f"attributes are not JSON serializable: {exc}"]
        if "id" in spec.attributes:
            return ["'id' is assigned by the provider and cannot be declared"]
        return []

    def create(
        self, ctx: RunContext, kind: str, name: str, attributes: dict[str, Any]
    ) -> ProviderResult:
        self._simulate_latency()
        path = self._path(ctx, kind, name)
        with self._lock:
            if path.exists():
                raise ProviderError(f"{kind}.{name} already exists at {path}")
            provider_id = f"{kind}/{name}/{uuid.uuid4().hex[:12]}"
            attrs = {**attributes, "id": provider_id}
            self._save(path, {"id": provider_id, "attributes": attrs})
        logger.debug("Created %s.%s (%s)", kind, name, provider_id)
        return ProviderResult(provider_id=provider_id, attributes=attrs)

    def read(self, ctx: RunContext, record: StateRecord) -> dict[str, Any] | None:
        doc = self._load(self._path(ctx, record.kind, record.name))
        if doc is None or doc.get("id") != record.provider_id:
            return None
        return doc["attributes"]

    def update(
        self, ctx: RunContext, record: StateRecord, diff: dict[str, Any]
    ) -> dict[str, Any]:
        self._simulate_latency()
        path = self._path(ctx, record.kind, record.name)
        with self._lock:
            doc = self._load(path)
            if doc is None or doc.get("id") != record.provider_id:
                raise ProviderError(f"{record.address} ({record.provider_id}) not found")
            attrs = {**doc["attributes"], **diff, "id": record.provider_id}
            doc["attributes"] = {k: v for k, v in attrs.items() if v is not None}
            self._save(path, doc)
        logger.debug("Updated %s: %s", record.address, sorted(diff))
        return doc["attributes"]

    def delete(self, ctx: RunContext, record: StateRecord) -> None:
        self._simulate_latency()
        path = self._path(ctx, record.kind, record.name)
        with self._lock:
            # Already gone counts as deleted.
            path.unlink(missing_ok=True)
        logger.debug("Deleted %s (%s)", record.address, record.provider_id)
