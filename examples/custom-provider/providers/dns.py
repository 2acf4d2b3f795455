"""An in-memory DNS provider, loaded from this directory by ``call: providers.dns:DnsProvider``."""

from __future__ import annotations

import itertools
import threading
from typing import Any

from infra_provisioner.core.provider import ProviderResult, ResourceProvider
from infra_provisioner.errors import ProviderError

_RECORD_TYPES = {"A", "AAAA", "CNAME", "TXT"}


class DnsProvider(ResourceProvider):
    """Zones and records kept in process memory (lost when the run ends)."""

    def __init__(self, default_ttl: int = 300) -> None:
        self._default_ttl = default_ttl
        self._objects: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def validate(self, ctx, spec):
        _ = ctx
        if spec.kind == "dns_record" and spec.attributes.get("type") not in _RECORD_TYPES:
            return [f"type must be one of {', '.join(sorted(_RECORD_TYPES))}"]
        return []

    def create(self, ctx, kind, name, attributes):
        _ = ctx
        with self._lock:
            provider_id = f"{kind}-{next(self._ids)}"
            attrs = {"ttl": self._default_ttl, **attributes, "id": provider_id}
            if kind == "dns_zone":
                attrs["name_servers"] = [f"ns{i}.{attributes['domain']}" for i in (1, 2)]
            self._objects[provider_id] = attrs
        return ProviderResult(provider_id=provider_id, attributes=dict(attrs))

    def read(self, ctx, record):
        _ = ctx
        with self._lock:
            attrs = self._objects.get(record.provider_id)
        return dict(attrs) if attrs is not None else None

    def update(self, ctx, record, diff):
        _ = ctx
        with self._lock:
            if record.provider_id not in self._objects:
                raise ProviderError(f"{record.address} does not exist")
            obj = self._objects[record.provider_id]
            obj.update(diff)
            for key in [k for k, v in diff.items() if v is None]:
                del obj[key]
            return dict(obj)

    def delete(self, ctx, record):
        _ = ctx
        with self._lock:
            self._objects.pop(record.provider_id, None)
