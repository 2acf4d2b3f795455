from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from infra_provisioner.core.provider import RunContext
from infra_provisioner.core.state import StateRecord
from infra_provisioner.errors import ProviderError
from infra_provisioner.providers import LocalProvider
from infra_provisioner.resources import ResourceSpec

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def ctx(tmp_path: Path) -> RunContext:
    return RunContext(working_dir=tmp_path)


def _record(provider_id: str, **attrs: object) -> StateRecord:
    return StateRecord(
        kind="vm", name="web", provider_id=provider_id, attributes={**attrs, "id": provider_id}
    )


class TestLocalProvider:
    def test_create_writes_file_under_working_dir(self, ctx: RunContext, tmp_path: Path) -> None:
        provider = LocalProvider(root="store")
        result = provider.create(ctx, "vm", "web", {"size": "small"})

        assert result.provider_id.startswith("vm/web/")
        assert result.attributes == {"size": "small", "id": result.provider_id}
        doc = json.loads((tmp_path / "store" / "vm" / "web.json").read_text())
        assert doc["id"] == result.provider_id

    def test_create_twice_conflicts(self, ctx: RunContext) -> None:
        provider = LocalProvider()
        provider.create(ctx, "vm", "web", {})
        with pytest.raises(ProviderError, match="already exists"):
            provider.create(ctx, "vm", "web", {})

    def test_read_update_delete(self, ctx: RunContext) -> None:
        provider = LocalProvider()
        created = provider.create(ctx, "vm", "web", {"size": "small", "zone": "a"})
        record = _record(created.provider_id, size="small", zone="a")

        assert provider.read(ctx, record) == created.attributes

        attrs = provider.update(ctx, record, {"size": "large"})
        assert attrs == {"size": "large", "zone": "a", "id": created.provider_id}
        assert provider.read(ctx, record) == attrs

        provider.delete(ctx, record)
        assert provider.read(ctx, record) is None
        # Deleting again is fine.
        provider.delete(ctx, record)

    def test_update_with_none_unsets_attribute(self, ctx: RunContext) -> None:
        provider = LocalProvider()
        created = provider.create(ctx, "vm", "web", {"size": "small", "tags": {"env": "dev"}})
        record = _record(created.provider_id, size="small", tags={"env": "dev"})

        attrs = provider.update(ctx, record, {"tags": None})
        assert attrs == {"size": "small", "id": created.provider_id}
        assert provider.read(ctx, record) == attrs

    def test_read_other_id_is_gone(self, ctx: RunContext) -> None:
        provider = LocalProvider()
        provider.create(ctx, "vm", "web", {})
        assert provider.read(ctx, _record("vm/web/other")) is None

    def test_update_missing(self, ctx: RunContext) -> None:
        with pytest.raises(ProviderError, match="not found"):
            LocalProvider().update(ctx, _record("vm/web/x"), {"size": "large"})

    def test_absolute_root(self, tmp_path: Path) -> None:
        root = tmp_path / "abs"
        provider = LocalProvider(root=root)
        provider.create(RunContext(working_dir=tmp_path / "elsewhere"), "disk", "d", {})
        assert (root / "disk" / "d.json").exists()

    def test_validate(self, ctx: RunContext) -> None:
        provider = LocalProvider()
        ok = ResourceSpec(kind="vm", name="a", attributes={"size": "small"})
        assert provider.validate(ctx, ok) == []

        with_id = ResourceSpec(kind="vm", name="a", attributes={"id": "mine"})
        assert provider.validate(ctx, with_id) == [
            "'id' is assigned by the provider and cannot be declared"
        ]

        bad = ResourceSpec(kind="vm", name="a", attributes={"blob": {1, 2}})
        assert provider.validate(ctx, bad)[0].startswith("attributes are not JSON serializable")
