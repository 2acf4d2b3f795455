"""Tests for the convenience plan/apply API over a YAML config."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from infra_provisioner.config import (
    ConfigError,
    apply,
    build_engine,
    destroy,
    drift,
    plan,
    plan_and_apply,
    refresh,
    save_state,
)
from infra_provisioner.engine.types import Action
from infra_provisioner.errors import ApplyFailedError

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from infra_provisioner.config.schema import Config

_YAML = """\
settings:
  concurrency: 2
variables:
  location: westeurope
providers:
  - call: infra_provisioner.providers.local:LocalProvider
    kinds: [resource_group, virtual_network, subnet]
    options: {root: cloud}
resources:
  - kind: resource_group
    name: rg
    attributes: {location: "${var.location}"}
  - kind: virtual_network
    name: vnet
    attributes:
      resource_group: ${rg.id}
      address_space: [10.0.0.0/16]
  - kind: subnet
    name: web
    attributes:
      network: ${vnet.id}
      prefix: 10.0.1.0/24
"""


def _object(tmp_path: Path, kind: str, name: str) -> dict:
    return json.loads((tmp_path / "cloud" / kind / f"{name}.json").read_text())


def test_plan_apply_cycle(make_config: Callable[..., Config], tmp_path: Path) -> None:
    cfg = make_config(_YAML)

    first = plan(cfg)
    assert first.summary()["create"] == 3

    result = apply(first, cfg)
    assert result.ok
    rg = _object(tmp_path, "resource_group", "rg")
    vnet = _object(tmp_path, "virtual_network", "vnet")
    assert rg["attributes"]["location"] == "westeurope"
    assert vnet["attributes"]["resource_group"] == rg["id"]

    again = plan(cfg)
    assert not again.has_changes()


def test_plan_and_apply_then_destroy(make_config: Callable[..., Config], tmp_path: Path) -> None:
    cfg = make_config(_YAML)
    assert plan_and_apply(cfg).ok

    result = destroy(cfg)
    assert result.ok
    assert [r.address for r in result.results] == [
        "subnet.web",
        "virtual_network.vnet",
        "resource_group.rg",
    ]
    assert json.loads(cfg.state_path.read_text())["records"] == {}
    assert not (tmp_path / "cloud" / "subnet" / "web.json").exists()


def test_check_raises_on_failure(make_config: Callable[..., Config], tmp_path: Path) -> None:
    cfg = make_config(_YAML)
    # An object already sitting where the subnet goes makes its create fail.
    (tmp_path / "cloud" / "subnet").mkdir(parents=True)
    (tmp_path / "cloud" / "subnet" / "web.json").write_text("{}")

    with pytest.raises(ApplyFailedError) as exc_info:
        plan_and_apply(cfg, check=True)
    assert [r.address for r in exc_info.value.result.failed] == ["subnet.web"]


def test_refresh_and_drift(make_config: Callable[..., Config], tmp_path: Path) -> None:
    cfg = make_config(_YAML)
    plan_and_apply(cfg)

    path = tmp_path / "cloud" / "subnet" / "web.json"
    doc = json.loads(path.read_text())
    doc["attributes"]["prefix"] = "10.0.9.0/24"
    path.write_text(json.dumps(doc))
    (tmp_path / "cloud" / "resource_group" / "rg.json").unlink()

    changes = drift(cfg)
    assert [(c.action, c.address) for c in changes] == [
        (Action.UPDATE, "subnet.web"),
        (Action.DELETE, "resource_group.rg"),
    ]
    assert changes[0].diff == {"prefix": {"from": "10.0.1.0/24", "to": "10.0.9.0/24"}}

    _, state = refresh(cfg)
    save_state(cfg, state)
    saved = json.loads(cfg.state_path.read_text())
    assert "resource_group.rg" not in saved["records"]

    # With the group gone from state, the next plan recreates it.
    assert plan(cfg).actions()[0] == (Action.CREATE, "resource_group.rg")


def test_build_engine_wraps_provider_errors(make_config: Callable[..., Config]) -> None:
    cfg = make_config(_YAML.replace("infra_provisioner.providers.local:LocalProvider", "nope:X"))
    with pytest.raises(ConfigError, match="not found"):
        build_engine(cfg)


def test_build_engine_uses_settings(make_config: Callable[..., Config], tmp_path: Path) -> None:
    cfg = make_config(_YAML)
    engine = build_engine(cfg)
    assert engine.state_path == tmp_path / ".infra-state.json"
    assert engine.ctx.working_dir == tmp_path
    assert engine.ctx.timeout == 300.0
    assert engine.ctx.variables == {"location": "westeurope"}
