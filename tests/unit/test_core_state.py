from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING

import pytest

from infra_provisioner.core.state import State, StateRecord, StateStore
from infra_provisioner.errors import StateCorruptionError

if TYPE_CHECKING:
    from pathlib import Path


def _record(name: str, **attrs: object) -> StateRecord:
    return StateRecord(kind="vm", name=name, provider_id=f"id-{name}", attributes=attrs)


class TestStateStore:
    def test_missing_file_loads_empty(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        state = store.load()
        assert state.records == {}
        assert state.serial == 0
        assert not store.path.exists()

    def test_commit_persists_and_bumps_serial(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.commit(_record("a", size=1))
        store.commit(_record("b"))

        doc = json.loads(path.read_text())
        assert doc["serial"] == 2
        assert sorted(doc["records"]) == ["vm.a", "vm.b"]
        assert doc["records"]["vm.a"]["attributes"] == {"size": 1}

        reopened = StateStore(path).load()
        assert reopened.get("vm.a") == store.get("vm.a")
        assert reopened.lineage == store.load().lineage

    def test_commit_replaces_existing_record(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        store.commit(_record("a", size=1))
        store.commit(_record("a", size=2))
        record = store.get("vm.a")
        assert record is not None
        assert record.attributes == {"size": 2}

    def test_remove(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        store.commit(_record("a"))
        store.remove("vm", "a")
        assert store.get("vm.a") is None
        assert store.load().serial == 2

    def test_remove_absent_is_noop(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        store.remove("vm", "nope")
        assert not store.path.exists()

    def test_load_returns_snapshot(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        store.commit(_record("a", size=1))
        snapshot = store.load()
        snapshot.records["vm.a"].attributes["size"] = 99
        record = store.get("vm.a")
        assert record is not None
        assert record.attributes["size"] == 1

    def test_backup_holds_previous_document(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        store = StateStore(path)
        store.commit(_record("a"))
        store.commit(_record("b"))

        backup = json.loads((tmp_path / "state.json.backup").read_text())
        assert backup["serial"] == 1
        assert list(backup["records"]) == ["vm.a"]

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        store.commit(_record("a"))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["state.json"]

    def test_initialize_adopts_lineage(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        store.initialize(lineage="fixed")
        store.commit(_record("a"))
        assert json.loads(store.path.read_text())["lineage"] == "fixed"

    def test_replace_bumps_serial(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        store.commit(_record("a"))
        state = store.load()
        del state.records["vm.a"]
        store.replace(state)
        reloaded = store.load()
        assert reloaded.records == {}
        assert reloaded.serial == 2

    def test_concurrent_commits_are_serialized(self, tmp_path: Path) -> None:
        store = StateStore(tmp_path / "state.json")
        threads = [
            threading.Thread(target=store.commit, args=(_record(f"r{i}"),)) for i in range(16)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = StateStore(store.path).load()
        assert len(state.records) == 16
        assert state.serial == 16


class TestStateCorruption:
    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(StateCorruptionError, match="Cannot read state file"):
            StateStore(path).load()

    def test_wrong_shape(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"records": {"vm.a": {"kind": "vm"}}}))
        with pytest.raises(StateCorruptionError):
            StateStore(path).load()

    def test_key_address_mismatch(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        doc = State(records={"vm.a": _record("b")}).model_dump(mode="json")
        path.write_text(json.dumps(doc))
        with pytest.raises(StateCorruptionError, match="does not match"):
            StateStore(path).load()

    def test_unsupported_version(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 99}))
        with pytest.raises(StateCorruptionError, match="Unsupported state version"):
            StateStore(path).load()
