from __future__ import annotations

import time
from typing import TYPE_CHECKING

import pytest

from infra_provisioner.engine.lock import StateLock
from infra_provisioner.errors import StateLockError

if TYPE_CHECKING:
    from pathlib import Path


def test_lock_file_next_to_state(tmp_path: Path) -> None:
    lock = StateLock(tmp_path / "state.json")
    assert lock.lock_path == tmp_path / "state.json.lock"
    with lock:
        assert lock.lock_path.exists()


def test_second_holder_fails_fast(tmp_path: Path) -> None:
    with StateLock(tmp_path / "state.json"), pytest.raises(StateLockError, match="locked"):
        with StateLock(tmp_path / "state.json"):
            pass


def test_second_holder_waits_up_to_timeout(tmp_path: Path) -> None:
    start = time.monotonic()
    with StateLock(tmp_path / "state.json"), pytest.raises(StateLockError):
        with StateLock(tmp_path / "state.json", timeout=0.3):
            pass
    assert time.monotonic() - start >= 0.3


def test_lock_released_on_exit(tmp_path: Path) -> None:
    with StateLock(tmp_path / "state.json"):
        pass
    with StateLock(tmp_path / "state.json"):
        pass


def test_lock_released_on_error(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError), StateLock(tmp_path / "state.json"):
        raise RuntimeError("boom")
    with StateLock(tmp_path / "state.json"):
        pass
