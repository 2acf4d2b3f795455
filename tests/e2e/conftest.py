"""Shared fixtures for end-to-end tests that drive the CLI against the local provider."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import Callable

EXAMPLES_DIR = Path(__file__).resolve().parents[2] / "examples"


@pytest.fixture(autouse=True)
def _clean_infra_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("INFRA_STATE_PATH", "INFRA_CONCURRENCY", "INFRA_TIMEOUT", "INFRA_LOCK_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def example(tmp_path: Path) -> Callable[[str], Path]:
    """Copy an example project into ``tmp_path`` and return its config file."""

    def _copy(name: str) -> Path:
        target = tmp_path / name
        shutil.copytree(EXAMPLES_DIR / name, target)
        return target / "infra.yaml"

    return _copy

