"""State management for tracking deployed resources."""

import contextlib
import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, computed_field
from pydantic import ValidationError as PydanticValidationError

from infra_provisioner.errors import StateCorruptionError

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def _now() -> datetime:
    return datetime.now(UTC)


def state_address(kind: str, name: str) -> str:
    return f"{kind}.{name}"


class StateRecord(BaseModel):
    """A tracked resource in the state file.

    Attributes:
        kind: Resource kind (e.g., "virtual_network")
        name: Logical name (e.g., "vnet")
        provider_id: Identifier assigned by the provider on create
        attributes: Attribute values returned by the provider after the last apply
        dependencies: Addresses of the resources this one depended on when applied
        declared: Attribute keys the configuration declared at the last apply
        created_at: When the resource was created
        updated_at: When the resource was last updated
    """

    kind: str
    name: str
    provider_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
    declared: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def address(self) -> str:
        return state_address(self.kind, self.name)

    def dropped_keys(self, declared: Iterable[str]) -> list[str]:
        """Keys declared at the last apply, missing from *declared*, that still hold a value."""
        keep = set(declared)
        return [k for k in self.declared if k not in keep and self.attributes.get(k) is not None]


class State(BaseModel):
    """Terraform-style state document.

    Attributes:
        version: State file format version
        serial: Incremented on every write
        lineage: Identifies the history this state belongs to
        records: Mapping of resource addresses to records
    """

    version: int = STATE_VERSION
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    records: dict[str, StateRecord] = Field(default_factory=dict)

    def get(self, address: str) -> StateRecord | None:
        return self.records.get(address)

    def check_consistency(self) -> None:
        """Raise ``StateCorruptionError`` if the document is internally inconsistent."""
        if self.version != STATE_VERSION:
            raise StateCorruptionError(f"Unsupported state version: {self.version}")
        for key, record in self.records.items():
            if key != record.address:
                raise StateCorruptionError(
                    f"State record key '{key}' does not match its address '{record.address}'"
                )


def _read_state(path: Path) -> State:
    try:
        state = State.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, PydanticValidationError) as exc:
        raise StateCorruptionError(f"Cannot read state file {path}: {exc}") from exc
    state.check_consistency()
    return state


def _write_state(state: State, path: Path) -> None:
    """Write *state* atomically (temp file + fsync + rename), keeping a `.backup`."""
    path.parent.mkdir(parents=True, exist_ok=True)

    backup_path = Path(str(path) + ".backup")
    # Avoid TOCTOU race between exists() and read_bytes().
    with contextlib.suppress(FileNotFoundError):
        backup_path.write_bytes(path.read_bytes())

    data = state.model_dump(mode="json")
    content = json.dumps(data, indent=2, sort_keys=True) + "\n"

    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    tmp_file = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp_file.replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp_file.unlink()
    logger.debug("State saved: serial=%d path=%s", state.serial, path)


class StateStore:
    """Single writer for the persisted state.

    Every ``commit``/``remove`` rewrites the whole document atomically, so a
    reader never observes a half-written record and a crash mid-run leaves
    state consistent with whatever already completed. Writes are serialized
    with a lock; callers on several threads may share one store.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._state: State | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _current(self) -> State:
        if self._state is None:
            if self._path.exists():
                self._state = _read_state(self._path)
                logger.debug(
                    "State loaded: serial=%d, %d records",
                    self._state.serial,
                    len(self._state.records),
                )
            else:
                logger.debug("No state at %s, starting empty", self._path)
                self._state = State()
        return self._state

    def load(self) -> State:
        """Return a snapshot (deep copy) of all records.

        Raises:
            StateCorruptionError: If the persisted state is unreadable.
        """
        with self._lock:
            self._state = None
            return self._current().model_copy(deep=True)

    def initialize(self, *, lineage: str) -> None:
        """Start an empty in-memory state with a known lineage (nothing is written)."""
        with self._lock:
            self._state = State(lineage=lineage)

    def get(self, address: str) -> StateRecord | None:
        with self._lock:
            record = self._current().records.get(address)
            return record.model_copy(deep=True) if record is not None else None

    def commit(self, record: StateRecord) -> None:
        """Insert or replace one record."""
        with self._lock:
            state = self._current()
            updated = state.model_copy(deep=True)
            updated.records[record.address] = record.model_copy(deep=True)
            updated.serial += 1
            _write_state(updated, self._path)
            self._state = updated

    def remove(self, kind: str, name: str) -> None:
        """Delete one record. Removing an absent record is a no-op."""
        address = state_address(kind, name)
        with self._lock:
            state = self._current()
            if address not in state.records:
                return
            updated = state.model_copy(deep=True)
            del updated.records[address]
            updated.serial += 1
            _write_state(updated, self._path)
            self._state = updated

    def replace(self, state: State) -> None:
        """Persist a whole document (used by refresh), bumping the serial."""
        state.check_consistency()
        with self._lock:
            updated = state.model_copy(deep=True)
            updated.serial = self._current().serial + 1
            _write_state(updated, self._path)
            self._state = updated
