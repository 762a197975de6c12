"""Persistent key-value record of provisioned resources.

The state store is the only source of truth for what a deployment owns.
Entries are written after the provider confirms a resource exists, and
removed (retired) only after teardown confirms it is gone. One store backs
one deployment; running two orchestrations against the same store at the
same time is not supported.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Iterable
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from ._bootstrap_errors import StateStoreError
from ._resources import ResourceKind, ResourceRecord

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class StateEntry:
    """A single named value in the state store.

    ``kind`` is ``None`` for scalar values (for example a host address)
    that describe a resource rather than identify one.
    """

    name: str
    value: str
    kind: ResourceKind | None = None
    depends_on: tuple[str, ...] = ()
    created_at: str = ""
    sequence: int = 0

    def record(self) -> ResourceRecord:
        """Return the entry as a resource record.

        Examples
        --------
        >>> StateEntry("network-id", "vpc-1", ResourceKind.NETWORK).record().id
        'vpc-1'
        """
        if self.kind is None:
            msg = f"state entry {self.name!r} is a scalar, not a resource"
            raise StateStoreError(msg, resource=self.name)
        return ResourceRecord(
            name=self.name,
            kind=self.kind,
            id=self.value,
            depends_on=self.depends_on,
            created_at=self.created_at,
            sequence=self.sequence,
        )

    def to_mapping(self) -> dict[str, Any]:
        """Return a JSON-serialisable mapping."""
        return {
            "name": self.name,
            "value": self.value,
            "kind": None if self.kind is None else self.kind.value,
            "depends_on": list(self.depends_on),
            "created_at": self.created_at,
            "sequence": self.sequence,
        }

    @classmethod
    def from_mapping(cls, payload: Any) -> StateEntry:
        """Validate and build an entry from its persisted mapping."""
        if not isinstance(payload, dict):
            raise StateStoreError("state entry must be an object")
        name = payload.get("name")
        value = payload.get("value")
        if not isinstance(name, str) or not isinstance(value, str):
            raise StateStoreError("state entry name and value must be strings")
        kind_raw = payload.get("kind")
        try:
            kind = None if kind_raw is None else ResourceKind(kind_raw)
        except ValueError as exc:
            msg = f"unknown resource kind {kind_raw!r}"
            raise StateStoreError(msg, resource=name) from exc
        depends_on = payload.get("depends_on", [])
        if not isinstance(depends_on, list) or not all(
            isinstance(item, str) for item in depends_on
        ):
            msg = "depends_on must be list[str]"
            raise StateStoreError(msg, resource=name)
        sequence = payload.get("sequence", 0)
        if not isinstance(sequence, int):
            raise StateStoreError("sequence must be an integer", resource=name)
        return cls(
            name=name,
            value=value,
            kind=kind,
            depends_on=tuple(depends_on),
            created_at=str(payload.get("created_at", "")),
            sequence=sequence,
        )


class StateStore(Protocol):
    """Operations the provisioning driver and teardown controller rely on."""

    def get(self, name: str) -> StateEntry | None: ...

    def put(
        self,
        name: str,
        value: str,
        *,
        kind: ResourceKind | None = None,
        depends_on: Iterable[str] = (),
    ) -> StateEntry: ...

    def has_complete(self, names: Iterable[str]) -> bool: ...

    def clear(self, names: Iterable[str]) -> None: ...

    def entries(self) -> list[StateEntry]: ...

    def retire(self, name: str) -> None: ...

    def retired(self) -> list[StateEntry]: ...


class MemoryStateStore:
    """In-process state store; the file-backed store builds on it."""

    def __init__(self, *, now: Callable[[], datetime] = _utc_now) -> None:
        self._now = now
        self._entries: dict[str, StateEntry] = {}
        self._retired: dict[str, StateEntry] = {}
        self._sequence = 0

    def get(self, name: str) -> StateEntry | None:
        """Return the entry recorded under ``name``, if any."""
        return self._entries.get(name)

    def put(
        self,
        name: str,
        value: str,
        *,
        kind: ResourceKind | None = None,
        depends_on: Iterable[str] = (),
    ) -> StateEntry:
        """Record ``value`` under ``name`` once its dependencies are recorded.

        Examples
        --------
        >>> store = MemoryStateStore()
        >>> store.put("network-id", "vpc-1", kind=ResourceKind.NETWORK).sequence
        1
        """
        deps = tuple(depends_on)
        missing = [dep for dep in deps if dep not in self._entries]
        if missing:
            msg = f"dependencies not recorded: {', '.join(missing)}"
            raise StateStoreError(msg, resource=name)
        if not value:
            raise StateStoreError("refusing to record an empty value", resource=name)
        self._sequence += 1
        entry = StateEntry(
            name=name,
            value=value,
            kind=kind,
            depends_on=deps,
            created_at=self._now().isoformat(),
            sequence=self._sequence,
        )
        self._entries[name] = entry
        self._retired.pop(name, None)
        self._flush()
        logger.debug("Recorded %s=%s", name, value if kind is not None else "<scalar>")
        return entry

    def has_complete(self, names: Iterable[str]) -> bool:
        """Return ``True`` only when every name in the group is recorded."""
        return all(name in self._entries for name in names)

    def clear(self, names: Iterable[str]) -> None:
        """Forget the given entries so their group is re-created."""
        removed = [name for name in names if self._entries.pop(name, None)]
        if removed:
            logger.info("Cleared state entries: %s", ", ".join(removed))
            self._flush()

    def entries(self) -> list[StateEntry]:
        """Return live entries in creation order."""
        return sorted(self._entries.values(), key=lambda entry: entry.sequence)

    def retire(self, name: str) -> None:
        """Move ``name`` to the tombstone list after confirmed deletion."""
        entry = self._entries.pop(name, None)
        if entry is None:
            return
        self._retired[name] = entry
        self._flush()

    def retired(self) -> list[StateEntry]:
        """Return tombstoned entries in creation order."""
        return sorted(self._retired.values(), key=lambda entry: entry.sequence)

    def forget_retired(self) -> None:
        """Drop all tombstones."""
        if self._retired:
            self._retired.clear()
            self._flush()

    def _flush(self) -> None:
        """Persist the current state; the in-memory store keeps nothing."""

    def _restore(self, entries: list[StateEntry], retired: list[StateEntry]) -> None:
        self._entries = {entry.name: entry for entry in entries}
        self._retired = {entry.name: entry for entry in retired}
        self._sequence = max(
            (entry.sequence for entry in [*entries, *retired]), default=0
        )


class FileStateStore(MemoryStateStore):
    """State store persisted as a single JSON document.

    Every mutation is flushed atomically (temp file, fsync, rename) before
    the call returns, so a crash never leaves a half-written store.
    """

    def __init__(self, path: Path, *, now: Callable[[], datetime] = _utc_now) -> None:
        super().__init__(now=now)
        self.path = path
        if path.exists():
            entries, retired = _load_document(path)
            self._restore(entries, retired)

    def _flush(self) -> None:
        payload = {
            "version": STATE_FORMAT_VERSION,
            "entries": [entry.to_mapping() for entry in self.entries()],
            "retired": [entry.to_mapping() for entry in self.retired()],
        }
        write_atomically(self.path, json.dumps(payload, indent=2))


def _load_document(path: Path) -> tuple[list[StateEntry], list[StateEntry]]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        msg = f"Failed to parse state file {path}: {exc}"
        raise StateStoreError(msg) from exc
    if not isinstance(payload, dict):
        msg = f"State file {path} must contain a JSON object"
        raise StateStoreError(msg)
    version = payload.get("version")
    if version != STATE_FORMAT_VERSION:
        msg = f"Unsupported state file version {version!r} in {path}"
        raise StateStoreError(msg)
    entries = [StateEntry.from_mapping(item) for item in payload.get("entries", [])]
    retired = [StateEntry.from_mapping(item) for item in payload.get("retired", [])]
    return entries, retired


def write_atomically(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` atomically with owner-only permissions."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
    except Exception:
        with suppress(FileNotFoundError):
            os.unlink(tmp_path)
        raise

    tmp_path.replace(path)
    os.chmod(path, 0o600)


__all__ = [
    "FileStateStore",
    "MemoryStateStore",
    "StateEntry",
    "StateStore",
    "write_atomically",
]