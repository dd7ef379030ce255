"""Ledger Store — keyed snapshot persistence with optimistic concurrency.

Every key carries a version counter. save() must name the version it last
saw; a mismatch means another actor (a teammate's session, an admin reset)
wrote in between, and StaleLedgerError is raised so the caller can reload
instead of clobbering that write.

Subscribers are notified after every successful save/delete with
(key, snapshot_or_None, version).
"""

from __future__ import annotations

import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

StoreCallback = Callable[[str, "dict[str, Any] | None", int], None]

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class StaleLedgerError(Exception):
    """save() was called with a version that is no longer current."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        super().__init__(f"Ledger {key!r} is at version {actual}, expected {expected}")
        self.key = key
        self.expected = expected
        self.actual = actual


def resolve_ledger_key(trader_id: str, team_id: str | None, teams: Mapping[str, str]) -> str:
    """Ledger key for a trader: the team leader's id when on a known team, else their own."""
    if team_id:
        leader_id = teams.get(team_id)
        if leader_id:
            return leader_id
    return trader_id


class LedgerStore(ABC):
    """Abstract key → (snapshot, version) store."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._subscribers: list[StoreCallback] = []

    def subscribe(self, callback: StoreCallback) -> None:
        self._subscribers.append(callback)

    def load(self, key: str) -> tuple[dict[str, Any] | None, int]:
        """Return (snapshot, version). Missing keys are (None, 0)."""
        with self._lock_for(key):
            return self._read(key)

    def save(self, key: str, snapshot: dict[str, Any], expected_version: int) -> int:
        """Write if the stored version still equals expected_version. Returns the new version."""
        with self._lock_for(key):
            _, current = self._read(key)
            if current != expected_version:
                raise StaleLedgerError(key, expected_version, current)
            version = current + 1
            self._write(key, snapshot, version)
        self._notify(key, snapshot, version)
        return version

    def delete(self, key: str) -> None:
        with self._lock_for(key):
            _, current = self._read(key)
            self._remove(key)
        logger.info("Ledger %s deleted (was version %d)", key, current)
        self._notify(key, None, 0)

    @abstractmethod
    def keys(self) -> list[str]:
        ...

    @abstractmethod
    def _read(self, key: str) -> tuple[dict[str, Any] | None, int]:
        ...

    @abstractmethod
    def _write(self, key: str, snapshot: dict[str, Any], version: int) -> None:
        ...

    @abstractmethod
    def _remove(self, key: str) -> None:
        ...

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def _notify(self, key: str, snapshot: dict[str, Any] | None, version: int) -> None:
        for callback in list(self._subscribers):
            try:
                callback(key, snapshot, version)
            except Exception:
                logger.exception("Error in ledger store subscriber for %s", key)


class InMemoryLedgerStore(LedgerStore):
    """Process-local store. Snapshots are deep-copied through JSON on the way in and out."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, tuple[str, int]] = {}

    def keys(self) -> list[str]:
        return list(self._data)

    def _read(self, key: str) -> tuple[dict[str, Any] | None, int]:
        entry = self._data.get(key)
        if entry is None:
            return None, 0
        raw, version = entry
        return json.loads(raw), version

    def _write(self, key: str, snapshot: dict[str, Any], version: int) -> None:
        self._data[key] = (json.dumps(snapshot), version)

    def _remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileLedgerStore(LedgerStore):
    """One JSON file per key under a directory: {"version": n, "snapshot": {...}}."""

    def __init__(self, directory: str | Path) -> None:
        super().__init__()
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._dir

    def keys(self) -> list[str]:
        return sorted(p.stem for p in self._dir.glob("*.json"))

    def _path(self, key: str) -> Path:
        return self._dir / f"{_SAFE_KEY.sub('_', key)}.json"

    def _read(self, key: str) -> tuple[dict[str, Any] | None, int]:
        path = self._path(key)
        if not path.exists():
            return None, 0
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return payload.get("snapshot"), int(payload.get("version", 0))
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError):
            # Unreadable file: treat as version 0 so the next save replaces it
            logger.exception("Unreadable ledger file %s", path)
            return None, 0

    def _write(self, key: str, snapshot: dict[str, Any], version: int) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps({"version": version, "snapshot": snapshot}, indent=2), encoding="utf-8")
        tmp.replace(path)

    def _remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
