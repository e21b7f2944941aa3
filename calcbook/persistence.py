"""
Persistence: durable storage for cell sources and the startup snapshot.

The whole session is one JSON array of cell sources stored under a single
key. Storage problems never take the notebook down: a failed read means
"no previous session", a failed write means "persistence skipped".
"""

import json
import logging
import os
from pathlib import Path
from typing import Callable, Optional, Protocol

from calcbook.errors import StorageFault
from calcbook.state import Session, SessionSnapshot, Store


logger = logging.getLogger(__name__)

STORAGE_KEY = "cells"


def default_home() -> Path:
    """Base directory for calcbook data (CALCBOOK_HOME or ~/.calcbook)."""
    env_home = os.environ.get("CALCBOOK_HOME")
    if env_home:
        return Path(env_home)
    return Path.home() / ".calcbook"


def default_storage_path() -> Path:
    """Storage file (CALCBOOK_STORAGE or <home>/storage.json)."""
    env_path = os.environ.get("CALCBOOK_STORAGE")
    if env_path:
        return Path(env_path)
    return default_home() / "storage.json"


class Storage(Protocol):
    """Minimal key-value storage."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    """In-process storage, mostly for tests and one-shot runs."""

    def __init__(self, data: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str):
        self.data[key] = value


class FileStorage:
    """
    Key-value storage backed by one JSON object on disk.

    Every `set` rewrites the file; last write wins.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize file storage.

        Args:
            path: JSON file to use, defaults to default_storage_path()
        """
        self.path = Path(path) if path is not None else default_storage_path()

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageFault(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageFault(f"Unexpected storage content in {self.path}")
        return data

    def get(self, key: str) -> Optional[str]:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str):
        try:
            data = self._read_all()
        except StorageFault:
            logger.warning("Overwriting unreadable storage file %s", self.path)
            data = {}
        data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise StorageFault(f"Cannot write {self.path}: {e}") from e


def decode_sources(raw: Optional[str]) -> tuple[str, ...]:
    """
    Turn the stored value into a restorable snapshot.

    Absent, undecodable, malformed, empty, or all-blank data all mean there
    is nothing to restore and give ().
    """
    if raw is None:
        return ()
    try:
        sources = json.loads(raw)
    except ValueError:
        logger.warning("Stored session is not valid JSON, ignoring it")
        return ()
    if not isinstance(sources, list) or not all(isinstance(s, str) for s in sources):
        logger.warning("Stored session has an unexpected shape, ignoring it")
        return ()
    if all(len(s) == 0 for s in sources):
        return ()
    return tuple(sources)


class PersistenceAdapter:
    """Reads the startup snapshot and writes cell sources through on change."""

    def __init__(self, storage: Storage, key: str = STORAGE_KEY):
        self.storage = storage
        self.key = key

    def load_previous_session(self) -> tuple[str, ...]:
        """Read the stored sources; any storage failure counts as none."""
        try:
            raw = self.storage.get(self.key)
        except StorageFault as e:
            logger.warning("Could not read previous session: %s", e)
            return ()
        return decode_sources(raw)

    def take_snapshot(self, store: Store) -> Session:
        """Record the startup snapshot in the store."""
        return store.dispatch(SessionSnapshot(previous_session=self.load_previous_session()))

    def save(self, state: Session) -> bool:
        """
        Write the cell sources if the startup snapshot was taken.

        Returns:
            True if the write happened
        """
        if state.previous_session is None:
            return False
        payload = json.dumps([cell.code for cell in state.cells])
        try:
            self.storage.set(self.key, payload)
        except StorageFault as e:
            logger.warning("Skipping session persistence: %s", e)
            return False
        return True

    def attach(self, store: Store) -> Callable[[], None]:
        """Write through on every state change. Returns the unsubscribe function."""
        return store.subscribe(self.save)

    def clear(self):
        """Forget the stored session."""
        self.storage.set(self.key, json.dumps([]))
