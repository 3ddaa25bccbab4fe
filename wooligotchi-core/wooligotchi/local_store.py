"""
Durable local storage for the Wooligotchi core.

Each concern (pet save, lives map, pending markers, WOOL ledger) is kept as an
independently keyed JSON blob. Writes are best effort: failures are logged and
reported to the caller as ``False`` so gameplay never blocks on the disk.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.:-]")


def normalise_owner(owner: Optional[str]) -> str:
    """Return the lowercased, stripped owner address ('' when missing)."""
    return (owner or "").strip().lower()


def owner_key(network_id: int, owner: str) -> str:
    """Build the canonical ``"<network>:<owner>"`` namespace key."""
    return f"{int(network_id)}:{normalise_owner(owner)}"


class LocalStore:
    """File-backed blob store, one JSON file per key under ``root``."""

    def __init__(self, root: Path, logger_: Optional[logging.Logger] = None) -> None:
        self._root = Path(root).expanduser()
        self._logger = logger_ or logger

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        safe = _UNSAFE_KEY_CHARS.sub("_", key).replace(":", "__")
        return self._root / f"{safe}.json"

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored blob for ``key`` or ``default`` if missing/corrupt."""
        path = self._path_for(key)
        try:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except Exception as exc:
            self._logger.warning("Failed to read local blob %s: %s", key, exc)
            return default

    def set(self, key: str, value: Any) -> bool:
        """Persist ``value`` atomically; never raises."""
        path = self._path_for(key)
        try:
            # Serialize fully before touching the disk so a failure leaves the old blob.
            serialized = json.dumps(value, indent=2, sort_keys=True)
            self._root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self._root), prefix=".tmp-", suffix=".json"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(serialized)
                os.replace(tmp_name, path)
            except Exception:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
            return True
        except Exception as exc:
            self._logger.warning("Failed to persist local blob %s: %s", key, exc)
            return False

    def delete(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
            return True
        except Exception as exc:
            self._logger.warning("Failed to delete local blob %s: %s", key, exc)
            return False


class MemoryStore:
    """In-memory stand-in with the same API, used by tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self.fail_writes = False

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> bool:
        if self.fail_writes:
            logger.warning("Failed to persist local blob %s: store unavailable", key)
            return False
        self._data[key] = json.dumps(value, sort_keys=True)
        return True

    def delete(self, key: str) -> bool:
        self._data.pop(key, None)
        return True


class KeyedRepository:
    """A map blob stored under one key, addressed by ``(network_id, owner)``.

    Mutations build the complete next map in memory and write it in one call,
    so a failed write never exposes a partial record to later reads.
    """

    def __init__(self, store: Any, blob_key: str) -> None:
        self._store = store
        self._blob_key = blob_key
        self._cache: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        data = self._store.get(self._blob_key, {})
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring malformed repository blob %s (%s)",
                self._blob_key,
                type(data).__name__,
            )
            return {}
        return data

    def reload(self) -> None:
        self._cache = self._load()

    def get(self, key: str, default: Any = None) -> Any:
        value = self._cache.get(key, default)
        return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> bool:
        next_map = dict(self._cache)
        next_map[key] = copy.deepcopy(value)
        # In-memory state stays authoritative for the session even if the write fails.
        self._cache = next_map
        return self._store.set(self._blob_key, next_map)

    def delete(self, key: str) -> bool:
        if key not in self._cache:
            return True
        next_map = dict(self._cache)
        next_map.pop(key, None)
        self._cache = next_map
        return self._store.set(self._blob_key, next_map)

    def keys(self) -> List[str]:
        return list(self._cache.keys())
