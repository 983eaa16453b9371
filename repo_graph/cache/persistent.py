"""TTL store persisted to a JSON file, for caches that should survive restarts."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from repo_graph.cache.store import CacheEntry, CacheStore, Clock
from repo_graph.models import Catalog, DirectoryListing, FileContent, TreeListing

logger = logging.getLogger(__name__)

# Value types that can be written to disk, keyed by their serialised tag
_CODECS: dict[str, type] = {
    "catalog": Catalog,
    "tree": TreeListing,
    "directory": DirectoryListing,
    "file": FileContent,
}
_TAGS: dict[type, str] = {cls: tag for tag, cls in _CODECS.items()}


def encode_value(value: Any) -> dict[str, Any]:
    tag = _TAGS.get(type(value))
    if tag is not None:
        return {"type": tag, "data": value.to_dict()}
    if value is None or isinstance(value, (str, int, float, bool)):
        return {"type": "scalar", "data": value}
    raise TypeError(f"Cannot persist cache value of type {type(value).__name__}")


def decode_value(payload: dict[str, Any]) -> Any:
    tag = payload.get("type")
    if tag == "scalar":
        return payload.get("data")
    cls = _CODECS.get(tag)
    if cls is None:
        raise ValueError(f"Unknown cache value type: {tag!r}")
    return cls.from_dict(payload["data"])


class PersistentCacheStore(CacheStore):
    """:class:`CacheStore` whose entries can be written to ``path``.

    The file is loaded once at construction. A missing file starts empty; a
    corrupt one is logged and ignored so a bad cache never blocks analysis.
    Mutations only mark the store dirty; :meth:`flush` snapshots the entries
    under the store lock and writes them outside it, to a temporary sibling
    that is moved into place atomically.
    """

    def __init__(self, path: Path, clock: Clock | None = None):
        super().__init__(clock=clock)
        self.path = Path(path)
        self._dirty = False
        self._write_lock = threading.Lock()
        self._load()

    @property
    def dirty(self) -> bool:
        return self._dirty

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            for key, item in raw.get("entries", {}).items():
                self._entries[key] = CacheEntry(
                    key=key,
                    value=decode_value(item["value"]),
                    stored_at=float(item["stored_at"]),
                    ttl=float(item["ttl"]),
                )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable cache file %s: %s", self.path, e)
            self._entries.clear()
            return
        logger.debug("Loaded %d cache entries from %s", len(self._entries), self.path)

    def _on_change(self) -> None:
        self._dirty = True

    def flush(self) -> bool:
        """Write the current entries to disk if anything changed since the last flush.

        Returns True when the file was rewritten.
        """
        with self._write_lock:
            with self._lock:
                if not self._dirty:
                    return False
                snapshot = list(self._entries.values())
                self._dirty = False
            payload = {
                "entries": {
                    entry.key: {
                        "value": encode_value(entry.value),
                        "stored_at": entry.stored_at,
                        "ttl": entry.ttl,
                    }
                    for entry in snapshot
                }
            }
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp = self.path.with_suffix(self.path.suffix + ".tmp")
                tmp.write_text(json.dumps(payload), encoding="utf-8")
                os.replace(tmp, self.path)
            except OSError as e:
                logger.warning("Could not persist cache to %s: %s", self.path, e)
                with self._lock:
                    self._dirty = True
                return False
            logger.debug("Persisted %d cache entries to %s", len(snapshot), self.path)
            return True
