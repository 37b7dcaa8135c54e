"""TTL + ETag response cache for GitHub API calls.

Entries expire after ``ttl`` seconds but are kept around: their ETag is
still useful as an ``If-None-Match`` validator, and a 304 answer lets the
stale value be served again. Entries are dropped once they have been expired
for longer than ``keep_stale`` seconds, and the oldest ones go first when
the cache grows past ``max_entries``.

The cache can optionally be mirrored to a JSON file so separate processes
benefit from each other's responses. Access to that file is best effort and
unlocked. Refreshing an entry with an identical value and ETag only
extends it in memory and does not rewrite the file.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0
DEFAULT_KEEP_STALE = 24 * 60 * 60.0
DEFAULT_MAX_ENTRIES = 500


class CacheBackend(Protocol):
    """What GitHubAPIProxy needs from a cache."""

    def get(self, key: str) -> Any: ...

    def get_stale(self, key: str) -> Any: ...

    def set(self, key: str, value: Any, etag: Optional[str] = None) -> None: ...

    def get_etag(self, key: str) -> Optional[str]: ...

    def clear(self) -> None: ...


@dataclass
class CacheEntry:
    key: str
    value: Any
    etag: Optional[str]
    expires_at: float  # epoch seconds

    @property
    def expired(self) -> bool:
        return time.time() >= self.expires_at


class ResponseCache:
    """In-memory response cache with optional JSON file persistence."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        store_path: str | Path | None = None,
        *,
        keep_stale: float = DEFAULT_KEEP_STALE,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self.ttl = ttl
        self.keep_stale = keep_stale
        self.max_entries = max_entries
        self.store_path = Path(store_path) if store_path else None
        self._entries: dict[str, CacheEntry] = {}
        if self.store_path is not None:
            self._load(self.store_path)
            self._evict()

    def get(self, key: str) -> Any:
        """Return the cached value if present and fresh, else None."""
        entry = self._entries.get(key)
        if entry is None or entry.expired:
            return None
        return entry.value

    def get_stale(self, key: str) -> Any:
        """Return the cached value even if it has expired."""
        entry = self._entries.get(key)
        return entry.value if entry else None

    def get_etag(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        return entry.etag if entry else None

    def set(self, key: str, value: Any, etag: Optional[str] = None) -> None:
        previous = self._entries.pop(key, None)
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            etag=etag,
            expires_at=time.time() + self.ttl,
        )
        evicted = self._evict()
        if evicted or previous is None or (previous.value, previous.etag) != (value, etag):
            self._persist()

    def delete(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self._persist()

    def clear(self) -> None:
        self._entries.clear()
        self._persist()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _evict(self) -> int:
        """Drop long-expired entries, then the oldest beyond ``max_entries``."""
        cutoff = time.time() - self.keep_stale
        dead = [key for key, entry in self._entries.items() if entry.expires_at < cutoff]
        for key in dead:
            del self._entries[key]

        # set() re-inserts, so the front of the dict is the oldest write
        overflow = max(len(self._entries) - max(self.max_entries, 1), 0)
        for key in list(self._entries)[:overflow]:
            del self._entries[key]

        evicted = len(dead) + overflow
        if evicted:
            logger.debug("Evicted %d cache entries", evicted)
        return evicted

    def _load(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            for raw in data.get("entries", []):
                entry = CacheEntry(**raw)
                self._entries[entry.key] = entry
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable cache file %s: %s", path, e)
            self._entries.clear()

    def _persist(self) -> None:
        if self.store_path is None:
            return
        payload = {"entries": [asdict(e) for e in self._entries.values()]}
        tmp_path = self.store_path.with_name(f"{self.store_path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload), encoding="utf-8")
            os.replace(tmp_path, self.store_path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not write cache file %s: %s", self.store_path, e)
            tmp_path.unlink(missing_ok=True)
