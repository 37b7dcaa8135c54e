"""File-backed extension registry.

The registry is a single JSON file rewritten in full on every mutation
(temp file + atomic rename) while holding a cross-process lock file. Reads
are served from an in-memory ordered map filled by ``load()``.

Several processes may share one registry path. Each store remembers which
ids it changed since the last sync, and ``save()`` merges those changes
into whatever is on disk at the time, so writers never drop each other's
records.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from exthub.config import DEFAULT_BASE_DIR, Settings
from exthub.errors import (
    RegistryCorruptError,
    RegistryError,
    RegistryPersistError,
)
from exthub.registry.lock import (
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STALE_AFTER,
    RegistryLock,
)
from exthub.registry.models import (
    REGISTRY_SCHEMA_VERSION,
    ExistingInstall,
    ExtensionRecord,
    RegistryStats,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {f.name for f in dataclasses.fields(ExtensionRecord)} - {"id"}


class RegistryStore:
    """Persistent, lock-protected collection of extension records."""

    def __init__(
        self,
        registry_path: str | Path | None = None,
        extensions_dir: str | Path | None = None,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        stale_after: float = DEFAULT_STALE_AFTER,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.registry_path = Path(registry_path or DEFAULT_BASE_DIR / "registry.json")
        self.extensions_dir = Path(extensions_dir or DEFAULT_BASE_DIR / "installed")
        self._lock = RegistryLock(
            self.registry_path,
            timeout=lock_timeout,
            stale_after=stale_after,
            poll_interval=poll_interval,
        )

        self._extensions: dict[str, ExtensionRecord] = {}
        self.loaded = False

        # Local changes not yet merged into the file
        self._dirty: set[str] = set()
        self._deleted: set[str] = set()
        self._clear_pending = False

        # Save coalescing
        self._saving = False
        self._save_pending = False
        self._writes = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RegistryStore":
        return cls(settings.registry_path, settings.extensions_dir)

    @property
    def lock_path(self) -> Path:
        return self._lock.path

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create the registry and install directories, then load."""
        for directory in (self.registry_path.parent, self.extensions_dir):
            try:
                directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            except OSError as e:
                raise RegistryError(f"Failed to create directory {directory}: {e}") from e
        await self.load()

    async def load(self) -> None:
        """Replace the in-memory map with the contents of the registry file.

        A missing file is an empty registry.
        """
        if not self.registry_path.parent.is_dir():
            self._reset({})
            return

        async with self._lock:
            records = self._read_file()
        self._reset(records)

    async def save(self) -> None:
        """Write the registry to disk.

        If a save is already in flight this only flags that another pass is
        needed; the running save repeats until no pass is pending.
        """
        if self._saving:
            self._save_pending = True
            return

        self._saving = True
        try:
            while True:
                self._save_pending = False
                async with self._lock:
                    self._sync_to_disk()
                if not self._save_pending:
                    break
        finally:
            self._saving = False

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(self, record: ExtensionRecord) -> None:
        """Insert or replace *record*, keyed by its id."""
        if not isinstance(record, ExtensionRecord):
            raise TypeError("Invalid extension object")

        async with self._transaction(record.id, "save"):
            self._extensions[record.id] = record
            self._mark_dirty(record.id)

    async def update(self, ext_id: str, **changes: Any) -> Optional[ExtensionRecord]:
        """Shallow-merge *changes* into an existing record.

        Returns the updated record, or None if *ext_id* is unknown.
        """
        current = self._extensions.get(ext_id)
        if current is None:
            return None

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        updated = dataclasses.replace(current, **changes)
        async with self._transaction(ext_id, "update"):
            self._extensions[ext_id] = updated
            self._mark_dirty(ext_id)
        return updated

    async def remove(self, ext_id: str) -> bool:
        """Delete *ext_id*. Returns False (and writes nothing) if absent."""
        if ext_id not in self._extensions:
            return False

        async with self._transaction(ext_id, "remove"):
            del self._extensions[ext_id]
            self._dirty.discard(ext_id)
            self._deleted.add(ext_id)
        return True

    async def clear(self) -> None:
        """Remove every record."""
        snapshot = dict(self._extensions)
        self._extensions.clear()
        self._clear_pending = True
        writes = self._writes
        try:
            await self.save()
        except (OSError, RegistryError, TypeError, ValueError) as e:
            if self._writes > writes:
                logger.warning("Registry %s cleared, but a later save failed: %s", self.registry_path, e)
                return
            self._extensions = snapshot
            self._clear_pending = False
            logger.error("Failed to clear registry %s: %s", self.registry_path, e)
            raise RegistryPersistError("Failed to clear registry") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, ext_id: str) -> Optional[ExtensionRecord]:
        return self._extensions.get(ext_id)

    def list_all(self) -> list[ExtensionRecord]:
        return list(self._extensions.values())

    def list_installed(self) -> list[ExtensionRecord]:
        return [e for e in self._extensions.values() if e.is_installed]

    def is_installed(self, ext_id: str) -> bool:
        record = self._extensions.get(ext_id)
        return record.is_installed if record else False

    def stats(self) -> RegistryStats:
        stats = RegistryStats(total=len(self._extensions))
        for record in self._extensions.values():
            if record.is_installed:
                stats.installed += 1
            stats.by_type[record.type.value] += 1
        return stats

    def check_existing(self, ext_id: str) -> Optional[ExistingInstall]:
        """Describe an existing installation of *ext_id*, if there is one."""
        record = self._extensions.get(ext_id)
        if record is None or not record.is_installed:
            return None
        version = record.installed_version or record.version
        return ExistingInstall(
            exists=True,
            extension=record,
            message=f"Extension {ext_id} is already installed (version {version})",
        )

    def __len__(self) -> int:
        return len(self._extensions)

    def __contains__(self, ext_id: object) -> bool:
        return ext_id in self._extensions

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, ext_id: str, action: str) -> AsyncIterator[None]:
        """Apply the body's in-memory change, persist, and revert on failure."""
        previous = self._extensions.get(ext_id)
        was_dirty = ext_id in self._dirty
        was_deleted = ext_id in self._deleted

        yield

        writes = self._writes
        try:
            await self.save()
        except (OSError, RegistryError, TypeError, ValueError) as e:
            if self._writes > writes:
                # an earlier pass of this save already wrote the change
                logger.warning(
                    "Saved extension %s to %s, but a later save failed: %s",
                    ext_id,
                    self.registry_path,
                    e,
                )
                return
            if previous is None:
                self._extensions.pop(ext_id, None)
            else:
                self._extensions[ext_id] = previous
            _set_membership(self._dirty, ext_id, was_dirty)
            _set_membership(self._deleted, ext_id, was_deleted)
            logger.error("Failed to %s extension %s in %s: %s", action, ext_id, self.registry_path, e)
            raise RegistryPersistError(f"Failed to {action} extension {ext_id}") from e

    def _mark_dirty(self, ext_id: str) -> None:
        self._dirty.add(ext_id)
        self._deleted.discard(ext_id)

    def _reset(self, records: dict[str, ExtensionRecord]) -> None:
        self._extensions = records
        self._dirty.clear()
        self._deleted.clear()
        self._clear_pending = False
        self.loaded = True

    def _read_file(self) -> dict[str, ExtensionRecord]:
        """Parse the registry file. Caller must hold the lock."""
        try:
            raw = self.registry_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise RegistryCorruptError(
                f"Registry file {self.registry_path} is not valid JSON: {e}"
            ) from e

        if (
            not isinstance(data, dict)
            or not data.get("version")
            or not isinstance(data.get("extensions"), list)
        ):
            raise RegistryCorruptError(f"Invalid registry format in {self.registry_path}")

        records: dict[str, ExtensionRecord] = {}
        for i, item in enumerate(data["extensions"]):
            if not isinstance(item, dict):
                raise RegistryCorruptError(
                    f"Invalid extension entry #{i} in {self.registry_path}"
                )
            try:
                record = ExtensionRecord.from_dict(item)
            except (TypeError, ValueError) as e:
                raise RegistryCorruptError(
                    f"Invalid extension entry #{i} in {self.registry_path}: {e}"
                ) from e
            records[record.id] = record
        return records

    def _sync_to_disk(self) -> None:
        """Merge local changes into the file and rewrite it. Caller holds the lock."""
        merged = {} if self._clear_pending else self._read_file()
        for ext_id in self._deleted:
            merged.pop(ext_id, None)
        for ext_id, record in self._extensions.items():
            if ext_id in self._dirty:
                merged[ext_id] = record

        self._write_file(merged)
        self._writes += 1
        self._reset(merged)

    def _write_file(self, records: dict[str, ExtensionRecord]) -> None:
        payload = {
            "version": REGISTRY_SCHEMA_VERSION,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
            "extensions": [r.to_dict() for r in records.values()],
        }
        text = json.dumps(payload, indent=2, ensure_ascii=False)

        tmp_path = self.registry_path.with_name(
            f"{self.registry_path.name}.tmp.{os.getpid()}.{uuid.uuid4().hex[:8]}"
        )
        try:
            fd = os.open(tmp_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_path, self.registry_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise


def _set_membership(target: set[str], item: str, present: bool) -> None:
    if present:
        target.add(item)
    else:
        target.discard(item)
