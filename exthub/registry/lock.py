"""Cross-process lock for the registry file.

The lock is a side file created with ``O_CREAT | O_EXCL`` holding the
owner's pid and a millisecond timestamp. A holder that crashed leaves the
file behind; once it is older than ``stale_after`` the next caller reclaims
it. A lock file that cannot be parsed is aged by its modification time.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path

from exthub.errors import LockTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0
DEFAULT_STALE_AFTER = 30.0
DEFAULT_POLL_INTERVAL = 0.1


def _now_ms() -> int:
    return int(time.time() * 1000)


class RegistryLock:
    """Exclusive lock file guarding a registry path.

    Usage::

        async with RegistryLock(registry_path):
            ...  # read or rewrite the registry
    """

    def __init__(
        self,
        registry_path: str | Path,
        *,
        timeout: float = DEFAULT_LOCK_TIMEOUT,
        stale_after: float = DEFAULT_STALE_AFTER,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.path = Path(f"{registry_path}.lock")
        self.timeout = timeout
        self.stale_after = stale_after
        self.poll_interval = poll_interval

    async def acquire(self) -> None:
        deadline = time.monotonic() + self.timeout

        while time.monotonic() < deadline:
            if self._try_create():
                return
            if self._reclaim_if_stale():
                continue
            await asyncio.sleep(self.poll_interval)

        raise LockTimeoutError("Failed to acquire registry lock within timeout")

    def release(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to release registry lock %s: %s", self.path, e)

    async def __aenter__(self) -> "RegistryLock":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps({"pid": os.getpid(), "timestamp": _now_ms()}))
        return True

    def _reclaim_if_stale(self) -> bool:
        """Delete the lock file if its holder looks dead. Returns True if so."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            age_ms = _now_ms() - int(data["timestamp"])
        except FileNotFoundError:
            # Released between our create attempt and the read.
            return True
        except (OSError, ValueError, KeyError, TypeError):
            return self._reclaim_unreadable()

        if age_ms > self.stale_after * 1000:
            logger.warning(
                "Reclaiming stale registry lock %s (pid %s, %.1fs old)",
                self.path,
                data.get("pid"),
                age_ms / 1000,
            )
            self.release()
            return True
        return False

    def _reclaim_unreadable(self) -> bool:
        """Delete an unparsable lock file once it is older than ``stale_after``.

        A holder that has just created the file may not have written its
        contents yet, so a young unreadable lock is waited on like any other.
        """
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning("Could not stat registry lock %s: %s", self.path, e)
            return False

        if age <= self.stale_after:
            return False
        logger.warning("Removing unreadable registry lock %s (%.1fs old)", self.path, age)
        self.release()
        return True
