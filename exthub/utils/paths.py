"""Archive extraction path checks (Zip Slip protection)."""

from __future__ import annotations

import os
import re
from pathlib import Path, PurePosixPath

_WINDOWS_ABSOLUTE_RE = re.compile(r"^(?:[A-Za-z]:|[\\/]{2})")


def is_safe_extraction_path(entry_path: str, target_dir: str | Path) -> bool:
    """Return True if *entry_path* stays inside *target_dir* once extracted.

    Entry names come straight from an archive and must be treated as
    hostile. Absolute names and ``..`` segments are rejected up front, then
    the joined path is normalized and compared against the target.
    Normalization does not touch the filesystem, so the result is the same
    whether or not the target exists yet.
    """
    if not entry_path:
        return False

    normalized = entry_path.replace("\\", "/")
    if normalized.startswith("/") or _WINDOWS_ABSOLUTE_RE.match(entry_path):
        return False
    if ".." in PurePosixPath(normalized).parts:
        return False

    target = os.path.abspath(os.fspath(target_dir))
    resolved = os.path.abspath(os.path.join(target, normalized))

    return resolved == target or resolved.startswith(target.rstrip(os.sep) + os.sep)
