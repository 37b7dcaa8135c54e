"""Reduced semantic-version range matching.

Supports ``*``, ``^``, ``~``, ``>=`` and exact versions over
``MAJOR.MINOR.PATCH``. Pre-release precedence and ``||`` are not evaluated.
"""

from __future__ import annotations

import re

_VERSION_RE = re.compile(
    r"^v?(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    r"(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$"
)


def parse_version(version: str) -> tuple[int, int, int] | None:
    """Split *version* into ``(major, minor, patch)``, or None if it can't be."""
    if not isinstance(version, str):
        return None
    match = _VERSION_RE.match(version.strip())
    if not match:
        return None
    return int(match["major"]), int(match["minor"]), int(match["patch"])


def is_compatible(range_spec: str, version: str) -> bool:
    """Return True if *version* satisfies *range_spec*.

    >>> is_compatible("^1.0.0", "1.9.9")
    True
    >>> is_compatible("~1.2.0", "1.3.0")
    False
    """
    expr = (range_spec or "").strip()
    if expr in ("", "*"):
        return True

    current = parse_version(version)
    if current is None:
        return False

    if expr.startswith(">="):
        required = parse_version(expr[2:])
        return required is not None and current >= required

    if expr.startswith("^"):
        required = parse_version(expr[1:])
        if required is None:
            return False
        major, minor, patch = required
        if major > 0:
            return current[0] == major and current[1:] >= (minor, patch)
        if minor > 0:
            return current[:2] == (0, minor) and current[2] >= patch
        return current == required

    if expr.startswith("~"):
        required = parse_version(expr[1:])
        if required is None:
            return False
        return current[:2] == required[:2] and current[2] >= required[2]

    required = parse_version(expr)
    return required is not None and current == required
