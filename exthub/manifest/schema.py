"""Field sets and grammars for extension manifests."""

from __future__ import annotations

import re

HOST_ENGINE = "claude-code"

EXTENSION_TYPES = {"plugin", "skill", "command", "agent"}

REQUIRED_FIELDS = ("type", "name", "version", "description", "author")
OPTIONAL_STRING_FIELDS = ("displayName", "icon", "repository", "entryPoint")
STRING_LIST_FIELDS = ("permissions", "keywords")

# MAJOR.MINOR.PATCH with optional -prerelease and +buildmetadata
SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[A-Za-z-][0-9A-Za-z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[A-Za-z-][0-9A-Za-z-]*))*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

_RANGE_TERM = r"(?:\*|(?:\^|~|>=)?\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?)"

# A bare version, ^/~/>= prefixed version, or *, optionally ||-combined
VERSION_RANGE_RE = re.compile(rf"^\s*{_RANGE_TERM}(?:\s*\|\|\s*{_RANGE_TERM})*\s*$")
