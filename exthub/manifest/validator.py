"""Manifest validator — shape and field-type checks for extension manifests.

Every problem is collected in one pass so the installer can show the user
the complete list at once instead of one error per attempt.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from exthub.manifest.schema import (
    EXTENSION_TYPES,
    HOST_ENGINE,
    OPTIONAL_STRING_FIELDS,
    REQUIRED_FIELDS,
    SEMVER_RE,
    STRING_LIST_FIELDS,
    VERSION_RANGE_RE,
)


@dataclass
class ManifestValidation:
    """Result of validating (and optionally parsing) a manifest."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    manifest: dict[str, Any] | None = None


def validate_manifest(manifest: Any) -> ManifestValidation:
    """Validate a parsed manifest dict.

    Returns a ManifestValidation whose ``errors`` list is empty when valid.
    """
    if not isinstance(manifest, dict):
        return ManifestValidation(valid=False, errors=["Manifest must be an object"])

    errors: list[str] = []

    for name in REQUIRED_FIELDS:
        if name not in manifest or manifest[name] is None:
            errors.append(f"Missing required field: {name}")
        elif not isinstance(manifest[name], str):
            errors.append(f"Field '{name}' must be a string")

    ext_type = manifest.get("type")
    if isinstance(ext_type, str) and ext_type not in EXTENSION_TYPES:
        allowed = ", ".join(sorted(EXTENSION_TYPES))
        errors.append(f"Invalid type '{ext_type}'. Must be one of: {allowed}")

    version = manifest.get("version")
    if isinstance(version, str) and not SEMVER_RE.match(version):
        errors.append(
            f"Invalid version format '{version}'. "
            "Must follow semantic versioning (e.g. 1.0.0)"
        )

    for name in OPTIONAL_STRING_FIELDS:
        if name in manifest and not isinstance(manifest[name], str):
            errors.append(f"Field '{name}' must be a string")

    if "engines" in manifest:
        errors.extend(_check_engines(manifest["engines"]))

    for name in STRING_LIST_FIELDS:
        if name not in manifest:
            continue
        value = manifest[name]
        if not isinstance(value, list):
            errors.append(f"Field '{name}' must be an array of strings")
            continue
        for i, item in enumerate(value):
            if not isinstance(item, str):
                errors.append(f"Field '{name}[{i}]' must be a string")

    return ManifestValidation(valid=not errors, errors=errors, manifest=manifest)


def _check_engines(engines: Any) -> list[str]:
    if not isinstance(engines, dict):
        return ["Field 'engines' must be an object"]
    if HOST_ENGINE not in engines:
        return []
    wanted = engines[HOST_ENGINE]
    if not isinstance(wanted, str):
        return [f"Field 'engines.{HOST_ENGINE}' must be a string"]
    if not VERSION_RANGE_RE.match(wanted):
        return [f"Invalid version range '{wanted}' in engines.{HOST_ENGINE}"]
    return []


def parse_manifest(raw_text: str | bytes) -> ManifestValidation:
    """Parse manifest JSON text and validate it.

    A parse failure yields a single error and ``manifest=None``.
    """
    try:
        data = json.loads(raw_text)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        return ManifestValidation(valid=False, errors=[f"Failed to parse JSON: {e}"])

    result = validate_manifest(data)
    if not isinstance(data, dict):
        result.manifest = None
    return result


def load_manifest_file(path: str | Path) -> ManifestValidation:
    """Read a manifest from disk (JSON, or YAML for ``.yaml``/``.yml``)."""
    path = Path(path)
    if not path.exists():
        return ManifestValidation(valid=False, errors=[f"File not found: {path}"])

    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() not in (".yaml", ".yml"):
        return parse_manifest(text)

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        return ManifestValidation(valid=False, errors=[f"Invalid YAML: {e}"])

    result = validate_manifest(data)
    if not isinstance(data, dict):
        result.manifest = None
    return result
