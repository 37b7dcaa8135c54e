"""Extension manifests — the declarative ``extension.json`` shipped with
every plugin, skill, command or agent.
"""

from exthub.manifest.validator import (
    ManifestValidation,
    load_manifest_file,
    parse_manifest,
    validate_manifest,
)

__all__ = [
    "ManifestValidation",
    "load_manifest_file",
    "parse_manifest",
    "validate_manifest",
]
