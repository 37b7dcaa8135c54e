"""Registry — the local record of which extensions are installed.

The registry provides:
- Persistence: one JSON file, rewritten atomically on every change
- Locking: a lock file serializes readers and writers across processes
- Queries: installed extensions, per-type statistics, duplicate checks
"""

from exthub.registry.models import ExistingInstall, ExtensionRecord, ExtensionType, RegistryStats
from exthub.registry.store import RegistryStore

__all__ = [
    "ExistingInstall",
    "ExtensionRecord",
    "ExtensionType",
    "RegistryStats",
    "RegistryStore",
]
