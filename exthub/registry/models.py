"""Registry data models — extension records and registry statistics."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Optional

REGISTRY_SCHEMA_VERSION = "1.0.0"

TOPIC_PREFIX = "claude-code-"


class ExtensionType(str, Enum):
    PLUGIN = "plugin"
    SKILL = "skill"
    COMMAND = "command"
    AGENT = "agent"


# Python attribute -> JSON key for fields whose names differ on disk
_JSON_KEYS = {
    "display_name": "displayName",
    "repository_url": "repository",
    "featured_order": "featuredOrder",
    "last_updated": "lastUpdated",
    "is_official": "isOfficial",
    "is_featured": "isFeatured",
    "is_installed": "isInstalled",
    "installed_version": "installedVersion",
    "has_update": "hasUpdate",
    "quality_score": "qualityScore",
    "quality_metrics": "qualityMetrics",
    "release_url": "releaseUrl",
}


@dataclass
class ExtensionRecord:
    """One row of the extension registry.

    ``version`` is the latest version known upstream; ``installed_version``
    is what is actually on disk and is only set while ``is_installed``.
    """

    # Identity
    id: str
    type: ExtensionType = ExtensionType.PLUGIN
    name: str = ""
    display_name: str = ""
    version: str = "unknown"
    description: str = ""
    author: str = ""
    repository_url: str = ""
    icon: Optional[str] = None

    # Discovery
    stars: int = 0
    downloads: int = 0
    last_updated: Optional[str] = None  # ISO 8601
    is_official: bool = False
    is_featured: bool = False
    featured_order: Optional[int] = None

    # Installation state
    is_installed: bool = False
    installed_version: Optional[str] = None
    has_update: bool = False

    permissions: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    readme: Optional[str] = None
    quality_score: Optional[float] = None
    quality_metrics: Optional[dict[str, Any]] = None
    checksum: Optional[str] = None
    release_url: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.type, ExtensionType):
            self.type = ExtensionType(self.type)

    @property
    def owner(self) -> str:
        return self.id.split("/", 1)[0]

    def copy(self) -> "ExtensionRecord":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Flat JSON representation as stored in the registry file."""
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, ExtensionType):
                value = value.value
            elif isinstance(value, (list, dict)):
                value = copy.deepcopy(value)
            out[_JSON_KEYS.get(f.name, f.name)] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtensionRecord":
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            key = _JSON_KEYS.get(f.name, f.name)
            if key in data and data[key] is not None:
                kwargs[f.name] = data[key]
            elif f.name in data and data[f.name] is not None:
                kwargs[f.name] = data[f.name]
        if "id" not in kwargs:
            author = data.get("author") or "unknown"
            kwargs["id"] = f"{author}/{data.get('name') or 'unknown'}"
        return cls(**kwargs)

    @classmethod
    def from_github_repo(cls, repo: dict[str, Any], **overrides: Any) -> "ExtensionRecord":
        """Build a record from a GitHub REST repository payload.

        Keyword *overrides* win over anything derived from the payload.
        """
        owner = (repo.get("owner") or {}).get("login") or "unknown"
        name = repo.get("name") or "unknown"
        topics = list(repo.get("topics") or [])

        values: dict[str, Any] = {
            "id": f"{owner}/{name}",
            "type": detect_extension_type(name, topics),
            "name": name,
            "display_name": format_display_name(name),
            "description": repo.get("description") or "",
            "author": owner,
            "repository_url": repo.get("html_url") or "",
            "stars": repo.get("stargazers_count") or 0,
            "last_updated": repo.get("updated_at"),
            "keywords": topics,
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_search_results(
        cls, items: list[dict[str, Any]], **overrides: Any
    ) -> list["ExtensionRecord"]:
        return [cls.from_github_repo(item, **overrides) for item in items]


def detect_extension_type(name: str, topics: list[str]) -> ExtensionType:
    """Guess the extension type from repository topics, then its name."""
    for ext_type in ExtensionType:
        if f"{TOPIC_PREFIX}{ext_type.value}" in topics:
            return ext_type
    lowered = name.lower()
    for ext_type in ExtensionType:
        if ext_type.value in lowered:
            return ext_type
    return ExtensionType.PLUGIN


def format_display_name(name: str) -> str:
    """``my-cool_plugin`` -> ``My Cool Plugin``."""
    words = name.replace("-", " ").replace("_", " ").split(" ")
    return " ".join(w[:1].upper() + w[1:] for w in words)


@dataclass
class RegistryStats:
    total: int = 0
    installed: int = 0
    by_type: dict[str, int] = field(
        default_factory=lambda: {t.value: 0 for t in ExtensionType}
    )


@dataclass
class ExistingInstall:
    """Returned when an install would duplicate an installed extension."""

    exists: bool
    extension: ExtensionRecord
    message: str
