"""GraphQL batch queries for repository metadata.

Up to ``MAX_BATCH_SIZE`` repositories are fetched in one round trip by
aliasing a ``repository(...)`` selection per id (``repo0``, ``repo1``, ...).
Identifiers are interpolated into the query text, so every owner and name
token is checked against a conservative pattern first.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from exthub.errors import InvalidRepositoryIdError

MAX_BATCH_SIZE = 10

SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")

_REPOSITORY_FIELDS = """
    name
    owner { login }
    description
    stargazerCount
    updatedAt
    latestRelease {
      tagName
      publishedAt
    }
"""


@dataclass
class RepoMetadata:
    """Flat metadata for one repository, as returned by batch fetches."""

    id: str
    name: str
    author: str
    description: str = ""
    stars: int = 0
    last_updated: Optional[str] = None
    latest_release: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "author": self.author,
            "description": self.description,
            "stars": self.stars,
            "lastUpdated": self.last_updated,
            "latestRelease": self.latest_release,
        }


@dataclass
class BatchSucceeded:
    records: list[RepoMetadata] = field(default_factory=list)


@dataclass
class BatchFailed:
    reason: str


BatchOutcome = Union[BatchSucceeded, BatchFailed]


def split_repo_id(repo_id: str) -> tuple[str, str]:
    """Split and validate an ``owner/repo`` id."""
    parts = repo_id.split("/") if isinstance(repo_id, str) else []
    if len(parts) != 2 or not all(SAFE_NAME_RE.match(p) for p in parts):
        raise InvalidRepositoryIdError(
            f"Invalid repository format: {repo_id!r}. Must match pattern: owner/repo"
        )
    return parts[0], parts[1]


def build_batch_query(repo_ids: list[str]) -> str:
    """Build one query fetching the first ``MAX_BATCH_SIZE`` of *repo_ids*.

    Raises InvalidRepositoryIdError before anything is built if any id is
    unsafe.
    """
    selected = repo_ids[:MAX_BATCH_SIZE]
    pairs = [split_repo_id(repo_id) for repo_id in selected]

    selections = [
        f'  repo{i}: repository(owner: "{owner}", name: "{repo}") {{{_REPOSITORY_FIELDS}  }}'
        for i, (owner, repo) in enumerate(pairs)
    ]
    return "query {\n" + "\n".join(selections) + "\n}"


def parse_batch_response(data: dict[str, Any] | None, repo_ids: list[str]) -> list[RepoMetadata]:
    """Turn aliased ``repoN`` fields back into RepoMetadata, in request order.

    Repositories GraphQL could not resolve come back as null and are skipped.
    """
    results: list[RepoMetadata] = []
    if not data:
        return results

    for i in range(min(len(repo_ids), MAX_BATCH_SIZE)):
        repo = data.get(f"repo{i}")
        if not repo:
            continue
        login = (repo.get("owner") or {}).get("login", "")
        release = repo.get("latestRelease") or {}
        results.append(
            RepoMetadata(
                id=f"{login}/{repo.get('name', '')}",
                name=repo.get("name", ""),
                author=login,
                description=repo.get("description") or "",
                stars=repo.get("stargazerCount") or 0,
                last_updated=repo.get("updatedAt"),
                latest_release=release.get("tagName"),
            )
        )
    return results


def metadata_from_rest(repo: dict[str, Any]) -> RepoMetadata:
    """RepoMetadata from a REST ``/repos/{owner}/{repo}`` payload."""
    login = (repo.get("owner") or {}).get("login", "")
    return RepoMetadata(
        id=f"{login}/{repo.get('name', '')}",
        name=repo.get("name", ""),
        author=login,
        description=repo.get("description") or "",
        stars=repo.get("stargazers_count") or 0,
        last_updated=repo.get("updated_at"),
        latest_release=None,  # needs a separate releases call
    )
