"""Exception types raised by exthub.

Validation problems (bad manifests, unsafe paths, disallowed URLs) are not
exceptions: they come back as structured results. Everything here is a
failure the caller has to handle.
"""

from __future__ import annotations

from typing import Any


class ExthubError(Exception):
    """Base class for all exthub errors."""


class ConfigError(ExthubError):
    """The configuration file could not be read."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RegistryError(ExthubError):
    """A registry operation failed."""


class LockTimeoutError(RegistryError):
    """The registry lock could not be acquired in time."""


class RegistryCorruptError(RegistryError):
    """The registry file exists but cannot be understood."""


class RegistryPersistError(RegistryError):
    """A mutation could not be written to disk and was rolled back."""


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class GitHubError(ExthubError):
    """A call to the GitHub API failed."""


class GitHubAPIError(GitHubError):
    """GitHub answered with an error status or an unusable payload."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class GitHubResponseError(GitHubAPIError):
    """The response body could not be parsed."""


class RateLimitExceededError(GitHubAPIError):
    """GitHub refused the request because the rate limit is used up."""

    def __init__(
        self,
        message: str,
        *,
        status: int,
        minutes_until_reset: int,
        limit: int,
        remaining: int,
    ) -> None:
        super().__init__(message, status=status)
        self.minutes_until_reset = minutes_until_reset
        self.limit = limit
        self.remaining = remaining


class GitHubTimeoutError(GitHubError):
    """The request did not complete within the configured timeout."""


class GraphQLError(GitHubError):
    """The GraphQL endpoint returned an ``errors`` payload."""

    def __init__(self, message: str, errors: Any = None) -> None:
        super().__init__(message)
        self.errors = errors


class InvalidRepositoryIdError(GitHubError, ValueError):
    """A repository id is not a safe ``owner/repo`` pair."""
