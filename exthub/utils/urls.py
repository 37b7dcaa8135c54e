"""Repository URL validation (SSRF protection).

Users paste repository URLs into the installer. Before anything is fetched
the URL must point at the expected host and name an ``owner/repo`` pair.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

GITHUB_HOST = "github.com"
ALLOWED_SCHEMES = {"http", "https"}


@dataclass
class URLValidation:
    """Outcome of validating a repository URL."""

    valid: bool
    owner: str = ""
    repo: str = ""
    error: str = ""


def validate_repository_url(url: str, expected_host: str = GITHUB_HOST) -> URLValidation:
    """Validate *url* and extract the owner and repository name.

    The hostname must equal *expected_host* exactly, so look-alikes such as
    ``github.com.evil.com`` are rejected. A trailing ``.git`` is removed from
    the repository name. The error strings are meant to be shown to users.
    """
    if not isinstance(url, str) or not url.strip():
        return URLValidation(valid=False, error=f"Invalid URL: unable to parse '{url}'")

    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError:
        return URLValidation(valid=False, error=f"Invalid URL: unable to parse '{url}'")

    if not parts.scheme or not parts.netloc:
        return URLValidation(valid=False, error=f"Invalid URL: unable to parse '{url}'")

    if parts.scheme.lower() not in ALLOWED_SCHEMES or (hostname or "") != expected_host.lower():
        return URLValidation(
            valid=False,
            error=f"Invalid GitHub URL format. Only {expected_host} URLs are allowed",
        )

    segments = [s for s in parts.path.split("/") if s]
    if len(segments) < 2:
        return URLValidation(
            valid=False,
            error=f"Invalid repository path: expected https://{expected_host}/<owner>/<repo>",
        )

    owner, repo = segments[0], segments[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not repo:
        return URLValidation(
            valid=False,
            error=f"Invalid repository path: expected https://{expected_host}/<owner>/<repo>",
        )

    return URLValidation(valid=True, owner=owner, repo=repo)
