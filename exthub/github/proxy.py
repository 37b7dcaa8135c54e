"""GitHub API proxy — cached, rate-aware REST and GraphQL calls.

All traffic goes through one ``httpx.AsyncClient`` owned by (or injected
into) the proxy, so connections are pooled and kept alive across calls and
tests can swap in an ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import quote, urlencode, urlsplit

import httpx

from exthub import __version__
from exthub.config import Settings, proxy_url_from_env
from exthub.errors import (
    ExthubError,
    GitHubAPIError,
    GitHubResponseError,
    GitHubTimeoutError,
    GraphQLError,
    RateLimitExceededError,
)
from exthub.github.cache import CacheBackend, ResponseCache
from exthub.github.graphql import (
    MAX_BATCH_SIZE,
    BatchFailed,
    BatchOutcome,
    BatchSucceeded,
    RepoMetadata,
    build_batch_query,
    metadata_from_rest,
    parse_batch_response,
    split_repo_id,
)
from exthub.github.rate_limit import RateLimitState

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass
class ProxyConfig:
    """Egress proxy parsed from ``HTTP(S)_PROXY``."""

    url: str
    host: str
    port: int
    auth: Optional[str] = None


def parse_proxy_url(value: str) -> Optional[ProxyConfig]:
    """Parse a proxy URL, or return None (with a warning) if it is unusable."""
    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError as e:
        logger.warning("Invalid proxy URL %r: %s", value, e)
        return None

    if parts.scheme not in ("http", "https") or not parts.hostname:
        logger.warning("Invalid proxy URL %r: expected http(s)://host[:port]", value)
        return None

    auth = None
    if parts.username and parts.password:
        auth = f"{parts.username}:{parts.password}"
    return ProxyConfig(
        url=value,
        host=parts.hostname,
        port=port or (443 if parts.scheme == "https" else 80),
        auth=auth,
    )


class GitHubAPIProxy:
    """Client for the GitHub REST and GraphQL APIs.

    Parameters
    ----------
    pat : str | None
        Personal access token. Requests are unauthenticated without one.
    cache : CacheBackend | None
        Response cache; defaults to an in-memory ResponseCache.
    request_timeout : float
        Seconds before an in-flight request is abandoned.
    client : httpx.AsyncClient | None
        Transport to use. When omitted the proxy builds (and later closes)
        its own, honouring any configured egress proxy.
    environ : Mapping[str, str] | None
        Where to read ``HTTP(S)_PROXY`` from; defaults to ``os.environ``.
    """

    base_url = "https://api.github.com"
    graphql_url = "https://api.github.com/graphql"

    def __init__(
        self,
        pat: Optional[str] = None,
        cache: Optional[CacheBackend] = None,
        request_timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.pat = pat or None
        self.cache: CacheBackend = cache if cache is not None else ResponseCache()
        self.request_timeout = request_timeout
        self.rate_limit = RateLimitState()

        proxy_url = proxy_url_from_env(environ)
        self.proxy = parse_proxy_url(proxy_url) if proxy_url else None

        self._owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(
                timeout=request_timeout,
                proxy=self.proxy.url if self.proxy else None,
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
                trust_env=False,
            )
        self._client = client

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> "GitHubAPIProxy":
        environ = {"HTTPS_PROXY": settings.proxy_url} if settings.proxy_url else {}
        return cls(
            pat=settings.github_token,
            cache=ResponseCache(ttl=settings.cache_ttl, store_path=settings.cache_path),
            request_timeout=settings.request_timeout,
            client=client,
            environ=environ,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GitHubAPIProxy":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # REST operations
    # ------------------------------------------------------------------

    async def search_repositories(
        self,
        topic: str,
        *,
        sort: str = "stars",
        order: str = "desc",
        per_page: int = 30,
        page: int = 1,
    ) -> list[dict[str, Any]]:
        """Search repositories tagged with *topic*."""
        params = urlencode(
            {"q": f"topic:{topic}", "sort": sort, "order": order, "per_page": per_page, "page": page}
        )
        endpoint = f"/search/repositories?{params}"
        response = await self._request(endpoint)
        if not isinstance(response, dict):
            raise GitHubResponseError(f"Unexpected response from {endpoint}")
        return response.get("items") or []

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        return await self._request(f"/repos/{_seg(owner)}/{_seg(repo)}")

    async def get_latest_release(self, owner: str, repo: str) -> dict[str, Any]:
        return await self._request(f"/repos/{_seg(owner)}/{_seg(repo)}/releases/latest")

    async def get_release_asset(self, owner: str, repo: str, tag: str) -> dict[str, Any]:
        """Pick the downloadable asset of release *tag*: a ``.zip`` if any, else the first."""
        endpoint = f"/repos/{_seg(owner)}/{_seg(repo)}/releases/tags/{_seg(tag)}"
        release = await self._request(endpoint)
        if not isinstance(release, dict):
            raise GitHubResponseError(f"Unexpected response from {endpoint}")
        assets = release.get("assets") or []
        if not assets:
            raise GitHubAPIError("No assets found for this release")

        for asset in assets:
            if str(asset.get("name", "")).endswith(".zip"):
                return asset
        return assets[0]

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str = "main") -> str:
        """Return a repository file decoded from base64 to text."""
        endpoint = (
            f"/repos/{_seg(owner)}/{_seg(repo)}/contents/{quote(path.lstrip('/'), safe='/')}"
            f"?{urlencode({'ref': ref})}"
        )
        response = await self._request(endpoint)
        content = response.get("content") if isinstance(response, dict) else None
        if not content:
            raise GitHubAPIError("File not found or empty")
        try:
            return base64.b64decode(content).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise GitHubResponseError(f"Could not decode content of {path}: {e}") from e

    async def get_rate_limit_status(self) -> RateLimitState:
        """Ask GitHub for the current rate-limit window."""
        response = await self._request("/rate_limit", skip_cache=True)
        if isinstance(response, dict) and isinstance(response.get("rate"), dict):
            self.rate_limit.update_from_payload(response["rate"])
        return self.rate_limit

    def rate_limit_info(self) -> dict[str, object]:
        """Last known rate-limit window, without a network call."""
        return self.rate_limit.as_dict()

    # ------------------------------------------------------------------
    # GraphQL
    # ------------------------------------------------------------------

    async def graphql_query(self, query: str, variables: Optional[dict[str, Any]] = None) -> Any:
        body = json.dumps({"query": query, "variables": variables or {}})
        response = await self._request(
            "/graphql", method="POST", body=body, is_graphql=True, skip_cache=True
        )
        if isinstance(response, dict) and response.get("errors"):
            errors = response["errors"]
            raise GraphQLError(f"GraphQL Error: {json.dumps(errors)}", errors=errors)
        return response.get("data") if isinstance(response, dict) else None

    async def batch_fetch_extensions(self, repo_ids: list[str]) -> list[RepoMetadata]:
        """Fetch metadata for up to ``MAX_BATCH_SIZE`` repositories.

        One GraphQL round trip when possible; if that fails, one REST call
        per repository, concurrently, keeping only the ones that succeed.
        """
        selected = list(repo_ids[:MAX_BATCH_SIZE])
        if not selected:
            return []
        query = build_batch_query(selected)

        outcome = await self._run_batch(query, selected)
        if isinstance(outcome, BatchSucceeded):
            return outcome.records

        logger.warning("GraphQL batch fetch failed, falling back to REST: %s", outcome.reason)
        return await self._batch_fetch_via_rest(selected)

    async def _run_batch(self, query: str, repo_ids: list[str]) -> BatchOutcome:
        try:
            data = await self.graphql_query(query)
        except ExthubError as e:
            return BatchFailed(reason=str(e))
        return BatchSucceeded(records=parse_batch_response(data, repo_ids))

    async def _batch_fetch_via_rest(self, repo_ids: list[str]) -> list[RepoMetadata]:
        async def fetch_one(repo_id: str) -> Optional[RepoMetadata]:
            try:
                owner, repo = split_repo_id(repo_id)
                data = await self.get_repository(owner, repo)
            except ExthubError as e:
                logger.warning("Failed to fetch %s: %s", repo_id, e)
                return None
            if not isinstance(data, dict):
                logger.warning("Failed to fetch %s: unexpected response", repo_id)
                return None
            return metadata_from_rest(data)

        results = await asyncio.gather(*(fetch_one(r) for r in repo_ids))
        return [r for r in results if r is not None]

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def cache_key(self, endpoint: str) -> str:
        # auth and noauth responses live under separate keys
        auth_status = "auth" if self.pat else "noauth"
        return f"github:{auth_status}:{endpoint}"

    def build_headers(self, *, is_graphql: bool = False, etag: Optional[str] = None) -> dict[str, str]:
        headers = {
            "User-Agent": f"exthub/{__version__}",
            "Accept": "application/vnd.github.v3+json",
        }
        if self.pat:
            headers["Authorization"] = f"token {self.pat}"
        if is_graphql:
            headers["Accept"] = "application/json"
            headers["Content-Type"] = "application/json"
        if etag:
            headers["If-None-Match"] = etag
        return headers

    async def _request(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        body: Optional[str] = None,
        skip_cache: bool = False,
        is_graphql: bool = False,
    ) -> Any:
        cache_key = self.cache_key(endpoint)

        if not skip_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        url = self.graphql_url if is_graphql else f"{self.base_url}{endpoint}"
        etag = None if is_graphql else self.cache.get_etag(cache_key)
        headers = self.build_headers(is_graphql=is_graphql, etag=etag)

        response = await self._send(method, url, headers, body)
        status = response.status_code
        self.rate_limit.update_from_headers(response.headers)

        if status == 304:
            cached = self.cache.get_stale(cache_key)
            if cached is not None:
                if not skip_cache:
                    self.cache.set(cache_key, cached, etag)
                return cached

        if status in (403, 429):
            self._raise_rate_limited(status)

        data = self._parse_body(endpoint, response)

        if status >= 400:
            message = data.get("message") if isinstance(data, dict) else None
            raise GitHubAPIError(
                f"GitHub API Error ({status}): {message or 'Unknown error'}", status=status
            )

        if not skip_cache and status == 200 and data is not None:
            self.cache.set(cache_key, data, response.headers.get("etag"))

        return data

    async def _send(
        self, method: str, url: str, headers: dict[str, str], body: Optional[str]
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                url,
                headers=headers,
                content=body,
                timeout=self.request_timeout,
            )
        except httpx.TimeoutException as e:
            raise GitHubTimeoutError(f"Request timeout after {self.request_timeout}s") from e
        except httpx.HTTPError as e:
            raise GitHubAPIError(f"HTTP Request failed: {e}") from e

    @staticmethod
    def _parse_body(endpoint: str, response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            # Non-JSON body, most likely an HTML error page
            return response.text
        try:
            return json.loads(response.content)
        except ValueError as e:
            raise GitHubResponseError(
                f"Failed to parse JSON response from {endpoint}: {e}",
                status=response.status_code,
            ) from e

    def _raise_rate_limited(self, status: int) -> None:
        minutes = self.rate_limit.minutes_until_reset()
        raise RateLimitExceededError(
            f"Rate limit exceeded. Try again in {minutes} minute(s). "
            f"(Limit: {self.rate_limit.limit}, Remaining: {self.rate_limit.remaining})",
            status=status,
            minutes_until_reset=minutes,
            limit=self.rate_limit.limit,
            remaining=self.rate_limit.remaining,
        )


def _seg(value: str) -> str:
    """Quote a single URL path segment."""
    return quote(str(value), safe="")
