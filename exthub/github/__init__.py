"""GitHub integration — marketplace metadata from the REST and GraphQL APIs."""

from exthub.github.cache import ResponseCache
from exthub.github.graphql import RepoMetadata
from exthub.github.proxy import GitHubAPIProxy
from exthub.github.rate_limit import RateLimitState

__all__ = ["GitHubAPIProxy", "RateLimitState", "RepoMetadata", "ResponseCache"]
