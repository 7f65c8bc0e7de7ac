"""Application context: owns the shared HTTP client, platforms and caches."""

from __future__ import annotations

import logging
from typing import Any

from .cache import Cache
from .config import Settings, get_ssl_verify
from .errors import MissingTokenError, UnsupportedForgeError
from .http_client import HttpClient
from .platforms import CancelSignal, Issue, Platform, PlatformFactory
from .remote_url import RepoInfo, parse_remote_url

logger = logging.getLogger(__name__)

# Issue lists: 10 minutes, up to 50 repositories
ISSUE_CACHE_TTL = 600.0
ISSUE_CACHE_SIZE = 50

# Parsed remotes: 30 minutes, up to 10 remotes
REPO_CACHE_TTL = 1800.0
REPO_CACHE_SIZE = 10


class AppContext:
    """Everything the issue workflow needs, constructed once and passed around.

    Create it inside the running event loop so the caches can schedule their
    background sweeps, and close it with ``aclose()`` (or ``async with``).
    """

    def __init__(self, settings: Settings | None = None, **http_kwargs: Any):
        """Initialize the context.

        Args:
            settings: User settings (defaults to the settings file).
            **http_kwargs: Passed to HttpClient (e.g. ``transport=`` in tests).
        """
        self.settings = settings if settings is not None else Settings.load()
        http_kwargs.setdefault("timeout", self.settings.request_timeout)
        if "transport" not in http_kwargs:
            http_kwargs.setdefault("verify", get_ssl_verify())
        self.http_client = HttpClient(**http_kwargs)
        self.platform_factory = PlatformFactory(self.http_client, self.settings)
        # Issue lists are stored with the limit they were fetched under
        self.issue_cache: Cache[tuple[int, list[Issue]]] = Cache(
            ISSUE_CACHE_TTL, ISSUE_CACHE_SIZE
        )
        self.repo_cache: Cache[RepoInfo] = Cache(REPO_CACHE_TTL, REPO_CACHE_SIZE)
        self._closed = False
        logger.debug("AppContext initialized")

    async def __aenter__(self) -> AppContext:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Dispose caches and platforms and close the connection pools."""
        if self._closed:
            return
        self._closed = True
        self.issue_cache.dispose()
        self.repo_cache.dispose()
        self.platform_factory.dispose()
        await self.http_client.aclose()
        logger.debug("AppContext closed")

    def parse_remote_url(self, url: str) -> RepoInfo | None:
        """Parse a remote URL, memoised per URL. None if unrecognized."""
        key = url.strip()
        cached = self.repo_cache.get(key)
        if cached is not None:
            return cached
        info = parse_remote_url(key)
        if info is not None:
            self.repo_cache.set(key, info)
        return info

    def get_platform(self, forge_kind: str) -> Platform:
        """Platform for forge_kind.

        Raises:
            UnsupportedForgeError: No platform is registered for the kind.
        """
        platform = self.platform_factory.get_platform(forge_kind)
        if platform is None:
            raise UnsupportedForgeError(forge_kind)
        return platform

    async def resolve_token(
        self, forge_kind: str, host_url: str | None = None
    ) -> str | None:
        """Access token for a forge (and host, for self-hosted GitLab), or None."""
        platform = self.get_platform(forge_kind)
        probe = RepoInfo(forge_kind, "", "", "", host_url)
        return await platform.get_access_token(probe)

    async def list_open_issues(
        self,
        repo_info: RepoInfo,
        max_count: int | None = None,
        cancel: CancelSignal | None = None,
    ) -> list[Issue]:
        """Open issues of a repository, served from cache when fresh.

        A cached list answers any request it covers: one fetched under an
        equal or larger limit, or one that already holds every open issue.

        Raises:
            UnsupportedForgeError: Unknown forge kind.
            MissingTokenError: No token configured; never reported as an
                empty list.
            HttpError: The forge request failed after retries.
        """
        limit = self.settings.max_issues if max_count is None else max_count
        cache_key = repo_info.cache_key
        cached = self.issue_cache.get(cache_key)
        if cached is not None:
            fetched_limit, cached_issues = cached
            if fetched_limit >= limit or len(cached_issues) < fetched_limit:
                logger.debug(
                    "Using cached issues for %s (%d)", cache_key, len(cached_issues)
                )
                return cached_issues[:limit]
            logger.debug(
                "Cached list for %s holds %d of %d requested; refetching",
                cache_key,
                len(cached_issues),
                limit,
            )

        platform = self.get_platform(repo_info.forge_kind)
        token = await platform.get_access_token(repo_info)
        if not token:
            raise MissingTokenError(repo_info.forge_kind, repo_info.host_url)

        issues = await platform.fetch_issues(repo_info, token, limit, cancel=cancel)

        if cancel is not None and cancel.is_set():
            logger.debug("Not caching partial issue list for %s", cache_key)
        else:
            self.issue_cache.set(cache_key, (limit, issues))
        logger.info("Fetched %d open issues for %s", len(issues), cache_key)
        return issues

    async def refresh_issues(
        self,
        repo_info: RepoInfo,
        max_count: int | None = None,
        cancel: CancelSignal | None = None,
    ) -> list[Issue]:
        """Drop the cached list for repo_info and fetch it again."""
        self.invalidate(repo_info)
        return await self.list_open_issues(repo_info, max_count, cancel=cancel)

    def invalidate(self, repo_info: RepoInfo) -> None:
        self.issue_cache.delete(repo_info.cache_key)

    def clear_all(self) -> None:
        """Clear the issue and repo caches."""
        self.issue_cache.clear()
        self.repo_cache.clear()
        logger.info("All caches cleared")
