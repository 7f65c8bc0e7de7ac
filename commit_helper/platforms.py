"""Forge platforms: token resolution and open-issue listing.

Each supported forge kind has one Platform implementation. They share the
pooled HttpClient and differ only in URL shape, auth convention and field
mapping; pagination lives in the base class.
"""

import logging
import os
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote, urlencode

from .cache import Cache
from .config import Settings
from .errors import MalformedResponseError
from .http_client import HttpClient
from .remote_url import GITEE, GITHUB, GITLAB, LOCAL_GITLAB, RepoInfo

logger = logging.getLogger(__name__)

# Pagination limits
PAGE_LIMIT = 50
MAX_PAGES = 100

# Tokens rarely change; keep resolved ones for an hour
TOKEN_TTL = 3600.0
TOKEN_CACHE_SIZE = 100

# Canonical host-keyed setting for self-hosted GitLab tokens
HOST_TOKEN_KEY = "host_tokens.{host}"

# Older spellings of HOST_TOKEN_KEY, still honoured with a warning
DEPRECATED_HOST_TOKEN_KEYS = (
    "gitlab_token.{host}",
    "local_gitlab_token.{host}",
    "gitlab.{host}.token",
    "tokens.{host}",
)


class CancelSignal(Protocol):
    """Anything with is_set(), e.g. asyncio.Event or threading.Event."""

    def is_set(self) -> bool: ...


# --- Data Models ---


@dataclass(frozen=True)
class Issue:
    """Open issue snapshot, normalized across forges.

    ``number`` is what users see and reference (``#12``); ``id`` is the
    forge's own identifier, which differs from it on GitHub and Gitee.
    """

    id: int | str
    number: int | str
    title: str
    state: str
    url: str


def _env(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


# --- Platforms ---


class Platform(ABC):
    """Strategy for one forge kind."""

    name: str
    setting_key: str
    env_var: str

    def __init__(self, http_client: HttpClient, settings: Settings):
        self.http_client = http_client
        self.settings = settings
        self._token_cache: Cache[str] = Cache(ttl=TOKEN_TTL, maxsize=TOKEN_CACHE_SIZE)

    async def get_access_token(self, repo_info: RepoInfo) -> str | None:
        """Resolve the access token for repo_info's forge, or None.

        Resolved tokens are cached per (forge kind, host URL); misses are not.
        """
        cache_key = (self.name, repo_info.host_url or "default")
        cached = self._token_cache.get(cache_key)
        if cached:
            logger.debug("Using cached %s token", self.name)
            return cached

        token = self._resolve_token(repo_info)
        if token:
            self._token_cache.set(cache_key, token)
        logger.debug(
            "%s token: %s", self.name, "configured" if token else "not configured"
        )
        return token

    def _resolve_token(self, repo_info: RepoInfo) -> str | None:
        """Explicit setting first, then environment variable."""
        return self.settings.get_str(self.setting_key) or _env(self.env_var)

    async def fetch_issues(
        self,
        repo_info: RepoInfo,
        token: str,
        max_count: int,
        cancel: CancelSignal | None = None,
    ) -> list[Issue]:
        """Fetch up to max_count open issues, one page at a time.

        Paging stops at max_count, on a short or empty page, or when cancel
        is set (checked before each page; partial results are returned).

        Args:
            repo_info: Target repository.
            token: Access token for the forge.
            max_count: Maximum number of issues to return.
            cancel: Optional cancellation signal.

        Returns:
            At most max_count issues in forge order.
        """
        if max_count <= 0:
            return []

        per_page = min(max_count, PAGE_LIMIT)
        issues: list[Issue] = []
        page = 1

        while page <= MAX_PAGES and len(issues) < max_count:
            if cancel is not None and cancel.is_set():
                logger.info(
                    "Issue fetch for %s cancelled after %d issues",
                    repo_info.cache_key,
                    len(issues),
                )
                break

            data = await self.http_client.request_with_retry(
                self._issues_url(repo_info, token, page, per_page),
                headers=self._headers(token),
            )
            if not isinstance(data, list) or not data:
                break

            for item in data:
                try:
                    issue = self._to_issue(item)
                except (KeyError, TypeError) as e:
                    raise MalformedResponseError(
                        f"Unexpected issue payload from {self.name}: missing {e}",
                        code="malformed_response",
                    ) from e
                if issue is not None:
                    issues.append(issue)

            # If we got fewer items than requested, we're on the last page
            if len(data) < per_page:
                break
            page += 1
        else:
            if len(issues) < max_count:
                # Loop completed without break - hit the page ceiling
                warnings.warn(
                    f"Issue list for {repo_info.cache_key} truncated at "
                    f"{MAX_PAGES} pages ({len(issues)} items).",
                    UserWarning,
                    stacklevel=2,
                )

        return issues[:max_count]

    @abstractmethod
    def _issues_url(
        self, repo_info: RepoInfo, token: str, page: int, per_page: int
    ) -> str:
        """URL of one page of the open-issues listing."""

    @abstractmethod
    def _headers(self, token: str) -> dict[str, str]:
        """Request headers, including auth where the forge uses a header."""

    @abstractmethod
    def _to_issue(self, item: dict[str, Any]) -> Issue | None:
        """Normalize one API item, or None to skip it."""

    def dispose(self) -> None:
        """Release the token cache."""
        self._token_cache.dispose()


class GitHubPlatform(Platform):
    name = GITHUB
    setting_key = "github_token"
    env_var = "GITHUB_TOKEN"

    def _issues_url(
        self, repo_info: RepoInfo, token: str, page: int, per_page: int
    ) -> str:
        query = urlencode({"state": "open", "page": page, "per_page": per_page})
        return (
            f"{repo_info.api_base_url}/repos/{repo_info.owner}/{repo_info.repo}"
            f"/issues?{query}"
        )

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _to_issue(self, item: dict[str, Any]) -> Issue | None:
        # The issues endpoint also lists pull requests
        if "pull_request" in item:
            return None
        return Issue(
            id=item["id"],
            number=item["number"],
            title=item["title"],
            state=item["state"],
            url=item["html_url"],
        )


class GitLabPlatform(Platform):
    """GitLab, either gitlab.com or a self-hosted instance.

    Self-hosted instances additionally fall back to the gitlab.com token and
    to tokens keyed by hostname.
    """

    def __init__(
        self, http_client: HttpClient, settings: Settings, self_hosted: bool = False
    ):
        super().__init__(http_client, settings)
        self.self_hosted = self_hosted
        self.name = LOCAL_GITLAB if self_hosted else GITLAB
        self.setting_key = "local_gitlab_token" if self_hosted else "gitlab_token"
        self.env_var = "LOCAL_GITLAB_TOKEN" if self_hosted else "GITLAB_TOKEN"

    def _resolve_token(self, repo_info: RepoInfo) -> str | None:
        token = super()._resolve_token(repo_info)
        if token or not self.self_hosted:
            return token

        token = self.settings.get_str("gitlab_token") or _env("GITLAB_TOKEN")
        if token:
            return token

        hostname = repo_info.hostname
        if hostname:
            return self._host_token(hostname)
        return None

    def _host_token(self, hostname: str) -> str | None:
        """Token configured for a specific self-hosted host."""
        canonical = HOST_TOKEN_KEY.format(host=hostname)
        token = self.settings.get_str(canonical)
        if token:
            return token

        for template in DEPRECATED_HOST_TOKEN_KEYS:
            key = template.format(host=hostname)
            token = self.settings.get_str(key)
            if token:
                logger.warning("Setting %r is deprecated; use %r", key, canonical)
                warnings.warn(
                    f"Setting {key!r} is deprecated; use {canonical!r}",
                    DeprecationWarning,
                    stacklevel=2,
                )
                return token
        return None

    def _issues_url(
        self, repo_info: RepoInfo, token: str, page: int, per_page: int
    ) -> str:
        repo = repo_info.repo.removesuffix(".git")
        project = quote(f"{repo_info.owner}/{repo}", safe="")
        query = urlencode({"state": "opened", "page": page, "per_page": per_page})
        return f"{repo_info.api_base_url}/projects/{project}/issues?{query}"

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def _to_issue(self, item: dict[str, Any]) -> Issue | None:
        # iid is the per-project number shown in the UI; id is instance-wide
        return Issue(
            id=item["iid"],
            number=item["iid"],
            title=item["title"],
            state=item["state"],
            url=item["web_url"],
        )


class GiteePlatform(Platform):
    name = GITEE
    setting_key = "gitee_token"
    env_var = "GITEE_TOKEN"

    def _issues_url(
        self, repo_info: RepoInfo, token: str, page: int, per_page: int
    ) -> str:
        # Gitee takes the token as a query parameter, not a header
        query = urlencode(
            {
                "state": "open",
                "access_token": token,
                "page": page,
                "per_page": per_page,
            }
        )
        return (
            f"{repo_info.api_base_url}/repos/{repo_info.owner}/{repo_info.repo}"
            f"/issues?{query}"
        )

    def _headers(self, token: str) -> dict[str, str]:
        return {}

    def _to_issue(self, item: dict[str, Any]) -> Issue | None:
        return Issue(
            id=item["id"],
            number=item["number"],
            title=item["title"],
            state=item["state"],
            url=item["html_url"],
        )


# --- Platform Factory ---


class PlatformFactory:
    """Registry of Platform instances keyed by forge kind."""

    def __init__(self, http_client: HttpClient, settings: Settings):
        self._platforms: dict[str, Platform] = {}
        for platform in (
            GitHubPlatform(http_client, settings),
            GitLabPlatform(http_client, settings),
            GitLabPlatform(http_client, settings, self_hosted=True),
            GiteePlatform(http_client, settings),
        ):
            self.register(platform)

    def register(self, platform: Platform) -> None:
        """Add or replace the platform for platform.name."""
        self._platforms[platform.name] = platform

    def get_platform(self, forge_kind: str) -> Platform | None:
        return self._platforms.get(forge_kind)

    def kinds(self) -> tuple[str, ...]:
        return tuple(self._platforms)

    def dispose(self) -> None:
        """Dispose every platform and empty the registry."""
        for platform in self._platforms.values():
            platform.dispose()
        self._platforms.clear()
