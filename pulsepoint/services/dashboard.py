"""Dashboard service: wires the GitHub client, cache and activity services."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional, Sequence

from pulsepoint.cache.store import CacheStore
from pulsepoint.config.settings import settings
from pulsepoint.github.client import GitHubClient
from pulsepoint.github.contracts import FetchResult
from pulsepoint.services.activity_search import ActivitySearch
from pulsepoint.services.aggregator import ActivityAggregator
from pulsepoint.services.cache_keys import org_activity_key, user_details_key
from pulsepoint.services.members import MemberDirectory
from pulsepoint.services.repo_scanner import OrgMemberCommits, RepoCommitScanner
from pulsepoint.services.stale_fallback import ServedPayload, serve_with_fallback
from pulsepoint.services.user_details import UserDetailsBuilder

logger = logging.getLogger(__name__)


class InvalidRequestError(Exception):
    """Raised when a request cannot be served: missing org configuration or username."""


class DashboardService:
    """Entry point for the org dashboard and user detail views."""

    def __init__(
        self,
        *,
        github_client: Any,
        cache: CacheStore,
        target_org: Optional[str] = None,
        target_repos: Optional[Sequence[str]] = None,
        fresh_max_age_hours: Optional[int] = None,
        lookback_days: Optional[int] = None,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._client = github_client
        self._cache = cache
        self._org = target_org if target_org is not None else settings.TARGET_ORG
        self._repos = list(target_repos) if target_repos is not None else settings.target_repos
        hours = fresh_max_age_hours or settings.CACHE_MAX_AGE_HOURS
        self._fresh_max_age_ms = hours * 60 * 60 * 1000
        self._lookback_days = lookback_days or settings.DEFAULT_LOOKBACK_DAYS
        self._now = now

        self.directory = MemberDirectory(github_client, cache)
        self.search = ActivitySearch(github_client, cache)
        self.scanner = RepoCommitScanner(github_client)
        self.org_commits = OrgMemberCommits(self.directory, self.scanner, cache)
        self.aggregator = ActivityAggregator(self.directory, self.search, cache)
        self.details = UserDetailsBuilder(self.search, self.org_commits)

    @classmethod
    def from_settings(cls) -> "DashboardService":
        return cls(github_client=GitHubClient(), cache=CacheStore.from_settings())

    async def aclose(self) -> None:
        close = getattr(self._client, "aclose", None)
        if close is not None:
            await close()

    def default_since(self) -> str:
        return (self._now() - timedelta(days=self._lookback_days)).isoformat()

    async def get_org_dashboard(
        self,
        since: Optional[str] = None,
        until: Optional[str] = None,
        *,
        force_refresh: bool = False,
    ) -> FetchResult[ServedPayload]:
        org = self._require_org()
        since = since or self.default_since()
        logger.info("Org dashboard requested", extra={"org": org, "repos": self._repos, "since": since})

        async def fetch() -> FetchResult[dict[str, Any]]:
            result = await self.aggregator.aggregate(org, self._repos, since, until, force_refresh=force_refresh)
            if result.is_failed:
                return result
            return FetchResult.ok(result.data.to_dict())

        return await serve_with_fallback(
            self._cache,
            org_activity_key(org, self._repos, since, until),
            fetch,
            fresh_max_age_ms=self._fresh_max_age_ms,
            context=f"Org dashboard for {org}",
            force_refresh=force_refresh,
        )

    async def get_user_details(
        self,
        username: str,
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> FetchResult[ServedPayload]:
        org = self._require_org()
        if not username or not username.strip():
            raise InvalidRequestError("Username parameter is missing.")
        username = username.strip()
        since = since or self.default_since()

        return await serve_with_fallback(
            self._cache,
            user_details_key(org, username, self._repos, since, until),
            lambda: self.details.build(org, username, self._repos, since, until),
            fresh_max_age_ms=self._fresh_max_age_ms,
            context=f"User details for {username}",
        )

    def _require_org(self) -> str:
        if not self._org:
            raise InvalidRequestError("TARGET_ORG is not configured.")
        return self._org
