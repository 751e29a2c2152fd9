"""Per-member activity searches (commits, PRs, issues, PR comments)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from pulsepoint.cache.store import CacheStore
from pulsepoint.config.settings import settings
from pulsepoint.github.contracts import FetchResult
from pulsepoint.github.errors import call_upstream
from pulsepoint.services.cache_keys import date_part, org_totals_key, user_search_key

logger = logging.getLogger(__name__)

KIND_COMMITS = "commits"
KIND_PRS_AUTHORED = "prs_authored"
KIND_ISSUES_AUTHORED = "issues_authored"
KIND_PR_COMMENTS = "pr_comments"

ENDPOINT_COMMITS = "commits"
ENDPOINT_ISSUES = "issues"


def scope_qualifiers(org: str, repos: Iterable[str]) -> list[str]:
    """One `repo:` qualifier per target repository, or `org:` when none are given."""
    names = [repo.strip() for repo in repos if repo and repo.strip()]
    if not names:
        return [f"org:{org}"]
    return [f"repo:{org}/{name}" for name in names]


def build_query(*qualifiers: str) -> str:
    return " ".join(qualifier for qualifier in qualifiers if qualifier)


def _since_qualifier(field: str, since: Optional[str]) -> str:
    day = date_part(since)
    return f"{field}:>{day}" if day else ""


def commits_query(org: str, login: str, repos: Iterable[str], since: Optional[str] = None) -> str:
    return build_query(f"author:{login}", *scope_qualifiers(org, repos), _since_qualifier("committer-date", since))


def prs_authored_query(org: str, login: str, repos: Iterable[str], since: Optional[str] = None) -> str:
    return build_query("is:pr", f"author:{login}", *scope_qualifiers(org, repos), _since_qualifier("created", since))


def issues_authored_query(org: str, login: str, repos: Iterable[str], since: Optional[str] = None) -> str:
    return build_query("is:issue", f"author:{login}", *scope_qualifiers(org, repos), _since_qualifier("created", since))


def pr_comments_query(org: str, login: str, repos: Iterable[str], since: Optional[str] = None) -> str:
    return build_query("is:pr", f"commenter:{login}", *scope_qualifiers(org, repos), _since_qualifier("created", since))


def org_prs_query(org: str, repos: Iterable[str], since: Optional[str] = None) -> str:
    return build_query("is:pr", *scope_qualifiers(org, repos), _since_qualifier("created", since))


def org_issues_query(org: str, repos: Iterable[str], since: Optional[str] = None) -> str:
    return build_query("is:issue", *scope_qualifiers(org, repos), _since_qualifier("created", since))


class ActivitySearch:
    """Runs cached GitHub searches, sharing identical in-flight queries."""

    def __init__(
        self,
        github_client: Any,
        cache: CacheStore,
        *,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._client = github_client
        self._cache = cache
        self._ttl_ms = (ttl_seconds or settings.USER_ACTIVITY_CACHE_TTL_SECONDS) * 1000
        self._inflight: dict[str, asyncio.Future[FetchResult[Any]]] = {}

    async def search_user_commits(
        self,
        org: str,
        login: str,
        repos: Iterable[str],
        since: Optional[str] = None,
        *,
        force_refresh: bool = False,
    ) -> FetchResult[list[dict[str, Any]]]:
        query = commits_query(org, login, repos, since)
        return await self._search_items(
            user_search_key(KIND_COMMITS, login, query),
            query,
            endpoint=ENDPOINT_COMMITS,
            sort="committer-date",
            context=f"Error searching commits for user {login}",
            force_refresh=force_refresh,
        )

    async def search_user_prs_authored(
        self,
        org: str,
        login: str,
        repos: Iterable[str],
        since: Optional[str] = None,
        *,
        force_refresh: bool = False,
    ) -> FetchResult[list[dict[str, Any]]]:
        query = prs_authored_query(org, login, repos, since)
        return await self._search_items(
            user_search_key(KIND_PRS_AUTHORED, login, query),
            query,
            endpoint=ENDPOINT_ISSUES,
            sort="created",
            context=f"Error searching PRs authored by {login}",
            force_refresh=force_refresh,
        )

    async def search_user_issues_authored(
        self,
        org: str,
        login: str,
        repos: Iterable[str],
        since: Optional[str] = None,
        *,
        force_refresh: bool = False,
    ) -> FetchResult[list[dict[str, Any]]]:
        query = issues_authored_query(org, login, repos, since)
        return await self._search_items(
            user_search_key(KIND_ISSUES_AUTHORED, login, query),
            query,
            endpoint=ENDPOINT_ISSUES,
            sort="created",
            context=f"Error searching issues authored by {login}",
            force_refresh=force_refresh,
        )

    async def search_user_pr_comments(
        self,
        org: str,
        login: str,
        repos: Iterable[str],
        since: Optional[str] = None,
        *,
        force_refresh: bool = False,
    ) -> FetchResult[list[dict[str, Any]]]:
        query = pr_comments_query(org, login, repos, since)
        return await self._search_items(
            user_search_key(KIND_PR_COMMENTS, login, query),
            query,
            endpoint=ENDPOINT_ISSUES,
            sort="created",
            context=f"Error searching PR comments by {login}",
            force_refresh=force_refresh,
        )

    async def count_org_prs(self, org: str, repos: Iterable[str], since: Optional[str] = None) -> FetchResult[int]:
        query = org_prs_query(org, repos, since)
        return await self._deduplicated(
            f"count:{query}",
            lambda: self._count(org_totals_key("prs", org, query), query, f"Error counting PRs for org {org}"),
        )

    async def count_org_issues(self, org: str, repos: Iterable[str], since: Optional[str] = None) -> FetchResult[int]:
        query = org_issues_query(org, repos, since)
        return await self._deduplicated(
            f"count:{query}",
            lambda: self._count(org_totals_key("issues", org, query), query, f"Error counting issues for org {org}"),
        )

    async def _search_items(
        self,
        cache_key: str,
        query: str,
        *,
        endpoint: str,
        sort: str,
        context: str,
        force_refresh: bool = False,
    ) -> FetchResult[list[dict[str, Any]]]:
        return await self._deduplicated(
            f"{endpoint}:{query}",
            lambda: self._fetch_items(
                cache_key, query, endpoint=endpoint, sort=sort, context=context, force_refresh=force_refresh
            ),
        )

    async def _deduplicated(
        self, dedupe_key: str, factory: Callable[[], Awaitable[FetchResult[Any]]]
    ) -> FetchResult[Any]:
        # Identical queries share one task until it completes; later repeats hit the file cache.
        future = self._inflight.get(dedupe_key)
        if future is None:
            future = asyncio.ensure_future(factory())
            self._inflight[dedupe_key] = future
            future.add_done_callback(lambda _: self._inflight.pop(dedupe_key, None))
        return await asyncio.shield(future)

    async def _fetch_items(
        self,
        cache_key: str,
        query: str,
        *,
        endpoint: str,
        sort: str,
        context: str,
        force_refresh: bool = False,
    ) -> FetchResult[list[dict[str, Any]]]:
        if not force_refresh:
            cached = await self._cache.read(cache_key, self._ttl_ms)
            if cached.hit and not cached.stale and isinstance(cached.payload, list):
                logger.debug("Cache hit for search", extra={"key": cache_key})
                return FetchResult.ok(cached.payload)

        logger.info("Running GitHub search", extra={"query": query, "endpoint": endpoint})
        if endpoint == ENDPOINT_COMMITS:
            call = self._client.search_commits(query, sort=sort, order="desc", per_page=100)
        else:
            call = self._client.search_issues_and_prs(query, sort=sort, order="desc", per_page=100)

        response = await call_upstream(call, context)
        if response.is_failed:
            return response

        items = list(response.data or [])
        await self._cache.write(cache_key, items)
        return FetchResult.ok(items)

    async def _count(self, cache_key: str, query: str, context: str) -> FetchResult[int]:
        cached = await self._cache.read(cache_key, self._ttl_ms)
        if cached.hit and not cached.stale and isinstance(cached.payload, int):
            return FetchResult.ok(cached.payload)

        response = await call_upstream(self._client.count_issues_and_prs(query), context)
        if response.is_failed:
            return response

        total = int(response.data or 0)
        await self._cache.write(cache_key, total)
        return FetchResult.ok(total)
