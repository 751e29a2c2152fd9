"""Concurrency-bounded commit scan across an organization's repositories."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pulsepoint.cache.store import CacheStore
from pulsepoint.config.settings import settings
from pulsepoint.github.contracts import FetchResult
from pulsepoint.github.errors import ClassifiedError, ErrorKind, call_upstream
from pulsepoint.services.cache_keys import org_commits_key
from pulsepoint.services.members import MemberDirectory

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _ScanState:
    commits: list[dict[str, Any]] = field(default_factory=list)
    abort: Optional[ClassifiedError] = None


class RepoCommitScanner:
    """Fetches member-authored commits from many repositories with a worker cap.

    A fixed pool of workers drains one shared queue of repository names.
    SSO enforcement on any repository aborts the whole scan; any other
    per-repository failure only drops that repository's commits.
    """

    PAGE_SIZE = 100

    def __init__(
        self,
        github_client: Any,
        *,
        concurrency: Optional[int] = None,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self._client = github_client
        self._concurrency = max(1, concurrency or settings.REPO_SCAN_CONCURRENCY)
        self._page_size = page_size

    async def scan(
        self,
        org: str,
        repos: Iterable[str],
        member_logins: Iterable[str],
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> FetchResult[list[dict[str, Any]]]:
        logins = {login.lower() for login in member_logins}
        queue: asyncio.Queue[str] = asyncio.Queue()
        for repo in repos:
            queue.put_nowait(repo)

        state = _ScanState()
        worker_count = min(self._concurrency, queue.qsize())
        logger.info(
            "Scanning repositories for member commits",
            extra={"org": org, "repo_count": queue.qsize(), "member_count": len(logins), "workers": worker_count},
        )
        await asyncio.gather(
            *(self._worker(org, queue, logins, since, until, state) for _ in range(worker_count))
        )

        if state.abort is not None:
            return FetchResult.failed(state.abort)

        logger.info("Repository scan finished", extra={"org": org, "commit_count": len(state.commits)})
        return FetchResult.ok(state.commits)

    async def _worker(
        self,
        org: str,
        queue: asyncio.Queue[str],
        logins: set[str],
        since: Optional[str],
        until: Optional[str],
        state: _ScanState,
    ) -> None:
        while state.abort is None:
            try:
                repo = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            result = await self._scan_repo(org, repo, logins, since, until, state)
            if result.is_ok:
                if state.abort is None:
                    state.commits.extend(result.data or [])
                continue

            if result.failure.kind is ErrorKind.SSO_REQUIRED:
                if state.abort is None:
                    state.abort = result.failure
                return

            logger.warning(
                "Skipping repository after fetch failure",
                extra={"org": org, "repo": repo, "error": result.failure.message},
            )

    async def _scan_repo(
        self,
        org: str,
        repo: str,
        logins: set[str],
        since: Optional[str],
        until: Optional[str],
        state: _ScanState,
    ) -> FetchResult[list[dict[str, Any]]]:
        matched: list[dict[str, Any]] = []
        page = 1
        while True:
            # Stop paging once another worker has aborted the scan.
            if state.abort is not None:
                return FetchResult.failed(state.abort)
            response = await call_upstream(
                self._client.list_commits(org, repo, since=since, until=until, page=page, per_page=self._page_size),
                f"Error fetching commits for repo {org}/{repo}",
            )
            if response.is_failed:
                return response

            items = response.data or []
            matched.extend(commit for commit in items if _authored_by(commit, logins))
            if len(items) < self._page_size:
                break
            page += 1

        return FetchResult.ok(matched)


def _authored_by(commit: Any, logins: set[str]) -> bool:
    author = commit.get("author") if isinstance(commit, dict) else None
    login = author.get("login") if isinstance(author, dict) else None
    return isinstance(login, str) and login.lower() in logins


class OrgMemberCommits:
    """Cached org-wide list of commits authored by org members."""

    def __init__(
        self,
        directory: MemberDirectory,
        scanner: RepoCommitScanner,
        cache: CacheStore,
        *,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._directory = directory
        self._scanner = scanner
        self._cache = cache
        self._ttl_ms = (ttl_seconds or settings.COMMITS_CACHE_TTL_SECONDS) * 1000

    async def get(
        self,
        org: str,
        repos: list[str],
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> FetchResult[list[dict[str, Any]]]:
        cache_key = org_commits_key(org, repos, since, until)
        cached = await self._cache.read(cache_key, self._ttl_ms)
        if cached.hit and not cached.stale and isinstance(cached.payload, list):
            logger.info("Cache hit for aggregated org commits", extra={"key": cache_key})
            return FetchResult.ok(cached.payload)

        members = await self._directory.get_org_members(org)
        if members.is_failed:
            return members

        repos_to_scan = repos
        if not repos_to_scan:
            listed = await self._directory.get_org_repos(org)
            if listed.is_failed:
                return listed
            repos_to_scan = listed.data or []

        result = await self._scanner.scan(
            org,
            repos_to_scan,
            [member.login for member in members.data or []],
            since,
            until,
        )
        if result.is_ok:
            await self._cache.write(cache_key, result.data or [])
        return result
