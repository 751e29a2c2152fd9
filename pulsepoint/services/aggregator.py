"""Org-wide activity aggregation: four searches per member, summarized by login."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pulsepoint.cache.store import CACHE_MISS, CacheStore
from pulsepoint.config.settings import settings
from pulsepoint.github.contracts import FetchResult
from pulsepoint.services.activity_search import ActivitySearch
from pulsepoint.services.cache_keys import org_activity_key
from pulsepoint.services.members import MemberDirectory, OrgMember

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UserActivitySummary:
    commit_count: int = 0
    pr_authored_count: int = 0
    issue_authored_count: int = 0
    pr_comment_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "commitCount": self.commit_count,
            "prAuthoredCount": self.pr_authored_count,
            "issueAuthoredCount": self.issue_authored_count,
            "prCommentCount": self.pr_comment_count,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "UserActivitySummary":
        return cls(
            commit_count=int(raw.get("commitCount", 0)),
            pr_authored_count=int(raw.get("prAuthoredCount", 0)),
            issue_authored_count=int(raw.get("issueAuthoredCount", 0)),
            pr_comment_count=int(raw.get("prCommentCount", 0)),
        )


@dataclass(slots=True)
class OrgActivityData:
    """Members plus one summary per member, keyed by lowercased login."""

    members: list[OrgMember] = field(default_factory=list)
    activity_by_user: dict[str, UserActivitySummary] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "members": [member.to_dict() for member in self.members],
            "activityByUser": {login: summary.to_dict() for login, summary in self.activity_by_user.items()},
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "OrgActivityData":
        members = [OrgMember.from_dict(item) for item in raw["members"]]
        activity = {
            str(login).lower(): UserActivitySummary.from_dict(summary)
            for login, summary in raw["activityByUser"].items()
        }
        for member in members:
            activity.setdefault(member.login.lower(), UserActivitySummary())
        return cls(members=members, activity_by_user=activity)


class ActivityAggregator:
    """Builds `OrgActivityData` for an (org, repos, since, until) tuple.

    Any classified failure from the member lookup or from one of the
    per-member searches fails the whole aggregate: a partial set of counts
    would make the comparative dashboard misleading.

    `force_refresh` skips every fresh-cache read, including the member list
    and the per-member searches; results are still written back.
    """

    def __init__(
        self,
        directory: MemberDirectory,
        search: ActivitySearch,
        cache: CacheStore,
        *,
        concurrency: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self._directory = directory
        self._search = search
        self._cache = cache
        self._concurrency = max(1, concurrency or settings.MEMBER_SEARCH_CONCURRENCY)
        self._ttl_ms = (ttl_seconds or settings.ORG_ACTIVITY_CACHE_TTL_SECONDS) * 1000

    async def aggregate(
        self,
        org: str,
        repos: list[str],
        since: Optional[str] = None,
        until: Optional[str] = None,
        *,
        force_refresh: bool = False,
    ) -> FetchResult[OrgActivityData]:
        cache_key = org_activity_key(org, repos, since, until)
        cached = CACHE_MISS if force_refresh else await self._cache.read(cache_key, self._ttl_ms)
        if cached.hit and not cached.stale:
            try:
                data = OrgActivityData.from_dict(cached.payload)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Discarding unusable cached org activity", extra={"key": cache_key, "error": str(exc)})
            else:
                logger.info("Cache hit for org activity", extra={"key": cache_key})
                return FetchResult.ok(data)

        members_result = await self._directory.get_org_members(org, force_refresh=force_refresh)
        if members_result.is_failed:
            return members_result
        members = members_result.data or []

        semaphore = asyncio.Semaphore(self._concurrency)
        outcomes = await asyncio.gather(
            *(
                self._summarize_member(org, member.login, repos, since, semaphore, force_refresh)
                for member in members
            )
        )

        activity_by_user: dict[str, UserActivitySummary] = {}
        for member, outcome in zip(members, outcomes):
            if outcome.is_failed:
                logger.warning(
                    "Org activity aggregation failed",
                    extra={"org": org, "login": member.login, "error": outcome.failure.message},
                )
                return outcome
            activity_by_user[member.login.lower()] = outcome.data

        data = OrgActivityData(members=list(members), activity_by_user=activity_by_user)
        await self._cache.write(cache_key, data.to_dict())
        logger.info("Finished org activity aggregation", extra={"org": org, "member_count": len(members)})
        return FetchResult.ok(data)

    async def _summarize_member(
        self,
        org: str,
        login: str,
        repos: list[str],
        since: Optional[str],
        semaphore: asyncio.Semaphore,
        force_refresh: bool = False,
    ) -> FetchResult[UserActivitySummary]:
        async with semaphore:
            commits, prs, issues, comments = await asyncio.gather(
                self._search.search_user_commits(org, login, repos, since, force_refresh=force_refresh),
                self._search.search_user_prs_authored(org, login, repos, since, force_refresh=force_refresh),
                self._search.search_user_issues_authored(org, login, repos, since, force_refresh=force_refresh),
                self._search.search_user_pr_comments(org, login, repos, since, force_refresh=force_refresh),
            )

        for result in (commits, prs, issues, comments):
            if result.is_failed:
                return result

        return FetchResult.ok(
            UserActivitySummary(
                commit_count=len(commits.data or []),
                pr_authored_count=len(prs.data or []),
                issue_authored_count=len(issues.data or []),
                pr_comment_count=len(comments.data or []),
            )
        )
