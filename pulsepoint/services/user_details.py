"""Per-user detail payload: activity lists, counts, turnaround and org totals."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

from dateutil import parser as date_parser

from pulsepoint.github.contracts import FetchResult
from pulsepoint.services.activity_search import ActivitySearch
from pulsepoint.services.repo_scanner import OrgMemberCommits

logger = logging.getLogger(__name__)

_SECONDS_PER_HOUR = 60 * 60


def average_turnaround_hours(pull_requests: Iterable[dict[str, Any]]) -> Optional[float]:
    """Mean `closed_at - created_at` in hours over closed PRs, None if none closed."""
    durations: list[float] = []
    for pull_request in pull_requests:
        created_raw = pull_request.get("created_at")
        closed_raw = pull_request.get("closed_at")
        if not isinstance(created_raw, str) or not isinstance(closed_raw, str):
            continue
        try:
            created = date_parser.isoparse(created_raw)
            closed = date_parser.isoparse(closed_raw)
        except (TypeError, ValueError):
            continue
        durations.append((closed - created).total_seconds())

    if not durations:
        return None
    return sum(durations) / len(durations) / _SECONDS_PER_HOUR


class UserDetailsBuilder:
    """Assembles the detail view for one org member."""

    def __init__(self, search: ActivitySearch, org_commits: OrgMemberCommits) -> None:
        self._search = search
        self._org_commits = org_commits

    async def build(
        self,
        org: str,
        login: str,
        repos: list[str],
        since: Optional[str] = None,
        until: Optional[str] = None,
    ) -> FetchResult[dict[str, Any]]:
        logger.info("Fetching user details", extra={"org": org, "login": login})
        results = await asyncio.gather(
            self._search.search_user_commits(org, login, repos, since),
            self._search.search_user_prs_authored(org, login, repos, since),
            self._search.search_user_issues_authored(org, login, repos, since),
            self._search.search_user_pr_comments(org, login, repos, since),
            self._org_commits.get(org, repos, since, until),
            self._search.count_org_prs(org, repos, since),
            self._search.count_org_issues(org, repos, since),
        )
        for result in results:
            if result.is_failed:
                return result

        commits, prs, issues, comments, org_commits, org_pr_total, org_issue_total = (
            result.data for result in results
        )
        commits, prs, issues, comments = (items or [] for items in (commits, prs, issues, comments))

        payload = {
            "username": login,
            "summary": {
                "commitCount": len(commits),
                "prAuthoredCount": len(prs),
                "issueAuthoredCount": len(issues),
                "prCommentCount": len(comments),
                "avgTurnaroundHours": average_turnaround_hours(prs),
                # Needs a per-PR review comment count, which the search API does not return.
                "avgCommentsBeforeShipping": None,
                "totalOrgCommitCount": len(org_commits or []),
                "totalOrgPRCount": org_pr_total,
                "totalOrgIssueCount": org_issue_total,
                "totalOrgPRCommentCount": None,
            },
            "commits": commits,
            "pullRequestsAuthored": prs,
            "issuesAuthored": issues,
            "pullRequestCommentsMade": comments,
        }
        return FetchResult.ok(payload)
