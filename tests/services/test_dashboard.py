from __future__ import annotations

import asyncio
import re
from datetime import UTC, datetime
from typing import Any

import pytest

from pulsepoint.cache.store import CacheStore
from pulsepoint.github.contracts import FetchResult, FetchState
from pulsepoint.github.errors import ErrorKind
from pulsepoint.services.dashboard import DashboardService, InvalidRequestError

T0 = 1_717_200_000.0
DAY = 24 * 60 * 60
_USER_QUALIFIER = re.compile(r"(?:author|commenter):(\S+)")


class FakeClock:
    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def today(self) -> datetime:
        return datetime.fromtimestamp(self.now, UTC)


class FakeGitHub:
    def __init__(self) -> None:
        self.members_failure: FetchResult[Any] | None = None
        self.closed = False

    async def list_org_members(self, org: str):
        if self.members_failure is not None:
            return self.members_failure
        return FetchResult.ok([{"login": "octocat"}, {"login": "hubot"}])

    async def get_user_profile(self, login: str):
        return FetchResult.ok({"login": login, "name": f"{login} name"})

    async def list_org_repos(self, org: str):
        return FetchResult.ok([{"name": "api"}])

    async def list_commits(self, owner: str, repo: str, **_: Any):
        return FetchResult.ok(
            [
                {"sha": "1", "author": {"login": "octocat"}},
                {"sha": "2", "author": {"login": "hubot"}},
                {"sha": "3", "author": {"login": "stranger"}},
            ]
        )

    async def search_commits(self, query: str, **_: Any):
        login = _USER_QUALIFIER.search(query).group(1)
        return FetchResult.ok([{"sha": f"{login}-1"}, {"sha": f"{login}-2"}])

    async def search_issues_and_prs(self, query: str, **_: Any):
        if "commenter:" in query:
            return FetchResult.ok([{"number": 9}])
        if "is:pr" in query:
            return FetchResult.ok(
                [
                    {"number": 1, "created_at": "2024-05-01T00:00:00Z", "closed_at": "2024-05-01T04:00:00Z"},
                    {"number": 2, "created_at": "2024-05-02T00:00:00Z", "closed_at": "2024-05-02T08:00:00Z"},
                ]
            )
        return FetchResult.ok([])

    async def count_issues_and_prs(self, query: str):
        return FetchResult.ok(17 if "is:pr" in query else 5)

    async def aclose(self) -> None:
        self.closed = True


def make_service(tmp_path, client: FakeGitHub, clock: FakeClock, **overrides: Any) -> DashboardService:
    options = {"target_org": "acme", "target_repos": ["api"], "fresh_max_age_hours": 24, "lookback_days": 30}
    options.update(overrides)
    return DashboardService(
        github_client=client,
        cache=CacheStore(tmp_path, clock=clock),
        now=clock.today,
        **options,
    )


@pytest.mark.asyncio
async def test_org_dashboard_serves_fresh_aggregate(tmp_path) -> None:
    clock = FakeClock()
    service = make_service(tmp_path, FakeGitHub(), clock)

    result = await service.get_org_dashboard()

    envelope = result.data.to_envelope()
    assert envelope["isStale"] is False
    assert envelope["timestamp"] == int(T0 * 1000)
    assert [member["login"] for member in envelope["members"]] == ["octocat", "hubot"]
    assert envelope["activityByUser"]["octocat"] == {
        "commitCount": 2,
        "prAuthoredCount": 2,
        "issueAuthoredCount": 0,
        "prCommentCount": 1,
    }
    assert "error" not in envelope


@pytest.mark.asyncio
async def test_rate_limit_after_cache_expiry_serves_stale_dashboard(tmp_path) -> None:
    clock = FakeClock()
    client = FakeGitHub()
    service = make_service(tmp_path, client, clock)
    since = "2024-05-01T00:00:00Z"
    primed = await service.get_org_dashboard(since=since)

    clock.now = T0 + DAY + 60
    reset_at = int(clock.now) + 3600
    client.members_failure = FetchResult(
        state=FetchState.FAILED,
        status_code=403,
        headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": str(reset_at)},
        error="API rate limit exceeded for user",
    )
    result = await service.get_org_dashboard(since=since)

    envelope = result.data.to_envelope()
    assert envelope["isStale"] is True
    assert envelope["timestamp"] == int(T0 * 1000)
    assert envelope["members"] == primed.data.data["members"]
    assert envelope["error"]["rateLimitExceeded"] is True
    assert envelope["error"]["resetTimestamp"] == reset_at * 1000
    assert envelope["error"]["isStale"] is True


@pytest.mark.asyncio
async def test_sso_failure_without_cache_is_returned_as_error(tmp_path) -> None:
    client = FakeGitHub()
    client.members_failure = FetchResult(
        state=FetchState.FAILED,
        status_code=403,
        headers={"X-GitHub-SSO": "required; url=https://github.com/orgs/acme/sso?authorization_request=abc"},
    )
    service = make_service(tmp_path, client, FakeClock())

    result = await service.get_org_dashboard()

    assert result.is_failed
    assert result.failure.kind is ErrorKind.SSO_REQUIRED
    assert result.failure.to_payload()["ssoUrl"] == "https://github.com/orgs/acme/sso?authorization_request=abc"


@pytest.mark.asyncio
async def test_user_details_combine_user_and_org_activity(tmp_path) -> None:
    service = make_service(tmp_path, FakeGitHub(), FakeClock())

    result = await service.get_user_details(" octocat ", since="2024-05-01")

    body = result.data.to_envelope()
    assert body["username"] == "octocat"
    assert body["isStale"] is False
    assert body["summary"] == {
        "commitCount": 2,
        "prAuthoredCount": 2,
        "issueAuthoredCount": 0,
        "prCommentCount": 1,
        "avgTurnaroundHours": 6.0,
        "avgCommentsBeforeShipping": None,
        "totalOrgCommitCount": 2,
        "totalOrgPRCount": 17,
        "totalOrgIssueCount": 5,
        "totalOrgPRCommentCount": None,
    }
    assert len(body["pullRequestsAuthored"]) == 2
    assert body["pullRequestCommentsMade"] == [{"number": 9}]


@pytest.mark.asyncio
async def test_missing_org_or_username_is_rejected(tmp_path) -> None:
    service = make_service(tmp_path, FakeGitHub(), FakeClock(), target_org="")

    with pytest.raises(InvalidRequestError):
        await service.get_org_dashboard()

    configured = make_service(tmp_path, FakeGitHub(), FakeClock())
    with pytest.raises(InvalidRequestError):
        await configured.get_user_details("   ")


def test_default_since_uses_lookback_window(tmp_path) -> None:
    service = make_service(tmp_path, FakeGitHub(), FakeClock(), lookback_days=7)

    assert service.default_since().startswith("2024-05-25")


def test_aclose_closes_client(tmp_path) -> None:
    client = FakeGitHub()
    service = make_service(tmp_path, client, FakeClock())

    asyncio.run(service.aclose())

    assert client.closed is True
