from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pulsepoint.cache.store import CacheStore
from pulsepoint.github.contracts import FetchResult, FetchState
from pulsepoint.github.errors import ErrorKind
from pulsepoint.services.activity_search import (
    ActivitySearch,
    commits_query,
    issues_authored_query,
    org_prs_query,
    pr_comments_query,
    prs_authored_query,
)


class FakeSearchClient:
    def __init__(self) -> None:
        self.commit_queries: list[str] = []
        self.issue_queries: list[str] = []
        self.count_queries: list[str] = []
        self.issue_failure: FetchResult[Any] | None = None

    async def search_commits(self, query: str, *, sort: str = "committer-date", order: str = "desc", per_page: int = 100):
        self.commit_queries.append(query)
        await asyncio.sleep(0.01)
        return FetchResult.ok([{"sha": "a"}, {"sha": "b"}])

    async def search_issues_and_prs(self, query: str, *, sort: str = "created", order: str = "desc", per_page: int = 100):
        self.issue_queries.append(query)
        if self.issue_failure is not None:
            return self.issue_failure
        return FetchResult.ok([{"number": 1}])

    async def count_issues_and_prs(self, query: str):
        self.count_queries.append(query)
        return FetchResult.ok(42)


def test_query_strings_scope_to_repositories() -> None:
    repos = ["api", "web"]
    since = "2024-05-01T10:00:00Z"

    assert commits_query("acme", "octocat", repos, since) == (
        "author:octocat repo:acme/api repo:acme/web committer-date:>2024-05-01"
    )
    assert prs_authored_query("acme", "octocat", repos, since) == (
        "is:pr author:octocat repo:acme/api repo:acme/web created:>2024-05-01"
    )
    assert issues_authored_query("acme", "octocat", repos) == "is:issue author:octocat repo:acme/api repo:acme/web"
    assert pr_comments_query("acme", "octocat", repos) == "is:pr commenter:octocat repo:acme/api repo:acme/web"


def test_query_without_repositories_scopes_to_org() -> None:
    assert commits_query("acme", "octocat", []) == "author:octocat org:acme"
    assert org_prs_query("acme", [], "2024-05-01") == "is:pr org:acme created:>2024-05-01"


@pytest.mark.asyncio
async def test_identical_concurrent_searches_share_one_request(tmp_path) -> None:
    client = FakeSearchClient()
    search = ActivitySearch(client, CacheStore(tmp_path))

    first, second = await asyncio.gather(
        search.search_user_commits("acme", "octocat", ["api"]),
        search.search_user_commits("acme", "octocat", ["api"]),
    )

    assert first.data == second.data == [{"sha": "a"}, {"sha": "b"}]
    assert len(client.commit_queries) == 1


@pytest.mark.asyncio
async def test_repeat_search_is_served_from_cache(tmp_path) -> None:
    client = FakeSearchClient()
    search = ActivitySearch(client, CacheStore(tmp_path))

    await search.search_user_prs_authored("acme", "octocat", ["api"])
    result = await search.search_user_prs_authored("acme", "octocat", ["api"])

    assert result.data == [{"number": 1}]
    assert len(client.issue_queries) == 1


@pytest.mark.asyncio
async def test_different_users_are_not_merged(tmp_path) -> None:
    client = FakeSearchClient()
    search = ActivitySearch(client, CacheStore(tmp_path))

    await asyncio.gather(
        search.search_user_issues_authored("acme", "octocat", []),
        search.search_user_issues_authored("acme", "hubot", []),
    )

    assert sorted(client.issue_queries) == ["is:issue author:hubot org:acme", "is:issue author:octocat org:acme"]


@pytest.mark.asyncio
async def test_failed_search_is_classified_and_not_cached(tmp_path) -> None:
    client = FakeSearchClient()
    client.issue_failure = FetchResult(
        state=FetchState.FAILED,
        status_code=403,
        headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000000"},
        error="API rate limit exceeded",
    )
    search = ActivitySearch(client, CacheStore(tmp_path))

    first = await search.search_user_pr_comments("acme", "octocat", [])
    client.issue_failure = None
    second = await search.search_user_pr_comments("acme", "octocat", [])

    assert first.failure.kind is ErrorKind.RATE_LIMITED
    assert first.failure.reset_timestamp == 1_700_000_000_000
    assert second.is_ok
    assert len(client.issue_queries) == 2


@pytest.mark.asyncio
async def test_org_totals_use_search_total_count(tmp_path) -> None:
    client = FakeSearchClient()
    search = ActivitySearch(client, CacheStore(tmp_path))

    prs = await search.count_org_prs("acme", ["api"])
    issues = await search.count_org_issues("acme", ["api"])

    assert prs.data == 42
    assert issues.data == 42
    assert client.count_queries == ["is:pr repo:acme/api", "is:issue repo:acme/api"]
