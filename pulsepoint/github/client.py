"""Async GitHub REST/Search client used by the activity services."""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from pulsepoint.config.settings import settings
from pulsepoint.github.contracts import FetchResult, FetchState

logger = logging.getLogger(__name__)

_REDACTED_VALUE = "***REDACTED***"
_SENSITIVE_KEYS = ("authorization", "token", "secret", "password", "cookie")
_TOKEN_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[^\s,;]+"),
    re.compile(r"(?i)(token\s*[=:]\s*)[^\s,;]+"),
    re.compile(r"(?i)(access_token=)[^&\s]+"),
)


def sanitize_for_log(value: Any, *, key: Optional[str] = None) -> Any:
    """Return a recursively sanitized copy of log payloads."""

    if key and any(keyword in key.lower() for keyword in _SENSITIVE_KEYS):
        return _REDACTED_VALUE

    if isinstance(value, dict):
        return {str(field): sanitize_for_log(item, key=str(field)) for field, item in value.items()}

    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(item) for item in value]

    if isinstance(value, str):
        redacted = value
        for pattern in _TOKEN_PATTERNS:
            redacted = pattern.sub(rf"\1{_REDACTED_VALUE}", redacted)
        return redacted

    return value


def sanitize_log_extra(**kwargs: Any) -> dict[str, Any]:
    """Helper for `extra=` payloads in structured logging."""

    return {key: sanitize_for_log(value, key=key) for key, value in kwargs.items()}


class GitHubClient:
    """Typed GitHub API client returning `FetchResult`s instead of raising.

    One instance is created at process start and shared by every service.
    HTTP error responses are never retried here; only connection failures
    (the request never reached GitHub) get a bounded number of retries.
    """

    BASE_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"
    ACCEPT_JSON = "application/vnd.github+json"
    MAX_PER_PAGE = 100
    SEARCH_RESULT_CEILING = 1000

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        connect_retries: Optional[int] = None,
        base_url: Optional[str] = None,
        transport: Optional[Any] = None,
    ) -> None:
        self._token = token or settings.GITHUB_TOKEN
        self._timeout_seconds = timeout_seconds or settings.GITHUB_TIMEOUT_SECONDS
        self._connect_retries = settings.GITHUB_CONNECT_RETRIES if connect_retries is None else connect_retries
        self._base_url = base_url or settings.GITHUB_API_URL or self.BASE_URL
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self._token:
            logger.warning("GITHUB_TOKEN not set. GitHub API calls will be unauthenticated.")

    async def __aenter__(self) -> "GitHubClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def list_org_members(self, org: str) -> FetchResult[list[dict[str, Any]]]:
        return await self._paginate(f"/orgs/{org}/members")

    async def get_user_profile(self, login: str) -> FetchResult[dict[str, Any]]:
        return await self._request(f"/users/{login}")

    async def list_org_repos(self, org: str) -> FetchResult[list[dict[str, Any]]]:
        return await self._paginate(f"/orgs/{org}/repos", params={"type": "all"})

    async def list_commits(
        self,
        owner: str,
        repo: str,
        *,
        since: Optional[str] = None,
        until: Optional[str] = None,
        page: int = 1,
        per_page: int = MAX_PER_PAGE,
    ) -> FetchResult[list[dict[str, Any]]]:
        """Fetch a single page of commits for a repository."""

        params: dict[str, Any] = {"page": page, "per_page": per_page}
        if since:
            params["since"] = since
        if until:
            params["until"] = until

        response = await self._request(f"/repos/{owner}/{repo}/commits", params=params)
        if response.is_failed:
            return response
        if not isinstance(response.data, list):
            return FetchResult(
                state=FetchState.FAILED,
                status_code=response.status_code,
                error=f"Unexpected commit payload for {owner}/{repo}",
            )
        return FetchResult.ok(response.data, status_code=response.status_code)

    async def search_commits(
        self,
        query: str,
        *,
        sort: str = "committer-date",
        order: str = "desc",
        per_page: int = MAX_PER_PAGE,
    ) -> FetchResult[list[dict[str, Any]]]:
        return await self._search("/search/commits", query, sort=sort, order=order, per_page=per_page)

    async def search_issues_and_prs(
        self,
        query: str,
        *,
        sort: str = "created",
        order: str = "desc",
        per_page: int = MAX_PER_PAGE,
    ) -> FetchResult[list[dict[str, Any]]]:
        return await self._search("/search/issues", query, sort=sort, order=order, per_page=per_page)

    async def count_issues_and_prs(self, query: str) -> FetchResult[int]:
        """Return `total_count` for an issue/PR search without paging through items."""

        response = await self._request("/search/issues", params={"q": query, "per_page": 1})
        if response.is_failed:
            return response
        payload = response.data if isinstance(response.data, dict) else {}
        total = payload.get("total_count")
        return FetchResult(
            state=FetchState.OK,
            data=int(total) if isinstance(total, int) else 0,
            status_code=response.status_code,
        )

    async def _paginate(
        self,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
    ) -> FetchResult[list[dict[str, Any]]]:
        collected: list[dict[str, Any]] = []
        page = 1
        while True:
            page_params = dict(params or {})
            page_params.update({"page": page, "per_page": self.MAX_PER_PAGE})
            response = await self._request(path, params=page_params)
            if response.is_failed:
                return response
            if not isinstance(response.data, list):
                return FetchResult(
                    state=FetchState.FAILED,
                    status_code=response.status_code,
                    error=f"Unexpected list payload from {path}",
                )

            collected.extend(response.data)
            if len(response.data) < self.MAX_PER_PAGE:
                break
            page += 1

        return FetchResult.ok(collected)

    async def _search(
        self,
        path: str,
        query: str,
        *,
        sort: str,
        order: str,
        per_page: int,
    ) -> FetchResult[list[dict[str, Any]]]:
        collected: list[dict[str, Any]] = []
        page = 1
        while len(collected) < self.SEARCH_RESULT_CEILING:
            response = await self._request(
                path,
                params={"q": query, "sort": sort, "order": order, "per_page": per_page, "page": page},
            )
            if response.is_failed:
                return response

            payload = response.data if isinstance(response.data, dict) else {}
            items = payload.get("items") if isinstance(payload.get("items"), list) else []
            collected.extend(items)

            total = payload.get("total_count")
            if len(items) < per_page or (isinstance(total, int) and len(collected) >= total):
                break
            page += 1

        return FetchResult.ok(collected[: self.SEARCH_RESULT_CEILING])

    async def _request(
        self,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
    ) -> FetchResult[Any]:
        client = await self._ensure_client()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._connect_retries + 1),
                wait=wait_exponential(multiplier=0.5, max=4),
                retry=retry_if_exception_type(httpx.ConnectError),
                reraise=True,
            ):
                with attempt:
                    response = await client.get(path, params=params)
        except httpx.TimeoutException as exc:
            logger.warning(
                "GitHub request timed out",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc)),
            )
            return FetchResult(
                state=FetchState.FAILED,
                error=f"GitHub request timed out after {self._timeout_seconds}s ({path})",
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "GitHub request failed",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc)),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc) or type(exc).__name__)

        if response.is_error:
            return FetchResult(
                state=FetchState.FAILED,
                status_code=response.status_code,
                headers={key.lower(): value for key, value in response.headers.items()},
                error=self._error_message(response),
            )

        try:
            data = response.json()
        except ValueError as exc:
            return FetchResult(
                state=FetchState.FAILED,
                status_code=response.status_code,
                error=f"Invalid JSON from GitHub ({path}): {exc}",
            )

        return FetchResult(
            state=FetchState.OK,
            data=data,
            status_code=response.status_code,
            headers={key.lower(): value for key, value in response.headers.items()},
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client

        headers = {
            "Accept": self.ACCEPT_JSON,
            "User-Agent": settings.USER_AGENT,
            "X-GitHub-Api-Version": self.API_VERSION,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )
        return self._client

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("message"), str):
            return payload["message"]
        return f"GitHub responded with HTTP {response.status_code}"
