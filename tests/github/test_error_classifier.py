from __future__ import annotations

import asyncio

import httpx

from pulsepoint.github.contracts import FetchResult, FetchState
from pulsepoint.github.errors import (
    NOT_FOUND_MESSAGE,
    ClassifiedError,
    ErrorKind,
    call_upstream,
    classify_failure,
    parse_sso_url,
)


def failed(status_code: int | None, headers: dict[str, str] | None = None, error: str = "boom") -> FetchResult:
    return FetchResult(state=FetchState.FAILED, status_code=status_code, headers=headers or {}, error=error)


def test_sso_header_with_url_is_classified_as_sso_required() -> None:
    result = failed(403, {"X-GitHub-SSO": "required; url=https://github.com/orgs/acme/sso?authorization_request=abc"})

    classified = classify_failure(result, "members")

    assert classified.kind is ErrorKind.SSO_REQUIRED
    assert classified.sso_url == "https://github.com/orgs/acme/sso?authorization_request=abc"
    assert classified.http_status == 403
    assert classified.to_payload()["ssoRequired"] is True


def test_sso_wins_over_exhausted_rate_limit() -> None:
    result = failed(
        403,
        {
            "x-github-sso": "required; url=https://github.com/orgs/acme/sso",
            "x-ratelimit-remaining": "0",
            "x-ratelimit-reset": "1700000000",
        },
    )

    assert classify_failure(result, "ctx").kind is ErrorKind.SSO_REQUIRED


def test_sso_header_without_url_falls_through_to_rate_limit_check() -> None:
    result = failed(403, {"x-github-sso": "partial-results; organizations=1", "x-ratelimit-remaining": "0"})

    assert classify_failure(result, "ctx").kind is ErrorKind.RATE_LIMITED


def test_exhausted_rate_limit_carries_reset_in_milliseconds() -> None:
    result = failed(
        403,
        {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000000"},
        error="API rate limit exceeded for user ID 1.",
    )

    classified = classify_failure(result, "search")

    assert classified.kind is ErrorKind.RATE_LIMITED
    assert classified.reset_timestamp == 1_700_000_000_000
    assert classified.http_status == 429
    assert classified.to_payload() == {
        "rateLimitExceeded": True,
        "resetTimestamp": 1_700_000_000_000,
        "message": "API rate limit exceeded for user ID 1.",
    }


def test_429_is_rate_limited_even_without_remaining_header() -> None:
    classified = classify_failure(failed(429, {"x-ratelimit-reset": "1700000100"}), "ctx")

    assert classified.kind is ErrorKind.RATE_LIMITED
    assert classified.reset_timestamp == 1_700_000_100_000


def test_403_with_remaining_quota_is_generic() -> None:
    classified = classify_failure(failed(403, {"x-ratelimit-remaining": "42"}, error="Forbidden"), "ctx")

    assert classified.kind is ErrorKind.GENERIC
    assert classified.message == "Forbidden"
    assert classified.http_status == 500


def test_404_is_described_as_not_found() -> None:
    classified = classify_failure(failed(404, error="Not Found"), "repo")

    assert classified.kind is ErrorKind.NOT_FOUND
    assert classified.message == NOT_FOUND_MESSAGE
    assert classified.to_payload() == {"message": NOT_FOUND_MESSAGE}


def test_exception_is_generic_with_cause() -> None:
    classified = classify_failure(httpx.ReadTimeout("timed out"), "ctx")

    assert classified.kind is ErrorKind.GENERIC
    assert classified.message == "timed out"
    assert "ReadTimeout" in (classified.cause or "")


def test_already_classified_result_is_returned_unchanged() -> None:
    classified = ClassifiedError(kind=ErrorKind.RATE_LIMITED, message="slow down", reset_timestamp=5)

    assert classify_failure(FetchResult.failed(classified), "ctx") is classified


def test_parse_sso_url_ignores_unrelated_values() -> None:
    assert parse_sso_url(None) is None
    assert parse_sso_url("partial-results") is None
    assert parse_sso_url("required; url=https://example.test/sso ") == "https://example.test/sso"


def test_call_upstream_classifies_raised_exceptions() -> None:
    async def explode() -> FetchResult:
        raise RuntimeError("connection reset")

    result = asyncio.run(call_upstream(explode(), "ctx"))

    assert result.is_failed
    assert result.failure.kind is ErrorKind.GENERIC
    assert result.failure.message == "connection reset"


def test_call_upstream_passes_successful_results_through() -> None:
    async def ok() -> FetchResult:
        return FetchResult.ok([1, 2])

    result = asyncio.run(call_upstream(ok(), "ctx"))

    assert result.is_ok
    assert result.data == [1, 2]
