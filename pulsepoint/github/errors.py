"""Classification of failed GitHub calls into actionable error kinds."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Optional, Union

from pulsepoint.github.client import sanitize_log_extra
from pulsepoint.github.contracts import FetchResult

logger = logging.getLogger(__name__)

SSO_HEADER = "x-github-sso"
RATE_LIMIT_REMAINING_HEADER = "x-ratelimit-remaining"
RATE_LIMIT_RESET_HEADER = "x-ratelimit-reset"

SSO_REQUIRED_MESSAGE = (
    "Resource protected by organization SAML enforcement. Please authenticate via the provided URL."
)
RATE_LIMITED_MESSAGE = "GitHub API rate limit exceeded."
NOT_FOUND_MESSAGE = (
    "GitHub resource not found (404). Check organization/repo names and token permissions."
)

_SSO_URL_PATTERN = re.compile(r"url=([^;]+)")


class ErrorKind(str, Enum):
    SSO_REQUIRED = "sso_required"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    GENERIC = "generic"


@dataclass(frozen=True, slots=True)
class ClassifiedError:
    """A failed upstream call normalized into one of a small set of kinds."""

    kind: ErrorKind
    message: str
    sso_url: Optional[str] = None
    reset_timestamp: Optional[int] = None
    status_code: Optional[int] = None
    cause: Optional[str] = None

    @property
    def http_status(self) -> int:
        if self.kind is ErrorKind.SSO_REQUIRED:
            return 403
        if self.kind is ErrorKind.RATE_LIMITED:
            return 429
        return 500

    def to_payload(self) -> dict[str, Any]:
        """Response body shape expected by the dashboard consumer."""
        if self.kind is ErrorKind.SSO_REQUIRED:
            return {"ssoRequired": True, "ssoUrl": self.sso_url, "message": self.message}
        if self.kind is ErrorKind.RATE_LIMITED:
            return {"rateLimitExceeded": True, "resetTimestamp": self.reset_timestamp, "message": self.message}
        return {"message": self.message}


def parse_sso_url(header_value: Optional[str]) -> Optional[str]:
    """Extract `<value>` from an `x-github-sso: required; url=<value>` header."""
    if not isinstance(header_value, str) or not header_value.strip().startswith("required"):
        return None
    match = _SSO_URL_PATTERN.search(header_value)
    if not match:
        return None
    return match.group(1).strip() or None


def _reset_timestamp_ms(headers: dict[str, str]) -> Optional[int]:
    raw_reset = headers.get(RATE_LIMIT_RESET_HEADER)
    if raw_reset is not None:
        try:
            return int(raw_reset) * 1000
        except ValueError:
            pass

    retry_after = headers.get("retry-after")
    if retry_after is not None:
        try:
            return int((time.time() + float(retry_after)) * 1000)
        except ValueError:
            pass
    return None


def classify_failure(source: Union[FetchResult[Any], BaseException], context: str) -> ClassifiedError:
    """Convert a failed result or a raised exception into a `ClassifiedError`.

    Priority order, first match wins: SSO enforcement, rate limiting,
    not found, generic. A result that already carries a classification is
    returned unchanged so a failure is only ever classified (and logged) once.
    """

    if isinstance(source, BaseException):
        classified = ClassifiedError(
            kind=ErrorKind.GENERIC,
            message=str(source) or type(source).__name__,
            cause=repr(source),
        )
        logger.error(
            "Upstream call raised",
            extra=sanitize_log_extra(context=context, error=classified.message),
        )
        return classified

    if source.failure is not None:
        return source.failure

    status = source.status_code
    headers = {str(key).lower(): str(value) for key, value in (source.headers or {}).items()}
    message = source.error or "GitHub request failed"

    if status == 403:
        sso_url = parse_sso_url(headers.get(SSO_HEADER))
        if sso_url:
            logger.warning(
                "GitHub SAML SSO required",
                extra=sanitize_log_extra(context=context, sso_url=sso_url),
            )
            return ClassifiedError(
                kind=ErrorKind.SSO_REQUIRED,
                message=SSO_REQUIRED_MESSAGE,
                sso_url=sso_url,
                status_code=status,
                cause=message,
            )

    if (status == 403 and headers.get(RATE_LIMIT_REMAINING_HEADER) == "0") or status == 429:
        reset_timestamp = _reset_timestamp_ms(headers)
        logger.warning(
            "GitHub rate limit hit",
            extra=sanitize_log_extra(context=context, reset_timestamp=reset_timestamp, status_code=status),
        )
        return ClassifiedError(
            kind=ErrorKind.RATE_LIMITED,
            message=source.error or RATE_LIMITED_MESSAGE,
            reset_timestamp=reset_timestamp,
            status_code=status,
            cause=message,
        )

    if status == 404:
        logger.error("GitHub resource not found", extra=sanitize_log_extra(context=context, error=message))
        return ClassifiedError(
            kind=ErrorKind.NOT_FOUND,
            message=NOT_FOUND_MESSAGE,
            status_code=status,
            cause=message,
        )

    logger.error(
        "GitHub request failed",
        extra=sanitize_log_extra(context=context, error=message, status_code=status),
    )
    return ClassifiedError(kind=ErrorKind.GENERIC, message=message, status_code=status, cause=message)


async def call_upstream(call: Awaitable[FetchResult[Any]], context: str) -> FetchResult[Any]:
    """Await a client call and classify whatever goes wrong with it."""
    try:
        response = await call
    except Exception as exc:
        return FetchResult.failed(classify_failure(exc, context))

    if response.is_failed:
        return FetchResult.failed(classify_failure(response, context))
    return response
