"""Cache-first serving with stale fallback when a fresh fetch fails.

Every call ends in exactly one of three outcomes: fresh data, stale data
together with the classified error that prevented a refresh, or the
classified error alone when nothing has ever been cached for the key.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pulsepoint.cache.store import CacheStore
from pulsepoint.github.contracts import FetchResult
from pulsepoint.github.errors import ClassifiedError, classify_failure

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServedPayload:
    data: Any
    is_stale: bool
    timestamp: Optional[int]
    error: Optional[ClassifiedError] = None

    def to_envelope(self) -> dict[str, Any]:
        """Response body: the payload plus `isStale`, `timestamp` and `error` when stale."""
        body = dict(self.data) if isinstance(self.data, dict) else {"data": self.data}
        body["isStale"] = self.is_stale
        body["timestamp"] = self.timestamp
        if self.error is not None:
            body["error"] = {**self.error.to_payload(), "isStale": True, "timestamp": self.timestamp}
        return body


async def serve_with_fallback(
    cache: CacheStore,
    cache_key: str,
    fetch: Callable[[], Awaitable[FetchResult[Any]]],
    *,
    fresh_max_age_ms: float,
    context: str,
    force_refresh: bool = False,
) -> FetchResult[ServedPayload]:
    """Serve `cache_key` from cache when fresh, else fetch, else fall back to any cached copy.

    `fetch` must produce JSON-serializable data; it is written to the cache
    on success.
    """

    if not force_refresh:
        fresh = await cache.read(cache_key, fresh_max_age_ms)
        if fresh.hit and not fresh.stale:
            logger.info("Serving fresh cache", extra={"key": cache_key})
            return FetchResult.ok(ServedPayload(data=fresh.payload, is_stale=False, timestamp=fresh.timestamp))

    try:
        result = await fetch()
    except Exception as exc:
        result = FetchResult.failed(classify_failure(exc, context))

    if result.is_ok:
        await cache.write(cache_key, result.data)
        return FetchResult.ok(ServedPayload(data=result.data, is_stale=False, timestamp=cache.now_ms()))

    failure = classify_failure(result, context)
    fallback = await cache.read(cache_key, math.inf)
    if fallback.hit:
        logger.warning(
            "Serving stale cache after upstream failure",
            extra={"key": cache_key, "error_kind": failure.kind.value, "error": failure.message},
        )
        return FetchResult.ok(
            ServedPayload(data=fallback.payload, is_stale=True, timestamp=fallback.timestamp, error=failure)
        )

    logger.warning(
        "No cached data to fall back on",
        extra={"key": cache_key, "error_kind": failure.kind.value, "error": failure.message},
    )
    return FetchResult.failed(failure)
