"""Flat-file JSON cache with stale-aware reads.

Every key maps to one `<cache_dir>/<key>.json` record holding
`{"key", "timestamp", "payload"}`. Records are replaced atomically and never
deleted: an expired record is still returned (flagged stale) so callers can
fall back to it when a fresh fetch fails.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from pulsepoint.config.settings import settings

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_MAX_STEM_LENGTH = 150


@dataclass(frozen=True, slots=True)
class CacheRead:
    payload: Any = None
    stale: bool = False
    timestamp: Optional[int] = None

    @property
    def hit(self) -> bool:
        return self.timestamp is not None


CACHE_MISS = CacheRead()


class CacheStore:
    """Key/value persistence of JSON payloads with write timestamps."""

    def __init__(
        self,
        cache_dir: str | Path,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache_dir = Path(cache_dir).expanduser()
        self._enabled = enabled
        self._clock = clock

    @classmethod
    def from_settings(cls) -> "CacheStore":
        return cls(settings.CACHE_DIR, enabled=not settings.CACHE_DISABLED)

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def path_for(self, key: str) -> Path:
        stem = _UNSAFE_KEY_CHARS.sub("_", key)
        if stem != key or len(stem) > _MAX_STEM_LENGTH:
            digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]
            stem = f"{stem[:_MAX_STEM_LENGTH]}-{digest}"
        return self._cache_dir / f"{stem}.json"

    async def write(self, key: str, payload: Any) -> None:
        """Persist `payload` under `key`; failures are logged, never raised."""
        if not self._enabled:
            return

        try:
            await asyncio.to_thread(self._write_entry, key, payload)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to write cache entry", extra={"key": key, "error": str(exc)})

    async def read(self, key: str, max_age_ms: float) -> CacheRead:
        """Return the entry for `key`, flagged stale when older than `max_age_ms`.

        A missing or unreadable entry is a miss: `CacheRead(None, False, None)`.
        """
        if not self._enabled:
            return CACHE_MISS

        try:
            raw = await asyncio.to_thread(self.path_for(key).read_bytes)
        except FileNotFoundError:
            return CACHE_MISS
        except OSError as exc:
            logger.error("Failed to read cache entry", extra={"key": key, "error": str(exc)})
            return CACHE_MISS

        try:
            entry = json.loads(raw)
            timestamp = int(entry["timestamp"])
            payload = entry["payload"]
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Ignoring malformed cache entry", extra={"key": key, "error": str(exc)})
            return CACHE_MISS

        age_ms = self.now_ms() - timestamp
        stale = age_ms > max_age_ms
        if stale:
            logger.info(
                "Cache is stale",
                extra={"key": key, "age_ms": age_ms, "max_age_ms": max_age_ms},
            )
        return CacheRead(payload=payload, stale=stale, timestamp=timestamp)

    def _write_entry(self, key: str, payload: Any) -> None:
        serialized = json.dumps({"key": key, "timestamp": self.now_ms(), "payload": payload}, indent=2)
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem[:40]}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(serialized)
            os.replace(tmp_name, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise
