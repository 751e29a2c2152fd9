"""Organization member and repository lookups with caching."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pulsepoint.cache.store import CacheStore
from pulsepoint.config.settings import settings
from pulsepoint.github.contracts import FetchResult
from pulsepoint.github.errors import call_upstream
from pulsepoint.services.cache_keys import org_members_key, org_repos_key

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OrgMember:
    login: str
    name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"login": self.login, "name": self.name}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "OrgMember":
        name = raw.get("name")
        return cls(login=str(raw["login"]), name=name if isinstance(name, str) else None)


class MemberDirectory:
    """Lists org members (with display names) and org repositories."""

    def __init__(
        self,
        github_client: Any,
        cache: CacheStore,
        *,
        members_ttl_seconds: Optional[int] = None,
        repos_ttl_seconds: Optional[int] = None,
        profile_concurrency: Optional[int] = None,
    ) -> None:
        self._client = github_client
        self._cache = cache
        self._members_ttl_ms = (members_ttl_seconds or settings.MEMBERS_CACHE_TTL_SECONDS) * 1000
        self._repos_ttl_ms = (repos_ttl_seconds or settings.REPOS_CACHE_TTL_SECONDS) * 1000
        self._profile_concurrency = max(1, profile_concurrency or settings.PROFILE_FETCH_CONCURRENCY)

    async def get_org_members(self, org: str, *, force_refresh: bool = False) -> FetchResult[list[OrgMember]]:
        cache_key = org_members_key(org)
        cached = await self._cache.read(cache_key, self._members_ttl_ms)
        if cached.hit and not cached.stale and not force_refresh:
            try:
                members = [OrgMember.from_dict(item) for item in cached.payload]
            except (KeyError, TypeError, AttributeError) as exc:
                logger.warning("Discarding unusable cached member list", extra={"org": org, "error": str(exc)})
            else:
                logger.info("Cache hit (fresh) for org members", extra={"org": org})
                return FetchResult.ok(members)

        logger.info(
            "Fetching org members",
            extra={"org": org, "cache_state": "stale" if cached.hit else "missing"},
        )
        response = await call_upstream(self._client.list_org_members(org), f"Error fetching members for org {org}")
        if response.is_failed:
            return response

        logins = [
            str(item["login"])
            for item in response.data or []
            if isinstance(item, dict) and item.get("login")
        ]
        semaphore = asyncio.Semaphore(self._profile_concurrency)
        members = list(await asyncio.gather(*(self._with_display_name(login, semaphore) for login in logins)))

        await self._cache.write(cache_key, [member.to_dict() for member in members])
        logger.info("Fetched org members", extra={"org": org, "member_count": len(members)})
        return FetchResult.ok(members)

    async def get_org_repos(self, org: str) -> FetchResult[list[str]]:
        cache_key = org_repos_key(org)
        cached = await self._cache.read(cache_key, self._repos_ttl_ms)
        if cached.hit and not cached.stale and isinstance(cached.payload, list):
            return FetchResult.ok([str(name) for name in cached.payload])

        response = await call_upstream(self._client.list_org_repos(org), f"Error fetching repositories for org {org}")
        if response.is_failed:
            return response

        names = [str(item["name"]) for item in response.data or [] if isinstance(item, dict) and item.get("name")]
        await self._cache.write(cache_key, names)
        logger.info("Fetched org repositories", extra={"org": org, "repo_count": len(names)})
        return FetchResult.ok(names)

    async def _with_display_name(self, login: str, semaphore: asyncio.Semaphore) -> OrgMember:
        async with semaphore:
            profile = await call_upstream(self._client.get_user_profile(login), f"Error fetching profile for {login}")

        if profile.is_failed or not isinstance(profile.data, dict):
            return OrgMember(login=login)
        name = profile.data.get("name")
        return OrgMember(login=login, name=name if isinstance(name, str) else None)
