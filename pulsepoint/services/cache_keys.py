"""Cache key derivation.

Keys include every parameter that affects a result. Repository lists are
de-duplicated and sorted so key derivation does not depend on their order,
and timestamps are reduced to their date part.
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, Optional

from dateutil import parser as date_parser


def date_part(value: Optional[str]) -> Optional[str]:
    """Return the `YYYY-MM-DD` part of an ISO timestamp, or None when absent."""
    if not value or not value.strip():
        return None
    try:
        return date_parser.isoparse(value.strip()).date().isoformat()
    except (TypeError, ValueError):
        return re.sub(r"[^0-9A-Za-z]", "", value)


def query_digest(query: str) -> str:
    return hashlib.sha256(query.encode("utf-8")).hexdigest()[:32]


def _repos_part(repos: Iterable[str]) -> str:
    names = sorted({repo.strip() for repo in repos if repo and repo.strip()})
    return "_".join(names) if names else "all"


def _range_part(since: Optional[str], until: Optional[str]) -> str:
    return f"since_{date_part(since) or 'start'}-until_{date_part(until) or 'now'}"


def org_members_key(org: str) -> str:
    return f"org-{org}-members-with-names"


def org_repos_key(org: str) -> str:
    return f"org-{org}-repos"


def org_commits_key(org: str, repos: Iterable[str], since: Optional[str], until: Optional[str]) -> str:
    return f"org-{org}-commits-repos_{_repos_part(repos)}-{_range_part(since, until)}"


def org_activity_key(org: str, repos: Iterable[str], since: Optional[str], until: Optional[str]) -> str:
    return f"org-{org}-activity-repos_{_repos_part(repos)}-{_range_part(since, until)}"


def user_search_key(kind: str, login: str, query: str) -> str:
    return f"user-{login.lower()}-{kind}-query_{query_digest(query)}"


def org_totals_key(kind: str, org: str, query: str) -> str:
    return f"org-{org}-{kind}-total-query_{query_digest(query)}"


def user_details_key(
    org: str,
    login: str,
    repos: Iterable[str],
    since: Optional[str],
    until: Optional[str],
) -> str:
    return f"user-{login.lower()}-details-org_{org}-repos_{_repos_part(repos)}-{_range_part(since, until)}"
