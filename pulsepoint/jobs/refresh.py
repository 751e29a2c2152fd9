"""Scheduled cache warm-up for the org dashboard."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from pulsepoint.services.dashboard import DashboardService

logger = logging.getLogger(__name__)


async def run_dashboard_refresh(
    *,
    service: Optional[DashboardService] = None,
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> dict[str, Any]:
    """Fetch the org dashboard bypassing the fresh-cache fast path.

    A failed refresh leaves the previous cache entry in place; the summary
    reports whether the dashboard is now serving stale data and why.
    """
    dashboard = service or DashboardService.from_settings()
    try:
        result = await dashboard.get_org_dashboard(since=since, until=until, force_refresh=True)
    finally:
        if service is None:
            await dashboard.aclose()

    if result.is_failed:
        logger.warning("Dashboard refresh failed with no cached fallback", extra={"error": result.failure.message})
        return {"success": False, "is_stale": None, "member_count": 0, "error": result.failure.to_payload()}

    served = result.data
    members = served.data.get("members", []) if isinstance(served.data, dict) else []
    summary = {
        "success": not served.is_stale,
        "is_stale": served.is_stale,
        "member_count": len(members),
        "error": served.error.to_payload() if served.error else None,
    }
    logger.info("Dashboard refresh completed", extra={"summary": summary})
    return summary


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    print(asyncio.run(run_dashboard_refresh()))
