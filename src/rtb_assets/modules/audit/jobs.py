"""
Audit Background Jobs

Closes login sessions that have outlived the session TTL:
- removes them from the Redis session index
- stamps session_end / session_duration on their audit entries

Runs every settings.session_sweep_interval_minutes. Idempotent: a swept
session is gone from the index and its entries are no longer open.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from rtb_assets.core import redis as redis_state
from rtb_assets.core.config import settings
from rtb_assets.core.database import async_session_maker
from rtb_assets.core.scheduler import register_job
from rtb_assets.core.sessions import pop_stale_sessions
from rtb_assets.modules.audit import repository

logger = logging.getLogger(__name__)

JOB_ID_CLOSE_STALE_SESSIONS = "audit_close_stale_sessions"


async def close_stale_sessions() -> dict[str, Any]:
    """
    Sweep sessions that logged in more than session_ttl_seconds ago.

    Returns:
        Dict with job execution summary:
        - executed_at: When the job ran
        - sessions_closed: Number of sessions removed from the index
        - entries_updated: Audit entries stamped with a session end
        - total_errors: Sessions whose audit entries could not be updated
    """
    executed_at = datetime.now(UTC)
    results: dict[str, Any] = {
        "executed_at": executed_at.isoformat(),
        "sessions_closed": 0,
        "entries_updated": 0,
        "total_errors": 0,
    }

    redis = redis_state.redis_client
    if redis is None:
        logger.warning("Redis not available, skipping stale session sweep")
        results["skipped"] = "redis_unavailable"
        return results

    threshold = executed_at - timedelta(seconds=settings.session_ttl_seconds)
    stale = await pop_stale_sessions(redis, started_before=threshold)
    results["sessions_closed"] = len(stale)

    for session_id, login_time in stale:
        duration = int((executed_at - login_time).total_seconds())
        try:
            async with async_session_maker() as db:
                updated = await repository.close_session_entries(
                    db, session_id, ended_at=executed_at, duration_seconds=duration
                )
                await db.commit()
            results["entries_updated"] += updated
        except Exception as e:
            logger.error(
                f"Error closing audit entries for session {session_id}: {e}", exc_info=True
            )
            results["total_errors"] += 1

    logger.info(
        f"Stale session sweep completed. Closed: {results['sessions_closed']}, "
        f"Entries updated: {results['entries_updated']}, Errors: {results['total_errors']}"
    )
    return results


def register_audit_jobs() -> None:
    """Register audit background jobs. Call before the scheduler starts."""
    register_job(
        job_id=JOB_ID_CLOSE_STALE_SESSIONS,
        func=close_stale_sessions,
        trigger=IntervalTrigger(minutes=settings.session_sweep_interval_minutes),
    )
    logger.info(
        f"Registered job: {JOB_ID_CLOSE_STALE_SESSIONS} "
        f"(interval: {settings.session_sweep_interval_minutes} minutes)"
    )
