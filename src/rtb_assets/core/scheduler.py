"""
Background Job Scheduler

Provides scheduled task execution using APScheduler with AsyncIO support.
Handles job registration, execution, and graceful shutdown.

Design Principles:
- Jobs are idempotent (safe to run multiple times)
- Jobs open their own database sessions
- Failed jobs are logged but don't crash the scheduler
- Jobs can be triggered manually for maintenance

Usage:
    # During startup, before start_scheduler():
    register_job("audit_close_stale_sessions", close_stale_sessions, IntervalTrigger(hours=1))
    await start_scheduler()
"""

import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Coroutine[Any, Any, Any]]

_scheduler: AsyncIOScheduler | None = None

# job_id -> (func, trigger); kept for scheduling at startup and manual triggering
_job_registry: dict[str, tuple[JobFunc, BaseTrigger]] = {}


class SchedulerConfig:
    """Configuration for the background scheduler."""

    TIMEZONE = "UTC"

    JOB_DEFAULTS = {
        "coalesce": True,  # Combine missed executions into one
        "max_instances": 1,
        "misfire_grace_time": 60 * 5,
    }


def _job_listener(event: JobExecutionEvent) -> None:
    if event.exception:
        logger.error(
            f"Job {event.job_id} failed with exception: {event.exception}",
            exc_info=event.exception,
        )
    else:
        logger.info(f"Job {event.job_id} executed successfully")


def _schedule(job_id: str, func: JobFunc, trigger: BaseTrigger) -> None:
    _scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True)
    logger.info(f"Scheduled job: {job_id}")


async def start_scheduler() -> AsyncIOScheduler:
    """
    Create and start the scheduler, scheduling every registered job.

    Returns:
        The started scheduler instance
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running, returning existing instance")
        return _scheduler

    _scheduler = AsyncIOScheduler(
        timezone=SchedulerConfig.TIMEZONE,
        job_defaults=SchedulerConfig.JOB_DEFAULTS,
    )
    _scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    for job_id, (func, trigger) in _job_registry.items():
        _schedule(job_id, func, trigger)

    _scheduler.start()
    logger.info(f"Background job scheduler started with {len(_job_registry)} jobs")
    return _scheduler


async def stop_scheduler() -> None:
    """Stop the scheduler, waiting for running jobs to finish."""
    global _scheduler

    if _scheduler is None or not _scheduler.running:
        logger.debug("Scheduler not running, nothing to stop")
        return

    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Background job scheduler stopped")


def register_job(job_id: str, func: JobFunc, trigger: BaseTrigger) -> None:
    """
    Register a job.

    Jobs registered before start_scheduler() are scheduled when it runs;
    jobs registered afterwards are scheduled immediately.
    """
    _job_registry[job_id] = (func, trigger)
    if _scheduler is not None:
        _schedule(job_id, func, trigger)


async def trigger_job_manually(job_id: str) -> dict[str, Any]:
    """
    Run a registered job now, outside its schedule.

    Returns:
        Dict with job_id, status ("success" or "error"), executed_at,
        and either the job's result or the error message

    Raises:
        ValueError: If job_id is not registered
    """
    if job_id not in _job_registry:
        raise ValueError(
            f"Job {job_id} not found in registry. Available jobs: {list(_job_registry.keys())}"
        )

    func, _trigger = _job_registry[job_id]
    executed_at = datetime.now(UTC)
    logger.info(f"Manually triggering job: {job_id}")

    try:
        result = await func()
        return {
            "job_id": job_id,
            "status": "success",
            "executed_at": executed_at.isoformat(),
            "result": result,
        }
    except Exception as e:
        logger.error(f"Manual execution of job {job_id} failed: {e}", exc_info=True)
        return {
            "job_id": job_id,
            "status": "error",
            "executed_at": executed_at.isoformat(),
            "error": str(e),
        }


def list_registered_jobs() -> list[dict[str, Any]]:
    """List registered jobs with their next run time."""
    jobs = []
    for job_id in _job_registry:
        job_info: dict[str, Any] = {"job_id": job_id, "next_run_time": None}
        if _scheduler is not None:
            scheduled_job = _scheduler.get_job(job_id)
            if scheduled_job and scheduled_job.next_run_time:
                job_info["next_run_time"] = scheduled_job.next_run_time.isoformat()
        jobs.append(job_info)
    return jobs
