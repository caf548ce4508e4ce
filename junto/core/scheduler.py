"""
APScheduler integration for FastAPI.

Optional in-process trigger for the delivery scheduler. Production normally
drives `/api/cron/check-scheduled` from an external cron instead, so this is
off unless SCHEDULER_ENABLED is set.

Jobs:
- check_scheduled: Runs one delivery pass every `poll_interval_minutes`
"""

from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from junto.config import get_config, get_settings
from junto.core.logging import get_logger

logger = get_logger(__name__)

CHECK_SCHEDULED_JOB_ID = "check_scheduled"

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def check_scheduled_job() -> None:
    """Delivery job - sends digests to every user who is due right now."""
    # Import here to avoid circular imports
    from junto.services.digest_dispatch import create_dispatcher

    logger.debug("check_scheduled_job_started")
    try:
        summary = await create_dispatcher().run()
    except Exception as e:
        logger.bind(error=str(e)).error("check_scheduled_job_failed")
        raise  # Re-raise so APScheduler records the failure

    if summary.matched_count:
        logger.bind(
            run_id=summary.run_id,
            sent=summary.sent_count,
            errors=summary.error_count,
        ).info("check_scheduled_job_completed")
    else:
        logger.debug("check_scheduled_no_users_due")


def build_trigger(poll_interval_minutes: int) -> CronTrigger:
    """Cron trigger firing every `poll_interval_minutes` minutes, clamped to 1-59."""
    interval = min(max(int(poll_interval_minutes), 1), 59)
    return CronTrigger(minute=f"*/{interval}")


async def _on_job_released(event: Any) -> None:
    """Log job failures; the run itself is audited by the dispatcher."""
    if isinstance(event, JobReleased) and event.outcome == JobOutcome.error:
        exception = getattr(event, "exception", None)
        logger.bind(
            schedule_id=event.schedule_id,
            error=str(exception) if exception else None,
        ).error("scheduled_job_errored")


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the in-process scheduler, if enabled."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    config = get_config()

    # Schedules are rebuilt on every start, nothing to persist
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    scheduler.subscribe(_on_job_released)

    await scheduler.add_schedule(
        check_scheduled_job,
        build_trigger(config.scheduler.poll_interval_minutes),
        id=CHECK_SCHEDULED_JOB_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(
        jobs=[CHECK_SCHEDULED_JOB_ID],
        poll_interval_minutes=config.scheduler.poll_interval_minutes,
    ).info("scheduler_started")

    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered job schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
