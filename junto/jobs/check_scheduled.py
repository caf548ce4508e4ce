"""
Scheduled delivery job.

Run with: python -m junto.jobs.check_scheduled

Meant to be invoked every few minutes by an external cron. Each invocation:
1. Loads every subscribed user with delivery preferences
2. Evaluates who is due at this instant in their own timezone
3. Generates and sends digests to those users
4. Records last_sent_date and a scheduling_runs audit row
"""

import asyncio
import sys

from junto.core.exceptions import StorageUnavailable
from junto.core.logging import get_logger, setup_logging
from junto.services.digest_dispatch import RunSummary, create_dispatcher

logger = get_logger(__name__)


async def main() -> RunSummary:
    """Run one scheduled delivery pass."""
    setup_logging()
    logger.info("check_scheduled_job_started")

    try:
        summary = await create_dispatcher().run()
    except StorageUnavailable as e:
        logger.bind(error=str(e)).error("check_scheduled_job_failed")
        raise

    logger.bind(
        run_id=summary.run_id,
        candidates_checked=summary.candidates_checked,
        matched=summary.matched_count,
        sent=summary.sent_count,
        errors=summary.error_count,
    ).info("check_scheduled_job_completed")
    return summary


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except StorageUnavailable:
        sys.exit(1)
