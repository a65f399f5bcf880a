"""
Background worker for processing scheduled jobs.

Usage:
    python -m clinic_automation.worker

Each cycle reschedules retryable failed jobs, then claims and runs a batch of
due jobs. Run one worker per tenant store (DATABASE_URL).
"""

import asyncio
import logging

from clinic_automation.actions.context import ExecutionContext
from clinic_automation.core.config import settings
from clinic_automation.db.session import SessionLocal
from clinic_automation.services import job_scheduler, job_service

logger = logging.getLogger(__name__)


async def run_cycle(db, context: ExecutionContext) -> dict:
    """One poll cycle against an open session."""
    retried = job_service.retry_failed_jobs(db)
    processed = await job_scheduler.process_due_jobs(
        db, limit=settings.WORKER_BATCH_SIZE, context=context
    )
    if processed["processed"]:
        logger.info(
            "Cycle done: processed=%s successful=%s failed=%s",
            processed["processed"],
            processed["successful"],
            processed["failed"],
        )
    return {"retried": retried["retried_count"], **processed}


async def worker_loop() -> None:
    """Main worker loop - polls for and processes due jobs."""
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)",
        settings.WORKER_POLL_INTERVAL,
        settings.WORKER_BATCH_SIZE,
    )

    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set - emails will be logged but not sent")

    context = ExecutionContext.default()
    while True:
        with SessionLocal() as db:
            try:
                await run_cycle(db, context)
            except Exception:
                db.rollback()
                logger.exception("Error in worker loop")

        await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


def main() -> None:
    """Entry point for the worker."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")


if __name__ == "__main__":
    main()
