"""Job scheduler - claims due jobs and dispatches them by job type.

Advisory only: it locates due work and forwards it to the registered job
handler. Jobs in one batch run one at a time in execute_at order.
"""

from __future__ import annotations

import logging
import os
import socket
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from clinic_automation.actions.context import ExecutionContext
from clinic_automation.core.config import settings
from clinic_automation.core.structured_logging import build_log_context
from clinic_automation.db.models import ScheduledJob
from clinic_automation.jobs.registry import resolve_job_handler
from clinic_automation.services import job_service

logger = logging.getLogger(__name__)


def default_claimant() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


async def execute_job(
    db: Session, job: ScheduledJob, context: ExecutionContext
) -> dict[str, Any]:
    handler = resolve_job_handler(job.job_type)
    return await handler(db, job, context) or {}


async def process_due_jobs(
    db: Session,
    limit: int | None = None,
    context: ExecutionContext | None = None,
    *,
    claimant: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Claim and run up to limit due jobs; one failing job never stops the batch."""
    limit = settings.WORKER_BATCH_SIZE if limit is None else limit
    context = context or ExecutionContext.default()
    jobs = job_service.claim_due_jobs(
        db, limit=limit, claimant=claimant or default_claimant(), now=now
    )

    if jobs:
        logger.info("Claimed %s due jobs", len(jobs))

    results: list[dict[str, Any]] = []
    for job in jobs:
        log_context = build_log_context(job_id=job.id, job_type=job.job_type)
        logger.info(
            "Processing job %s (type=%s, attempt=%s)",
            job.id,
            job.job_type,
            job.retry_count + 1,
            extra=log_context,
        )
        try:
            result = await execute_job(db, job, context)
        except Exception as exc:
            db.rollback()
            error = str(exc) or type(exc).__name__
            job_service.mark_job_failed(db, job, error)
            logger.error("Job %s failed: %s", job.id, type(exc).__name__, extra=log_context)
            results.append(
                {"job_id": str(job.id), "job_type": job.job_type, "success": False, "error": error}
            )
            continue

        if job_service.mark_job_completed(db, job, result):
            logger.info("Job %s completed successfully", job.id, extra=log_context)
        results.append(
            {"job_id": str(job.id), "job_type": job.job_type, "success": True, "result": result}
        )

    return {
        "processed": len(results),
        "successful": sum(1 for r in results if r["success"]),
        "failed": sum(1 for r in results if not r["success"]),
        "results": results,
    }
