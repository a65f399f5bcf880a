"""Job service - durable scheduling, atomic claiming and maintenance of jobs."""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from clinic_automation.core.config import settings
from clinic_automation.core.structured_logging import build_log_context
from clinic_automation.db.enums import (
    CANCELLABLE_JOB_STATUSES,
    PURGEABLE_JOB_STATUSES,
    JobReferenceType,
    JobStatus,
    JobType,
)
from clinic_automation.db.models import ScheduledJob

logger = logging.getLogger(__name__)


def schedule_job(
    db: Session,
    job_type: JobType | str,
    execute_at: datetime,
    payload: dict[str, Any] | None = None,
    *,
    reference_id: UUID | None = None,
    reference_type: JobReferenceType | None = None,
    max_retries: int | None = None,
    commit: bool = True,
) -> ScheduledJob:
    """
    Schedule a new job to run at execute_at.

    With commit=False the job is only flushed so the caller can commit it
    together with the record that scheduled it.
    """
    job = ScheduledJob(
        job_type=JobType(job_type).value,
        execute_at=execute_at,
        payload=dict(payload or {}),
        status=JobStatus.SCHEDULED.value,
        reference_id=reference_id,
        reference_type=reference_type.value if reference_type else None,
        max_retries=settings.JOB_MAX_RETRIES if max_retries is None else max_retries,
    )
    db.add(job)
    if commit:
        db.commit()
        db.refresh(job)
    else:
        db.flush()

    logger.info(
        "Scheduled job '%s' for %s",
        job.job_type,
        execute_at.isoformat(),
        extra=build_log_context(job_id=job.id, job_type=job.job_type),
    )
    return job


def get_job(db: Session, job_id: UUID) -> ScheduledJob | None:
    return db.get(ScheduledJob, job_id)


def list_jobs_for_reference(
    db: Session, reference_id: UUID, reference_type: JobReferenceType
) -> list[ScheduledJob]:
    query = (
        select(ScheduledJob)
        .where(
            ScheduledJob.reference_id == reference_id,
            ScheduledJob.reference_type == reference_type.value,
        )
        .order_by(ScheduledJob.created_at.desc())
    )
    return list(db.execute(query).scalars().all())


def claim_due_jobs(
    db: Session,
    limit: int = 50,
    claimant: str | None = None,
    now: datetime | None = None,
) -> list[ScheduledJob]:
    """
    Atomically claim due jobs (scheduled -> in_progress).

    PostgreSQL: SELECT ... FOR UPDATE SKIP LOCKED and the status flip commit
    in one transaction. Elsewhere each row is flipped with a conditional
    UPDATE and only rows where exactly one row changed are returned.
    Either way a job is claimed by at most one poller.
    """
    now = now or datetime.now(timezone.utc)
    dialect = db.get_bind().dialect.name

    if dialect == "postgresql":
        jobs = list(
            db.execute(_due_query(now, limit).with_for_update(skip_locked=True)).scalars().all()
        )
        for job in jobs:
            job.status = JobStatus.IN_PROGRESS.value
            job.claimed_by = claimant
        db.commit()
        for job in jobs:
            db.refresh(job)
        return jobs

    candidates = list(db.execute(_due_query(now, limit)).scalars().all())
    claimed_ids: list[UUID] = []
    for job in candidates:
        result = db.execute(
            update(ScheduledJob)
            .where(
                ScheduledJob.id == job.id,
                ScheduledJob.status == JobStatus.SCHEDULED.value,
            )
            .values(status=JobStatus.IN_PROGRESS.value, claimed_by=claimant)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            claimed_ids.append(job.id)
    db.commit()

    claimed = [job for job in candidates if job.id in claimed_ids]
    for job in claimed:
        db.refresh(job)
    return claimed


def _due_query(now: datetime, limit: int):
    return (
        select(ScheduledJob)
        .where(
            ScheduledJob.status == JobStatus.SCHEDULED.value,
            ScheduledJob.execute_at <= now,
        )
        .order_by(ScheduledJob.execute_at)
        .limit(limit)
    )


def mark_job_completed(
    db: Session, job: ScheduledJob, result: dict[str, Any] | None = None
) -> bool:
    """in_progress -> completed. Returns False if the job was cancelled meanwhile."""
    return _finish(
        db,
        job,
        {
            "status": JobStatus.COMPLETED.value,
            "executed_at": datetime.now(timezone.utc),
            "result": result or {},
            "last_error": None,
        },
    )


def mark_job_failed(db: Session, job: ScheduledJob, error: str) -> bool:
    """
    in_progress -> failed, counting the attempt.

    execute_at is left as history; retry_failed_jobs reschedules. Returns
    False if the job was cancelled meanwhile.
    """
    return _finish(
        db,
        job,
        {
            "status": JobStatus.FAILED.value,
            "executed_at": datetime.now(timezone.utc),
            "retry_count": ScheduledJob.retry_count + 1,
            "last_error": error,
        },
    )


def _finish(db: Session, job: ScheduledJob, values: dict[str, Any]) -> bool:
    result = db.execute(
        update(ScheduledJob)
        .where(
            ScheduledJob.id == job.id,
            ScheduledJob.status == JobStatus.IN_PROGRESS.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(job)
    if result.rowcount != 1:
        logger.warning(
            "Outcome of job %s discarded; status is now %s",
            job.id,
            job.status,
            extra=build_log_context(job_id=job.id, job_type=job.job_type),
        )
        return False
    return True


def cancel_jobs_for_reference(
    db: Session,
    reference_id: UUID,
    reference_type: JobReferenceType,
) -> int:
    """Bulk-cancel non-terminal jobs pointing at the reference. Returns count."""
    result = db.execute(
        update(ScheduledJob)
        .where(
            ScheduledJob.reference_id == reference_id,
            ScheduledJob.reference_type == reference_type.value,
            ScheduledJob.status.in_(CANCELLABLE_JOB_STATUSES),
        )
        .values(status=JobStatus.CANCELLED.value)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()

    logger.info(
        "Cancelled %s jobs for %s %s",
        result.rowcount,
        reference_type.value,
        reference_id,
    )
    return result.rowcount


def retry_failed_jobs(db: Session, now: datetime | None = None) -> dict[str, Any]:
    """
    Reschedule failed jobs that still have retries left.

    execute_at moves forward by the fixed JOB_RETRY_DELAY_MINUTES.
    """
    now = now or datetime.now(timezone.utc)
    rescheduled_to = now + settings.job_retry_delay

    jobs = db.execute(
        select(ScheduledJob).where(
            ScheduledJob.status == JobStatus.FAILED.value,
            ScheduledJob.retry_count < ScheduledJob.max_retries,
        )
    ).scalars().all()

    results = []
    for job in jobs:
        job.status = JobStatus.SCHEDULED.value
        job.execute_at = rescheduled_to
        job.claimed_by = None
        results.append({"job_id": str(job.id), "rescheduled_to": rescheduled_to.isoformat()})
    db.commit()

    if results:
        logger.info("Rescheduled %s failed jobs to %s", len(results), rescheduled_to.isoformat())
    return {"retried_count": len(results), "results": results}


def get_job_stats(db: Session, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    start_of_day = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)

    def _count(*criteria) -> int:
        return db.execute(
            select(func.count()).select_from(ScheduledJob).where(*criteria)
        ).scalar_one()

    return {
        "scheduled": _count(ScheduledJob.status == JobStatus.SCHEDULED.value),
        "in_progress": _count(ScheduledJob.status == JobStatus.IN_PROGRESS.value),
        "failed": _count(ScheduledJob.status == JobStatus.FAILED.value),
        "completed_today": _count(
            ScheduledJob.status == JobStatus.COMPLETED.value,
            ScheduledJob.executed_at >= start_of_day,
        ),
        "due_now": _count(
            ScheduledJob.status == JobStatus.SCHEDULED.value,
            ScheduledJob.execute_at <= now,
        ),
    }


def cleanup_old_jobs(
    db: Session, days_old: int | None = None, now: datetime | None = None
) -> dict[str, int]:
    """
    Delete completed/cancelled jobs older than days_old days.

    Age runs from the last execution, or from creation for jobs that never ran.
    """
    days_old = settings.JOB_RETENTION_DAYS if days_old is None else days_old
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=days_old)

    result = db.execute(
        delete(ScheduledJob)
        .where(
            ScheduledJob.status.in_(PURGEABLE_JOB_STATUSES),
            func.coalesce(ScheduledJob.executed_at, ScheduledJob.created_at) < cutoff,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()

    logger.info("Cleaned up %s old jobs (older than %s days)", result.rowcount, days_old)
    return {"deleted_count": result.rowcount}
