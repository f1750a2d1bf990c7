"""Job service - background job scheduling and state for the worker."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from feedback_assistant.core.config import settings
from feedback_assistant.db.enums import JobStatus, JobType
from feedback_assistant.db.models import Job

logger = logging.getLogger(__name__)

SCHEDULED_QUERY_SWEEP_MINUTES = 5


def schedule_job(
    db: Session,
    job_type: JobType,
    payload: dict,
    project_id: UUID | None = None,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> Job:
    """
    Schedule a new background job.

    If run_at is None, the job runs immediately.
    If idempotency_key is provided, duplicate jobs with same key will fail
    with IntegrityError (caller should catch and handle).
    """
    job = Job(
        project_id=project_id,
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or datetime.now(timezone.utc),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def schedule_job_once(
    db: Session,
    job_type: JobType,
    payload: dict,
    idempotency_key: str,
    project_id: UUID | None = None,
    run_at: datetime | None = None,
) -> Job | None:
    """Schedule unless a job with the same idempotency key exists. Returns None for duplicates."""
    try:
        return schedule_job(
            db,
            job_type,
            payload,
            project_id=project_id,
            run_at=run_at,
            idempotency_key=idempotency_key,
        )
    except IntegrityError:
        db.rollback()
        return None


def _bucket_key(job_type: JobType, now: datetime, minutes: int) -> str:
    bucket = int(now.timestamp()) // (max(minutes, 1) * 60)
    return f"{job_type.value}:{bucket}"


def enqueue_periodic_jobs(db: Session, now: datetime | None = None) -> list[Job]:
    """
    Enqueue the recurring sweeps.

    Keys are bucketed by interval, so any number of workers polling in the
    same window enqueue each sweep once.
    """
    now = now or datetime.now(timezone.utc)
    periodic = (
        (JobType.SCHEDULED_QUERY_SWEEP, SCHEDULED_QUERY_SWEEP_MINUTES),
        (JobType.SUGGESTION_ANALYSIS, settings.SUGGESTION_INTERVAL_MINUTES),
    )
    created = []
    for job_type, minutes in periodic:
        job = schedule_job_once(
            db,
            job_type,
            payload={},
            idempotency_key=_bucket_key(job_type, now, minutes),
            run_at=now,
        )
        if job is not None:
            created.append(job)
    return created


def get_pending_jobs(db: Session, limit: int = 10) -> list[Job]:
    """
    Get pending jobs that are due to run.

    Returns jobs where status='pending' and run_at <= now, ordered by run_at.
    """
    now = datetime.now(timezone.utc)
    return (
        db.query(Job)
        .filter(
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
        .all()
    )


def mark_job_running(db: Session, job: Job) -> Job:
    """Mark a job as running (increment attempts)."""
    job.status = JobStatus.RUNNING.value
    job.attempts += 1
    db.commit()
    db.refresh(job)
    return job


def mark_job_completed(db: Session, job: Job) -> Job:
    job.status = JobStatus.COMPLETED.value
    job.completed_at = datetime.now(timezone.utc)
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(db: Session, job: Job, error: str) -> Job:
    """
    Mark a job as failed.

    If attempts < max_attempts, reset to pending for retry.
    """
    job.last_error = error
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
    else:
        job.status = JobStatus.FAILED.value
    db.commit()
    db.refresh(job)
    return job
