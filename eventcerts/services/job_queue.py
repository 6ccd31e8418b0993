from __future__ import annotations

from typing import NamedTuple, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..app import db
from ..models import (
    CERTIFICATE_GENERATION,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
    JOB_STATUSES,
    Job,
)
from ..shared.time import now_utc_naive
from .job_payloads import InvalidJobPayload, parse_certificate_job

# Lost claim races are retried this many times before reporting an empty queue.
CLAIM_ATTEMPTS = 3


class JobLookup(NamedTuple):
    job: Optional[Job] = None
    error: Optional[str] = None


class JobList(NamedTuple):
    jobs: Optional[list] = None
    error: Optional[str] = None


def add_job(
    job_type: str,
    job_data: dict,
    created_by: Optional[str],
    priority: int = 5,
) -> JobLookup:
    try:
        priority = int(priority)
    except (TypeError, ValueError):
        return JobLookup(error="priority must be an integer")
    if not 1 <= priority <= 10:
        return JobLookup(error="priority must be between 1 and 10")
    job = Job(
        job_type=job_type,
        job_data=job_data,
        created_by=created_by,
        priority=priority,
        status=JOB_PENDING,
    )
    try:
        db.session.add(job)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("[JOB] enqueue failed type=%s", job_type)
        return JobLookup(error=str(exc))
    current_app.logger.info(
        "[JOB] queued id=%s type=%s priority=%s", job.id, job_type, priority
    )
    return JobLookup(job=job)


def queue_certificate_generation(
    job_data: dict, created_by: Optional[str], priority: int = 5
) -> JobLookup:
    try:
        payload = parse_certificate_job(job_data)
    except InvalidJobPayload as exc:
        return JobLookup(error=f"Invalid job payload: {exc}")
    return add_job(CERTIFICATE_GENERATION, payload.to_job_data(), created_by, priority)


def _is_postgres() -> bool:
    return db.session.get_bind().dialect.name == "postgresql"


def get_next_job() -> JobLookup:
    """Claim the next pending job (highest priority, oldest first).

    On PostgreSQL the candidate row is selected ``FOR UPDATE SKIP LOCKED``.
    On every backend the claim itself is a compare-and-set update guarded by
    ``status = 'pending'``, so a job is never handed to two processors.
    """
    try:
        for _ in range(CLAIM_ATTEMPTS):
            query = (
                db.session.query(Job.id)
                .filter(Job.status == JOB_PENDING)
                .order_by(Job.priority.asc(), Job.created_at.asc())
            )
            if _is_postgres():
                query = query.with_for_update(skip_locked=True)
            job_id = query.limit(1).scalar()
            if job_id is None:
                db.session.commit()
                return JobLookup()
            claimed = (
                db.session.query(Job)
                .filter(Job.id == job_id, Job.status == JOB_PENDING)
                .update(
                    {
                        Job.status: JOB_PROCESSING,
                        Job.started_at: now_utc_naive(),
                        Job.attempts: Job.attempts + 1,
                    },
                    synchronize_session=False,
                )
            )
            db.session.commit()
            if claimed == 1:
                return JobLookup(job=db.session.get(Job, job_id))
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("[JOB] claim failed")
        return JobLookup(error=str(exc))
    return JobLookup()


def _finish_job(job_id: str, values: dict, label: str) -> Optional[str]:
    try:
        updated = (
            db.session.query(Job)
            .filter(Job.id == job_id, Job.status.in_((JOB_PENDING, JOB_PROCESSING)))
            .update(values, synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("[JOB-STATUS] %s failed id=%s", label, job_id)
        return str(exc)
    if updated != 1:
        return f"Job {job_id} is not pending or processing"
    return None


def complete_job(job_id: str, result_data: Optional[dict]) -> Optional[str]:
    return _finish_job(
        job_id,
        {
            Job.status: JOB_COMPLETED,
            Job.result_data: result_data,
            Job.error_message: None,
            Job.completed_at: now_utc_naive(),
        },
        "complete",
    )


def fail_job(job_id: str, error_message: str) -> Optional[str]:
    return _finish_job(
        job_id,
        {
            Job.status: JOB_FAILED,
            Job.error_message: error_message,
            Job.completed_at: now_utc_naive(),
        },
        "fail",
    )


def get_job_status(job_id: str) -> JobLookup:
    try:
        job = db.session.get(Job, job_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        return JobLookup(error=str(exc))
    if not job:
        return JobLookup(error=f"Job {job_id} not found")
    return JobLookup(job=job)


def get_user_jobs(user_id: str, status: Optional[str] = None) -> JobList:
    if status and status not in JOB_STATUSES:
        return JobList(error=f"Unknown status: {status}")
    query = db.session.query(Job).filter(Job.created_by == user_id)
    if status:
        query = query.filter(Job.status == status)
    try:
        jobs = query.order_by(Job.created_at.desc()).all()
    except SQLAlchemyError as exc:
        db.session.rollback()
        return JobList(error=str(exc))
    return JobList(jobs=jobs)


def requeue_job(job_id: str) -> Optional[str]:
    """Put a failed job back in the queue."""
    try:
        updated = (
            db.session.query(Job)
            .filter(Job.id == job_id, Job.status == JOB_FAILED)
            .update(
                {
                    Job.status: JOB_PENDING,
                    Job.error_message: None,
                    Job.result_data: None,
                    Job.started_at: None,
                    Job.completed_at: None,
                },
                synchronize_session=False,
            )
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        return str(exc)
    if updated != 1:
        return f"Job {job_id} is not failed"
    current_app.logger.info("[JOB] requeued id=%s", job_id)
    return None
