"""Writers that record a job's terminal state.

The processor talks to a ``StatusUpdater``. The default chain is
``FallbackStatusUpdater(QueueStatusUpdater(), DirectStatusUpdater())``: the
queue's guarded transition first, then a plain row write when that errors.
"""

from __future__ import annotations

from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..app import db
from ..models import JOB_COMPLETED, JOB_FAILED, Job
from ..shared.time import now_utc_naive
from . import job_queue


class StatusUpdater:
    """Records completion or failure; returns an error message or None."""

    name = "status"

    def complete(self, job_id: str, result_data: Optional[dict]) -> Optional[str]:
        raise NotImplementedError

    def fail(self, job_id: str, error_message: str) -> Optional[str]:
        raise NotImplementedError


class QueueStatusUpdater(StatusUpdater):
    name = "queue"

    def complete(self, job_id, result_data):
        return job_queue.complete_job(job_id, result_data)

    def fail(self, job_id, error_message):
        return job_queue.fail_job(job_id, error_message)


class DirectStatusUpdater(StatusUpdater):
    """Unconditional write of status, completed_at and result/error."""

    name = "direct"

    def _write(self, job_id: str, values: dict) -> Optional[str]:
        values[Job.completed_at] = now_utc_naive()
        try:
            updated = (
                db.session.query(Job)
                .filter(Job.id == job_id)
                .update(values, synchronize_session=False)
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            return str(exc)
        if not updated:
            return f"Job {job_id} not found"
        return None

    def complete(self, job_id, result_data):
        values = {Job.status: JOB_COMPLETED}
        if result_data:
            values[Job.result_data] = result_data
        return self._write(job_id, values)

    def fail(self, job_id, error_message):
        values = {Job.status: JOB_FAILED}
        if error_message:
            values[Job.error_message] = error_message
        return self._write(job_id, values)


class FallbackStatusUpdater(StatusUpdater):
    """Try ``primary``; on error hand the same write to ``fallback``.

    An exception from either writer counts as an error. A fallback error is
    logged and returned, never raised.
    """

    name = "fallback"

    def __init__(self, primary: StatusUpdater, fallback: StatusUpdater):
        self.primary = primary
        self.fallback = fallback

    def _run(self, action: str, job_id: str, *args) -> Optional[str]:
        try:
            error = getattr(self.primary, action)(job_id, *args)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
        if not error:
            return None
        current_app.logger.error(
            "[JOB-STATUS] %s via %s failed id=%s error=%s; trying %s",
            action,
            self.primary.name,
            job_id,
            error,
            self.fallback.name,
        )
        try:
            fallback_error = getattr(self.fallback, action)(job_id, *args)
        except Exception as exc:
            fallback_error = str(exc) or exc.__class__.__name__
        if fallback_error:
            current_app.logger.error(
                "[JOB-STATUS] %s via %s failed id=%s error=%s",
                action,
                self.fallback.name,
                job_id,
                fallback_error,
            )
            return fallback_error
        current_app.logger.info(
            "[JOB-STATUS] %s via %s succeeded id=%s", action, self.fallback.name, job_id
        )
        return None

    def complete(self, job_id, result_data):
        return self._run("complete", job_id, result_data)

    def fail(self, job_id, error_message):
        return self._run("fail", job_id, error_message)


def default_status_updater() -> StatusUpdater:
    return FallbackStatusUpdater(QueueStatusUpdater(), DirectStatusUpdater())
