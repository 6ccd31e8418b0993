from __future__ import annotations

import uuid

from .app import db
from .shared.time import now_utc_naive

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_STATUSES = (JOB_PENDING, JOB_PROCESSING, JOB_COMPLETED, JOB_FAILED)

CERTIFICATE_GENERATION = "certificate_generation"


def _uuid() -> str:
    return str(uuid.uuid4())


def _iso(value) -> str | None:
    return value.isoformat() if value else None


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(255), nullable=False)
    venue = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, server_default=db.func.now())


class CertificateConfig(db.Model):
    __tablename__ = "certificate_configs"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    event_id = db.Column(
        db.String(36),
        db.ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    config = db.Column(db.JSON, nullable=False, default=dict)
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )
    event = db.relationship("Event")


class CertificateCounter(db.Model):
    __tablename__ = "certificate_counters"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    event_id = db.Column(
        db.String(36),
        db.ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    current_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )


class Certificate(db.Model):
    __tablename__ = "certificates"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    # Standalone certificates have no backing event.
    event_id = db.Column(
        db.String(36), db.ForeignKey("events.id", ondelete="CASCADE")
    )
    user_id = db.Column(db.String(36), nullable=False)
    certificate_number = db.Column(db.String(120), nullable=False, index=True)
    participant_name = db.Column(db.String(255), nullable=False)
    event_title = db.Column(db.String(255))
    completion_date = db.Column(db.String(64))
    certificate_pdf_url = db.Column(db.String(512))
    certificate_png_url = db.Column(db.String(512))
    created_at = db.Column(
        db.DateTime, default=now_utc_naive, server_default=db.func.now()
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "certificate_number": self.certificate_number,
            "participant_name": self.participant_name,
            "event_title": self.event_title,
            "completion_date": self.completion_date,
            "certificate_pdf_url": self.certificate_pdf_url,
            "certificate_png_url": self.certificate_png_url,
            "created_at": _iso(self.created_at),
        }


class Job(db.Model):
    __tablename__ = "job_queue"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    job_type = db.Column(db.String(100), nullable=False)
    job_data = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), nullable=False, default=JOB_PENDING)
    # 1 is the highest priority.
    priority = db.Column(db.Integer, nullable=False, default=5)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    # Informational only: failed jobs are not retried automatically; see
    # `manage.py requeue_job`.
    max_attempts = db.Column(db.Integer, nullable=False, default=3)
    error_message = db.Column(db.Text)
    result_data = db.Column(db.JSON)
    created_by = db.Column(db.String(36))
    created_at = db.Column(
        db.DateTime, default=now_utc_naive, server_default=db.func.now()
    )
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_job_queue_status",
        ),
        db.CheckConstraint(
            "priority BETWEEN 1 AND 10", name="ck_job_queue_priority"
        ),
        db.Index("ix_job_queue_status", "status", "priority", "created_at"),
        db.Index("ix_job_queue_created_by", "created_by", "status"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_type": self.job_type,
            "job_data": self.job_data,
            "status": self.status,
            "priority": self.priority,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "error_message": self.error_message,
            "result_data": self.result_data,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(36), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False, default="info")
    action_url = db.Column(db.String(512))
    action_text = db.Column(db.String(120))
    priority = db.Column(db.String(20), nullable=False, default="normal")
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
