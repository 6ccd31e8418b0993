"""events, certificate configs/counters, certificates, job queue, notifications"""

from alembic import op
import sqlalchemy as sa

revision = "0001_certificate_jobs"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("venue", sa.String(255)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        "certificate_configs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "event_id",
            sa.String(36),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("config", sa.JSON, nullable=False),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        "certificate_counters",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "event_id",
            sa.String(36),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("current_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_table(
        "certificates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "event_id", sa.String(36), sa.ForeignKey("events.id", ondelete="CASCADE")
        ),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("certificate_number", sa.String(120), nullable=False),
        sa.Column("participant_name", sa.String(255), nullable=False),
        sa.Column("event_title", sa.String(255)),
        sa.Column("completion_date", sa.String(64)),
        sa.Column("certificate_pdf_url", sa.String(512)),
        sa.Column("certificate_png_url", sa.String(512)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_certificates_certificate_number", "certificates", ["certificate_number"]
    )
    op.create_table(
        "job_queue",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("job_type", sa.String(100), nullable=False),
        sa.Column("job_data", sa.JSON, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="5"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("error_message", sa.Text),
        sa.Column("result_data", sa.JSON),
        sa.Column("created_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_job_queue_status",
        ),
        sa.CheckConstraint("priority BETWEEN 1 AND 10", name="ck_job_queue_priority"),
    )
    op.create_index(
        "ix_job_queue_status", "job_queue", ["status", "priority", "created_at"]
    )
    op.create_index("ix_job_queue_created_by", "job_queue", ["created_by", "status"])
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="info"),
        sa.Column("action_url", sa.String(512)),
        sa.Column("action_text", sa.String(120)),
        sa.Column("priority", sa.String(20), nullable=False, server_default="normal"),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_job_queue_created_by", table_name="job_queue")
    op.drop_index("ix_job_queue_status", table_name="job_queue")
    op.drop_table("job_queue")
    op.drop_index("ix_certificates_certificate_number", table_name="certificates")
    op.drop_table("certificates")
    op.drop_table("certificate_counters")
    op.drop_table("certificate_configs")
    op.drop_table("events")
