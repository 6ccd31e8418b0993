from __future__ import annotations

from typing import Optional
from urllib.parse import quote

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..app import db
from ..models import Notification


def create_notification(
    user_id: str,
    title: str,
    message: str,
    type: str = "info",
    action_url: Optional[str] = None,
    action_text: Optional[str] = None,
    priority: str = "normal",
) -> Optional[str]:
    try:
        db.session.add(
            Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                action_url=action_url,
                action_text=action_text,
                priority=priority,
            )
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "[NOTIFY] failed user=%s title=\"%s\" error=%s", user_id, title, exc
        )
        return str(exc)
    current_app.logger.info("[NOTIFY] user=%s title=\"%s\"", user_id, title)
    return None


def notify_certificate_ready(
    user_id: str, event_id: str, event_title: str, participant_name: str
) -> Optional[str]:
    return create_notification(
        user_id,
        "Certificate Ready",
        f'Your certificate for "{event_title}" has been generated successfully. '
        "You can now view and download it.",
        type="success",
        action_url=(
            f"/certificate?eventId={quote(event_id)}"
            f"&participantName={quote(participant_name)}"
        ),
        action_text="View Certificate",
    )
