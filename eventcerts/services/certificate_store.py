from __future__ import annotations

from typing import NamedTuple, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..app import db
from ..models import Certificate, CertificateConfig, CertificateCounter, Event
from ..shared.time import epoch_ms, now_utc_naive

CONFIG_NOT_FOUND = "Certificate config not found"


class ConfigLookup(NamedTuple):
    config: Optional[dict] = None
    error: Optional[str] = None


class CountLookup(NamedTuple):
    count: Optional[int] = None
    error: Optional[str] = None


class SaveResult(NamedTuple):
    certificate: Optional[Certificate] = None
    error: Optional[str] = None


def get_certificate_config(event_id: str) -> ConfigLookup:
    try:
        row = (
            db.session.query(CertificateConfig)
            .filter(CertificateConfig.event_id == event_id)
            .one_or_none()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("[CERT] config lookup failed event=%s", event_id)
        return ConfigLookup(error=str(exc))
    if not row or row.config is None:
        return ConfigLookup(error=CONFIG_NOT_FOUND)
    return ConfigLookup(config=dict(row.config))


def get_current_certificate_count(event_id: str) -> CountLookup:
    """Current value of the event's counter; a missing counter counts as 0."""
    try:
        count = (
            db.session.query(CertificateCounter.current_count)
            .filter(CertificateCounter.event_id == event_id)
            .scalar()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("[CERT-COUNTER] read failed event=%s", event_id)
        return CountLookup(error=str(exc))
    return CountLookup(count=count or 0)


def increment_certificate_counter(event_id: str) -> Optional[str]:
    """Bump the event's counter by one, creating it at 1 when missing.

    The increment itself is a single UPDATE; it is not coupled to the earlier
    count read, so two jobs for the same event can still derive the same
    number.
    """
    try:
        updated = (
            db.session.query(CertificateCounter)
            .filter(CertificateCounter.event_id == event_id)
            .update(
                {
                    CertificateCounter.current_count: CertificateCounter.current_count + 1,
                    CertificateCounter.updated_at: now_utc_naive(),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            db.session.add(CertificateCounter(event_id=event_id, current_count=1))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("[CERT-COUNTER] increment failed event=%s", event_id)
        return str(exc)
    return None


def generate_certificate_number(event_id: str, user_id: str) -> str:
    """Fallback number for configurations without a numbering prefix."""
    return f"CERT-{(event_id or '')[:8]}-{(user_id or '')[:8]}-{epoch_ms()}"


def save_certificate(record: dict) -> SaveResult:
    cert = Certificate(
        event_id=record.get("event_id"),
        user_id=record["user_id"],
        certificate_number=record["certificate_number"],
        participant_name=record["participant_name"],
        event_title=record.get("event_title"),
        completion_date=record.get("completion_date"),
        certificate_pdf_url=record.get("certificate_pdf_url"),
        certificate_png_url=record.get("certificate_png_url"),
    )
    try:
        db.session.add(cert)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception(
            "[CERT] save failed number=%s", record.get("certificate_number")
        )
        return SaveResult(error=str(exc))
    return SaveResult(certificate=cert)


def get_certificate_by_number(certificate_number: str) -> Optional[Certificate]:
    return (
        db.session.query(Certificate)
        .filter(Certificate.certificate_number == certificate_number)
        .order_by(Certificate.created_at.desc())
        .first()
    )


def get_event_venue(event_id: str) -> Optional[str]:
    try:
        event = db.session.get(Event, event_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("[CERT] venue lookup failed event=%s", event_id)
        return None
    return event.venue if event and event.venue else None
