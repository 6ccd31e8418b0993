import os
import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from eventcerts.app import create_app, db
from eventcerts.models import CertificateConfig, Event


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("SITE_ROOT", str(tmp_path))
    monkeypatch.setenv("CERTIFICATES_BASE_URL", "https://files.example.org")
    monkeypatch.setenv("APP_ENV", "development")
    monkeypatch.delenv("JOB_BATCH_SIZE", raising=False)
    monkeypatch.delenv("ALLOW_CERT_PURGE", raising=False)
    application = create_app()
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_event(app):
    def _make(prefix="TS", title="Tech Summit", venue=None, config=None):
        event = Event(title=title, venue=venue)
        db.session.add(event)
        db.session.flush()
        cfg = dict(config or {})
        if prefix is not None:
            cfg.setdefault("cert_id_prefix", prefix)
        db.session.add(CertificateConfig(event_id=event.id, config=cfg))
        db.session.commit()
        return event

    return _make


def job_payload(event_id, **overrides):
    data = {
        "eventId": event_id,
        "userId": "user-0001",
        "participantName": "Ada Lovelace",
        "eventTitle": "Tech Summit",
        "completionDate": "2024-06-15",
    }
    data.update(overrides)
    return data
