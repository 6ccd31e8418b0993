import os
import re
import threading

import pytest

from conftest import job_payload
from eventcerts.app import db
from eventcerts.models import Certificate, CertificateCounter, Event, Notification
from eventcerts.services import certificate_jobs, certificate_store, notifications
from eventcerts.services.certificate_jobs import process_certificate_job
from eventcerts.services.certificate_store import SaveResult
from eventcerts.services.job_payloads import StandaloneCertificateJob
from eventcerts.shared import certificates as rendering
from eventcerts.shared import storage
from eventcerts.shared.storage import UploadResult


@pytest.fixture
def fake_render(monkeypatch):
    calls = []

    def fake_pdf(config, number, data):
        calls.append(("pdf", number, data))
        return b"%PDF-1.4 fake"

    def fake_png(config, number, data):
        calls.append(("png", number, data))
        return b"\x89PNG fake"

    monkeypatch.setattr(rendering, "generate_pdf_certificate", fake_pdf)
    monkeypatch.setattr(rendering, "generate_png_certificate", fake_png)
    return calls


@pytest.fixture
def upload_calls(monkeypatch):
    calls = []
    real_upload = storage.upload_certificate_file

    def spy(data, filename, kind, event_id, user_id):
        calls.append((filename, kind, event_id, user_id))
        return real_upload(data, filename, kind, event_id, user_id)

    monkeypatch.setattr(storage, "upload_certificate_file", spy)
    return calls


def _counter(event_id):
    return (
        db.session.query(CertificateCounter.current_count)
        .filter_by(event_id=event_id)
        .scalar()
    )


def test_event_job_numbers_from_counter_and_stores_files(app, make_event):
    event = make_event(prefix="TS", venue="Hall A")
    db.session.add(CertificateCounter(event_id=event.id, current_count=4))
    db.session.commit()

    result = process_certificate_job(job_payload(event.id))

    assert result.success, result.error
    assert result.certificate_number == "TS-005"
    base = f"https://files.example.org/certificates/{event.id}/user-0001"
    assert result.pdf_url == f"{base}/TS-005.pdf"
    assert result.png_url == f"{base}/TS-005.png"
    cert_dir = os.path.join(app.config["SITE_ROOT"], "certificates", event.id, "user-0001")
    with open(os.path.join(cert_dir, "TS-005.pdf"), "rb") as fh:
        assert fh.read(4) == b"%PDF"
    with open(os.path.join(cert_dir, "TS-005.png"), "rb") as fh:
        assert fh.read(4) == b"\x89PNG"

    assert _counter(event.id) == 5
    cert = Certificate.query.filter_by(certificate_number="TS-005").one()
    assert cert.event_id == event.id
    assert cert.participant_name == "Ada Lovelace"
    assert cert.completion_date == "2024-06-15"
    assert cert.certificate_pdf_url == result.pdf_url
    assert result.result_data() == {
        "certificateNumber": "TS-005",
        "pdfUrl": result.pdf_url,
        "pngUrl": result.png_url,
    }
    note = Notification.query.filter_by(user_id="user-0001").one()
    assert note.title == "Certificate Ready"
    assert note.type == "success"
    assert f"eventId={event.id}" in note.action_url


def test_first_certificate_for_event_starts_at_one(app, make_event, fake_render):
    event = make_event(prefix="EXPO")

    result = process_certificate_job(job_payload(event.id))

    assert result.certificate_number == "EXPO-001"
    assert _counter(event.id) == 1


def test_standalone_job_skips_counter(app, monkeypatch, fake_render):
    counter_calls = []
    monkeypatch.setattr(
        certificate_store,
        "get_current_certificate_count",
        lambda event_id: counter_calls.append(("count", event_id)),
    )
    monkeypatch.setattr(
        certificate_store,
        "increment_certificate_counter",
        lambda event_id: counter_calls.append(("increment", event_id)),
    )
    payload = job_payload("standalone", config={"cert_id_prefix": "STD"})

    result = process_certificate_job(payload)

    assert result.success, result.error
    assert re.match(r"^STD-\d{3}$", result.certificate_number)
    assert counter_calls == []
    cert = Certificate.query.one()
    assert cert.event_id is None
    assert cert.user_id == "user-0001"
    assert "/certificates/standalone/user-0001/" in result.pdf_url


def test_accepts_parsed_payload(app, fake_render):
    job = StandaloneCertificateJob(
        user_id="user-0002",
        participant_name="Grace Hopper",
        event_title="Workshop",
        completion_date="2024-01-02",
        config={"cert_id_prefix": "WS"},
    )

    result = process_certificate_job(job)

    assert result.success
    assert result.certificate_number.startswith("WS-")


def test_png_failure_stops_before_upload_and_save(app, make_event, monkeypatch, upload_calls):
    event = make_event()
    saves = []
    monkeypatch.setattr(
        rendering, "generate_pdf_certificate", lambda config, number, data: b"%PDF"
    )

    def broken_png(config, number, data):
        raise RuntimeError("font missing")

    monkeypatch.setattr(rendering, "generate_png_certificate", broken_png)
    monkeypatch.setattr(certificate_store, "save_certificate", lambda rec: saves.append(rec))

    result = process_certificate_job(job_payload(event.id))

    assert not result.success
    assert result.error == "PNG generation failed: font missing"
    assert upload_calls == []
    assert saves == []
    assert _counter(event.id) is None


def test_pdf_failure_message(app, make_event, monkeypatch):
    event = make_event()

    def broken_pdf(config, number, data):
        raise ValueError("bad template")

    monkeypatch.setattr(rendering, "generate_pdf_certificate", broken_pdf)

    result = process_certificate_job(job_payload(event.id))

    assert result.error == "PDF generation failed: bad template"


def test_empty_render_output_fails(app, make_event, monkeypatch):
    event = make_event()
    monkeypatch.setattr(rendering, "generate_pdf_certificate", lambda c, n, d: b"")
    monkeypatch.setattr(rendering, "generate_png_certificate", lambda c, n, d: b"\x89PNG")

    result = process_certificate_job(job_payload(event.id))

    assert result.error == "Failed to generate certificate files: PDF=false, PNG=true"


def test_render_timeout_fails_job(app, make_event, monkeypatch):
    event = make_event()
    release = threading.Event()
    threads = []
    started = threading.Event()
    app.config["JOB_CALL_TIMEOUT"] = 0.05

    def hung_pdf(config, number, data):
        threads.append(threading.current_thread())
        started.set()
        release.wait(5)
        return b"%PDF"

    monkeypatch.setattr(rendering, "generate_pdf_certificate", hung_pdf)
    try:
        result = process_certificate_job(job_payload(event.id))
    finally:
        release.set()
    started.wait(1)

    assert result.error == "PDF generation failed: timed out after 0.05s"
    assert [t.daemon for t in threads] == [True]
    assert Certificate.query.count() == 0


def test_no_prefix_uses_fallback_number(app, make_event, fake_render):
    event = make_event(prefix=None)

    result = process_certificate_job(job_payload(event.id))

    assert result.success
    assert re.match(rf"^CERT-{event.id[:8]}-user-000-\d+$", result.certificate_number)
    assert _counter(event.id) == 1


def test_inline_config_overrides_stored_config(app, make_event, fake_render):
    event = make_event(prefix="TS")

    result = process_certificate_job(
        job_payload(event.id, config={"cert_id_prefix": "INL"})
    )

    assert result.certificate_number == "INL-001"


def test_missing_config_fails(app, fake_render):
    event = Event(title="No config")
    db.session.add(event)
    db.session.commit()

    result = process_certificate_job(job_payload(event.id))
    standalone = process_certificate_job(job_payload("standalone"))

    assert result.error == "Certificate config not found"
    assert standalone.error == "Certificate config not found"
    assert fake_render == []


def test_invalid_payload_fails():
    result = process_certificate_job({"eventId": "abc"})

    assert not result.success
    assert result.error == "Invalid job payload: missing userId"


def test_count_lookup_error_fails(app, make_event, monkeypatch, fake_render):
    event = make_event()
    monkeypatch.setattr(
        certificate_store,
        "get_current_certificate_count",
        lambda event_id: certificate_store.CountLookup(error="connection reset"),
    )

    result = process_certificate_job(job_payload(event.id))

    assert result.error == "Failed to get certificate count: connection reset"
    assert fake_render == []


def test_same_payload_twice_creates_two_certificates(app, make_event, fake_render):
    event = make_event(prefix="TS")

    first = process_certificate_job(job_payload(event.id))
    second = process_certificate_job(job_payload(event.id))

    assert (first.certificate_number, second.certificate_number) == ("TS-001", "TS-002")
    assert Certificate.query.filter_by(event_id=event.id).count() == 2


def test_upload_error_fails_without_counter_or_save(app, make_event, monkeypatch, fake_render):
    event = make_event()
    real_upload = storage.upload_certificate_file

    def flaky_upload(data, filename, kind, event_id, user_id):
        if kind == "png":
            return UploadResult(error="Failed to upload PNG: bucket unavailable")
        return real_upload(data, filename, kind, event_id, user_id)

    monkeypatch.setattr(storage, "upload_certificate_file", flaky_upload)

    result = process_certificate_job(job_payload(event.id))

    assert result.error == "Failed to upload PNG: bucket unavailable"
    assert _counter(event.id) is None
    assert Certificate.query.count() == 0


def test_uploads_both_files(app, make_event, fake_render, upload_calls):
    event = make_event(prefix="TS")

    process_certificate_job(job_payload(event.id))

    assert sorted(upload_calls) == [
        ("TS-001.pdf", "pdf", event.id, "user-0001"),
        ("TS-001.png", "png", event.id, "user-0001"),
    ]


def test_counter_failure_is_not_terminal(app, make_event, monkeypatch, fake_render, caplog):
    caplog.set_level("INFO")
    event = make_event()
    monkeypatch.setattr(
        certificate_store, "increment_certificate_counter", lambda event_id: "db down"
    )

    result = process_certificate_job(job_payload(event.id))

    assert result.success
    assert result.certificate_number == "TS-001"
    assert Certificate.query.count() == 1
    assert "[CERT-COUNTER]" in caplog.text


def test_save_failure_reports_error(app, make_event, monkeypatch, fake_render):
    event = make_event()
    monkeypatch.setattr(
        certificate_store,
        "save_certificate",
        lambda record: SaveResult(error="duplicate key"),
    )

    result = process_certificate_job(job_payload(event.id))

    assert result.error == "Failed to save certificate: duplicate key"
    # Uploaded files are left behind for the orphan purge.
    cert_dir = os.path.join(app.config["SITE_ROOT"], "certificates", event.id, "user-0001")
    assert sorted(os.listdir(cert_dir)) == ["TS-001.pdf", "TS-001.png"]


def test_notification_failure_is_not_terminal(app, make_event, monkeypatch, fake_render):
    event = make_event()

    def broken_notify(*args):
        raise RuntimeError("notifications offline")

    monkeypatch.setattr(notifications, "notify_certificate_ready", broken_notify)

    result = process_certificate_job(job_payload(event.id))

    assert result.success


def test_event_venue_reaches_renderer(app, make_event, fake_render):
    event = make_event(venue="Hall A")

    process_certificate_job(job_payload(event.id))

    kinds = [kind for kind, _, _ in fake_render]
    assert kinds == ["pdf", "png"]
    assert all(data.venue == "Hall A" for _, _, data in fake_render)


def test_unexpected_exception_becomes_failure(app, make_event, monkeypatch):
    event = make_event()

    def broken_assign(job, config):
        raise KeyError("boom")

    monkeypatch.setattr(certificate_jobs, "assign_certificate_number", broken_assign)

    result = process_certificate_job(job_payload(event.id))

    assert not result.success
    assert "boom" in result.error


def test_numeric_prefix_is_used(app, make_event, fake_render):
    event = make_event(prefix=2024)

    result = process_certificate_job(job_payload(event.id))

    assert result.certificate_number == "2024-001"


def test_prefix_with_path_separator_fails_before_rendering(app, make_event, fake_render, upload_calls):
    event = make_event(prefix="CS/2024")

    result = process_certificate_job(job_payload(event.id))

    assert result.error == "Invalid certificate number prefix: 'CS/2024'"
    assert fake_render == []
    assert upload_calls == []
