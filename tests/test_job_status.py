from conftest import job_payload
from eventcerts.app import db
from eventcerts.models import JOB_COMPLETED, JOB_FAILED, Job
from eventcerts.services import job_queue
from eventcerts.services.certificate_jobs import process_pending_jobs
from eventcerts.services.job_status import (
    DirectStatusUpdater,
    FallbackStatusUpdater,
    QueueStatusUpdater,
    StatusUpdater,
    default_status_updater,
)
from eventcerts.shared import certificates as rendering


class RaisingUpdater(StatusUpdater):
    name = "raising"

    def complete(self, job_id, result_data):
        raise RuntimeError("connection refused")

    def fail(self, job_id, error_message):
        raise RuntimeError("connection refused")


class ErrorUpdater(StatusUpdater):
    name = "error"

    def complete(self, job_id, result_data):
        return "primary down"

    def fail(self, job_id, error_message):
        return "primary down"


def _claimed_job():
    job_id = job_queue.add_job("certificate_generation", {}, "u").job.id
    job_queue.get_next_job()
    return job_id


def _reload(job_id):
    db.session.expire_all()
    return db.session.get(Job, job_id)


def test_default_chain():
    updater = default_status_updater()

    assert isinstance(updater, FallbackStatusUpdater)
    assert isinstance(updater.primary, QueueStatusUpdater)
    assert isinstance(updater.fallback, DirectStatusUpdater)


def test_direct_writer_ignores_current_status(app):
    job_id = _claimed_job()
    job_queue.fail_job(job_id, "first attempt")

    assert DirectStatusUpdater().complete(job_id, {"certificateNumber": "TS-001"}) is None

    job = _reload(job_id)
    assert job.status == JOB_COMPLETED
    assert job.result_data == {"certificateNumber": "TS-001"}
    assert job.completed_at is not None


def test_direct_writer_unknown_job(app):
    assert DirectStatusUpdater().fail("nope", "x") == "Job nope not found"


def test_fallback_not_used_when_primary_succeeds(app):
    job_id = _claimed_job()
    fallback = ErrorUpdater()

    error = FallbackStatusUpdater(QueueStatusUpdater(), fallback).fail(job_id, "bad")

    assert error is None
    assert _reload(job_id).status == JOB_FAILED


def test_fallback_used_when_primary_errors(app, caplog):
    caplog.set_level("INFO")
    job_id = _claimed_job()

    error = FallbackStatusUpdater(ErrorUpdater(), DirectStatusUpdater()).fail(
        job_id, "PNG generation failed: font missing"
    )

    assert error is None
    job = _reload(job_id)
    assert job.status == JOB_FAILED
    assert job.error_message == "PNG generation failed: font missing"
    assert "fail via error failed" in caplog.text
    assert "fail via direct succeeded" in caplog.text


def test_fallback_exception_is_reported_not_raised(app, caplog):
    job_id = _claimed_job()

    error = FallbackStatusUpdater(ErrorUpdater(), RaisingUpdater()).complete(job_id, {})

    assert error == "connection refused"
    assert "complete via raising failed" in caplog.text


def test_fallback_used_when_primary_raises(app, caplog):
    job_id = _claimed_job()

    error = FallbackStatusUpdater(RaisingUpdater(), DirectStatusUpdater()).complete(
        job_id, {"certificateNumber": "TS-001"}
    )

    assert error is None
    job = _reload(job_id)
    assert job.status == JOB_COMPLETED
    assert job.result_data == {"certificateNumber": "TS-001"}
    assert "complete via raising failed" in caplog.text
    assert "connection refused" in caplog.text


def test_batch_completes_job_when_primary_writer_raises(app, make_event, monkeypatch):
    monkeypatch.setattr(rendering, "generate_pdf_certificate", lambda c, n, d: b"%PDF")
    monkeypatch.setattr(rendering, "generate_png_certificate", lambda c, n, d: b"\x89PNG")
    event = make_event(prefix="TS")
    job_id = job_queue.queue_certificate_generation(job_payload(event.id), "org").job.id

    summary = process_pending_jobs(
        status_updater=FallbackStatusUpdater(RaisingUpdater(), DirectStatusUpdater())
    )

    assert summary.succeeded == 1
    job = _reload(job_id)
    assert job.status == JOB_COMPLETED
    assert job.result_data["certificateNumber"] == "TS-001"
