"""Certificate generation job processing.

``process_pending_jobs`` drains one batch from ``job_queue``;
``process_certificate_job`` turns a single payload into a PDF/PNG pair, a
``certificates`` row and an updated event counter. Neither raises: every
failure ends up as a ``JobResult`` with ``success=False`` and a message that is
stored on the job row.
"""

from __future__ import annotations

import random
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass
from typing import Optional, Union

from flask import current_app

from ..app import MAX_BATCH_SIZE
from ..models import CERTIFICATE_GENERATION
from ..shared import certificates as rendering
from ..shared import storage
from . import certificate_store, job_queue, notifications
from .certificate_store import CONFIG_NOT_FOUND
from .job_payloads import (
    CertificateJob,
    EventCertificateJob,
    InvalidJobPayload,
    StandaloneCertificateJob,
    parse_certificate_job,
)
from .job_status import StatusUpdater, default_status_updater


@dataclass(frozen=True)
class JobResult:
    success: bool
    certificate_number: Optional[str] = None
    pdf_url: Optional[str] = None
    png_url: Optional[str] = None
    error: Optional[str] = None

    def result_data(self) -> dict:
        return {
            "certificateNumber": self.certificate_number,
            "pdfUrl": self.pdf_url,
            "pngUrl": self.png_url,
        }


@dataclass(frozen=True)
class BatchSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


_UNSAFE_PREFIX_CHARS = ("/", "\\", "\x00")


class _JobFailure(Exception):
    """Terminal failure of a single job; the message is stored on the job."""


def _message(exc: BaseException) -> str:
    return str(exc) or "Unknown error"


def _in_app_context(app, fn, *args):
    with app.app_context():
        return fn(*args)


def resolve_certificate_config(job: CertificateJob) -> dict:
    if job.config is not None:
        return job.config
    if isinstance(job, StandaloneCertificateJob):
        raise _JobFailure(CONFIG_NOT_FOUND)
    lookup = certificate_store.get_certificate_config(job.event_id)
    if lookup.error or lookup.config is None:
        raise _JobFailure(lookup.error or CONFIG_NOT_FOUND)
    return lookup.config


def assign_certificate_number(job: CertificateJob, config: dict) -> str:
    prefix = config.get("cert_id_prefix")
    prefix = str(prefix).strip() if prefix else ""
    if not prefix:
        return certificate_store.generate_certificate_number(job.event_id, job.user_id)
    # The number doubles as the stored file name.
    if any(ch in prefix for ch in _UNSAFE_PREFIX_CHARS):
        raise _JobFailure(f"Invalid certificate number prefix: {prefix!r}")
    if isinstance(job, StandaloneCertificateJob):
        # Ad-hoc numbering; collisions across standalone certificates are accepted.
        return f"{prefix}-{random.randint(0, 999):03d}"
    lookup = certificate_store.get_current_certificate_count(job.event_id)
    if lookup.error:
        raise _JobFailure(f"Failed to get certificate count: {lookup.error}")
    return f"{prefix}-{(lookup.count or 0) + 1:03d}"


def _start_call(app, fn, *args) -> Future:
    """Run ``fn`` on a daemon thread inside an app context.

    A call that never returns is abandoned once its caller times out, and a
    daemon thread does not keep the process alive at exit.
    """
    future = Future()

    def _target():
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = _in_app_context(app, fn, *args)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    threading.Thread(target=_target, name="cert-job", daemon=True).start()
    return future


class _CertificateRun:
    """One execution of a certificate job, bounded by ``JOB_CALL_TIMEOUT``."""

    def __init__(self, job: CertificateJob):
        self.job = job
        self.app = current_app._get_current_object()
        self.timeout = float(self.app.config.get("JOB_CALL_TIMEOUT", 60.0))

    def _submit(self, fn, *args):
        return _start_call(self.app, fn, *args)

    def render(self, kind: str, fn, config: dict, number: str, data) -> bytes:
        label = kind.upper()
        try:
            return self._submit(fn, config, number, data).result(timeout=self.timeout)
        except FutureTimeoutError:
            raise _JobFailure(
                f"{label} generation failed: timed out after {self.timeout:g}s"
            )
        except Exception as exc:
            current_app.logger.exception("[CERT] %s generation error", label)
            raise _JobFailure(f"{label} generation failed: {_message(exc)}")

    def upload(self, number: str, pdf_bytes: bytes, png_bytes: bytes):
        job = self.job
        futures = {
            kind: self._submit(
                storage.upload_certificate_file,
                data,
                f"{number}.{kind}",
                kind,
                job.event_id,
                job.user_id,
            )
            for kind, data in (("pdf", pdf_bytes), ("png", png_bytes))
        }
        results = {}
        for kind, future in futures.items():
            try:
                results[kind] = future.result(timeout=self.timeout)
            except FutureTimeoutError:
                raise _JobFailure(
                    f"Upload failed: {kind.upper()} upload timed out after {self.timeout:g}s"
                )
            except Exception as exc:
                current_app.logger.exception("[UPLOAD] %s upload error", kind.upper())
                raise _JobFailure(f"Upload failed: {_message(exc)}")
        pdf_result, png_result = results["pdf"], results["png"]
        if pdf_result.error or png_result.error:
            raise _JobFailure(
                pdf_result.error or png_result.error or "Failed to upload certificate files"
            )
        return pdf_result.url, png_result.url

    def run(self) -> JobResult:
        job = self.job
        config = resolve_certificate_config(job)
        number = assign_certificate_number(job, config)
        current_app.logger.info(
            "[CERT] generating number=%s event=%s participant=\"%s\"",
            number,
            job.event_id,
            job.participant_name,
        )

        venue = ""
        if isinstance(job, EventCertificateJob):
            venue = certificate_store.get_event_venue(job.event_id) or ""
        data = rendering.CertificateData(
            participant_name=job.participant_name,
            event_title=job.event_title,
            completion_date=job.completion_date,
            venue=venue,
        )
        pdf_bytes = self.render("pdf", rendering.generate_pdf_certificate, config, number, data)
        png_bytes = self.render("png", rendering.generate_png_certificate, config, number, data)
        if not pdf_bytes or not png_bytes:
            raise _JobFailure(
                "Failed to generate certificate files: "
                f"PDF={str(bool(pdf_bytes)).lower()}, PNG={str(bool(png_bytes)).lower()}"
            )

        pdf_url, png_url = self.upload(number, pdf_bytes, png_bytes)

        if isinstance(job, EventCertificateJob):
            counter_error = certificate_store.increment_certificate_counter(job.event_id)
            if counter_error:
                current_app.logger.warning(
                    "[CERT-COUNTER] increment failed event=%s error=%s; certificate kept",
                    job.event_id,
                    counter_error,
                )

        saved = certificate_store.save_certificate(
            {
                "event_id": job.event_id if isinstance(job, EventCertificateJob) else None,
                "user_id": job.user_id,
                "certificate_number": number,
                "participant_name": job.participant_name,
                "event_title": job.event_title,
                "completion_date": job.completion_date,
                "certificate_pdf_url": pdf_url,
                "certificate_png_url": png_url,
            }
        )
        if saved.error:
            raise _JobFailure(f"Failed to save certificate: {saved.error}")

        try:
            notifications.notify_certificate_ready(
                job.user_id, job.event_id, job.event_title, job.participant_name
            )
        except Exception:
            current_app.logger.exception("[NOTIFY] certificate ready notification failed")

        current_app.logger.info(
            "[CERT] generated number=%s pdf=%s png=%s", number, pdf_url, png_url
        )
        return JobResult(
            success=True, certificate_number=number, pdf_url=pdf_url, png_url=png_url
        )


def process_certificate_job(payload: Union[dict, CertificateJob]) -> JobResult:
    """Generate, store and record one certificate; never raises."""
    try:
        job = payload if isinstance(
            payload, (EventCertificateJob, StandaloneCertificateJob)
        ) else parse_certificate_job(payload)
    except InvalidJobPayload as exc:
        return JobResult(success=False, error=f"Invalid job payload: {exc}")

    try:
        return _CertificateRun(job).run()
    except _JobFailure as exc:
        current_app.logger.error(
            "[CERT] job failed event=%s participant=\"%s\" error=%s",
            job.event_id,
            job.participant_name,
            exc,
        )
        return JobResult(success=False, error=str(exc))
    except Exception as exc:
        current_app.logger.exception("[CERT] unexpected error event=%s", job.event_id)
        return JobResult(success=False, error=str(exc) or "Failed to process certificate job")


def _record(updater: StatusUpdater, action: str, job_id: str, value) -> None:
    try:
        getattr(updater, action)(job_id, value)
    except Exception:
        current_app.logger.exception("[JOB-STATUS] %s raised id=%s", action, job_id)


def process_pending_jobs(
    status_updater: Optional[StatusUpdater] = None,
    batch_size: Optional[int] = None,
) -> BatchSummary:
    """Claim and process up to one batch of pending jobs, one at a time."""
    updater = status_updater or default_status_updater()
    limit = batch_size or current_app.config.get("JOB_BATCH_SIZE", MAX_BATCH_SIZE)
    limit = max(1, min(int(limit), MAX_BATCH_SIZE))

    processed = succeeded = failed = 0
    for _ in range(limit):
        lookup = job_queue.get_next_job()
        if lookup.error:
            current_app.logger.error("[JOB] queue read failed error=%s", lookup.error)
            break
        job = lookup.job
        if job is None:
            break
        if not job.id:
            current_app.logger.error("[JOB-FAIL] job without id skipped type=%s", job.job_type)
            failed += 1
            continue

        processed += 1
        job_id = job.id
        job_type = job.job_type
        try:
            if job_type != CERTIFICATE_GENERATION:
                message = f"Unknown job type: {job_type}"
                current_app.logger.error("[JOB-FAIL] id=%s error=%s", job_id, message)
                _record(updater, "fail", job_id, message)
                failed += 1
                continue

            current_app.logger.info("[JOB] processing id=%s type=%s", job_id, job_type)
            result = process_certificate_job(job.job_data)
            if result.success:
                _record(updater, "complete", job_id, result.result_data())
                succeeded += 1
                current_app.logger.info(
                    "[JOB] completed id=%s number=%s", job_id, result.certificate_number
                )
            else:
                _record(updater, "fail", job_id, result.error or "Unknown error")
                failed += 1
                current_app.logger.error("[JOB-FAIL] id=%s error=%s", job_id, result.error)
        except Exception as exc:
            current_app.logger.exception("[JOB-FAIL] exception id=%s", job_id)
            _record(updater, "fail", job_id, str(exc) or "Processing error")
            failed += 1

    summary = BatchSummary(processed=processed, succeeded=succeeded, failed=failed)
    current_app.logger.info(
        "[JOB] batch processed=%d succeeded=%d failed=%d",
        summary.processed,
        summary.succeeded,
        summary.failed,
    )
    return summary
