from eventcerts.app import create_app, db
import json
import logging
import os
import signal
import threading

from flask_migrate import Migrate
from flask.cli import FlaskGroup
import click
from flask import current_app
from eventcerts.models import Certificate
from eventcerts.services import job_queue
from eventcerts.services.certificate_jobs import process_pending_jobs
from eventcerts.shared.storage import certificate_rel_path_from_url, certificates_root


migrate = Migrate()
logger = logging.getLogger("eventcerts.worker")


def create_eventcerts_app():
    app = create_app()
    migrate.init_app(app, db)
    return app


cli = FlaskGroup(create_app=create_eventcerts_app)


def _echo_summary(summary) -> None:
    click.echo(
        f"processed={summary.processed} succeeded={summary.succeeded} failed={summary.failed}"
    )


@cli.command("process_jobs")
@click.option("--batch-size", type=int, default=None, help="At most 10 jobs")
def process_jobs(batch_size):
    """Process one batch of pending jobs."""
    _echo_summary(process_pending_jobs(batch_size=batch_size))


def _install_stop_handlers(stop: threading.Event) -> None:
    def _handler(signum, frame):
        logger.info("[WORKER] signal=%s stopping after current batch", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handler)
        except ValueError:
            # Only the main thread may install handlers.
            logger.warning("[WORKER] cannot install handler for signal=%s", sig)


@cli.command("run_worker")
@click.option("--interval", type=float, default=None, help="Idle sleep in seconds")
@click.option("--max-batches", type=int, default=None, help="Stop after N batches")
def run_worker(interval, max_batches):
    """Drain the job queue until interrupted."""
    if interval is None:
        interval = current_app.config.get("WORKER_POLL_INTERVAL", 5.0)
    stop = threading.Event()
    _install_stop_handlers(stop)
    logger.info("[WORKER] started interval=%s max_batches=%s", interval, max_batches)

    batches = 0
    while not stop.is_set():
        summary = process_pending_jobs()
        batches += 1
        if summary.processed or summary.failed:
            _echo_summary(summary)
        if max_batches is not None and batches >= max_batches:
            break
        if not summary.processed and not summary.failed:
            stop.wait(interval)
    logger.info("[WORKER] stopped batches=%d", batches)
    click.echo(f"Worker stopped after {batches} batches")


@cli.command("enqueue_cert")
@click.option("--event", "event_id", required=True, help='Event id or "standalone"')
@click.option("--user", "user_id", required=True)
@click.option("--name", "participant_name", required=True)
@click.option("--title", "event_title", required=True)
@click.option("--date", "completion_date", required=True, help="YYYY-MM-DD")
@click.option("--prefix", default=None, help="Inline cert_id_prefix")
@click.option("--priority", type=int, default=5, show_default=True)
def enqueue_cert(
    event_id, user_id, participant_name, event_title, completion_date, prefix, priority
):
    """Queue a certificate generation job."""
    job_data = {
        "eventId": event_id,
        "userId": user_id,
        "participantName": participant_name,
        "eventTitle": event_title,
        "completionDate": completion_date,
    }
    if prefix:
        job_data["config"] = {"cert_id_prefix": prefix}
    lookup = job_queue.queue_certificate_generation(job_data, user_id, priority=priority)
    if lookup.error:
        raise click.ClickException(lookup.error)
    click.echo(lookup.job.id)


@cli.command("job_status")
@click.argument("job_id")
def job_status(job_id):
    lookup = job_queue.get_job_status(job_id)
    if lookup.error:
        raise click.ClickException(lookup.error)
    click.echo(json.dumps(lookup.job.to_dict(), indent=2))


@cli.command("requeue_job")
@click.argument("job_id")
def requeue_job(job_id):
    """Move a failed job back to pending."""
    error = job_queue.requeue_job(job_id)
    if error:
        raise click.ClickException(error)
    click.echo(f"Requeued {job_id}")


def _referenced_certificate_files() -> set:
    referenced = set()
    rows = db.session.query(
        Certificate.certificate_pdf_url, Certificate.certificate_png_url
    ).all()
    for pdf_url, png_url in rows:
        for url in (pdf_url, png_url):
            rel_path = certificate_rel_path_from_url(url)
            if rel_path:
                referenced.add(rel_path)
    return referenced


@cli.command("purge_orphan_certs")
@click.option(
    "--dry-run", is_flag=True, help="List orphaned certificate files without deleting"
)
def purge_orphan_certs(dry_run: bool):
    cert_root = certificates_root()
    if not os.path.isdir(cert_root):
        click.echo("Certificate directory missing", err=True)
        return
    if (
        not dry_run
        and current_app.config.get("ENV") == "production"
        and os.getenv("ALLOW_CERT_PURGE") != "1"
    ):
        click.echo(
            "Refusing to delete in production without ALLOW_CERT_PURGE=1", err=True
        )
        return

    referenced = _referenced_certificate_files()
    total = deleted = kept = errors = 0
    samples: list[str] = []
    for root, dirs, files in os.walk(cert_root):
        dirs[:] = [d for d in dirs if not d.startswith("_")]
        for name in files:
            if not name.lower().endswith((".pdf", ".png")):
                continue
            full_path = os.path.join(root, name)
            rel_path = os.path.relpath(full_path, cert_root).replace(os.sep, "/")
            total += 1
            if rel_path in referenced:
                kept += 1
                continue
            if len(samples) < 5:
                samples.append(full_path)
            if dry_run:
                continue
            try:
                os.remove(full_path)
                deleted += 1
            except OSError:
                errors += 1
                current_app.logger.exception(
                    "[CERT-PURGE] failed to remove %s", full_path
                )
    summary = f"scanned={total} deleted={deleted} kept={kept} errors={errors}"
    for path in samples:
        click.echo(path)
    click.echo(summary)
    current_app.logger.info("[CERT-PURGE] %s", summary)


if __name__ == "__main__":
    cli()
