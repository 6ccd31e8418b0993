from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..services import job_queue
from ..services.certificate_jobs import process_pending_jobs

bp = Blueprint("jobs", __name__, url_prefix="/jobs")


@bp.post("/certificates")
def enqueue_certificate():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"ok": False, "error": "JSON object required."}), 400
    job_data = {k: v for k, v in payload.items() if k not in {"createdBy", "priority"}}
    created_by = payload.get("createdBy") or payload.get("userId")
    lookup = job_queue.queue_certificate_generation(
        job_data, created_by, priority=payload.get("priority", 5)
    )
    if lookup.error:
        return jsonify({"ok": False, "error": lookup.error}), 400
    return jsonify({"ok": True, "job": lookup.job.to_dict()}), 202


@bp.get("/<job_id>")
def job_detail(job_id: str):
    lookup = job_queue.get_job_status(job_id)
    if lookup.error:
        return jsonify({"ok": False, "error": lookup.error}), 404
    return jsonify({"ok": True, "job": lookup.job.to_dict()})


@bp.get("")
def user_jobs():
    user_id = (request.args.get("user_id") or "").strip()
    if not user_id:
        return jsonify({"ok": False, "error": "user_id is required."}), 400
    listing = job_queue.get_user_jobs(user_id, request.args.get("status") or None)
    if listing.error:
        return jsonify({"ok": False, "error": listing.error}), 400
    return jsonify({"ok": True, "jobs": [job.to_dict() for job in listing.jobs]})


@bp.post("/process")
def process_batch():
    summary = process_pending_jobs()
    return jsonify({"ok": True, **summary.as_dict()})
