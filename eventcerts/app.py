import logging
import os

from flask import Flask, abort, jsonify, send_from_directory
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

MAX_BATCH_SIZE = 10


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def create_app():
    app = Flask(__name__)
    app.secret_key = os.getenv("SECRET_KEY", "dev")

    DB_USER = os.getenv("DB_USER", "eventcerts")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
    DB_HOST = os.getenv("DB_HOST", "db")
    DB_NAME = os.getenv("DB_NAME", "eventcerts")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}",
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["ENV"] = os.getenv("APP_ENV", "development")

    app.config["SITE_ROOT"] = os.getenv("SITE_ROOT", "/srv")
    app.config["CERTIFICATES_BASE_URL"] = os.getenv(
        "CERTIFICATES_BASE_URL", ""
    ).rstrip("/")
    # A single drain never claims more than MAX_BATCH_SIZE jobs.
    batch_size = _int_env("JOB_BATCH_SIZE", MAX_BATCH_SIZE)
    app.config["JOB_BATCH_SIZE"] = max(1, min(batch_size, MAX_BATCH_SIZE))
    app.config["JOB_CALL_TIMEOUT"] = _float_env("JOB_CALL_TIMEOUT", 60.0)
    app.config["WORKER_POLL_INTERVAL"] = _float_env("WORKER_POLL_INTERVAL", 5.0)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    app.logger.setLevel(getattr(logging, log_level, logging.INFO))

    db.init_app(app)

    @app.get("/health")
    def health():  # pragma: no cover - simple healthcheck
        return "OK", 200

    @app.get("/certificates/<path:filename>")
    def certificate_file(filename: str):
        cert_root = os.path.join(app.config["SITE_ROOT"], "certificates")
        if not os.path.isfile(os.path.join(cert_root, filename)):
            abort(404)
        return send_from_directory(cert_root, filename)

    @app.get("/verify/<certificate_number>")
    def verify(certificate_number: str):
        from .services.certificate_store import get_certificate_by_number

        cert = get_certificate_by_number(certificate_number)
        if not cert:
            return jsonify({"ok": False}), 404
        masked = (
            (cert.participant_name[0] + "***") if cert.participant_name else "***"
        )
        return jsonify(
            {
                "ok": True,
                "certificate_number": cert.certificate_number,
                "event_title": cert.event_title,
                "completion_date": cert.completion_date,
                "participant": masked,
            }
        )

    from .routes.jobs import bp as jobs_bp

    app.register_blueprint(jobs_bp)

    # Models must be registered on the metadata before create_all/migrations.
    from . import models  # noqa: F401

    return app
