import logging
import os

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text

from .shared.errors import PortalError

db = SQLAlchemy()

from . import models  # noqa: E402,F401  registers tables on db.metadata


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        logging.warning("invalid %s=%r; using %s", name, raw, default)
        return default


def create_app(overrides: dict | None = None):
    app = Flask(__name__, template_folder="templates")
    app.secret_key = os.getenv("SECRET_KEY", "dev")

    DB_USER = os.getenv("DB_USER", "portal")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
    DB_HOST = os.getenv("DB_HOST", "db")
    DB_NAME = os.getenv("DB_NAME", "portal")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}",
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["MAX_CONTENT_LENGTH"] = int(
        os.getenv("MAX_CONTENT_LENGTH", 25 * 1024 * 1024)
    )
    app.config["JSON_SORT_KEYS"] = False

    site_root = os.getenv("SITE_ROOT", "/srv")
    app.config["SITE_ROOT"] = site_root
    app.config["PUBLIC_BASE_URL"] = os.getenv("PUBLIC_BASE_URL", "")

    app.config["AI_API_KEY"] = os.getenv("AI_API_KEY")
    app.config["AI_API_URL"] = os.getenv(
        "AI_API_URL", "https://api.anthropic.com/v1/messages"
    )
    app.config["AI_MODEL"] = os.getenv("AI_MODEL", "claude-3-haiku-20240307")
    app.config["AI_TIMEOUT_SECONDS"] = _env_float("AI_TIMEOUT_SECONDS", 30.0)

    # throttle between certificate emails; provider rate limits
    app.config["CERTIFICATE_SEND_DELAY"] = _env_float("CERTIFICATE_SEND_DELAY", 0.5)

    if overrides:
        app.config.update(overrides)
    app.config.setdefault(
        "UPLOAD_ROOT", os.path.join(app.config["SITE_ROOT"], "uploads")
    )

    db.init_app(app)

    from .shared.realtime import RealtimeChannel
    from .shared.storage import LocalObjectStorage

    app.extensions["realtime"] = RealtimeChannel()
    app.extensions["object_storage"] = LocalObjectStorage(
        app.config["UPLOAD_ROOT"],
        base_url=app.config["PUBLIC_BASE_URL"].rstrip("/") + "/uploads",
    )

    @app.errorhandler(PortalError)
    def handle_portal_error(exc: PortalError):
        db.session.rollback()
        payload = {"ok": False, "error": str(exc)}
        payload.update(exc.extra)
        return jsonify(payload), exc.status_code

    @app.errorhandler(413)
    def handle_too_large(exc):
        return jsonify({"ok": False, "error": "Uploaded file is too large."}), 413

    @app.errorhandler(401)
    def handle_unauthorized(exc):
        return jsonify({"ok": False, "error": "Authentication required."}), 401

    @app.errorhandler(403)
    def handle_forbidden(exc):
        return jsonify({"ok": False, "error": "Forbidden."}), 403

    @app.errorhandler(404)
    def handle_not_found(exc):
        return jsonify({"ok": False, "error": "Not found."}), 404

    @app.get("/health")
    def health():  # pragma: no cover - simple healthcheck
        return "OK", 200

    from .routes.auth import bp as auth_bp
    from .routes.students import bp as students_bp
    from .routes.events import bp as events_bp
    from .routes.participations import bp as participations_bp
    from .routes.attendance import bp as attendance_bp
    from .routes.certificates import bp as certificates_bp
    from .routes.admin import bp as admin_bp
    from .routes.uploads import bp as uploads_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(students_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(participations_bp)
    app.register_blueprint(attendance_bp)
    app.register_blueprint(certificates_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(uploads_bp)

    with app.app_context():
        if not (app.config.get("FLASK_SKIP_SEED") or os.getenv("FLASK_SKIP_SEED")):
            seed_initial_admin_safely()

    return app


def seed_initial_admin_safely() -> None:
    """Seed an initial admin user if the users table exists and is empty."""

    from .models import User

    try:
        if db.engine.url.drivername.startswith("sqlite"):
            return
        cols = {
            row[0]
            for row in db.session.execute(
                text(
                    "SELECT column_name FROM information_schema.columns WHERE table_name='users'"
                )
            )
        }
        required = {"id", "email", "password_hash", "role"}
        if not required.issubset(cols):
            logging.info("seed skipped (columns missing)")
            return

        if db.session.query(User).count() > 0:
            return

        first_admin_email = os.getenv(
            "FIRST_ADMIN_EMAIL", "nss.coordinator@example.edu"
        ).lower()
        admin = User(email=first_admin_email, full_name="NSS Coordinator", role="admin")
        password = os.getenv("FIRST_ADMIN_PASSWORD")
        if password:
            admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        logging.info("seeded initial admin %s", first_admin_email)
    except Exception:
        db.session.rollback()
        logging.exception("seed_initial_admin_safely failed")
