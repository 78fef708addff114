# testme/__init__.py
"""
App factory.

    - CORS origins read from CORS_ORIGINS env var (https:// origins mark production)
    - Database URI from SQLALCHEMY_DATABASE_URI env var
    - SECRET_KEY required in production (signs bearer tokens)
    - Flask-Migrate manages schema; db.create_all() is only used by tests
    - Scan queue (APScheduler) drains background scan steps unless disabled

create_app(test_config) overrides any of the above, which is how the test
suite builds an in-memory SQLite app with the queue switched off.
"""

from __future__ import annotations
from flask_cors import CORS
from flask_migrate import Migrate
import os
import logging
import traceback
from typing import Any, Mapping, Optional
from flask import Flask, jsonify
from .extensions import init_extensions, db
from . import models
from .errors import ServiceError
from .domains.routes import domains_bp
from .scans.routes import scans_bp
from .scanner.executor import StepExecutor
from .scanner.orchestrator import ScanOrchestrator
from .scanner.queue import ScanQueue
import re

error_logger = logging.getLogger("app.errors")

DEFAULT_DNS_RESOLVERS = "8.8.8.8,1.1.1.1"


def _is_production() -> bool:
    """Detect production by checking CORS_ORIGINS for https."""
    return os.getenv("CORS_ORIGINS", "").startswith("https://")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


def _env_list(name: str, default: str) -> list:
    return [x.strip() for x in (os.getenv(name) or default).split(",") if x.strip()]


def create_app(test_config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    overrides = dict(test_config or {})

    is_prod = _is_production()
    testing = bool(overrides.get("TESTING"))

    # ── Logging ──────────────────────────────────────────────────────
    if is_prod:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        app.logger.setLevel(logging.INFO)
    else:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )
        app.logger.setLevel(logging.DEBUG)

    # Werkzeug logs every request
    logging.getLogger("werkzeug").setLevel(logging.INFO)
    # Quieten noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    # ─────────────────────────────────────────────────────────────────

    # ── CORS ────────────────────────────────────────────────────────
    # Production: set CORS_ORIGINS="https://app.example.com" in .env
    # Dev: falls back to localhost origins if env var is not set
    cors_env = os.getenv("CORS_ORIGINS")
    if cors_env:
        cors_origins = [o.strip() for o in cors_env.split(",") if o.strip()]
    else:
        cors_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            re.compile(r"http://192\.168\.\d+\.\d+:3000"),
        ]

    CORS(app, resources={
        r"/*": {
            "origins": cors_origins,
            "supports_credentials": True,
            "allow_headers": ["Content-Type", "Authorization"],
            "methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        }
    })

    # ── Secret Key ───────────────────────────────────────────────────
    secret_key = overrides.get("SECRET_KEY") or os.getenv("SECRET_KEY")
    if is_prod and not secret_key:
        raise RuntimeError(
            "SECRET_KEY environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    app.config["SECRET_KEY"] = secret_key or "dev-secret-key-change-me"

    # ── Database ─────────────────────────────────────────────────────
    # Set SQLALCHEMY_DATABASE_URI in .env, e.g.:
    #   postgresql://testme:PASSWORD@db:5432/testme
    database_uri = overrides.get("SQLALCHEMY_DATABASE_URI") or os.getenv("SQLALCHEMY_DATABASE_URI")
    if not database_uri:
        raise RuntimeError(
            "SQLALCHEMY_DATABASE_URI environment variable is not set. "
            "Set it to a database connection string, e.g.: "
            "postgresql://testme:PASSWORD@db:5432/testme"
        )
    app.config["SQLALCHEMY_DATABASE_URI"] = database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # ── Scanner / Verification ───────────────────────────────────────
    app.config["SCAN_QUEUE_ENABLED"] = _env_bool("SCAN_QUEUE_ENABLED", not testing)
    app.config["SCAN_QUEUE_INTERVAL_SECONDS"] = _env_number("SCAN_QUEUE_INTERVAL_SECONDS", 5)
    app.config["PROBE_TIMEOUT_SECONDS"] = _env_number("PROBE_TIMEOUT_SECONDS", 10)
    app.config["STEP_BUDGET_SECONDS"] = _env_number("STEP_BUDGET_SECONDS", 45)
    app.config["VERIFY_TIMEOUT_SECONDS"] = _env_number("VERIFY_TIMEOUT_SECONDS", 10)
    app.config["DNS_RESOLVERS"] = _env_list("DNS_RESOLVERS", DEFAULT_DNS_RESOLVERS)
    app.config["TOKEN_MAX_AGE_SECONDS"] = int(_env_number("TOKEN_MAX_AGE_SECONDS", 60 * 60 * 8))

    app.config.update(overrides)

    # ── Extensions ───────────────────────────────────────────────────
    init_extensions(app)
    Migrate(app, db)

    # ── Blueprints ───────────────────────────────────────────────────
    app.register_blueprint(domains_bp)
    app.register_blueprint(scans_bp)

    # ── Global Error Handlers ────────────────────────────────────────
    # Return clean JSON for all errors; never expose tracebacks to users.
    # Errors are logged server-side for debugging.

    @app.errorhandler(ServiceError)
    def service_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({
            "error": "Bad request",
            "message": str(e.description) if hasattr(e, "description") else "The request was malformed or invalid.",
        }), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({
            "error": "Unauthorized",
            "message": "Authentication is required. Send Authorization: Bearer <token>.",
        }), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({
            "error": "Forbidden",
            "message": "You do not have permission to access this resource.",
        }), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({
            "error": "Not found",
            "message": "The requested resource was not found.",
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "error": "Method not allowed",
            "message": "This HTTP method is not allowed for this endpoint.",
        }), 405

    @app.errorhandler(409)
    def conflict(e):
        return jsonify({
            "error": "Conflict",
            "message": str(e.description) if hasattr(e, "description") else "The request conflicts with an existing resource.",
        }), 409

    @app.errorhandler(500)
    def internal_error(e):
        error_logger.error(
            "500 Internal Server Error:\n%s", traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    @app.errorhandler(Exception)
    def catch_all(e):
        """Catch-all for any unhandled exception; never leak tracebacks."""
        error_logger.error(
            "Unhandled exception: %s\n%s", str(e), traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    # ─────────────────────────────────────────────────────────────────

    # Health check
    @app.get("/health")
    def health():
        return jsonify(status="up and running"), 200

    # ── Scan Engine ──────────────────────────────────────────────────
    executor = StepExecutor.from_config(app.config)
    queue = ScanQueue(executor, interval_seconds=app.config["SCAN_QUEUE_INTERVAL_SECONDS"])
    app.extensions["scan_queue"] = queue
    app.extensions["scan_orchestrator"] = ScanOrchestrator(executor=executor, queue=queue)

    # Gunicorn runs multiple workers; enable the queue on exactly one of
    # them (SCAN_QUEUE_ENABLED=true) or use --preload.
    if app.config["SCAN_QUEUE_ENABLED"]:
        queue.start(app)
    else:
        logging.getLogger(__name__).info(
            "Scan queue disabled (SCAN_QUEUE_ENABLED != true); steps run only via /scans/<id>/execute"
        )
    # ─────────────────────────────────────────────────────────────────

    return app
