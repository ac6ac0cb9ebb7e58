"""
Hostel Ticketing Platform
Flask Application Factory.

Usage:
    from hostel_tickets import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import importlib
import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine, event as _sa_event

from hostel_tickets.config import config
from hostel_tickets.middleware.actor_context import init_actor_context
from hostel_tickets.middleware.logging_config import configure_logging
from hostel_tickets.middleware.rate_limiter import init_rate_limits
from hostel_tickets.models import db
from hostel_tickets.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Imported for their side effect of registering tables on ``db.metadata``.
_MODEL_MODULES = (
    "hostel_tickets.models.user",
    "hostel_tickets.models.mapping",
    "hostel_tickets.models.ticket",
    "hostel_tickets.models.escalation",
    "hostel_tickets.models.notification",
    "hostel_tickets.models.scheduling",
)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
# Storage comes from RATELIMIT_STORAGE_URI, set from REDIS_URL in create_app.
limiter = Limiter(key_func=get_remote_address, default_limits=[])


def create_app(config_name=None):
    """
    Build the ticketing API.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, then "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    app.config.setdefault("RATELIMIT_STORAGE_URI", app.config["REDIS_URL"])
    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)
    os.makedirs(app.instance_path, exist_ok=True)

    configure_logging(app)
    # hook order matters: the rate-limit key reads g.actor_id
    init_actor_context(app)
    _init_extensions(app)
    _register_request_guards(app)

    for module in _MODEL_MODULES:
        importlib.import_module(module)
    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            app.logger.warning("db.create_all() failed, run `flask db upgrade`: %s", exc)

    from hostel_tickets.blueprints import ALL_BLUEPRINTS

    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)
    _register_error_handlers(app)

    # limits are attached per blueprint, so after registration
    init_rate_limits(app, limiter)

    importlib.import_module("hostel_tickets.services.scheduled_jobs")
    from hostel_tickets.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)

    logger.info("Hostel ticketing API ready (env=%s, blueprints=%d)",
                config_name, len(ALL_BLUEPRINTS))
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, resources={r"/api/*": {
            "origins": [o.strip() for o in origins.split(",") if o.strip()],
        }})
    else:
        CORS(app, resources={r"/api/*": {"origins": "*"}})


def _register_request_guards(app):
    @app.before_request
    def _require_json_body():
        if request.method not in ("POST", "PUT", "PATCH") or not request.path.startswith("/api/"):
            return None
        if request.data and "json" not in (request.content_type or ""):
            abort(415, description="Content-Type must be application/json")
        return None


def _register_error_handlers(app):
    """JSON bodies for errors raised outside the blueprints' own handlers."""

    @app.errorhandler(404)
    def _not_found(e):
        return api_error(E.NOT_FOUND, f"No route for {request.path}")

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, f"{request.method} not allowed here", status=405)

    @app.errorhandler(415)
    def _unsupported_media(e):
        return api_error(E.VALIDATION_INVALID, e.description, status=415)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.RATE_LIMITED, f"Too many requests: {e.description}", status=429)

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
