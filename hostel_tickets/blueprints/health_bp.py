"""
Health checks for the load balancer and on-call.  No actor header required.

    GET /api/v1/health         process is up
    GET /api/v1/health/live    database, mapping cache and scheduler state
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from hostel_tickets.models import db
from hostel_tickets.services import cache_service

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Database check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _scheduler_check() -> dict:
    scheduler = current_app.extensions.get("scheduler")
    thread = getattr(scheduler, "_thread", None)
    return {
        "enabled": bool(current_app.config.get("SCHEDULER_ENABLED")),
        "running": bool(thread and thread.is_alive()),
    }


@health_bp.route("", methods=["GET"])
def ready():
    return jsonify({"status": "ok", "service": "hostel-tickets"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _database_check(),
        "cache": cache_service.health_check(),
        "scheduler": _scheduler_check(),
    }
    # the cache degrades to in-process storage, so only the database gates the status
    healthy = checks["database"]["status"] == "ok"
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), (
        200 if healthy else 503
    )
