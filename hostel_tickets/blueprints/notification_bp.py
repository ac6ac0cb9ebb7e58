"""
Notification & scheduler blueprint.

Endpoints:
  GET  /api/v1/notifications                    actor's notifications (unread_only?, limit?, offset?)
  POST /api/v1/notifications/<id>/read
  POST /api/v1/notifications/read-all
  GET  /api/v1/scheduler/jobs                   ADMIN
  POST /api/v1/scheduler/jobs/<name>/run        ADMIN, manual trigger
  POST /api/v1/scheduler/jobs/<name>/toggle     ADMIN, body {enabled}
"""

import logging

from flask import Blueprint, jsonify, request

from hostel_tickets.middleware.actor_context import current_actor, require_role
from hostel_tickets.models.reference import ROLE_ADMIN, ROLE_STAFF, ROLE_STUDENT
from hostel_tickets.services.notification import NotificationService
from hostel_tickets.services.scheduler_service import SchedulerService
from hostel_tickets.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


# ── Notifications ────────────────────────────────────────────────────────


@notification_bp.route("/notifications", methods=["GET"])
@require_role(ROLE_STUDENT, ROLE_STAFF, ROLE_ADMIN)
def list_notifications():
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = request.args.get("offset", 0, type=int)
    items, total = NotificationService.inbox(
        current_actor().id,
        unread_only=request.args.get("unread_only", "").lower() in ("1", "true"),
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@require_role(ROLE_STUDENT, ROLE_STAFF, ROLE_ADMIN)
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, current_actor().id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
@require_role(ROLE_STUDENT, ROLE_STAFF, ROLE_ADMIN)
def mark_all_read():
    count = NotificationService.mark_all_read(current_actor().id)
    return jsonify({"marked_read": count}), 200


# ── Scheduler ────────────────────────────────────────────────────────────


@notification_bp.route("/scheduler/jobs", methods=["GET"])
@require_role(ROLE_ADMIN)
def list_jobs():
    SchedulerService.ensure_jobs_registered()
    return jsonify({"jobs": SchedulerService.list_jobs()}), 200


@notification_bp.route("/scheduler/jobs/<job_name>/run", methods=["POST"])
@require_role(ROLE_ADMIN)
def run_job(job_name):
    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.run_job(job_name)
    if result["status"] == "error":
        return api_error(E.NOT_FOUND, result["error"])
    return jsonify(result), 200


@notification_bp.route("/scheduler/jobs/<job_name>/toggle", methods=["POST"])
@require_role(ROLE_ADMIN)
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    if "enabled" not in data:
        return api_error(E.VALIDATION_REQUIRED, "enabled is required")
    SchedulerService.ensure_jobs_registered()
    job = SchedulerService.toggle_job(job_name, bool(data["enabled"]))
    if job is None:
        return api_error(E.NOT_FOUND, f"Job {job_name} not found")
    return jsonify(job), 200
