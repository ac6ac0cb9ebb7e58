"""
Escalation blueprint — ladder scan, manual escalation, resolution, reporting.

Endpoints:
  GET  /api/v1/escalations                  list (ticket_id?, active?, escalated_to_id?)
  POST /api/v1/escalations/scan             eligible actions, no writes
  POST /api/v1/escalations/process          scan + apply
  POST /api/v1/escalations/manual           manual escalation
  POST /api/v1/escalations/<id>/resolve     resolve one escalation
  GET  /api/v1/escalations/statistics
  GET  /api/v1/escalations/overdue
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import hostel_tickets.services.escalation as escalation
from hostel_tickets.middleware.actor_context import current_actor, require_role
from hostel_tickets.models.reference import ROLE_ADMIN, ROLE_STAFF
from hostel_tickets.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

escalation_bp = Blueprint("escalations", __name__, url_prefix="/api/v1/escalations")
register_error_handlers(escalation_bp)


@escalation_bp.route("", methods=["GET"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def list_escalations():
    items = escalation.list_escalations(
        ticket_id=request.args.get("ticket_id", type=int),
        active_only=request.args.get("active", "").lower() in ("1", "true"),
        escalated_to_id=request.args.get("escalated_to_id", type=int),
    )
    return jsonify({"items": items, "total": len(items)}), 200


@escalation_bp.route("/scan", methods=["POST"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def scan():
    actions = escalation.scan_for_eligible_tickets()
    return jsonify({"actions": [a.to_dict() for a in actions], "total": len(actions)}), 200


@escalation_bp.route("/process", methods=["POST"])
@require_role(ROLE_ADMIN)
def process():
    return jsonify(escalation.run_escalation_cycle()), 200


@escalation_bp.route("/manual", methods=["POST"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def manual_escalate():
    """Body: {ticket_id, level, reason, target_staff_id?}"""
    data = request.get_json(silent=True) or {}
    ticket_id = data.get("ticket_id")
    if not isinstance(ticket_id, int) or isinstance(ticket_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "ticket_id is required")
    esc = escalation.manual_escalate(
        ticket_id,
        data.get("level"),
        data.get("target_staff_id"),
        data.get("reason", ""),
        current_actor(),
    )
    return jsonify(esc.to_dict()), 201


@escalation_bp.route("/<int:escalation_id>/resolve", methods=["POST"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def resolve(escalation_id):
    esc = escalation.resolve(escalation_id, current_actor())
    return jsonify(esc.to_dict()), 200


@escalation_bp.route("/statistics", methods=["GET"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def statistics():
    return jsonify(escalation.escalation_statistics()), 200


@escalation_bp.route("/overdue", methods=["GET"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def overdue():
    items = escalation.overdue_escalations()
    return jsonify({"items": items, "total": len(items)}), 200
