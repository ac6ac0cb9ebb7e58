"""
Ticket blueprint — intake, assignment and lifecycle transitions.

Endpoint groups:
  Intake                POST /api/v1/tickets
  Reads                 GET  /api/v1/tickets, /api/v1/tickets/<id>
  Assignment            POST /api/v1/tickets/<id>/assign
                        GET  /api/v1/tickets/<id>/assignment-preview
                        POST /api/v1/tickets/<id>/admin-assign
  Lifecycle             POST /api/v1/tickets/<id>/transition
  Escalation status     GET  /api/v1/tickets/<id>/escalation-status
  Staff workload        GET  /api/v1/staff/<id>/workload

The acting user comes from the actor-context middleware (``g.actor``).
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import hostel_tickets.services.assignment as assignment
import hostel_tickets.services.escalation as escalation
import hostel_tickets.services.lifecycle as lifecycle
import hostel_tickets.services.ticket_service as tickets
from hostel_tickets.middleware.actor_context import current_actor, require_role
from hostel_tickets.models.reference import ROLE_ADMIN, ROLE_STAFF, ROLE_STUDENT
from hostel_tickets.models.ticket import TICKET_STATUSES
from hostel_tickets.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

ticket_bp = Blueprint("tickets", __name__, url_prefix="/api/v1")
register_error_handlers(ticket_bp)

_ANY_ROLE = (ROLE_STUDENT, ROLE_STAFF, ROLE_ADMIN)


def _ticket_payload(ticket) -> dict:
    body = ticket.to_dict()
    body["allowed_transitions"] = lifecycle.allowed_targets(ticket.status)
    return body


# ═════════════════════════════════════════════════════════════════════════
# Intake & reads
# ═════════════════════════════════════════════════════════════════════════


@ticket_bp.route("/tickets", methods=["POST"])
@require_role(*_ANY_ROLE)
def create_ticket():
    """Raise a new ticket.

    Body: {title, description?, category?, custom_category?, priority?,
           hostel_block?, room_number?, is_emergency?}
    Returns: ticket dict (201).
    """
    data = request.get_json(silent=True) or {}
    ticket = tickets.create_ticket(data, current_actor())
    return jsonify(_ticket_payload(ticket)), 201


@ticket_bp.route("/tickets", methods=["GET"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def list_tickets():
    """Query params: status?, assigned_to_id?, hostel_block?, escalated?"""
    status = request.args.get("status")
    if status and status not in TICKET_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of: {TICKET_STATUSES}")
    rows = tickets.list_tickets(
        status=status,
        assigned_to_id=request.args.get("assigned_to_id", type=int),
        hostel_block=request.args.get("hostel_block"),
        escalated_only=request.args.get("escalated", "").lower() in ("1", "true"),
    )
    return jsonify({"items": [t.to_dict() for t in rows], "total": len(rows)}), 200


@ticket_bp.route("/tickets/<int:ticket_id>", methods=["GET"])
@require_role(*_ANY_ROLE)
def get_ticket(ticket_id):
    ticket = tickets.get_ticket(ticket_id)
    actor = current_actor()
    if actor.role == ROLE_STUDENT and ticket.created_by_id != actor.id:
        return api_error(E.NOT_FOUND, f"Ticket id={ticket_id} not found")
    body = _ticket_payload(ticket)
    body["history"] = lifecycle.status_history(ticket.id)
    return jsonify(body), 200


# ═════════════════════════════════════════════════════════════════════════
# Assignment
# ═════════════════════════════════════════════════════════════════════════


@ticket_bp.route("/tickets/<int:ticket_id>/assign", methods=["POST"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def assign_ticket(ticket_id):
    """Auto-assign using the mapping table. 409 when nobody is eligible."""
    ticket = assignment.assign_ticket(ticket_id, current_actor())
    return jsonify(_ticket_payload(ticket)), 200


@ticket_bp.route("/tickets/<int:ticket_id>/assignment-preview", methods=["GET"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def assignment_preview(ticket_id):
    return jsonify(assignment.preview_assignment(ticket_id)), 200


@ticket_bp.route("/tickets/<int:ticket_id>/admin-assign", methods=["POST"])
@require_role(ROLE_ADMIN)
def admin_assign(ticket_id):
    """Body: {staff_id}"""
    data = request.get_json(silent=True) or {}
    staff_id = data.get("staff_id")
    if not isinstance(staff_id, int) or isinstance(staff_id, bool):
        return api_error(E.VALIDATION_REQUIRED, "staff_id is required")
    ticket = assignment.admin_assign(ticket_id, staff_id, current_actor())
    return jsonify(_ticket_payload(ticket)), 200


# ═════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════


@ticket_bp.route("/tickets/<int:ticket_id>/transition", methods=["POST"])
@require_role(*_ANY_ROLE)
def transition_ticket(ticket_id):
    """Body: {status, note?, assignee_id?}

    Returns 200 with the ticket, 409 on an illegal move or lost race,
    403 when the actor may not drive the move.
    """
    data = request.get_json(silent=True) or {}
    to_status = data.get("status")
    if not to_status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    if to_status not in TICKET_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of: {TICKET_STATUSES}")

    ticket = tickets.get_ticket(ticket_id)
    lifecycle.transition(
        ticket, to_status, current_actor(),
        assignee_id=data.get("assignee_id"),
        note=data.get("note", ""),
    )
    return jsonify(_ticket_payload(ticket)), 200


@ticket_bp.route("/tickets/<int:ticket_id>/escalation-status", methods=["GET"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def escalation_status(ticket_id):
    ticket = tickets.get_ticket(ticket_id)
    decision = escalation.evaluate_ticket(ticket)
    return jsonify({
        "ticket_id": decision.ticket_id,
        "decision": decision.decision,
        "current_level": decision.current_level,
        "next_level": decision.next_level,
        "threshold_hours": decision.threshold_hours,
        "elapsed_hours": decision.elapsed_hours,
    }), 200


@ticket_bp.route("/staff/<int:staff_id>/workload", methods=["GET"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def staff_workload(staff_id):
    return jsonify(assignment.staff_workload(staff_id)), 200
