"""
Admin mapping blueprint — staff routing rules.

Endpoints (ADMIN only):
  GET    /api/v1/admin/mappings               list (staff_id?, category?, hostel_block?, include_inactive?)
  POST   /api/v1/admin/mappings               create
  POST   /api/v1/admin/mappings/bulk          create many, all-or-nothing
  GET    /api/v1/admin/mappings/<id>
  PUT    /api/v1/admin/mappings/<id>          partial update
  DELETE /api/v1/admin/mappings/<id>          deactivate (soft delete)
  GET    /api/v1/admin/mappings/validate      routing gap report
  GET    /api/v1/admin/mappings/analytics
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import hostel_tickets.services.mapping_service as mappings
from hostel_tickets.middleware.actor_context import require_role
from hostel_tickets.models.reference import ROLE_ADMIN
from hostel_tickets.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

mapping_bp = Blueprint("mappings", __name__, url_prefix="/api/v1/admin/mappings")
register_error_handlers(mapping_bp)


@mapping_bp.route("", methods=["GET"])
@require_role(ROLE_ADMIN)
def list_mappings():
    rows = mappings.list_mappings(
        staff_id=request.args.get("staff_id", type=int),
        category=request.args.get("category"),
        hostel_block=request.args.get("hostel_block"),
        include_inactive=request.args.get("include_inactive", "").lower() in ("1", "true"),
    )
    return jsonify({"items": [m.to_dict() for m in rows], "total": len(rows)}), 200


@mapping_bp.route("", methods=["POST"])
@require_role(ROLE_ADMIN)
def create_mapping():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    mapping = mappings.create_mapping(data)
    return jsonify(mapping.to_dict()), 201


@mapping_bp.route("/bulk", methods=["POST"])
@require_role(ROLE_ADMIN)
def create_bulk():
    """Body: {mappings: [...]}"""
    data = request.get_json(silent=True) or {}
    created = mappings.create_mappings_bulk(data.get("mappings"))
    return jsonify({"items": [m.to_dict() for m in created], "total": len(created)}), 201


@mapping_bp.route("/validate", methods=["GET"])
@require_role(ROLE_ADMIN)
def validate():
    return jsonify(mappings.validate_mappings()), 200


@mapping_bp.route("/analytics", methods=["GET"])
@require_role(ROLE_ADMIN)
def analytics():
    return jsonify(mappings.mapping_analytics()), 200


@mapping_bp.route("/<int:mapping_id>", methods=["GET"])
@require_role(ROLE_ADMIN)
def get_mapping(mapping_id):
    return jsonify(mappings.get_mapping(mapping_id).to_dict()), 200


@mapping_bp.route("/<int:mapping_id>", methods=["PUT"])
@require_role(ROLE_ADMIN)
def update_mapping(mapping_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return api_error(E.VALIDATION_REQUIRED, "JSON body with fields to update is required")
    return jsonify(mappings.update_mapping(mapping_id, data).to_dict()), 200


@mapping_bp.route("/<int:mapping_id>", methods=["DELETE"])
@require_role(ROLE_ADMIN)
def deactivate_mapping(mapping_id):
    return jsonify(mappings.deactivate_mapping(mapping_id).to_dict()), 200
