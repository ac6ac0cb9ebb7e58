"""JSON error envelope shared by every endpoint.

    return api_error(E.NOT_FOUND, "Ticket not found")
    return api_error(E.NO_ELIGIBLE_STAFF, "Nobody to assign", details={"category": "HVAC"})

Body shape: ``{"error": <message>, "code": <E.*>, "details": {...}?}``.
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from hostel_tickets.core.exceptions import (
    AlreadyResolvedError,
    ConcurrentUpdateError,
    ConflictError,
    IllegalTransitionError,
    InvalidLevelError,
    NoEligibleStaffError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from hostel_tickets.models import db

logger = logging.getLogger(__name__)


class E:
    """Error codes; the HTTP status each one defaults to is in ``_DEFAULT_STATUS``."""

    # malformed request
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # well-formed but rejected by a business rule
    VALIDATION_RULE = "ERR_VALIDATION_RULE"
    INVALID_LEVEL = "ERR_INVALID_LEVEL"

    NOT_FOUND = "ERR_NOT_FOUND"
    FORBIDDEN = "ERR_FORBIDDEN"

    # ticket / mapping state
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONCURRENT_UPDATE = "ERR_CONCURRENT_UPDATE"
    ILLEGAL_TRANSITION = "ERR_ILLEGAL_TRANSITION"
    NO_ELIGIBLE_STAFF = "ERR_NO_ELIGIBLE_STAFF"
    ALREADY_RESOLVED = "ERR_ALREADY_RESOLVED"

    RATE_LIMITED = "ERR_RATE_LIMITED"
    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.INVALID_LEVEL: 422,
    E.NOT_FOUND: 404,
    E.FORBIDDEN: 403,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONCURRENT_UPDATE: 409,
    E.ILLEGAL_TRANSITION: 409,
    E.NO_ELIGIBLE_STAFF: 409,
    E.ALREADY_RESOLVED: 409,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}

# werkzeug status -> code, for aborts that reach a blueprint handler
_HTTP_CODES = {404: E.NOT_FOUND, 429: E.RATE_LIMITED, 500: E.INTERNAL}


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None):
    """``(response, status)`` for *code*; *status* overrides the default mapping."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)


def register_error_handlers(bp) -> None:
    """Translate domain exceptions raised under *bp* into the envelope."""

    @bp.errorhandler(NotFoundError)
    def _not_found(error):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _validation(error):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(InvalidLevelError)
    def _invalid_level(error):
        return api_error(E.INVALID_LEVEL, str(error), details={"level": error.level})

    @bp.errorhandler(NotAuthorizedError)
    def _forbidden(error):
        return api_error(E.FORBIDDEN, str(error) or "Not authorized")

    @bp.errorhandler(IllegalTransitionError)
    def _illegal_transition(error):
        return api_error(E.ILLEGAL_TRANSITION, str(error),
                         details={"from": error.from_status, "to": error.to_status})

    @bp.errorhandler(NoEligibleStaffError)
    def _no_staff(error):
        return api_error(E.NO_ELIGIBLE_STAFF, str(error),
                         details={"category": error.category, "hostel_block": error.hostel_block})

    @bp.errorhandler(AlreadyResolvedError)
    def _already_resolved(error):
        return api_error(E.ALREADY_RESOLVED, str(error))

    @bp.errorhandler(ConcurrentUpdateError)
    def _concurrent(error):
        return api_error(E.CONCURRENT_UPDATE, str(error))

    @bp.errorhandler(ConflictError)
    def _conflict(error):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(Exception)
    def _unexpected(error):
        if isinstance(error, HTTPException):
            return api_error(_HTTP_CODES.get(error.code, E.VALIDATION_INVALID),
                             error.description or error.name, status=error.code)
        db.session.rollback()
        logger.exception("Unhandled error in %s (endpoint=%s)", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
