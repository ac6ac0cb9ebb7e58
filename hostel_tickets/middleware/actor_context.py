"""
Actor Context Middleware — resolves the acting user for API requests.

Authentication happens upstream (gateway / SSO). The gateway forwards the
authenticated user's id in ``X-User-Id``; this middleware loads that user
and sets:

  g.actor     the User instance, or None when the header is absent
  g.actor_id  its id (also used as the rate-limit key)

Unknown or inactive ids are rejected with 401 so that downstream code never
sees a dangling actor.  Role checks for individual routes use
``@require_role``.

Chain order:
  actor_context.py  →  rate limiter  →  route handler
"""

import logging
from functools import wraps

from flask import g, request

from hostel_tickets.models import db
from hostel_tickets.models.user import User
from hostel_tickets.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-User-Id"

# Paths that never need an actor
ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_actor_context(app):
    """Register actor context middleware as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.actor = None
        g.actor_id = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        raw = request.headers.get(ACTOR_HEADER)
        if raw is None:
            return None
        if not raw.strip().isdigit():
            return api_error(E.VALIDATION_INVALID, f"{ACTOR_HEADER} must be an integer user id",
                             status=401)

        user = db.session.get(User, int(raw))
        if user is None or not user.is_active:
            logger.warning("Rejected request for unknown or inactive actor %s", raw,
                           extra={"actor_id": raw, "path": request.path})
            return api_error(E.FORBIDDEN, "Unknown or inactive user", status=401)

        g.actor = user
        g.actor_id = user.id
        return None

    logger.info("Actor context middleware installed")


def current_actor() -> User | None:
    return getattr(g, "actor", None)


def require_role(*roles):
    """Route decorator: 401 without an actor, 403 when the actor's role is not in *roles*."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            actor = current_actor()
            if actor is None:
                return api_error(E.FORBIDDEN, f"{ACTOR_HEADER} header is required", status=401)
            if actor.role not in roles:
                return api_error(E.FORBIDDEN, f"Requires role: {', '.join(roles)}")
            return fn(*args, **kwargs)
        return wrapper
    return decorator
