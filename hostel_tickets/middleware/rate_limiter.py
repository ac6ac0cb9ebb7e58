"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.  The Limiter
instance lives in hostel_tickets/__init__.py with no default limits; this
module attaches limits to each API blueprint, keyed by the acting user
(``g.actor_id``) and by remote address for anonymous calls.

Usage:
    from hostel_tickets.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request

logger = logging.getLogger(__name__)

# blueprint name -> limit string
BLUEPRINT_LIMITS = {
    "tickets": "60/minute",
    # /process walks every active ticket
    "escalations": "10/minute",
    "mappings": "120/minute",
    "notifications": "30/minute",
}


def actor_rate_limit_key():
    actor_id = getattr(g, "actor_id", None)
    if actor_id:
        return f"user:{actor_id}"
    return f"ip:{request.remote_addr or 'unknown'}"


def init_rate_limits(app, limiter):
    """Attach ``BLUEPRINT_LIMITS`` and exempt the health checks."""
    if not app.config.get("RATELIMIT_ENABLED", True):
        logger.info("Rate limiting disabled")
        return

    applied = []
    for bp_name, limit in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(bp_name)
        if bp is not None:
            limiter.limit(limit, key_func=actor_rate_limit_key)(bp)
            applied.append(f"{bp_name}={limit}")

    health = app.blueprints.get("health")
    if health is not None:
        limiter.exempt(health)

    logger.info("Rate limits applied: %s", ", ".join(applied))
