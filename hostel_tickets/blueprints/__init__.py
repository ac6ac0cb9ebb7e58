"""
Hostel Ticketing Platform
Blueprint registry.
"""

from hostel_tickets.blueprints.escalation_bp import escalation_bp
from hostel_tickets.blueprints.health_bp import health_bp
from hostel_tickets.blueprints.mapping_bp import mapping_bp
from hostel_tickets.blueprints.notification_bp import notification_bp
from hostel_tickets.blueprints.ticket_bp import ticket_bp

ALL_BLUEPRINTS = (
    health_bp,
    ticket_bp,
    escalation_bp,
    mapping_bp,
    notification_bp,
)
