"""
Hostel Ticketing Platform
Ticket domain models.

Models:
    - Ticket: a reported facilities issue and its lifecycle state
    - TicketStatusChange: append-only history of status moves

The lifecycle table and gating predicates live here next to the model,
alongside ``validate_ticket_transition``; the guard that applies them is
``hostel_tickets.services.lifecycle``.
"""

from datetime import datetime, timezone

from hostel_tickets.models import db
from hostel_tickets.models.reference import EMERGENCY_CATEGORIES, GENERAL_CATEGORY


# ── Statuses ─────────────────────────────────────────────────────────────────

OPEN = "OPEN"
ASSIGNED = "ASSIGNED"
IN_PROGRESS = "IN_PROGRESS"
ON_HOLD = "ON_HOLD"
RESOLVED = "RESOLVED"
CLOSED = "CLOSED"
CANCELLED = "CANCELLED"
REOPENED = "REOPENED"

TICKET_STATUSES = [OPEN, ASSIGNED, IN_PROGRESS, ON_HOLD, RESOLVED, CLOSED, CANCELLED, REOPENED]


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

TICKET_TRANSITIONS = {
    OPEN:        [ASSIGNED, CANCELLED],
    ASSIGNED:    [IN_PROGRESS, ON_HOLD, CANCELLED],
    IN_PROGRESS: [ON_HOLD, RESOLVED, CANCELLED],
    ON_HOLD:     [IN_PROGRESS, RESOLVED, CANCELLED],
    RESOLVED:    [CLOSED, REOPENED],
    CLOSED:      [REOPENED],
    CANCELLED:   [OPEN],
    REOPENED:    [ASSIGNED, IN_PROGRESS, CANCELLED],
}

# Statuses in which a ticket may carry an assignee.
ASSIGNEE_STATUSES = {ASSIGNED, IN_PROGRESS, ON_HOLD, RESOLVED}

# Statuses counted towards a staff member's workload.
WORKLOAD_STATUSES = {ASSIGNED, IN_PROGRESS, ON_HOLD}

ASSIGNABLE_STATUSES = {OPEN, REOPENED}
LOCKED_STATUSES = {CLOSED, CANCELLED}
ESCALATION_INACTIVE_STATUSES = {CLOSED, CANCELLED, RESOLVED}

# Transitions a requester may drive on their own ticket.
REQUESTER_TARGETS = {CANCELLED, CLOSED, REOPENED}


def validate_ticket_transition(old_status, new_status):
    """Return True if Ticket status transition is valid."""
    return new_status in TICKET_TRANSITIONS.get(old_status, [])


def allows_assignment(status):
    return status in ASSIGNABLE_STATUSES


def allows_status_change(status):
    return status not in LOCKED_STATUSES


allows_comments = allows_status_change
allows_attachments = allows_status_change


def requires_user_confirmation(status):
    return status == RESOLVED


def is_active_for_escalation(status):
    return status not in ESCALATION_INACTIVE_STATUSES


class Ticket(db.Model):
    """
    A facilities issue raised by a student (or staff on their behalf).

    ``version`` backs compare-and-set updates: every assignment and status
    change is a conditional UPDATE on (id, status, version).
    """

    __tablename__ = "tickets"
    __table_args__ = (
        db.Index("ix_ticket_status_assignee", "status", "assigned_to_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(20), unique=True, nullable=False,
                              comment="Human readable: TKT-00001")
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")

    category = db.Column(db.String(40), nullable=True,
                         comment="Key into CATEGORIES; null when only custom_category is set")
    custom_category = db.Column(db.String(80), nullable=True,
                                comment="Free text; takes precedence for routing when non-blank")
    priority = db.Column(db.String(20), nullable=False, default="MEDIUM",
                         comment="LOW | MEDIUM | HIGH | EMERGENCY")
    status = db.Column(db.String(20), nullable=False, default=OPEN, index=True)
    hostel_block = db.Column(db.String(50), nullable=True)
    room_number = db.Column(db.String(20), nullable=True)
    is_emergency = db.Column(db.Boolean, nullable=False, default=False)

    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_progress_at = db.Column(db.DateTime(timezone=True), nullable=True,
                                 comment="Stamped on every status change")
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reopen_count = db.Column(db.Integer, nullable=False, default=0)

    # Urgency flag; escalation records are the source of truth for level
    is_escalated = db.Column(db.Boolean, nullable=False, default=False)
    current_escalation_level = db.Column(db.Integer, nullable=False, default=0)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    created_by = db.relationship("User", foreign_keys=[created_by_id])
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])

    @property
    def effective_category(self) -> str:
        """Routing category: non-blank custom category, else category, else GENERAL."""
        if self.custom_category and self.custom_category.strip():
            return self.custom_category.strip()
        return self.category or GENERAL_CATEGORY

    @property
    def is_emergency_ticket(self) -> bool:
        return bool(
            self.is_emergency
            or self.priority == "EMERGENCY"
            or self.category in EMERGENCY_CATEGORIES
        )

    def to_dict(self):
        return {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "custom_category": self.custom_category,
            "effective_category": self.effective_category,
            "priority": self.priority,
            "status": self.status,
            "hostel_block": self.hostel_block,
            "room_number": self.room_number,
            "is_emergency": self.is_emergency,
            "created_by_id": self.created_by_id,
            "assigned_to_id": self.assigned_to_id,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "last_progress_at": self.last_progress_at.isoformat() if self.last_progress_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by_id": self.resolved_by_id,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "reopen_count": self.reopen_count,
            "is_escalated": self.is_escalated,
            "current_escalation_level": self.current_escalation_level,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Ticket {self.ticket_number} [{self.status}]>"


class TicketStatusChange(db.Model):
    """Append-only audit row written for every successful status move."""

    __tablename__ = "ticket_status_changes"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(
        db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    from_status = db.Column(db.String(20), nullable=False)
    to_status = db.Column(db.String(20), nullable=False)
    actor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Null when driven by the system (auto-assignment)",
    )
    note = db.Column(db.Text, default="")
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "note": self.note,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }

    def __repr__(self):
        return f"<TicketStatusChange {self.ticket_id}: {self.from_status} → {self.to_status}>"
