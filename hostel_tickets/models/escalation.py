"""
Hostel Ticketing Platform
Escalation ladder records.

One row per rung climbed. A newer escalation supersedes the previous one
(``superseded_by_id``) rather than resolving it; only an explicit resolve
by the escalated-to user or an admin sets ``resolved_at``.
"""

from datetime import datetime, timezone

from hostel_tickets.models import db
from hostel_tickets.models.reference import ESCALATION_LEVELS


class TicketEscalation(db.Model):
    """Escalation of a ticket to one level of the ladder.

    Levels created for a ticket never decrease and never exceed 5; at most
    one row per ticket is active (unresolved and not superseded).
    """

    __tablename__ = "ticket_escalations"
    __table_args__ = (
        db.UniqueConstraint("ticket_id", "level", name="uq_escalation_ticket_level"),
        db.CheckConstraint("level BETWEEN 1 AND 5", name="ck_escalation_level"),
        db.Index("ix_escalation_active", "ticket_id", "resolved_at", "superseded_by_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(
        db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    level = db.Column(db.Integer, nullable=False,
                      comment="1 STAFF_MEMBER .. 5 INSTITUTE_ADMINISTRATION")
    escalated_from_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Assignee at escalation time; null for unassigned tickets",
    )
    escalated_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True,
    )
    escalated_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Operator for manual escalations; null for automatic",
    )
    reason = db.Column(db.Text, nullable=False, default="")
    is_auto = db.Column(db.Boolean, nullable=False, default=True)

    escalated_at = db.Column(db.DateTime(timezone=True), nullable=False,
                             default=lambda: datetime.now(timezone.utc))
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    superseded_by_id = db.Column(
        db.Integer, db.ForeignKey("ticket_escalations.id", ondelete="SET NULL"), nullable=True,
    )

    ticket = db.relationship("Ticket", backref=db.backref("escalations", lazy="dynamic"))
    escalated_to = db.relationship("User", foreign_keys=[escalated_to_id])

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None and self.superseded_by_id is None

    @property
    def level_name(self) -> str:
        info = ESCALATION_LEVELS.get(self.level)
        return info.name if info else str(self.level)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "level": self.level,
            "level_name": self.level_name,
            "escalated_from_id": self.escalated_from_id,
            "escalated_to_id": self.escalated_to_id,
            "escalated_by_id": self.escalated_by_id,
            "reason": self.reason,
            "is_auto": self.is_auto,
            "is_active": self.is_active,
            "escalated_at": self.escalated_at.isoformat() if self.escalated_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by_id": self.resolved_by_id,
            "superseded_by_id": self.superseded_by_id,
        }

    def __repr__(self):
        return f"<TicketEscalation {self.id}: ticket={self.ticket_id} L{self.level}>"
