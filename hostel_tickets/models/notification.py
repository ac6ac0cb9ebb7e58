"""
Hostel Ticketing Platform
In-app notifications raised by assignment and escalation.

Models:
    - Notification: one row per recipient per event, linked to the ticket
      (and escalation) that caused it
"""

from datetime import datetime, timezone

from hostel_tickets.models import db

KIND_ASSIGNMENT = "assignment"
KIND_ESCALATION = "escalation"
KIND_STATUS = "status"
NOTIFICATION_KINDS = {KIND_ASSIGNMENT, KIND_ESCALATION, KIND_STATUS}

# info: routine, warning: emergency assignment or escalation,
# error: critical escalation level
NOTIFICATION_SEVERITIES = ("info", "warning", "error")


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_inbox", "recipient_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    ticket_id = db.Column(
        db.Integer, db.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    escalation_id = db.Column(
        db.Integer, db.ForeignKey("ticket_escalations.id", ondelete="SET NULL"), nullable=True,
    )
    kind = db.Column(db.String(20), nullable=False, default=KIND_STATUS,
                     comment="assignment, escalation, status")
    severity = db.Column(db.String(10), nullable=False, default="info")
    title = db.Column(db.String(300), nullable=False)
    body = db.Column(db.Text, nullable=False, default="")

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def mark_read(self, now=None):
        if not self.is_read:
            self.is_read = True
            self.read_at = now or datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "ticket_id": self.ticket_id,
            "escalation_id": self.escalation_id,
            "kind": self.kind,
            "severity": self.severity,
            "title": self.title,
            "body": self.body,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id} {self.kind} → user {self.recipient_id}>"
