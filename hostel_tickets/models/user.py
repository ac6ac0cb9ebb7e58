"""
Hostel Ticketing Platform
Staff directory model.

Models:
    - User: students, staff and admins; staff carry a vertical that
      drives capacity ceilings and escalation routing
"""

from datetime import datetime, timezone

from hostel_tickets.models import db
from hostel_tickets.models.reference import ROLE_ADMIN, ROLE_STAFF, STAFF_ROLES


class User(db.Model):
    """Directory entry for anyone who can raise or work a ticket."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(150), nullable=False, default="")
    role = db.Column(db.String(20), nullable=False, default="STUDENT",
                     comment="STUDENT | STAFF | ADMIN")
    staff_vertical = db.Column(db.String(40), nullable=True, index=True,
                               comment="Key into STAFF_VERTICALS; null for students")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    @property
    def is_staff(self) -> bool:
        return self.role == ROLE_STAFF

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def can_manage_tickets(self) -> bool:
        return self.role in STAFF_ROLES

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "staff_vertical": self.staff_vertical,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} [{self.role}]>"
