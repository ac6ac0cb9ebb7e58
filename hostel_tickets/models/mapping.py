"""
Hostel Ticketing Platform
Staff routing mappings.

A mapping says "this staff member handles this category, in this block
(or every block when hostel_block is null), with this preference order,
capacity weight and expertise". Rows are soft-deleted via is_active and
never hard-deleted, so routing history stays auditable.
"""

from datetime import datetime, timezone
from decimal import Decimal

from hostel_tickets.models import db


class StaffMapping(db.Model):
    """Routing rule consumed read-only by the assignment engine."""

    __tablename__ = "staff_mappings"
    __table_args__ = (
        db.Index("ix_mapping_lookup", "category", "hostel_block", "is_active"),
        db.CheckConstraint("priority_level >= 1", name="ck_mapping_priority_level"),
        db.CheckConstraint("expertise_level BETWEEN 1 AND 5", name="ck_mapping_expertise"),
        db.CheckConstraint("capacity_weight > 0", name="ck_mapping_capacity_weight"),
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    hostel_block = db.Column(db.String(50), nullable=True,
                             comment="Null = applies to every block")
    category = db.Column(db.String(80), nullable=False,
                         comment="Category code or free-text custom category")
    priority_level = db.Column(db.Integer, nullable=False, default=1,
                               comment="1 = most preferred")
    capacity_weight = db.Column(db.Numeric(3, 2), nullable=False, default=Decimal("1.00"),
                                comment="Divides the active-ticket count when ranking")
    expertise_level = db.Column(db.Integer, nullable=False, default=3,
                                comment="1 (novice) .. 5 (expert)")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    staff = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "staff_name": self.staff.full_name if self.staff else None,
            "hostel_block": self.hostel_block,
            "category": self.category,
            "priority_level": self.priority_level,
            "capacity_weight": float(self.capacity_weight) if self.capacity_weight is not None else None,
            "expertise_level": self.expertise_level,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (f"<StaffMapping {self.id}: staff={self.staff_id} "
                f"{self.category}@{self.hostel_block or '*'}>")


# One active mapping per (staff, category, block); NULL block compares equal.
db.Index(
    "uq_mapping_active_triple",
    StaffMapping.staff_id,
    StaffMapping.category,
    db.func.coalesce(StaffMapping.hostel_block, db.literal_column("''")),
    unique=True,
    sqlite_where=StaffMapping.is_active.is_(True),
    postgresql_where=StaffMapping.is_active.is_(True),
)
