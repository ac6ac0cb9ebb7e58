"""
Hostel Ticketing Platform
Ticket Service — intake and reads.

Tickets are created OPEN. Priority defaults to the category's default
priority; emergency flags are honoured as given. Status changes go through
``hostel_tickets.services.lifecycle``; assignment through the assignment engine.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from hostel_tickets.core.exceptions import NotFoundError, ValidationError
from hostel_tickets.models import db
from hostel_tickets.models.reference import CATEGORIES, PRIORITIES
from hostel_tickets.models.ticket import OPEN, TICKET_STATUSES, Ticket
from hostel_tickets.models.user import User

logger = logging.getLogger(__name__)


def generate_ticket_number() -> str:
    """Next sequential ticket number: TKT-00001, TKT-00002, ..."""
    max_id = db.session.execute(select(func.max(Ticket.id))).scalar() or 0
    return f"TKT-{max_id + 1:05d}"


def get_ticket(ticket_id: int) -> Ticket:
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError(resource="Ticket", resource_id=ticket_id)
    return ticket


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def _text(data: dict, field: str, errors: dict, *, max_len: int | None = None) -> str | None:
    """Stripped string value of *field*, or None when absent or blank."""
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        errors[field] = "must be a string"
        return None
    value = value.strip()
    if max_len is not None and len(value) > max_len:
        errors[field] = f"must be ≤ {max_len} characters"
    return value or None


def create_ticket(data: dict, created_by: User | None) -> Ticket:
    """Validate and persist a new OPEN ticket.

    Args:
        data: {title, description?, category?, custom_category?, priority?,
               hostel_block?, room_number?, is_emergency?}
        created_by: Requesting user.

    Raises:
        ValidationError: missing title, non-string text, unknown category or priority.
    """
    errors = {}
    title = _text(data, "title", errors, max_len=200)
    if not title and "title" not in errors:
        errors["title"] = "required"

    category = _text(data, "category", errors)
    if category is not None and category not in CATEGORIES:
        errors["category"] = f"must be one of: {sorted(CATEGORIES)}"

    custom_category = _text(data, "custom_category", errors, max_len=80)
    description = _text(data, "description", errors) or ""
    hostel_block = _text(data, "hostel_block", errors, max_len=50)
    room_number = _text(data, "room_number", errors, max_len=20)

    priority = _text(data, "priority", errors)
    if priority is None:
        priority = CATEGORIES[category].default_priority if category in CATEGORIES else "MEDIUM"
    elif priority not in PRIORITIES:
        errors["priority"] = f"must be one of: {PRIORITIES}"

    if errors:
        raise ValidationError("Invalid ticket", details=errors)

    ticket = Ticket(
        ticket_number=generate_ticket_number(),
        title=title,
        description=description,
        category=category,
        custom_category=custom_category,
        priority=priority,
        status=OPEN,
        hostel_block=hostel_block,
        room_number=room_number,
        is_emergency=bool(data.get("is_emergency", False)),
        created_by_id=created_by.id if created_by else None,
    )
    db.session.add(ticket)
    db.session.commit()
    logger.info(
        "Ticket created",
        extra={"ticket_id": ticket.id, "category": ticket.effective_category,
               "hostel_block": ticket.hostel_block, "event_type": "ticket_created"},
    )
    return ticket


def list_tickets(*, status: str | None = None, assigned_to_id: int | None = None,
                 hostel_block: str | None = None, escalated_only: bool = False) -> list[Ticket]:
    stmt = select(Ticket).order_by(Ticket.created_at.desc(), Ticket.id.desc())
    if status:
        if status not in TICKET_STATUSES:
            raise ValidationError(f"status must be one of: {TICKET_STATUSES}")
        stmt = stmt.where(Ticket.status == status)
    if assigned_to_id is not None:
        stmt = stmt.where(Ticket.assigned_to_id == assigned_to_id)
    if hostel_block:
        stmt = stmt.where(Ticket.hostel_block == hostel_block)
    if escalated_only:
        stmt = stmt.where(Ticket.is_escalated == True)  # noqa: E712
    return db.session.execute(stmt).scalars().all()
