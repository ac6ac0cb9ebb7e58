"""
Hostel Ticketing Platform
Ticket Lifecycle Guard.

Single place where a ticket's status changes. Every move:
  - is checked against TICKET_TRANSITIONS (illegal moves leave the row untouched)
  - is checked against the acting user (staff/admin drive any legal move;
    the requester may only cancel, confirm-close or reopen their own ticket)
  - is applied as a compare-and-set UPDATE on (id, status, version) so two
    concurrent writers cannot both succeed
  - stamps last_progress_at and writes a TicketStatusChange row

Escalation records are a separate track: resolving or closing a ticket only
clears the ``is_escalated`` urgency flag, it never resolves escalations.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update

from hostel_tickets.core.exceptions import (
    ConcurrentUpdateError,
    IllegalTransitionError,
    NotAuthorizedError,
    ValidationError,
)
from hostel_tickets.models import db
from hostel_tickets.models.ticket import (
    ASSIGNED,
    ASSIGNEE_STATUSES,
    CLOSED,
    REOPENED,
    REQUESTER_TARGETS,
    RESOLVED,
    TICKET_TRANSITIONS,
    Ticket,
    TicketStatusChange,
    validate_ticket_transition,
)
from hostel_tickets.models.user import User

logger = logging.getLogger(__name__)


def _as_utc(dt: datetime) -> datetime:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes; PostgreSQL returns tz-aware.
    All comparisons against datetime.now(timezone.utc) must go through this helper
    so the same code works in both environments.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def can_transition(from_status: str, to_status: str) -> bool:
    return validate_ticket_transition(from_status, to_status)


def allowed_targets(status: str) -> list[str]:
    return list(TICKET_TRANSITIONS.get(status, []))


def check_actor(ticket: Ticket, to_status: str, actor: User | None) -> None:
    """Raise NotAuthorizedError unless *actor* may move *ticket* to *to_status*.

    ``actor=None`` means the system itself (auto-assignment) and is always allowed.
    """
    if actor is None:
        return
    if not actor.is_active:
        raise NotAuthorizedError(f"User id={actor.id} is inactive")
    if actor.can_manage_tickets:
        return
    if actor.id == ticket.created_by_id and to_status in REQUESTER_TARGETS:
        return
    raise NotAuthorizedError(
        f"User id={actor.id} may not move ticket {ticket.ticket_number} to {to_status}"
    )


# ═════════════════════════════════════════════════════════════════════════════
# Compare-and-set
# ═════════════════════════════════════════════════════════════════════════════


def compare_and_set(ticket: Ticket, expected_status: str, values: dict) -> Ticket:
    """Apply *values* only if the row still has *expected_status* and our version.

    Raises:
        ConcurrentUpdateError: another writer changed the ticket first.
    """
    stmt = (
        update(Ticket)
        .where(
            Ticket.id == ticket.id,
            Ticket.status == expected_status,
            Ticket.version == ticket.version,
        )
        .values(version=Ticket.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        db.session.rollback()
        logger.warning(
            "Compare-and-set lost race",
            extra={"ticket_id": ticket.id, "from_status": expected_status},
        )
        raise ConcurrentUpdateError("Ticket", ticket.id, expected_status)
    db.session.refresh(ticket)
    return ticket


# ═════════════════════════════════════════════════════════════════════════════
# Transition
# ═════════════════════════════════════════════════════════════════════════════


def _side_effects(ticket: Ticket, to_status: str, actor: User | None,
                  assignee_id: int | None, now: datetime) -> dict:
    values: dict = {
        "status": to_status,
        "last_progress_at": now,
        "updated_at": now,
    }

    if to_status == ASSIGNED:
        target = assignee_id or ticket.assigned_to_id
        if target is None:
            raise ValidationError(
                "assignee_id is required to move a ticket to ASSIGNED",
                details={"assignee_id": "required"},
            )
        values["assigned_to_id"] = target
        values["assigned_at"] = now
    elif assignee_id is not None and to_status in ASSIGNEE_STATUSES:
        values["assigned_to_id"] = assignee_id

    if to_status not in ASSIGNEE_STATUSES:
        values["assigned_to_id"] = None

    if to_status == RESOLVED:
        values["resolved_at"] = now
        values["resolved_by_id"] = actor.id if actor else None
    if to_status == CLOSED:
        values["closed_at"] = now
    if to_status in (RESOLVED, CLOSED):
        values["is_escalated"] = False

    if to_status == REOPENED:
        values["reopen_count"] = Ticket.reopen_count + 1
        values["resolved_at"] = None
        values["resolved_by_id"] = None
        values["closed_at"] = None

    return values


def transition(
    ticket: Ticket,
    to_status: str,
    actor: User | None,
    *,
    assignee_id: int | None = None,
    note: str = "",
    now: datetime | None = None,
    commit: bool = True,
) -> Ticket:
    """Move *ticket* to *to_status*.

    Args:
        ticket: Ticket instance (its ``version`` is the CAS token).
        to_status: Target status.
        actor: Acting user, or None for system-driven moves.
        assignee_id: Required when moving to ASSIGNED without a current assignee.
        note: Free text recorded in the status history.
        now: Clock override (tests, scheduled jobs).
        commit: Commit the unit of work; callers composing several writes pass False.

    Returns:
        The refreshed Ticket.

    Raises:
        IllegalTransitionError: move not in the table; ticket untouched.
        NotAuthorizedError: actor may not drive this move.
        ValidationError: ASSIGNED without an assignee.
        ConcurrentUpdateError: lost the compare-and-set race.
    """
    from_status = ticket.status
    if not can_transition(from_status, to_status):
        raise IllegalTransitionError(from_status, to_status)

    check_actor(ticket, to_status, actor)

    if assignee_id is not None:
        assignee = db.session.get(User, assignee_id)
        if assignee is None or not assignee.is_active or not assignee.can_manage_tickets:
            raise ValidationError(
                f"User id={assignee_id} cannot be assigned tickets",
                details={"assignee_id": "must be an active staff member"},
            )

    now = now or datetime.now(timezone.utc)
    values = _side_effects(ticket, to_status, actor, assignee_id, now)

    compare_and_set(ticket, from_status, values)

    db.session.add(TicketStatusChange(
        ticket_id=ticket.id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor.id if actor else None,
        note=note or "",
        changed_at=now,
    ))
    if commit:
        db.session.commit()

    logger.info(
        "Ticket transitioned",
        extra={
            "ticket_id": ticket.id,
            "from_status": from_status,
            "to_status": to_status,
            "actor_id": actor.id if actor else None,
            "event_type": "ticket_transition",
        },
    )
    return ticket


def status_history(ticket_id: int) -> list[dict]:
    """Status changes for a ticket, oldest first."""
    rows = (
        TicketStatusChange.query
        .filter_by(ticket_id=ticket_id)
        .order_by(TicketStatusChange.changed_at, TicketStatusChange.id)
        .all()
    )
    return [r.to_dict() for r in rows]
