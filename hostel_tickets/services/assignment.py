"""
Hostel Ticketing Platform
Assignment Engine.

Picks the staff member for a new (or reopened) ticket:

  1. Active mappings for the ticket's effective category whose block is the
     ticket's block or null ("all blocks").  None → NoEligibleStaffError.
  2. Drop mappings whose staff member is inactive or not STAFF.  A staff
     member with both a block-specific and an all-blocks mapping is
     represented once, by the block-specific one.
  3. Rank by priority_level asc, expertise desc, active/capacity_weight asc,
     staff id asc.
  4. Candidates at their vertical's max_active_tickets are skipped unless
     every candidate is at capacity (soft ceiling).
  5. Emergencies prefer verticals that handle emergencies, falling back to
     the whole pool.

Workload is a derived count over ASSIGNED / IN_PROGRESS / ON_HOLD tickets;
it is never stored.  The mapping snapshot may come from the cache for a few
seconds; a stale count only makes the ceiling softer, never wrong.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app, has_app_context
from sqlalchemy import func, or_, select

from hostel_tickets.core.exceptions import (
    IllegalTransitionError,
    NoEligibleStaffError,
    NotAuthorizedError,
    ValidationError,
)
from hostel_tickets.models import db
from hostel_tickets.models.mapping import StaffMapping
from hostel_tickets.models.notification import KIND_ASSIGNMENT
from hostel_tickets.models.reference import (
    ROLE_STAFF,
    handles_emergencies,
    max_active_tickets,
)
from hostel_tickets.models.ticket import (
    ASSIGNED,
    RESOLVED,
    WORKLOAD_STATUSES,
    Ticket,
    TicketStatusChange,
    allows_assignment,
)
from hostel_tickets.models.user import User
from hostel_tickets.services import cache_service, lifecycle
from hostel_tickets.services.notification import NotificationService
from hostel_tickets.services.ticket_service import get_ticket, get_user

logger = logging.getLogger(__name__)

_FALLBACK_MAX_ACTIVE = 5


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


# ═════════════════════════════════════════════════════════════════════════════
# Candidates & ranking (pure)
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Candidate:
    """One staff member's standing for a single assignment attempt."""

    staff_id: int
    mapping_id: int
    priority_level: int
    expertise_level: int
    capacity_weight: float
    active_tickets: int
    max_active: int
    staff_vertical: str | None = None
    block_specific: bool = False

    @property
    def load_ratio(self) -> float:
        return self.active_tickets / self.capacity_weight

    @property
    def at_capacity(self) -> bool:
        return self.active_tickets >= self.max_active

    def sort_key(self):
        return (self.priority_level, -self.expertise_level, self.load_ratio, self.staff_id)

    def to_dict(self) -> dict:
        return {
            "staff_id": self.staff_id,
            "mapping_id": self.mapping_id,
            "priority_level": self.priority_level,
            "expertise_level": self.expertise_level,
            "capacity_weight": self.capacity_weight,
            "active_tickets": self.active_tickets,
            "max_active": self.max_active,
            "load_ratio": round(self.load_ratio, 4),
            "staff_vertical": self.staff_vertical,
            "block_specific": self.block_specific,
        }


def rank_candidates(candidates: list[Candidate], emergency: bool = False) -> list[Candidate]:
    """Order candidates best-first.

    Deterministic: identical inputs always produce the same order.  The
    capacity ceiling and the emergency preference narrow the pool only when
    something remains after narrowing.
    """
    pool = list(candidates)

    under_capacity = [c for c in pool if not c.at_capacity]
    if under_capacity:
        pool = under_capacity

    if emergency:
        responders = [c for c in pool if handles_emergencies(c.staff_vertical)]
        if responders:
            pool = responders

    return sorted(pool, key=Candidate.sort_key)


# ═════════════════════════════════════════════════════════════════════════════
# Data access
# ═════════════════════════════════════════════════════════════════════════════


def _load_mapping_rows(category: str, hostel_block: str | None) -> list[dict]:
    block_filter = StaffMapping.hostel_block.is_(None)
    if hostel_block:
        block_filter = or_(block_filter, StaffMapping.hostel_block == hostel_block)
    stmt = (
        select(StaffMapping)
        .where(
            StaffMapping.is_active == True,  # noqa: E712
            StaffMapping.category == category,
            block_filter,
        )
        .order_by(StaffMapping.id)
    )
    return [
        {
            "id": m.id,
            "staff_id": m.staff_id,
            "hostel_block": m.hostel_block,
            "priority_level": m.priority_level,
            "capacity_weight": float(m.capacity_weight),
            "expertise_level": m.expertise_level,
        }
        for m in db.session.execute(stmt).scalars()
    ]


def mapping_snapshot(category: str, hostel_block: str | None) -> list[dict]:
    """Active mappings for (category, block), possibly served from cache."""
    return cache_service.mapping_snapshot(
        category,
        hostel_block,
        loader=lambda: _load_mapping_rows(category, hostel_block),
        ttl=_config("MAPPING_CACHE_TTL", cache_service.MAPPING_TTL),
    )


def active_ticket_counts(staff_ids) -> dict[int, int]:
    """Open workload per staff member (ASSIGNED, IN_PROGRESS, ON_HOLD)."""
    staff_ids = list(staff_ids)
    if not staff_ids:
        return {}
    stmt = (
        select(Ticket.assigned_to_id, func.count(Ticket.id))
        .where(
            Ticket.assigned_to_id.in_(staff_ids),
            Ticket.status.in_(WORKLOAD_STATUSES),
        )
        .group_by(Ticket.assigned_to_id)
    )
    counts = {sid: 0 for sid in staff_ids}
    for staff_id, count in db.session.execute(stmt):
        counts[staff_id] = count
    return counts


# ═════════════════════════════════════════════════════════════════════════════
# Engine
# ═════════════════════════════════════════════════════════════════════════════


def gather_candidates(ticket: Ticket) -> list[Candidate]:
    """Eligible, de-duplicated candidates for *ticket* (unranked).

    Raises:
        NoEligibleStaffError: no mapping matches, or none of the mapped staff
            is an active STAFF user.
    """
    category = ticket.effective_category
    rows = mapping_snapshot(category, ticket.hostel_block)
    if not rows:
        raise NoEligibleStaffError(ticket.id, category, ticket.hostel_block)

    staff_ids = {r["staff_id"] for r in rows}
    staff = {
        u.id: u
        for u in db.session.execute(select(User).where(User.id.in_(staff_ids))).scalars()
    }

    best: dict[int, dict] = {}
    for row in rows:
        user = staff.get(row["staff_id"])
        if user is None or not user.is_active or user.role != ROLE_STAFF:
            continue
        current = best.get(user.id)
        if current is None:
            best[user.id] = row
            continue
        # block-specific beats all-blocks; otherwise keep the more preferred rule
        row_specific = row["hostel_block"] is not None
        cur_specific = current["hostel_block"] is not None
        if (row_specific, -row["priority_level"]) > (cur_specific, -current["priority_level"]):
            best[user.id] = row

    if not best:
        raise NoEligibleStaffError(
            ticket.id, category, ticket.hostel_block,
            reason="no active staff among matching mappings",
        )

    default_max = _config("DEFAULT_MAX_ACTIVE_TICKETS", _FALLBACK_MAX_ACTIVE)
    counts = active_ticket_counts(best.keys())
    return [
        Candidate(
            staff_id=staff_id,
            mapping_id=row["id"],
            priority_level=row["priority_level"],
            expertise_level=row["expertise_level"],
            capacity_weight=row["capacity_weight"],
            active_tickets=counts.get(staff_id, 0),
            max_active=max_active_tickets(staff[staff_id].staff_vertical, default_max),
            staff_vertical=staff[staff_id].staff_vertical,
            block_specific=row["hostel_block"] is not None,
        )
        for staff_id, row in best.items()
    ]


def select_assignee(ticket: Ticket) -> int:
    """Return the staff id the ticket should go to.

    Raises:
        NoEligibleStaffError
    """
    candidates = gather_candidates(ticket)
    ranked = rank_candidates(candidates, emergency=ticket.is_emergency_ticket)
    chosen = ranked[0]
    if chosen.at_capacity:
        logger.warning(
            "All candidates at capacity; assigning over ceiling",
            extra={"ticket_id": ticket.id, "staff_id": chosen.staff_id},
        )
    logger.debug(
        "Assignee selected",
        extra={
            "ticket_id": ticket.id,
            "staff_id": chosen.staff_id,
            "category": ticket.effective_category,
            "hostel_block": ticket.hostel_block,
        },
    )
    return chosen.staff_id


def preview_assignment(ticket_id: int) -> dict:
    """Ranked candidate list for a ticket without assigning it."""
    ticket = get_ticket(ticket_id)
    candidates = gather_candidates(ticket)
    ranked = rank_candidates(candidates, emergency=ticket.is_emergency_ticket)
    return {
        "ticket_id": ticket.id,
        "effective_category": ticket.effective_category,
        "emergency": ticket.is_emergency_ticket,
        "candidates": [c.to_dict() for c in ranked],
    }


def on_assignment_made(ticket_id: int, staff_id: int) -> None:
    """Notify the assignee and the requester. The caller commits."""
    ticket = get_ticket(ticket_id)
    where = f"block {ticket.hostel_block}" if ticket.hostel_block else "no block"
    NotificationService.notify(
        [staff_id],
        ticket=ticket,
        kind=KIND_ASSIGNMENT,
        title=f"Ticket {ticket.ticket_number} assigned to you",
        body=f"{ticket.title} ({ticket.priority}, {where})",
        severity="warning" if ticket.is_emergency_ticket else "info",
    )
    if ticket.created_by_id != staff_id:
        NotificationService.notify(
            [ticket.created_by_id],
            ticket=ticket,
            kind=KIND_ASSIGNMENT,
            title=f"Ticket {ticket.ticket_number} has been assigned",
            body=f"{ticket.title} is now with a staff member.",
        )


def assign_ticket(ticket_id: int, actor: User | None = None, *,
                  now: datetime | None = None) -> Ticket:
    """Auto-assign an OPEN or REOPENED ticket.

    Raises:
        NotFoundError, IllegalTransitionError, NoEligibleStaffError,
        NotAuthorizedError, ConcurrentUpdateError
    """
    ticket = get_ticket(ticket_id)
    if not allows_assignment(ticket.status):
        raise IllegalTransitionError(
            ticket.status, ASSIGNED,
            f"Ticket {ticket.ticket_number} is {ticket.status}; only OPEN or REOPENED tickets can be assigned",
        )
    staff_id = select_assignee(ticket)
    lifecycle.transition(
        ticket, ASSIGNED, actor,
        assignee_id=staff_id, note="auto-assigned", now=now, commit=False,
    )
    on_assignment_made(ticket.id, staff_id)
    db.session.commit()
    logger.info(
        "Ticket assigned",
        extra={"ticket_id": ticket.id, "staff_id": staff_id, "event_type": "ticket_assigned"},
    )
    return ticket


def admin_assign(ticket_id: int, staff_id: int, actor: User, *,
                 now: datetime | None = None) -> Ticket:
    """Admin override: assign (or reassign) a ticket to a specific staff member.

    OPEN/REOPENED tickets move to ASSIGNED; tickets already being worked keep
    their status and only change hands.

    Raises:
        NotAuthorizedError: actor is not an active ADMIN.
        ValidationError: target is not an active STAFF user.
        IllegalTransitionError: ticket is resolved, closed or cancelled.
    """
    if actor is None or not actor.is_admin or not actor.is_active:
        raise NotAuthorizedError("Only administrators can assign tickets manually")

    staff = get_user(staff_id)
    if staff.role != ROLE_STAFF or not staff.is_active:
        raise ValidationError(
            f"User id={staff_id} is not an active staff member",
            details={"staff_id": "must be an active STAFF user"},
        )

    ticket = get_ticket(ticket_id)
    if allows_assignment(ticket.status):
        lifecycle.transition(
            ticket, ASSIGNED, actor,
            assignee_id=staff_id, note="assigned by administrator", now=now, commit=False,
        )
    elif ticket.status in WORKLOAD_STATUSES:
        now = now or datetime.now(timezone.utc)
        status = ticket.status
        lifecycle.compare_and_set(ticket, status, {
            "assigned_to_id": staff_id,
            "assigned_at": now,
            "last_progress_at": now,
            "updated_at": now,
        })
        db.session.add(TicketStatusChange(
            ticket_id=ticket.id, from_status=status, to_status=status,
            actor_id=actor.id, note=f"reassigned to user {staff_id}", changed_at=now,
        ))
    else:
        raise IllegalTransitionError(ticket.status, ASSIGNED)

    on_assignment_made(ticket.id, staff_id)
    db.session.commit()
    logger.info(
        "Ticket assigned by admin",
        extra={"ticket_id": ticket.id, "staff_id": staff_id, "actor_id": actor.id,
               "event_type": "ticket_admin_assigned"},
    )
    return ticket


def staff_workload(staff_id: int) -> dict:
    """Workload and completion figures for one staff member."""
    staff = get_user(staff_id)
    active = active_ticket_counts([staff_id]).get(staff_id, 0)
    awaiting_confirmation = db.session.execute(
        select(func.count(Ticket.id)).where(
            Ticket.assigned_to_id == staff_id, Ticket.status == RESOLVED,
        )
    ).scalar() or 0
    resolved = db.session.execute(
        select(func.count(Ticket.id)).where(Ticket.resolved_by_id == staff_id)
    ).scalar() or 0
    ceiling = max_active_tickets(
        staff.staff_vertical, _config("DEFAULT_MAX_ACTIVE_TICKETS", _FALLBACK_MAX_ACTIVE),
    )
    handled = active + resolved
    return {
        "staff_id": staff.id,
        "staff_name": staff.full_name,
        "staff_vertical": staff.staff_vertical,
        "active_tickets": active,
        "awaiting_confirmation": awaiting_confirmation,
        "resolved_tickets": resolved,
        "max_active_tickets": ceiling,
        "utilization_pct": round(active / ceiling * 100, 1) if ceiling else 0.0,
        "completion_rate_pct": round(resolved / handled * 100, 1) if handled else 0.0,
    }
