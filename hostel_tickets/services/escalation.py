"""
Hostel Ticketing Platform
Escalation Ladder.

Five rungs: STAFF_MEMBER → TEAM_LEAD → DEPARTMENT_HEAD →
HOSTEL_ADMINISTRATION → INSTITUTE_ADMINISTRATION.

Trigger:
  A ticket that is still active (not RESOLVED / CLOSED / CANCELLED) climbs
  one rung when the time since its latest activity exceeds
  ``escalation_threshold_hours(current_level + 1, priority)``.  Latest
  activity is the newest of created_at, assigned_at, last_progress_at and
  the last escalation's escalated_at / resolved_at.  ``current_level`` is
  the highest level ever created for the ticket (0 when none); level 5 is
  terminal and simply reported as "max_level".

Architecture:
  ``scan_for_eligible_tickets`` is read-only and returns EscalationAction
  values; ``apply_escalations`` writes them and is idempotent per
  (ticket, level), backed by a unique constraint.  The scheduled job runs
  both via ``run_escalation_cycle``.

  A new escalation supersedes the previous active one; it does not resolve
  it.  Only ``resolve`` (escalated-to user or an admin) sets resolved_at,
  and that never changes ticket status.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from hostel_tickets.core.exceptions import (
    AlreadyResolvedError,
    InvalidLevelError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from hostel_tickets.models import db
from hostel_tickets.models.escalation import TicketEscalation
from hostel_tickets.models.notification import KIND_ESCALATION
from hostel_tickets.models.reference import (
    ESCALATION_LEVELS,
    MAX_ESCALATION_LEVEL,
    PRIORITY_ESCALATION_HOURS,
    PRIORITY_RANK,
    ROLE_ADMIN,
    STAFF_ROLES,
    escalation_threshold_hours,
    is_critical_level,
)
from hostel_tickets.models.ticket import (
    ESCALATION_INACTIVE_STATUSES,
    Ticket,
    is_active_for_escalation,
)
from hostel_tickets.models.user import User
from hostel_tickets.services.assignment import active_ticket_counts
from hostel_tickets.services.lifecycle import _as_utc
from hostel_tickets.services.notification import NotificationService
from hostel_tickets.services.ticket_service import get_ticket, get_user

logger = logging.getLogger(__name__)


# ── Decision / action value objects ──────────────────────────────────────────

DECISION_ELIGIBLE = "eligible"
DECISION_NOT_DUE = "not_due"
DECISION_MAX_LEVEL = "max_level"
DECISION_INACTIVE = "inactive"


@dataclass(frozen=True)
class EscalationDecision:
    ticket_id: int
    decision: str
    current_level: int
    next_level: int | None = None
    threshold_hours: float | None = None
    elapsed_hours: float | None = None


@dataclass(frozen=True)
class EscalationAction:
    ticket_id: int
    new_level: int
    target_staff_id: int
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


def threshold_hours(level: int, priority: str) -> float:
    """Inactivity hours before a ticket is escalated to *level*.

    Raises:
        InvalidLevelError: level outside 1..5.
    """
    if level not in ESCALATION_LEVELS:
        raise InvalidLevelError(level)
    return escalation_threshold_hours(level, priority)


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def highest_level(ticket_id: int) -> int:
    """Highest level ever created for the ticket; 0 when never escalated."""
    return db.session.execute(
        select(func.max(TicketEscalation.level)).where(TicketEscalation.ticket_id == ticket_id)
    ).scalar() or 0


def latest_escalation(ticket_id: int) -> TicketEscalation | None:
    return db.session.execute(
        select(TicketEscalation)
        .where(TicketEscalation.ticket_id == ticket_id)
        .order_by(TicketEscalation.level.desc())
        .limit(1)
    ).scalar_one_or_none()


def active_escalation(ticket_id: int) -> TicketEscalation | None:
    """The single unresolved, non-superseded escalation of a ticket, if any."""
    return db.session.execute(
        select(TicketEscalation)
        .where(
            TicketEscalation.ticket_id == ticket_id,
            TicketEscalation.resolved_at.is_(None),
            TicketEscalation.superseded_by_id.is_(None),
        )
        .order_by(TicketEscalation.level.desc())
        .limit(1)
    ).scalar_one_or_none()


def activity_anchor(ticket: Ticket, last: TicketEscalation | None) -> datetime:
    """Newest timestamp that counts as activity on the ticket."""
    stamps = [ticket.created_at, ticket.assigned_at, ticket.last_progress_at]
    if last is not None:
        stamps.extend([last.escalated_at, last.resolved_at])
    return max(_as_utc(s) for s in stamps if s is not None)


def evaluate_ticket(ticket: Ticket, now: datetime | None = None) -> EscalationDecision:
    """Decide whether *ticket* should climb one rung right now."""
    now = _as_utc(now or datetime.now(timezone.utc))
    last = latest_escalation(ticket.id)
    current = last.level if last else 0

    if not is_active_for_escalation(ticket.status):
        return EscalationDecision(ticket.id, DECISION_INACTIVE, current)
    if current >= MAX_ESCALATION_LEVEL:
        return EscalationDecision(ticket.id, DECISION_MAX_LEVEL, current)

    next_level = current + 1
    limit = threshold_hours(next_level, ticket.priority)
    elapsed = (now - activity_anchor(ticket, last)).total_seconds() / 3600
    decision = DECISION_ELIGIBLE if elapsed > limit else DECISION_NOT_DUE
    return EscalationDecision(
        ticket.id, decision, current,
        next_level=next_level,
        threshold_hours=limit,
        elapsed_hours=round(elapsed, 3),
    )


def select_escalation_target(level: int, exclude_ids=()) -> int | None:
    """First active, least-loaded user in one of the level's verticals.

    Ties break on the vertical's position in the level's list, then user id.
    Users in *exclude_ids* are only picked when nobody else qualifies.  Falls
    back to the first active ADMIN; None when nobody is available.
    """
    verticals = list(ESCALATION_LEVELS[level].notify_verticals)
    users = db.session.execute(
        select(User).where(
            User.is_active == True,  # noqa: E712
            User.role.in_(STAFF_ROLES),
            User.staff_vertical.in_(verticals),
        )
    ).scalars().all()

    if users:
        loads = active_ticket_counts(u.id for u in users)
        ordered = sorted(
            users,
            key=lambda u: (loads.get(u.id, 0), verticals.index(u.staff_vertical), u.id),
        )
        preferred = [u for u in ordered if u.id not in set(exclude_ids)]
        return (preferred or ordered)[0].id

    admin = db.session.execute(
        select(User)
        .where(User.is_active == True, User.role == ROLE_ADMIN)  # noqa: E712
        .order_by(User.id)
        .limit(1)
    ).scalar_one_or_none()
    return admin.id if admin else None


# ═════════════════════════════════════════════════════════════════════════════
# Automatic ladder
# ═════════════════════════════════════════════════════════════════════════════


def scan_for_eligible_tickets(now: datetime | None = None) -> list[EscalationAction]:
    """Return one action per ticket that is due to climb a rung. Writes nothing."""
    now = _as_utc(now or datetime.now(timezone.utc))
    tickets = db.session.execute(
        select(Ticket)
        .where(Ticket.status.notin_(ESCALATION_INACTIVE_STATUSES))
        .order_by(Ticket.id)
    ).scalars().all()

    actions: list[EscalationAction] = []
    for ticket in tickets:
        decision = evaluate_ticket(ticket, now)
        if decision.decision != DECISION_ELIGIBLE:
            continue

        exclude = [ticket.assigned_to_id] if ticket.assigned_to_id else []
        target = select_escalation_target(decision.next_level, exclude_ids=exclude)
        if target is None:
            logger.warning(
                "No escalation target available; skipping",
                extra={"ticket_id": ticket.id, "level": decision.next_level},
            )
            continue

        level_name = ESCALATION_LEVELS[decision.next_level].name
        actions.append(EscalationAction(
            ticket_id=ticket.id,
            new_level=decision.next_level,
            target_staff_id=target,
            reason=(
                f"No activity for {decision.elapsed_hours:.1f}h "
                f"(threshold {decision.threshold_hours:g}h for {ticket.priority}); "
                f"escalated to {level_name}"
            ),
        ))
    return actions


def apply_escalations(actions: list[EscalationAction],
                      now: datetime | None = None) -> list[TicketEscalation]:
    """Persist escalation actions. Re-applying the same actions is a no-op.

    Each action commits on its own. Actions whose ticket went inactive, or
    whose level is no longer the next rung, are skipped.
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    created: list[TicketEscalation] = []

    for action in actions:
        # another process may have moved the ticket since the scan read it
        ticket = db.session.get(Ticket, action.ticket_id, populate_existing=True)
        if ticket is None or not is_active_for_escalation(ticket.status):
            continue
        if action.new_level != highest_level(ticket.id) + 1:
            continue
        try:
            esc = _create_escalation(
                ticket, action.new_level, action.target_staff_id, action.reason,
                is_auto=True, actor=None, now=now,
            )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info(
                "Escalation already recorded by a concurrent scan",
                extra={"ticket_id": action.ticket_id, "level": action.new_level},
            )
            continue
        created.append(esc)

    return created


def run_escalation_cycle(now: datetime | None = None) -> dict:
    """Scan, then apply. Used by the scheduled job and the process endpoint."""
    actions = scan_for_eligible_tickets(now)
    created = apply_escalations(actions, now)
    logger.info(
        "Escalation cycle complete: %d eligible, %d escalated",
        len(actions), len(created),
        extra={"event_type": "escalation_cycle"},
    )
    return {
        "eligible": len(actions),
        "escalated": len(created),
        "escalations": [e.to_dict() for e in created],
    }


# ═════════════════════════════════════════════════════════════════════════════
# Writes
# ═════════════════════════════════════════════════════════════════════════════


def _raise_priority_at_critical() -> bool:
    if has_app_context():
        return current_app.config.get("ESCALATION_RAISE_PRIORITY_AT_CRITICAL", True)
    return True


def _create_escalation(ticket: Ticket, level: int, target_id: int, reason: str, *,
                       is_auto: bool, actor: User | None, now: datetime) -> TicketEscalation:
    previous = active_escalation(ticket.id)

    esc = TicketEscalation(
        ticket_id=ticket.id,
        level=level,
        escalated_from_id=ticket.assigned_to_id,
        escalated_to_id=target_id,
        escalated_by_id=actor.id if actor else None,
        reason=reason,
        is_auto=is_auto,
        escalated_at=now,
    )
    db.session.add(esc)
    db.session.flush()

    if previous is not None:
        previous.superseded_by_id = esc.id

    ticket.is_escalated = True
    ticket.current_escalation_level = level
    if (
        is_critical_level(level)
        and _raise_priority_at_critical()
        and PRIORITY_RANK[ticket.priority] < PRIORITY_RANK["HIGH"]
    ):
        logger.info(
            "Raising ticket priority to HIGH at critical escalation",
            extra={"ticket_id": ticket.id, "level": level},
        )
        ticket.priority = "HIGH"

    level_name = ESCALATION_LEVELS[level].name
    NotificationService.notify(
        [target_id, ticket.assigned_to_id],
        ticket=ticket,
        kind=KIND_ESCALATION,
        title=f"Ticket {ticket.ticket_number} escalated to {level_name}",
        body=reason,
        severity="error" if is_critical_level(level) else "warning",
        escalation=esc,
    )

    logger.warning(
        "Ticket escalated",
        extra={
            "ticket_id": ticket.id,
            "level": level,
            "staff_id": target_id,
            "escalation_id": esc.id,
            "event_type": "ticket_escalated" if is_auto else "ticket_escalated_manual",
        },
    )
    return esc


def manual_escalate(ticket_id: int, target_level, target_staff_id: int | None,
                    reason: str, actor: User, *, now: datetime | None = None) -> TicketEscalation:
    """Escalate a ticket now, bypassing the inactivity threshold.

    Args:
        target_level: 1..5 and strictly above every level already created.
        target_staff_id: Recipient; when None the level's default target is used.
        reason: Required free text.
        actor: Active STAFF or ADMIN user.

    Raises:
        NotAuthorizedError, InvalidLevelError, ValidationError, NotFoundError
    """
    if actor is None or not actor.is_active or actor.role not in STAFF_ROLES:
        raise NotAuthorizedError("Only staff or administrators can escalate tickets")

    if isinstance(target_level, bool) or not isinstance(target_level, int) \
            or target_level not in ESCALATION_LEVELS:
        raise InvalidLevelError(
            target_level, f"Escalation level must be an integer 1..{MAX_ESCALATION_LEVEL}",
        )

    ticket = get_ticket(ticket_id)
    if not is_active_for_escalation(ticket.status):
        raise ValidationError(
            f"Cannot escalate a {ticket.status} ticket",
            details={"status": ticket.status},
        )

    current = highest_level(ticket.id)
    if target_level <= current:
        raise InvalidLevelError(
            target_level,
            f"Escalation level must be above the current level {current}",
        )

    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required", details={"reason": "required"})

    if target_staff_id is None:
        target_staff_id = select_escalation_target(target_level)
        if target_staff_id is None:
            raise ValidationError(
                f"No escalation target available for level {target_level}",
                details={"target_staff_id": "required"},
            )
    else:
        target = get_user(target_staff_id)
        if not target.is_active or target.role not in STAFF_ROLES:
            raise ValidationError(
                f"User id={target_staff_id} cannot receive escalations",
                details={"target_staff_id": "must be an active staff member or admin"},
            )

    now = _as_utc(now or datetime.now(timezone.utc))
    try:
        esc = _create_escalation(
            ticket, target_level, target_staff_id, reason,
            is_auto=False, actor=actor, now=now,
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise InvalidLevelError(
            target_level, f"Level {target_level} was recorded for this ticket concurrently",
        ) from exc
    return esc


def resolve(escalation_id: int, actor: User, *, now: datetime | None = None) -> TicketEscalation:
    """Mark an escalation resolved. Ticket status is left alone.

    Raises:
        NotFoundError, AlreadyResolvedError, NotAuthorizedError
    """
    esc = db.session.get(TicketEscalation, escalation_id)
    if esc is None:
        raise NotFoundError(resource="Escalation", resource_id=escalation_id)
    if esc.resolved_at is not None:
        raise AlreadyResolvedError(escalation_id)
    if actor is None or not actor.is_active or not (
        actor.id == esc.escalated_to_id or actor.role == ROLE_ADMIN
    ):
        raise NotAuthorizedError(
            "Only the escalation recipient or an administrator can resolve it"
        )

    was_active = esc.is_active
    esc.resolved_at = _as_utc(now or datetime.now(timezone.utc))
    esc.resolved_by_id = actor.id
    if was_active:
        esc.ticket.is_escalated = False
    db.session.commit()

    logger.info(
        "Escalation resolved",
        extra={"escalation_id": esc.id, "ticket_id": esc.ticket_id,
               "level": esc.level, "actor_id": actor.id, "event_type": "escalation_resolved"},
    )
    return esc


# ═════════════════════════════════════════════════════════════════════════════
# Reporting
# ═════════════════════════════════════════════════════════════════════════════


def list_escalations(*, ticket_id: int | None = None, active_only: bool = False,
                     escalated_to_id: int | None = None) -> list[dict]:
    """Escalation records, newest first."""
    stmt = select(TicketEscalation).order_by(
        TicketEscalation.escalated_at.desc(), TicketEscalation.id.desc(),
    )
    if ticket_id is not None:
        stmt = stmt.where(TicketEscalation.ticket_id == ticket_id)
    if escalated_to_id is not None:
        stmt = stmt.where(TicketEscalation.escalated_to_id == escalated_to_id)
    if active_only:
        stmt = stmt.where(
            TicketEscalation.resolved_at.is_(None),
            TicketEscalation.superseded_by_id.is_(None),
        )
    return [e.to_dict() for e in db.session.execute(stmt).scalars()]


def escalation_statistics() -> dict:
    rows = db.session.execute(select(TicketEscalation)).scalars().all()
    by_level = {info.name: 0 for info in ESCALATION_LEVELS.values()}
    active = resolved = auto = critical_active = 0
    for esc in rows:
        by_level[esc.level_name] = by_level.get(esc.level_name, 0) + 1
        if esc.is_active:
            active += 1
            if is_critical_level(esc.level):
                critical_active += 1
        if esc.resolved_at is not None:
            resolved += 1
        if esc.is_auto:
            auto += 1
    return {
        "total": len(rows),
        "active": active,
        "resolved": resolved,
        "superseded": sum(1 for e in rows if e.superseded_by_id is not None),
        "automatic": auto,
        "manual": len(rows) - auto,
        "critical_active": critical_active,
        "by_level": by_level,
    }


def overdue_escalations(now: datetime | None = None) -> list[dict]:
    """Active escalations left open longer than the ticket priority allows."""
    now = _as_utc(now or datetime.now(timezone.utc))
    stmt = (
        select(TicketEscalation)
        .where(
            TicketEscalation.resolved_at.is_(None),
            TicketEscalation.superseded_by_id.is_(None),
        )
        .order_by(TicketEscalation.escalated_at)
    )
    overdue = []
    for esc in db.session.execute(stmt).scalars():
        hours = PRIORITY_ESCALATION_HOURS.get(esc.ticket.priority, 24)
        age = now - _as_utc(esc.escalated_at)
        if age > timedelta(hours=hours):
            item = esc.to_dict()
            item["ticket_priority"] = esc.ticket.priority
            item["overdue_hours"] = round(age.total_seconds() / 3600 - hours, 2)
            overdue.append(item)
    return overdue
