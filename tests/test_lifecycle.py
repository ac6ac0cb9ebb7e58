"""
Exhaustive state-machine tests for the ticket lifecycle guard.

Ticket (TICKET_TRANSITIONS) -- 8 states:
    OPEN        -> ASSIGNED | CANCELLED
    ASSIGNED    -> IN_PROGRESS | ON_HOLD | CANCELLED
    IN_PROGRESS -> ON_HOLD | RESOLVED | CANCELLED
    ON_HOLD     -> IN_PROGRESS | RESOLVED | CANCELLED
    RESOLVED    -> CLOSED | REOPENED
    CLOSED      -> REOPENED
    CANCELLED   -> OPEN
    REOPENED    -> ASSIGNED | IN_PROGRESS | CANCELLED

Covered:
    - every valid edge succeeds, bumps version, writes history
    - every structurally invalid edge raises and leaves the row untouched
    - side effects (assignee, resolved/closed stamps, reopen counter)
    - actor rules (staff/admin vs requester vs strangers)
    - compare-and-set conflict on a stale version
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

import hostel_tickets.services.lifecycle as lifecycle
from hostel_tickets.core.exceptions import (
    ConcurrentUpdateError,
    IllegalTransitionError,
    NotAuthorizedError,
    ValidationError,
)
from hostel_tickets.models import db
from hostel_tickets.models.ticket import (
    ASSIGNEE_STATUSES,
    TICKET_STATUSES,
    TICKET_TRANSITIONS,
    Ticket,
    TicketStatusChange,
    allows_assignment,
    allows_comments,
    allows_status_change,
    is_active_for_escalation,
    requires_user_confirmation,
)
from hostel_tickets.models.user import User

_seq = itertools.count(1)


# ═════════════════════════════════════════════════════════════════════════════
# ORM Helper Factories
# ═════════════════════════════════════════════════════════════════════════════


def _make_user(role="STAFF", vertical="ELECTRICAL", active=True) -> User:
    n = next(_seq)
    u = User(email=f"user{n}@hostel.test", full_name=f"User {n}", role=role,
             staff_vertical=vertical if role != "STUDENT" else None, is_active=active)
    db.session.add(u)
    db.session.flush()
    return u


def _make_ticket(status="OPEN", created_by=None, assigned_to=None, **kw) -> Ticket:
    t = Ticket(
        ticket_number=f"TKT-T{next(_seq):04d}",
        title="Ceiling fan not working",
        category="ELECTRICAL_ISSUES",
        priority="HIGH",
        status=status,
        hostel_block="A",
        created_by_id=created_by.id if created_by else None,
        assigned_to_id=assigned_to.id if assigned_to else None,
        **kw,
    )
    db.session.add(t)
    db.session.flush()
    return t


def _valid_transitions():
    return [(src, dst) for src, targets in TICKET_TRANSITIONS.items() for dst in targets]


def _invalid_transitions():
    return [
        (src, dst)
        for src in TICKET_STATUSES
        for dst in TICKET_STATUSES
        if dst not in TICKET_TRANSITIONS[src]
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════


class TestTicketTransitionsValid:
    @pytest.mark.parametrize("src,dst", _valid_transitions())
    def test_valid_transition(self, src, dst):
        staff = _make_user()
        ticket = _make_ticket(
            status=src,
            assigned_to=staff if src in ASSIGNEE_STATUSES else None,
        )
        version = ticket.version

        lifecycle.transition(ticket, dst, staff, assignee_id=staff.id if dst == "ASSIGNED" else None)

        assert ticket.status == dst
        assert ticket.version == version + 1
        assert ticket.last_progress_at is not None
        history = TicketStatusChange.query.filter_by(ticket_id=ticket.id).all()
        assert [(h.from_status, h.to_status) for h in history] == [(src, dst)]
        assert history[0].actor_id == staff.id


class TestTicketTransitionsInvalid:
    @pytest.mark.parametrize("src,dst", _invalid_transitions())
    def test_invalid_transition_leaves_ticket_untouched(self, src, dst):
        staff = _make_user()
        ticket = _make_ticket(status=src)
        version = ticket.version

        with pytest.raises(IllegalTransitionError):
            lifecycle.transition(ticket, dst, staff, assignee_id=staff.id)

        assert ticket.status == src
        assert ticket.version == version
        assert TicketStatusChange.query.filter_by(ticket_id=ticket.id).count() == 0


def test_allowed_targets_matches_table():
    for status in TICKET_STATUSES:
        assert lifecycle.allowed_targets(status) == TICKET_TRANSITIONS[status]
    assert lifecycle.allowed_targets("UNKNOWN") == []


def test_status_predicates():
    assert allows_assignment("OPEN") and allows_assignment("REOPENED")
    assert not allows_assignment("ASSIGNED")
    assert not allows_status_change("CLOSED") and not allows_status_change("CANCELLED")
    assert allows_comments("RESOLVED")
    assert requires_user_confirmation("RESOLVED")
    assert not requires_user_confirmation("CLOSED")
    assert is_active_for_escalation("ON_HOLD")
    assert not is_active_for_escalation("RESOLVED")


# ═════════════════════════════════════════════════════════════════════════════
# Side effects
# ═════════════════════════════════════════════════════════════════════════════


class TestSideEffects:
    def test_assigned_requires_assignee(self):
        staff = _make_user()
        ticket = _make_ticket()
        with pytest.raises(ValidationError, match="assignee_id is required"):
            lifecycle.transition(ticket, "ASSIGNED", staff)
        assert ticket.status == "OPEN"

    def test_assigned_sets_assignee_and_timestamp(self):
        staff = _make_user()
        ticket = _make_ticket()
        now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        lifecycle.transition(ticket, "ASSIGNED", None, assignee_id=staff.id, now=now)
        assert ticket.assigned_to_id == staff.id
        assert ticket.assigned_at is not None

    def test_assignee_must_be_active_staff(self):
        staff = _make_user()
        student = _make_user(role="STUDENT")
        ticket = _make_ticket()
        with pytest.raises(ValidationError, match="cannot be assigned"):
            lifecycle.transition(ticket, "ASSIGNED", staff, assignee_id=student.id)

        inactive = _make_user(active=False)
        with pytest.raises(ValidationError):
            lifecycle.transition(ticket, "ASSIGNED", staff, assignee_id=inactive.id)

    def test_resolved_stamps_resolver_and_clears_urgency(self):
        staff = _make_user()
        ticket = _make_ticket(status="IN_PROGRESS", assigned_to=staff, is_escalated=True)
        lifecycle.transition(ticket, "RESOLVED", staff)
        assert ticket.resolved_at is not None
        assert ticket.resolved_by_id == staff.id
        assert ticket.is_escalated is False
        # resolved tickets keep their assignee until closed
        assert ticket.assigned_to_id == staff.id

    def test_closed_stamps_closed_at_and_clears_assignee(self):
        staff = _make_user()
        ticket = _make_ticket(status="RESOLVED", assigned_to=staff)
        lifecycle.transition(ticket, "CLOSED", staff)
        assert ticket.closed_at is not None
        assert ticket.assigned_to_id is None

    def test_cancel_clears_assignee(self):
        staff = _make_user()
        ticket = _make_ticket(status="IN_PROGRESS", assigned_to=staff)
        lifecycle.transition(ticket, "CANCELLED", staff)
        assert ticket.assigned_to_id is None

    def test_reopen_counts_and_clears_resolution(self):
        staff = _make_user()
        ticket = _make_ticket(
            status="CLOSED",
            resolved_at=datetime.now(timezone.utc) - timedelta(days=1),
            resolved_by_id=staff.id,
            closed_at=datetime.now(timezone.utc),
        )
        lifecycle.transition(ticket, "REOPENED", staff)
        assert ticket.reopen_count == 1
        assert ticket.resolved_at is None
        assert ticket.resolved_by_id is None
        assert ticket.closed_at is None

        lifecycle.transition(ticket, "CANCELLED", staff)
        lifecycle.transition(ticket, "OPEN", staff)
        assert ticket.reopen_count == 1

    def test_history_is_ordered(self):
        staff = _make_user()
        ticket = _make_ticket()
        t0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        lifecycle.transition(ticket, "ASSIGNED", staff, assignee_id=staff.id, now=t0)
        lifecycle.transition(ticket, "IN_PROGRESS", staff, now=t0 + timedelta(hours=1),
                             note="on site")
        history = lifecycle.status_history(ticket.id)
        assert [h["to_status"] for h in history] == ["ASSIGNED", "IN_PROGRESS"]
        assert history[1]["note"] == "on site"


# ═════════════════════════════════════════════════════════════════════════════
# Actor rules
# ═════════════════════════════════════════════════════════════════════════════


class TestActorRules:
    def test_requester_can_cancel_own_ticket(self):
        student = _make_user(role="STUDENT")
        ticket = _make_ticket(created_by=student)
        lifecycle.transition(ticket, "CANCELLED", student)
        assert ticket.status == "CANCELLED"

    def test_requester_can_confirm_close(self):
        student = _make_user(role="STUDENT")
        staff = _make_user()
        ticket = _make_ticket(status="RESOLVED", created_by=student, assigned_to=staff)
        lifecycle.transition(ticket, "CLOSED", student)
        assert ticket.status == "CLOSED"

    def test_requester_cannot_drive_work_states(self):
        student = _make_user(role="STUDENT")
        staff = _make_user()
        ticket = _make_ticket(status="ASSIGNED", created_by=student, assigned_to=staff)
        with pytest.raises(NotAuthorizedError):
            lifecycle.transition(ticket, "IN_PROGRESS", student)
        assert ticket.status == "ASSIGNED"

    def test_other_student_cannot_cancel(self):
        owner = _make_user(role="STUDENT")
        other = _make_user(role="STUDENT")
        ticket = _make_ticket(created_by=owner)
        with pytest.raises(NotAuthorizedError):
            lifecycle.transition(ticket, "CANCELLED", other)

    def test_inactive_staff_rejected(self):
        staff = _make_user(active=False)
        ticket = _make_ticket()
        with pytest.raises(NotAuthorizedError, match="inactive"):
            lifecycle.transition(ticket, "CANCELLED", staff)

    def test_illegal_move_checked_before_actor(self):
        student = _make_user(role="STUDENT")
        ticket = _make_ticket(created_by=student)
        with pytest.raises(IllegalTransitionError):
            lifecycle.transition(ticket, "CLOSED", student)


# ═════════════════════════════════════════════════════════════════════════════
# Compare-and-set
# ═════════════════════════════════════════════════════════════════════════════


def test_stale_version_raises_concurrent_update():
    staff = _make_user()
    ticket = _make_ticket()
    db.session.commit()
    ticket_id = ticket.id
    assert (ticket.status, ticket.version) == ("OPEN", 1)

    # another writer bumps the row behind this session's back
    db.session.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id)
        .values(version=Ticket.version + 1)
        .execution_options(synchronize_session=False)
    )

    with pytest.raises(ConcurrentUpdateError):
        lifecycle.transition(ticket, "CANCELLED", staff)

    fresh = db.session.get(Ticket, ticket_id)
    assert fresh.status == "OPEN"
    assert TicketStatusChange.query.filter_by(ticket_id=ticket_id).count() == 0
