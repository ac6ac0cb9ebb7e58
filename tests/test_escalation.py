"""
Tests: escalation ladder.

Covers:
    - threshold table per level × priority
    - eligibility decisions (not due / eligible / inactive / max level)
    - scan is read-only; apply is idempotent per (ticket, level)
    - repeated cycles climb one rung at a time and stop at level 5
    - supersede chain, priority raise at critical levels, target selection
    - manual escalation validation and resolution rules
    - statistics and overdue reporting

Clock is always passed explicitly so no test depends on wall time.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

import hostel_tickets.services.escalation as svc
from hostel_tickets.core.exceptions import (
    AlreadyResolvedError,
    InvalidLevelError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from hostel_tickets.models import db
from hostel_tickets.models.escalation import TicketEscalation
from hostel_tickets.models.notification import Notification
from hostel_tickets.models.ticket import Ticket
from hostel_tickets.models.user import User

T0 = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)

_seq = itertools.count(1)


# ── ORM helpers ───────────────────────────────────────────────────────────────


def _make_user(vertical="PLUMBING", role="STAFF", active=True) -> User:
    n = next(_seq)
    u = User(email=f"esc{n}@hostel.test", full_name=f"Escalation User {n}", role=role,
             staff_vertical=vertical, is_active=active)
    db.session.add(u)
    db.session.flush()
    return u


def _make_ticket(priority="HIGH", status="ASSIGNED", assigned_to=None, at=T0) -> Ticket:
    t = Ticket(
        ticket_number=f"TKT-E{next(_seq):04d}",
        title="Water leaking from ceiling",
        category="PLUMBING_WATER",
        priority=priority,
        status=status,
        hostel_block="C",
        assigned_to_id=assigned_to.id if assigned_to else None,
        assigned_at=at if assigned_to else None,
        created_at=at,
        updated_at=at,
    )
    db.session.add(t)
    db.session.flush()
    return t


def _ladder_staff() -> dict:
    """One recipient per escalation tier."""
    return {
        "assignee": _make_user("ELECTRICAL"),
        "l1": _make_user("PLUMBING"),
        "l2": _make_user("BLOCK_SUPERVISOR"),
        "l3": _make_user("HOSTEL_WARDEN"),
        "l5": _make_user("CHIEF_WARDEN"),
    }


def _levels(ticket_id):
    return [
        e.level for e in
        TicketEscalation.query.filter_by(ticket_id=ticket_id).order_by(TicketEscalation.level)
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Thresholds & decisions
# ═════════════════════════════════════════════════════════════════════════════


class TestThresholds:
    @pytest.mark.parametrize("level,priority,hours", [
        (1, "EMERGENCY", 1),
        (1, "HIGH", 2),
        (1, "MEDIUM", 4),
        (1, "LOW", 8),
        (2, "EMERGENCY", 2),
        (3, "HIGH", 6),
        (4, "MEDIUM", 24),
        (5, "EMERGENCY", 12),
        (5, "LOW", 96),
    ])
    def test_threshold_table(self, level, priority, hours):
        assert svc.threshold_hours(level, priority) == hours

    @pytest.mark.parametrize("level", [0, 6, -1])
    def test_out_of_range_level(self, level):
        with pytest.raises(InvalidLevelError):
            svc.threshold_hours(level, "HIGH")


class TestEvaluate:
    def test_not_due(self):
        ticket = _make_ticket(priority="HIGH")
        decision = svc.evaluate_ticket(ticket, T0 + timedelta(hours=1))
        assert decision.decision == svc.DECISION_NOT_DUE
        assert decision.next_level == 1
        assert decision.threshold_hours == 2

    def test_eligible_after_threshold(self):
        ticket = _make_ticket(priority="HIGH")
        decision = svc.evaluate_ticket(ticket, T0 + timedelta(hours=2, minutes=1))
        assert decision.decision == svc.DECISION_ELIGIBLE

    def test_exactly_at_threshold_is_not_due(self):
        ticket = _make_ticket(priority="HIGH")
        assert svc.evaluate_ticket(ticket, T0 + timedelta(hours=2)).decision == svc.DECISION_NOT_DUE

    @pytest.mark.parametrize("status", ["RESOLVED", "CLOSED", "CANCELLED"])
    def test_inactive_statuses_never_escalate(self, status):
        ticket = _make_ticket(status=status)
        decision = svc.evaluate_ticket(ticket, T0 + timedelta(days=30))
        assert decision.decision == svc.DECISION_INACTIVE

    def test_recent_progress_resets_clock(self):
        ticket = _make_ticket(priority="HIGH")
        ticket.last_progress_at = T0 + timedelta(hours=5)
        db.session.flush()
        decision = svc.evaluate_ticket(ticket, T0 + timedelta(hours=6))
        assert decision.decision == svc.DECISION_NOT_DUE


# ═════════════════════════════════════════════════════════════════════════════
# Automatic ladder
# ═════════════════════════════════════════════════════════════════════════════


class TestScanAndApply:
    def test_scan_writes_nothing(self):
        staff = _ladder_staff()
        ticket = _make_ticket(assigned_to=staff["assignee"])
        actions = svc.scan_for_eligible_tickets(T0 + timedelta(hours=3))
        assert [(a.ticket_id, a.new_level) for a in actions] == [(ticket.id, 1)]
        assert TicketEscalation.query.count() == 0
        assert ticket.is_escalated is False

    def test_apply_creates_record_and_flags_ticket(self):
        staff = _ladder_staff()
        ticket = _make_ticket(assigned_to=staff["assignee"])
        now = T0 + timedelta(hours=3)

        created = svc.apply_escalations(svc.scan_for_eligible_tickets(now), now)

        assert len(created) == 1
        esc = created[0]
        assert esc.level == 1
        assert esc.escalated_to_id == staff["l1"].id
        assert esc.escalated_from_id == staff["assignee"].id
        assert esc.is_auto is True
        assert ticket.is_escalated is True
        assert ticket.current_escalation_level == 1
        recipients = {n.recipient_id for n in Notification.query.filter_by(kind="escalation")}
        assert recipients == {staff["l1"].id, staff["assignee"].id}
        assert {n.escalation_id for n in Notification.query.filter_by(kind="escalation")} == {esc.id}

    def test_apply_is_idempotent(self):
        staff = _ladder_staff()
        ticket = _make_ticket(assigned_to=staff["assignee"])
        now = T0 + timedelta(hours=3)
        actions = svc.scan_for_eligible_tickets(now)

        svc.apply_escalations(actions, now)
        again = svc.apply_escalations(actions, now)

        assert again == []
        assert _levels(ticket.id) == [1]

    def test_apply_skips_ticket_resolved_since_scan(self):
        staff = _ladder_staff()
        ticket = _make_ticket(assigned_to=staff["assignee"])
        now = T0 + timedelta(hours=3)
        actions = svc.scan_for_eligible_tickets(now)
        ticket.status = "RESOLVED"
        db.session.flush()

        assert svc.apply_escalations(actions, now) == []

    def test_apply_rereads_ticket_changed_by_another_writer(self):
        staff = _ladder_staff()
        ticket = _make_ticket(assigned_to=staff["assignee"])
        now = T0 + timedelta(hours=3)
        actions = svc.scan_for_eligible_tickets(now)
        # write behind the session's back; the loaded Ticket still says ASSIGNED
        db.session.execute(
            update(Ticket).where(Ticket.id == ticket.id).values(status="RESOLVED"),
            execution_options={"synchronize_session": False},
        )
        assert ticket.status == "ASSIGNED"

        assert svc.apply_escalations(actions, now) == []
        assert _levels(ticket.id) == []

    def test_levels_climb_one_rung_per_cycle_and_stop_at_five(self):
        staff = _ladder_staff()
        ticket = _make_ticket(priority="MEDIUM", assigned_to=staff["assignee"])

        now = T0
        for _ in range(7):
            now += timedelta(hours=100)
            svc.run_escalation_cycle(now)

        assert _levels(ticket.id) == [1, 2, 3, 4, 5]
        assert ticket.current_escalation_level == 5
        decision = svc.evaluate_ticket(ticket, now + timedelta(days=30))
        assert decision.decision == svc.DECISION_MAX_LEVEL

        recipients = [
            e.escalated_to_id for e in
            TicketEscalation.query.filter_by(ticket_id=ticket.id).order_by(TicketEscalation.level)
        ]
        assert recipients == [
            staff["l1"].id, staff["l2"].id, staff["l3"].id, staff["l3"].id, staff["l5"].id,
        ]

    def test_new_escalation_supersedes_previous(self):
        staff = _ladder_staff()
        ticket = _make_ticket(assigned_to=staff["assignee"])
        svc.run_escalation_cycle(T0 + timedelta(hours=3))
        svc.run_escalation_cycle(T0 + timedelta(hours=10))

        first, second = TicketEscalation.query.filter_by(ticket_id=ticket.id).order_by(
            TicketEscalation.level).all()
        assert first.superseded_by_id == second.id
        assert first.resolved_at is None
        assert first.is_active is False
        assert second.is_active is True
        assert svc.active_escalation(ticket.id).id == second.id

    def test_critical_level_raises_low_priority(self):
        staff = _ladder_staff()
        ticket = _make_ticket(priority="LOW", assigned_to=staff["assignee"])
        admin = _make_user("ADMIN_OFFICER", role="ADMIN")
        svc.manual_escalate(ticket.id, 3, None, "stalled", admin, now=T0)
        assert ticket.priority == "LOW"
        svc.manual_escalate(ticket.id, 4, None, "still stalled", admin, now=T0)
        assert ticket.priority == "HIGH"

    def test_target_excludes_current_assignee(self):
        assignee = _make_user("PLUMBING")
        other = _make_user("PLUMBING")
        stalled = _make_ticket(assigned_to=assignee)
        # other is busier, so only the exclusion can route the escalation to them
        for _ in range(2):
            _make_ticket(status="ON_HOLD", assigned_to=other, at=T0 + timedelta(hours=3))
        actions = svc.scan_for_eligible_tickets(T0 + timedelta(hours=3))
        assert [a.ticket_id for a in actions] == [stalled.id]
        assert actions[0].target_staff_id == other.id

    def test_admin_fallback_when_no_tier_staff(self, admin):
        _make_ticket()
        actions = svc.scan_for_eligible_tickets(T0 + timedelta(hours=3))
        assert actions[0].target_staff_id == admin.id

    def test_no_target_skips_ticket(self):
        _make_ticket()
        assert svc.scan_for_eligible_tickets(T0 + timedelta(hours=3)) == []


# ═════════════════════════════════════════════════════════════════════════════
# Manual escalation
# ═════════════════════════════════════════════════════════════════════════════


class TestManualEscalate:
    def test_student_cannot_escalate(self):
        student = _make_user(vertical=None, role="STUDENT")
        ticket = _make_ticket()
        with pytest.raises(NotAuthorizedError):
            svc.manual_escalate(ticket.id, 1, None, "help", student)

    @pytest.mark.parametrize("level", [0, 6, "2", True, None, 2.0])
    def test_invalid_level_values(self, level):
        staff = _make_user()
        ticket = _make_ticket()
        with pytest.raises(InvalidLevelError):
            svc.manual_escalate(ticket.id, level, staff.id, "help", staff)

    def test_level_must_exceed_current(self):
        staff = _make_user()
        ticket = _make_ticket()
        svc.manual_escalate(ticket.id, 2, staff.id, "first", staff, now=T0)
        for level in (1, 2):
            with pytest.raises(InvalidLevelError, match="above the current level 2"):
                svc.manual_escalate(ticket.id, level, staff.id, "again", staff, now=T0)

    def test_concurrent_same_level_is_invalid_level(self, monkeypatch):
        staff = _make_user()
        ticket = _make_ticket()
        svc.manual_escalate(ticket.id, 2, staff.id, "first", staff, now=T0)
        # the second caller read the ladder before the first one committed
        monkeypatch.setattr(svc, "highest_level", lambda ticket_id: 0)

        with pytest.raises(InvalidLevelError, match="concurrently"):
            svc.manual_escalate(ticket.id, 2, staff.id, "second", staff, now=T0)
        assert _levels(ticket.id) == [2]

    def test_can_skip_levels(self):
        staff = _make_user()
        ticket = _make_ticket()
        esc = svc.manual_escalate(ticket.id, 3, staff.id, "urgent", staff, now=T0)
        assert esc.level == 3
        assert esc.is_auto is False
        assert esc.escalated_by_id == staff.id

    def test_inactive_ticket_rejected(self):
        staff = _make_user()
        ticket = _make_ticket(status="CLOSED")
        with pytest.raises(ValidationError, match="CLOSED"):
            svc.manual_escalate(ticket.id, 1, staff.id, "late", staff)

    def test_reason_required(self):
        staff = _make_user()
        ticket = _make_ticket()
        with pytest.raises(ValidationError, match="reason"):
            svc.manual_escalate(ticket.id, 1, staff.id, "   ", staff)

    def test_target_must_be_staff(self):
        staff = _make_user()
        student = _make_user(vertical=None, role="STUDENT")
        ticket = _make_ticket()
        with pytest.raises(ValidationError):
            svc.manual_escalate(ticket.id, 1, student.id, "help", staff)

    def test_unknown_ticket(self):
        staff = _make_user()
        with pytest.raises(NotFoundError):
            svc.manual_escalate(9999, 1, staff.id, "help", staff)


# ═════════════════════════════════════════════════════════════════════════════
# Resolution
# ═════════════════════════════════════════════════════════════════════════════


class TestResolve:
    def _escalated(self):
        staff = _make_user()
        recipient = _make_user("BLOCK_SUPERVISOR")
        ticket = _make_ticket(assigned_to=staff)
        esc = svc.manual_escalate(ticket.id, 2, recipient.id, "stuck", staff, now=T0)
        return ticket, esc, staff, recipient

    def test_recipient_resolves_without_touching_status(self):
        ticket, esc, _, recipient = self._escalated()
        svc.resolve(esc.id, recipient, now=T0 + timedelta(hours=1))
        assert esc.resolved_at is not None
        assert esc.resolved_by_id == recipient.id
        assert ticket.status == "ASSIGNED"
        assert ticket.is_escalated is False

    def test_other_staff_cannot_resolve(self):
        _, esc, staff, _ = self._escalated()
        with pytest.raises(NotAuthorizedError):
            svc.resolve(esc.id, staff)

    def test_admin_can_resolve(self, admin):
        _, esc, _, _ = self._escalated()
        svc.resolve(esc.id, admin)
        assert esc.resolved_by_id == admin.id

    def test_double_resolve(self):
        _, esc, _, recipient = self._escalated()
        svc.resolve(esc.id, recipient)
        with pytest.raises(AlreadyResolvedError):
            svc.resolve(esc.id, recipient)

    def test_unknown_escalation(self, admin):
        with pytest.raises(NotFoundError):
            svc.resolve(424242, admin)

    def test_resolution_counts_as_activity(self):
        ticket, esc, _, recipient = self._escalated()
        svc.resolve(esc.id, recipient, now=T0 + timedelta(hours=20))
        # level 3 for HIGH is 6h; anchor moved to the resolution time
        decision = svc.evaluate_ticket(ticket, T0 + timedelta(hours=25))
        assert decision.decision == svc.DECISION_NOT_DUE
        assert decision.next_level == 3


# ═════════════════════════════════════════════════════════════════════════════
# Reporting
# ═════════════════════════════════════════════════════════════════════════════


def test_statistics_and_listing():
    staff = _make_user()
    recipient = _make_user("BLOCK_SUPERVISOR")
    ticket = _make_ticket(assigned_to=staff)
    first = svc.manual_escalate(ticket.id, 1, recipient.id, "a", staff, now=T0)
    svc.manual_escalate(ticket.id, 4, recipient.id, "b", staff, now=T0)

    stats = svc.escalation_statistics()
    assert stats["total"] == 2
    assert stats["active"] == 1
    assert stats["superseded"] == 1
    assert stats["manual"] == 2
    assert stats["critical_active"] == 1
    assert stats["by_level"]["STAFF_MEMBER"] == 1
    assert stats["by_level"]["HOSTEL_ADMINISTRATION"] == 1

    active = svc.list_escalations(ticket_id=ticket.id, active_only=True)
    assert [e["level"] for e in active] == [4]
    assert len(svc.list_escalations(escalated_to_id=recipient.id)) == 2
    assert first.superseded_by_id is not None


def test_overdue_escalations():
    staff = _make_user()
    ticket = _make_ticket(priority="HIGH", assigned_to=staff)
    svc.manual_escalate(ticket.id, 1, staff.id, "slow", staff, now=T0)

    assert svc.overdue_escalations(T0 + timedelta(hours=3)) == []
    overdue = svc.overdue_escalations(T0 + timedelta(hours=5))
    assert len(overdue) == 1
    assert overdue[0]["ticket_priority"] == "HIGH"
    assert overdue[0]["overdue_hours"] == pytest.approx(1.0)
