"""
API tests: ticket intake, assignment and lifecycle endpoints.

Requests carry ``X-User-Id`` the way the upstream gateway would.
"""

import itertools

import pytest

from hostel_tickets.models import db
from hostel_tickets.models.mapping import StaffMapping
from hostel_tickets.models.ticket import Ticket
from hostel_tickets.models.user import User

_seq = itertools.count(1)


def _make_user(role="STAFF", vertical="ELECTRICAL", active=True) -> User:
    n = next(_seq)
    u = User(email=f"api{n}@hostel.test", full_name=f"Api User {n}", role=role,
             staff_vertical=vertical if role != "STUDENT" else None, is_active=active)
    db.session.add(u)
    db.session.commit()
    return u


def _make_mapping(staff, category="ELECTRICAL_ISSUES", hostel_block=None) -> StaffMapping:
    m = StaffMapping(staff_id=staff.id, category=category, hostel_block=hostel_block)
    db.session.add(m)
    db.session.commit()
    return m


def _create_ticket(client, headers, **overrides):
    body = {"title": "Fan not working", "category": "ELECTRICAL_ISSUES", "hostel_block": "A"}
    body.update(overrides)
    return client.post("/api/v1/tickets", json=body, headers=headers)


# ═════════════════════════════════════════════════════════════════════════════
# Actor context
# ═════════════════════════════════════════════════════════════════════════════


class TestActorHeader:
    def test_missing_header_is_401(self, client):
        res = client.post("/api/v1/tickets", json={"title": "x"})
        assert res.status_code == 401

    def test_non_numeric_header_is_401(self, client):
        res = client.get("/api/v1/tickets", headers={"X-User-Id": "abc"})
        assert res.status_code == 401

    def test_unknown_user_is_401(self, client):
        res = client.get("/api/v1/tickets", headers={"X-User-Id": "9999"})
        assert res.status_code == 401

    def test_inactive_user_is_401(self, client, as_user):
        gone = _make_user(active=False)
        res = client.get("/api/v1/tickets", headers=as_user(gone))
        assert res.status_code == 401

    def test_health_needs_no_actor(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_liveness_reports_checks(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"


# ═════════════════════════════════════════════════════════════════════════════
# Intake & reads
# ═════════════════════════════════════════════════════════════════════════════


class TestIntake:
    def test_create_ticket(self, client, student, as_user):
        res = _create_ticket(client, as_user(student))
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "OPEN"
        assert data["priority"] == "HIGH"
        assert data["created_by_id"] == student.id
        assert data["ticket_number"].startswith("TKT-")
        assert data["allowed_transitions"] == ["ASSIGNED", "CANCELLED"]

    def test_create_requires_title(self, client, student, as_user):
        res = _create_ticket(client, as_user(student), title="  ")
        assert res.status_code == 422
        assert "title" in res.get_json()["details"]

    def test_unknown_category_rejected(self, client, student, as_user):
        res = _create_ticket(client, as_user(student), category="TELEPORTER")
        assert res.status_code == 422

    @pytest.mark.parametrize("field, value", [
        ("category", ["HVAC"]),
        ("title", 42),
        ("priority", {"level": "HIGH"}),
        ("hostel_block", 7),
    ])
    def test_non_string_fields_are_422(self, client, student, as_user, field, value):
        res = _create_ticket(client, as_user(student), **{field: value})
        assert res.status_code == 422
        assert res.get_json()["details"][field] == "must be a string"

    def test_non_json_body_is_415(self, client, student, as_user):
        res = client.post("/api/v1/tickets", data="title=x",
                          content_type="text/plain", headers=as_user(student))
        assert res.status_code == 415

    def test_student_cannot_list(self, client, student, as_user):
        res = client.get("/api/v1/tickets", headers=as_user(student))
        assert res.status_code == 403

    def test_staff_lists_with_filters(self, client, student, as_user):
        staff = _make_user()
        _create_ticket(client, as_user(student))
        _create_ticket(client, as_user(student), hostel_block="B")

        res = client.get("/api/v1/tickets?hostel_block=B", headers=as_user(staff))
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

        res = client.get("/api/v1/tickets?status=BOGUS", headers=as_user(staff))
        assert res.status_code == 400

    def test_owner_sees_ticket_with_history(self, client, student, as_user):
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]
        res = client.get(f"/api/v1/tickets/{ticket_id}", headers=as_user(student))
        assert res.status_code == 200
        assert res.get_json()["history"] == []

    def test_other_student_gets_404(self, client, student, as_user):
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]
        other = _make_user(role="STUDENT")
        res = client.get(f"/api/v1/tickets/{ticket_id}", headers=as_user(other))
        assert res.status_code == 404

    def test_missing_ticket_is_404(self, client, admin, as_user):
        res = client.get("/api/v1/tickets/424242", headers=as_user(admin))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# Assignment
# ═════════════════════════════════════════════════════════════════════════════


class TestAssignmentEndpoints:
    def test_auto_assign(self, client, student, as_user):
        staff = _make_user()
        _make_mapping(staff)
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]

        res = client.post(f"/api/v1/tickets/{ticket_id}/assign", headers=as_user(staff))

        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "ASSIGNED"
        assert data["assigned_to_id"] == staff.id

    def test_no_eligible_staff_is_409(self, client, student, as_user):
        staff = _make_user(vertical="PLUMBING")
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]

        res = client.post(f"/api/v1/tickets/{ticket_id}/assign", headers=as_user(staff))

        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_NO_ELIGIBLE_STAFF"
        assert body["details"]["category"] == "ELECTRICAL_ISSUES"
        db.session.expire_all()
        assert db.session.get(Ticket, ticket_id).status == "OPEN"

    def test_assignment_preview(self, client, student, as_user):
        staff = _make_user()
        _make_mapping(staff)
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]

        res = client.get(f"/api/v1/tickets/{ticket_id}/assignment-preview",
                         headers=as_user(staff))
        assert res.status_code == 200
        assert [c["staff_id"] for c in res.get_json()["candidates"]] == [staff.id]

    def test_admin_assign(self, client, student, admin, as_user):
        staff = _make_user(vertical="HVAC")
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]

        res = client.post(f"/api/v1/tickets/{ticket_id}/admin-assign",
                          json={"staff_id": staff.id}, headers=as_user(admin))

        assert res.status_code == 200
        assert res.get_json()["assigned_to_id"] == staff.id

    def test_admin_assign_requires_admin(self, client, student, as_user):
        staff = _make_user()
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]
        res = client.post(f"/api/v1/tickets/{ticket_id}/admin-assign",
                          json={"staff_id": staff.id}, headers=as_user(staff))
        assert res.status_code == 403

    def test_admin_assign_requires_staff_id(self, client, student, admin, as_user):
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]
        res = client.post(f"/api/v1/tickets/{ticket_id}/admin-assign",
                          json={"staff_id": "7"}, headers=as_user(admin))
        assert res.status_code == 400

    def test_staff_workload(self, client, as_user):
        staff = _make_user()
        res = client.get(f"/api/v1/staff/{staff.id}/workload", headers=as_user(staff))
        assert res.status_code == 200
        data = res.get_json()
        assert data["active_tickets"] == 0
        assert data["max_active_tickets"] == 8


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionEndpoint:
    def test_full_happy_path(self, client, student, as_user):
        staff = _make_user()
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]
        url = f"/api/v1/tickets/{ticket_id}/transition"

        res = client.post(url, json={"status": "ASSIGNED", "assignee_id": staff.id},
                          headers=as_user(staff))
        assert res.status_code == 200
        for status in ("IN_PROGRESS", "RESOLVED"):
            res = client.post(url, json={"status": status}, headers=as_user(staff))
            assert res.status_code == 200

        res = client.post(url, json={"status": "CLOSED", "note": "thanks"},
                          headers=as_user(student))
        assert res.status_code == 200
        assert res.get_json()["status"] == "CLOSED"

        history = client.get(f"/api/v1/tickets/{ticket_id}",
                             headers=as_user(staff)).get_json()["history"]
        assert [h["to_status"] for h in history] == [
            "ASSIGNED", "IN_PROGRESS", "RESOLVED", "CLOSED",
        ]

    def test_illegal_move_is_409(self, client, student, as_user):
        staff = _make_user()
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]

        res = client.post(f"/api/v1/tickets/{ticket_id}/transition",
                          json={"status": "RESOLVED"}, headers=as_user(staff))

        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_ILLEGAL_TRANSITION"
        assert body["details"] == {"from": "OPEN", "to": "RESOLVED"}

    def test_student_cannot_start_work(self, client, student, as_user):
        staff = _make_user()
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]
        url = f"/api/v1/tickets/{ticket_id}/transition"
        client.post(url, json={"status": "ASSIGNED", "assignee_id": staff.id},
                    headers=as_user(staff))

        res = client.post(url, json={"status": "IN_PROGRESS"}, headers=as_user(student))
        assert res.status_code == 403

    def test_status_required(self, client, student, as_user):
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]
        res = client.post(f"/api/v1/tickets/{ticket_id}/transition", json={},
                          headers=as_user(student))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_unknown_status_rejected(self, client, student, as_user):
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]
        res = client.post(f"/api/v1/tickets/{ticket_id}/transition",
                          json={"status": "ARCHIVED"}, headers=as_user(student))
        assert res.status_code == 400

    def test_escalation_status(self, client, student, as_user):
        staff = _make_user()
        ticket_id = _create_ticket(client, as_user(student)).get_json()["id"]
        res = client.get(f"/api/v1/tickets/{ticket_id}/escalation-status",
                         headers=as_user(staff))
        assert res.status_code == 200
        data = res.get_json()
        assert data["decision"] == "not_due"
        assert data["current_level"] == 0
        assert data["next_level"] == 1
