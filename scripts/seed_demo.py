#!/usr/bin/env python3
"""
Hostel Ticketing Platform — Demo Seed.

Creates a small hostel with a realistic staff roster, category routing and
a handful of open tickets so assignment and escalation can be tried out
from the API straight away.

Usage:
    python scripts/seed_demo.py              # reset DB + seed
    python scripts/seed_demo.py --no-reset   # seed on top of existing data
    python scripts/seed_demo.py --assign     # also auto-assign the tickets
"""

import argparse
import sys

sys.path.insert(0, ".")

from hostel_tickets import create_app
from hostel_tickets.core.exceptions import NoEligibleStaffError
from hostel_tickets.models import db
from hostel_tickets.models.user import User
from hostel_tickets.services import assignment, mapping_service, ticket_service


# ═══════════════════════════════════════════════════════════════════════════
# 1. PEOPLE
# ═══════════════════════════════════════════════════════════════════════════

# (email, name, role, vertical)
_USERS = [
    ("warden@hostel.demo", "Meera Iyer", "STAFF", "HOSTEL_WARDEN"),
    ("chief.warden@hostel.demo", "R. Krishnan", "STAFF", "CHIEF_WARDEN"),
    ("supervisor.a@hostel.demo", "Arjun Rao", "STAFF", "BLOCK_SUPERVISOR"),
    ("maint.sup@hostel.demo", "Farah Khan", "STAFF", "MAINTENANCE_SUPERVISOR"),
    ("spark1@hostel.demo", "Ravi Kumar", "STAFF", "ELECTRICAL"),
    ("spark2@hostel.demo", "Sunil Das", "STAFF", "ELECTRICAL"),
    ("plumb1@hostel.demo", "Joseph Mathew", "STAFF", "PLUMBING"),
    ("it1@hostel.demo", "Neha Singh", "STAFF", "IT_SUPPORT"),
    ("clean1@hostel.demo", "Lakshmi Devi", "STAFF", "HOUSEKEEPING"),
    ("guard1@hostel.demo", "Vikram Thapa", "STAFF", "SECURITY_OFFICER"),
    ("office@hostel.demo", "Admin Office", "ADMIN", "ADMIN_OFFICER"),
    ("student1@hostel.demo", "Aditi Sharma", "STUDENT", None),
    ("student2@hostel.demo", "Kabir Mehta", "STUDENT", None),
]


def seed_users() -> dict[str, User]:
    users = {}
    for email, name, role, vertical in _USERS:
        u = User(email=email, full_name=name, role=role, staff_vertical=vertical)
        db.session.add(u)
        users[email] = u
    db.session.commit()
    print(f"  👥 {len(users)} users")
    return users


# ═══════════════════════════════════════════════════════════════════════════
# 2. ROUTING
# ═══════════════════════════════════════════════════════════════════════════

def seed_mappings(users: dict[str, User]) -> None:
    """Block A gets a dedicated electrician; everyone else covers all blocks."""
    rows = [
        ("spark1@hostel.demo", "ELECTRICAL_ISSUES", "A", 1, 5),
        ("spark2@hostel.demo", "ELECTRICAL_ISSUES", None, 1, 3),
        ("plumb1@hostel.demo", "PLUMBING_WATER", None, 1, 4),
        ("it1@hostel.demo", "NETWORK_INTERNET", None, 1, 4),
        ("it1@hostel.demo", "COMPUTER_HARDWARE", None, 2, 3),
        ("clean1@hostel.demo", "HOUSEKEEPING_CLEANLINESS", None, 1, 3),
        ("guard1@hostel.demo", "SAFETY_SECURITY", None, 1, 4),
        ("supervisor.a@hostel.demo", "GENERAL", None, 2, 3),
    ]
    created = mapping_service.create_mappings_bulk([
        {
            "staff_id": users[email].id,
            "category": category,
            "hostel_block": block,
            "priority_level": priority_level,
            "expertise_level": expertise,
        }
        for email, category, block, priority_level, expertise in rows
    ])
    print(f"  🗺️  {len(created)} staff mappings")


# ═══════════════════════════════════════════════════════════════════════════
# 3. TICKETS
# ═══════════════════════════════════════════════════════════════════════════

_TICKETS = [
    ("student1@hostel.demo", {"title": "Tube light flickering", "category": "ELECTRICAL_ISSUES",
                              "hostel_block": "A", "room_number": "A-114"}),
    ("student1@hostel.demo", {"title": "No hot water on 2nd floor", "category": "PLUMBING_WATER",
                              "hostel_block": "A"}),
    ("student2@hostel.demo", {"title": "Wi-Fi drops every evening", "category": "NETWORK_INTERNET",
                              "hostel_block": "B", "room_number": "B-207"}),
    ("student2@hostel.demo", {"title": "Stranger loitering near gate", "category": "SAFETY_SECURITY",
                              "hostel_block": "B", "is_emergency": True}),
    ("student2@hostel.demo", {"title": "Study table wobbles", "category": "FURNITURE_FIXTURES",
                              "hostel_block": "B"}),
]


def seed_tickets(users: dict[str, User], assign: bool) -> None:
    office = users["office@hostel.demo"]
    for email, data in _TICKETS:
        ticket = ticket_service.create_ticket(data, users[email])
        line = f"  🎫 {ticket.ticket_number} {ticket.title}"
        if assign:
            try:
                ticket = assignment.assign_ticket(ticket.id, office)
                line += f" → user {ticket.assigned_to_id}"
            except NoEligibleStaffError as exc:
                line += f" (unassigned: {exc})"
        print(line)


def main():
    parser = argparse.ArgumentParser(description="Hostel ticketing demo seed")
    parser.add_argument("--no-reset", action="store_true",
                        help="Don't clear existing data")
    parser.add_argument("--assign", action="store_true",
                        help="Auto-assign seeded tickets")
    args = parser.parse_args()

    app = create_app()
    print(f"  🎯 DB: {app.config['SQLALCHEMY_DATABASE_URI']}\n")

    with app.app_context():
        if not args.no_reset:
            db.drop_all()
            db.create_all()
            print("  ♻️  Database reset complete\n")

        users = seed_users()
        seed_mappings(users)
        seed_tickets(users, assign=args.assign)

        report = mapping_service.validate_mappings()
        print(f"\n  ✅ Routing valid: {report['is_valid']} "
              f"(uncovered categories: {len(report['categories_without_mappings'])})")


if __name__ == "__main__":
    main()
