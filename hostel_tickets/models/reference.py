"""
Hostel Ticketing Platform
Static reference tables — categories, priorities, staff verticals, escalation levels.

These are plain lookup maps, not database tables: routing behaviour is
driven by data here rather than by per-enum methods, so adding a category
or vertical is a one-line change.
"""

from __future__ import annotations

from dataclasses import dataclass


# ── Roles ────────────────────────────────────────────────────────────────────

ROLE_STUDENT = "STUDENT"
ROLE_STAFF = "STAFF"
ROLE_ADMIN = "ADMIN"
USER_ROLES = {ROLE_STUDENT, ROLE_STAFF, ROLE_ADMIN}

# Roles allowed to escalate, manage and assign tickets.
STAFF_ROLES = {ROLE_STAFF, ROLE_ADMIN}


# ── Priorities ───────────────────────────────────────────────────────────────

PRIORITIES = ["LOW", "MEDIUM", "HIGH", "EMERGENCY"]

PRIORITY_RANK = {p: i for i, p in enumerate(PRIORITIES)}

# Hours an escalation may stay open before it is reported as overdue.
PRIORITY_ESCALATION_HOURS = {
    "EMERGENCY": 1,
    "HIGH": 4,
    "MEDIUM": 24,
    "LOW": 72,
}


# ── Ticket categories ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CategoryInfo:
    code: str
    display_name: str
    default_priority: str
    estimated_hours: int
    required_vertical: str


_CATEGORY_ROWS = [
    ("ELECTRICAL_ISSUES", "Electrical Issues", "HIGH", 4, "ELECTRICAL"),
    ("PLUMBING_WATER", "Plumbing & Water", "HIGH", 3, "PLUMBING"),
    ("HVAC", "HVAC (Heating/Cooling)", "MEDIUM", 6, "HVAC"),
    ("STRUCTURAL_CIVIL", "Structural & Civil", "MEDIUM", 24, "GENERAL_MAINTENANCE"),
    ("FURNITURE_FIXTURES", "Furniture & Fixtures", "LOW", 4, "CARPENTRY"),
    ("NETWORK_INTERNET", "Network & Internet", "HIGH", 2, "IT_SUPPORT"),
    ("COMPUTER_HARDWARE", "Computer Hardware", "MEDIUM", 4, "IT_SUPPORT"),
    ("AUDIO_VISUAL_EQUIPMENT", "Audio/Visual Equipment", "MEDIUM", 3, "IT_SUPPORT"),
    ("SECURITY_SYSTEMS", "Security Systems", "HIGH", 2, "SECURITY_SYSTEMS"),
    ("HOUSEKEEPING_CLEANLINESS", "Housekeeping & Cleanliness", "LOW", 4, "HOUSEKEEPING"),
    ("SAFETY_SECURITY", "Safety & Security", "EMERGENCY", 1, "SECURITY_OFFICER"),
    ("LANDSCAPING_OUTDOOR", "Landscaping & Outdoor", "LOW", 8, "LANDSCAPING"),
    ("GENERAL", "General", "LOW", 12, "GENERAL_MAINTENANCE"),
]

CATEGORIES: dict[str, CategoryInfo] = {
    row[0]: CategoryInfo(*row) for row in _CATEGORY_ROWS
}

GENERAL_CATEGORY = "GENERAL"
EMERGENCY_CATEGORIES = {"SAFETY_SECURITY"}


# ── Staff verticals ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class VerticalInfo:
    code: str
    max_active_tickets: int
    handles_emergencies: bool
    compatible_categories: frozenset


def _v(code, max_active, emergencies, categories=()):
    return VerticalInfo(code, max_active, emergencies, frozenset(categories))


STAFF_VERTICALS: dict[str, VerticalInfo] = {v.code: v for v in (
    _v("ELECTRICAL", 8, True, ["ELECTRICAL_ISSUES"]),
    _v("PLUMBING", 8, True, ["PLUMBING_WATER"]),
    _v("HVAC", 8, False, ["HVAC"]),
    _v("CARPENTRY", 6, False, ["FURNITURE_FIXTURES", "STRUCTURAL_CIVIL"]),
    _v("IT_SUPPORT", 10, False,
       ["NETWORK_INTERNET", "COMPUTER_HARDWARE", "AUDIO_VISUAL_EQUIPMENT"]),
    _v("NETWORK_ADMIN", 12, False, ["NETWORK_INTERNET"]),
    _v("SECURITY_SYSTEMS", 6, False, ["SECURITY_SYSTEMS"]),
    _v("HOUSEKEEPING", 5, False, ["HOUSEKEEPING_CLEANLINESS"]),
    _v("LANDSCAPING", 4, False, ["LANDSCAPING_OUTDOOR"]),
    _v("GENERAL_MAINTENANCE", 6, False, ["STRUCTURAL_CIVIL", "GENERAL"]),
    _v("HOSTEL_WARDEN", 12, True, CATEGORIES.keys()),
    _v("BLOCK_SUPERVISOR", 10, True, CATEGORIES.keys()),
    _v("SECURITY_OFFICER", 5, True, ["SAFETY_SECURITY", "SECURITY_SYSTEMS"]),
    _v("ADMIN_STAFF", 8, False, ["GENERAL"]),
    # Escalation tiers
    _v("MAINTENANCE_SUPERVISOR", 10, False, CATEGORIES.keys()),
    _v("ASSISTANT_WARDEN", 12, False, CATEGORIES.keys()),
    _v("CHIEF_WARDEN", 15, False, CATEGORIES.keys()),
    _v("ADMIN_OFFICER", 10, False, CATEGORIES.keys()),
)}


def max_active_tickets(vertical: str | None, default: int) -> int:
    """Capacity ceiling for a vertical; *default* for staff without one."""
    info = STAFF_VERTICALS.get(vertical) if vertical else None
    return info.max_active_tickets if info else default


def handles_emergencies(vertical: str | None) -> bool:
    info = STAFF_VERTICALS.get(vertical) if vertical else None
    return bool(info and info.handles_emergencies)


# ── Escalation ladder ────────────────────────────────────────────────────────

MAX_ESCALATION_LEVEL = 5
CRITICAL_ESCALATION_LEVEL = 4


@dataclass(frozen=True)
class EscalationLevelInfo:
    level: int
    name: str
    base_hours: int
    notify_verticals: tuple


ESCALATION_LEVELS: dict[int, EscalationLevelInfo] = {e.level: e for e in (
    EscalationLevelInfo(1, "STAFF_MEMBER", 4, (
        "ELECTRICAL", "PLUMBING", "HVAC", "IT_SUPPORT",
        "GENERAL_MAINTENANCE", "HOUSEKEEPING",
    )),
    EscalationLevelInfo(2, "TEAM_LEAD", 8, ("BLOCK_SUPERVISOR", "MAINTENANCE_SUPERVISOR")),
    EscalationLevelInfo(3, "DEPARTMENT_HEAD", 12, ("HOSTEL_WARDEN", "ASSISTANT_WARDEN")),
    EscalationLevelInfo(4, "HOSTEL_ADMINISTRATION", 24, ("HOSTEL_WARDEN", "CHIEF_WARDEN")),
    EscalationLevelInfo(5, "INSTITUTE_ADMINISTRATION", 48, ("CHIEF_WARDEN", "ADMIN_OFFICER")),
)}

# threshold = max(floor, base / divisor)
_THRESHOLD_DIVISOR = {"EMERGENCY": 4, "HIGH": 2, "MEDIUM": 1, "LOW": 0.5}
_THRESHOLD_FLOOR = {"EMERGENCY": 1, "HIGH": 2, "MEDIUM": 0, "LOW": 0}


def escalation_threshold_hours(level: int, priority: str) -> float:
    """Hours of inactivity after which a ticket is escalated to *level*.

    Raises:
        KeyError: unknown level or priority.
    """
    base = ESCALATION_LEVELS[level].base_hours
    return max(_THRESHOLD_FLOOR[priority], base / _THRESHOLD_DIVISOR[priority])


def is_critical_level(level: int) -> bool:
    return level >= CRITICAL_ESCALATION_LEVEL
