"""
Hostel Ticketing Platform
Mapping Service — administration of staff routing rules.

Business rules:
  - staff_id must reference a STAFF user
  - priority_level ≥ 1, expertise_level 1..5, 0 < capacity_weight ≤ 9.99
  - at most one *active* mapping per (staff_id, hostel_block, category);
    hostel_block null means "every block"
  - mappings are deactivated, never deleted
  - every write drops the cached mapping snapshots used by the assignment engine

Bulk creation is all-or-nothing: any invalid row rejects the whole batch.
"""

from __future__ import annotations

import logging
from collections import Counter
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from hostel_tickets.core.exceptions import ConflictError, NotFoundError, ValidationError
from hostel_tickets.models import db
from hostel_tickets.models.mapping import StaffMapping
from hostel_tickets.models.reference import CATEGORIES, ROLE_STAFF, STAFF_VERTICALS
from hostel_tickets.models.user import User
from hostel_tickets.services import cache_service

logger = logging.getLogger(__name__)

_MAX_CAPACITY_WEIGHT = Decimal("9.99")
_UPDATABLE_FIELDS = {
    "hostel_block", "category", "priority_level",
    "capacity_weight", "expertise_level", "is_active",
}


# ═════════════════════════════════════════════════════════════════════════════
# Validation helpers
# ═════════════════════════════════════════════════════════════════════════════


def _clean_block(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _validate_fields(data: dict, *, partial: bool = False) -> tuple[dict, dict]:
    """Coerce and check mapping fields. Returns (clean_values, errors)."""
    clean: dict = {}
    errors: dict = {}

    if "staff_id" in data or not partial:
        staff_id = data.get("staff_id")
        if not isinstance(staff_id, int) or isinstance(staff_id, bool):
            errors["staff_id"] = "required integer"
        else:
            staff = db.session.get(User, staff_id)
            if staff is None:
                errors["staff_id"] = f"user {staff_id} not found"
            elif staff.role != ROLE_STAFF:
                errors["staff_id"] = f"user {staff_id} is not a staff member"
            else:
                clean["staff_id"] = staff_id

    if "category" in data or not partial:
        category = data.get("category")
        category = category.strip() if isinstance(category, str) else category
        if category is not None and not isinstance(category, str):
            errors["category"] = "must be a string"
        elif not category:
            errors["category"] = "required"
        elif len(category) > 80:
            errors["category"] = "must be ≤ 80 characters"
        else:
            clean["category"] = category

    if "hostel_block" in data:
        block = _clean_block(data.get("hostel_block"))
        if block and len(block) > 50:
            errors["hostel_block"] = "must be ≤ 50 characters"
        else:
            clean["hostel_block"] = block
    elif not partial:
        clean["hostel_block"] = None

    if "priority_level" in data or not partial:
        level = data.get("priority_level", 1)
        if not isinstance(level, int) or isinstance(level, bool) or level < 1:
            errors["priority_level"] = "must be an integer ≥ 1"
        else:
            clean["priority_level"] = level

    if "expertise_level" in data or not partial:
        expertise = data.get("expertise_level", 3)
        if not isinstance(expertise, int) or isinstance(expertise, bool) or not 1 <= expertise <= 5:
            errors["expertise_level"] = "must be an integer between 1 and 5"
        else:
            clean["expertise_level"] = expertise

    if "capacity_weight" in data or not partial:
        raw = data.get("capacity_weight", "1.00")
        try:
            weight = Decimal(str(raw)).quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError):
            errors["capacity_weight"] = "must be a decimal number"
        else:
            if not weight.is_finite() or weight <= 0 or weight > _MAX_CAPACITY_WEIGHT:
                errors["capacity_weight"] = "must be > 0 and ≤ 9.99"
            else:
                clean["capacity_weight"] = weight

    if "is_active" in data:
        clean["is_active"] = bool(data["is_active"])

    return clean, errors


def _find_active_duplicate(staff_id: int, hostel_block: str | None, category: str,
                           exclude_id: int | None = None) -> StaffMapping | None:
    block_clause = (
        StaffMapping.hostel_block.is_(None) if hostel_block is None
        else StaffMapping.hostel_block == hostel_block
    )
    stmt = select(StaffMapping).where(
        StaffMapping.staff_id == staff_id,
        StaffMapping.category == category,
        StaffMapping.is_active == True,  # noqa: E712
        block_clause,
    )
    if exclude_id is not None:
        stmt = stmt.where(StaffMapping.id != exclude_id)
    return db.session.execute(stmt.limit(1)).scalar_one_or_none()


def _triple(values: dict) -> str:
    return f"{values['staff_id']}/{values.get('hostel_block') or '*'}/{values['category']}"


def _commit_or_conflict(triple: str) -> None:
    """Commit; a concurrent writer that won the active-triple index becomes a ConflictError."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Mapping write lost a race: %s", exc.orig,
                       extra={"event_type": "mapping_conflict"})
        raise ConflictError("StaffMapping", "staff_id/hostel_block/category", triple) from exc


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════


def get_mapping(mapping_id: int) -> StaffMapping:
    mapping = db.session.get(StaffMapping, mapping_id)
    if mapping is None:
        raise NotFoundError(resource="StaffMapping", resource_id=mapping_id)
    return mapping


def list_mappings(*, staff_id: int | None = None, category: str | None = None,
                  hostel_block: str | None = None, include_inactive: bool = False) -> list[StaffMapping]:
    stmt = select(StaffMapping).order_by(
        StaffMapping.category, StaffMapping.priority_level, StaffMapping.id,
    )
    if not include_inactive:
        stmt = stmt.where(StaffMapping.is_active == True)  # noqa: E712
    if staff_id is not None:
        stmt = stmt.where(StaffMapping.staff_id == staff_id)
    if category:
        stmt = stmt.where(StaffMapping.category == category)
    if hostel_block:
        stmt = stmt.where(StaffMapping.hostel_block == hostel_block)
    return db.session.execute(stmt).scalars().all()


def create_mapping(data: dict) -> StaffMapping:
    """Create one active mapping.

    Raises:
        ValidationError: invalid fields.
        ConflictError: an active mapping already covers (staff, block, category).
    """
    values, errors = _validate_fields(data)
    if errors:
        raise ValidationError("Invalid mapping", details=errors)
    if _find_active_duplicate(values["staff_id"], values["hostel_block"], values["category"]):
        raise ConflictError("StaffMapping", "staff_id/hostel_block/category", _triple(values))

    mapping = StaffMapping(is_active=True, **values)
    db.session.add(mapping)
    _commit_or_conflict(_triple(values))
    cache_service.invalidate_mappings()
    logger.info(
        "Mapping created",
        extra={"staff_id": mapping.staff_id, "category": mapping.category,
               "hostel_block": mapping.hostel_block, "event_type": "mapping_created"},
    )
    return mapping


def create_mappings_bulk(items: list[dict]) -> list[StaffMapping]:
    """Create many mappings in one transaction, or none at all.

    Raises:
        ValidationError: with ``details`` keyed by row index.
        ConflictError: another writer committed one of the triples first.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("mappings must be a non-empty list")

    errors: dict = {}
    prepared: list[dict] = []
    seen: set = set()
    for index, item in enumerate(items):
        values, row_errors = _validate_fields(item if isinstance(item, dict) else {})
        if not row_errors:
            key = (values["staff_id"], values["hostel_block"], values["category"])
            if key in seen:
                row_errors["mapping"] = "duplicate of an earlier row in this batch"
            elif _find_active_duplicate(*key):
                row_errors["mapping"] = f"active mapping already exists for {_triple(values)}"
            seen.add(key)
        if row_errors:
            errors[str(index)] = row_errors
        else:
            prepared.append(values)

    if errors:
        raise ValidationError(f"{len(errors)} of {len(items)} mappings are invalid", details=errors)

    created = [StaffMapping(is_active=True, **values) for values in prepared]
    db.session.add_all(created)
    _commit_or_conflict(", ".join(_triple(values) for values in prepared))
    cache_service.invalidate_mappings()
    logger.info("Bulk created %d mappings", len(created), extra={"event_type": "mapping_bulk_created"})
    return created


def update_mapping(mapping_id: int, data: dict) -> StaffMapping:
    """Partial update. staff_id is immutable; create a new mapping instead."""
    mapping = get_mapping(mapping_id)
    if "staff_id" in data and data["staff_id"] != mapping.staff_id:
        raise ValidationError("staff_id cannot be changed", details={"staff_id": "immutable"})

    unknown = set(data) - _UPDATABLE_FIELDS - {"staff_id"}
    if unknown:
        raise ValidationError("Unknown fields", details={f: "not updatable" for f in sorted(unknown)})

    values, errors = _validate_fields({k: v for k, v in data.items() if k != "staff_id"}, partial=True)
    if errors:
        raise ValidationError("Invalid mapping", details=errors)

    merged = {
        "staff_id": mapping.staff_id,
        "hostel_block": values.get("hostel_block", mapping.hostel_block),
        "category": values.get("category", mapping.category),
    }
    becomes_active = values.get("is_active", mapping.is_active)
    if becomes_active and _find_active_duplicate(
        merged["staff_id"], merged["hostel_block"], merged["category"], exclude_id=mapping.id,
    ):
        raise ConflictError("StaffMapping", "staff_id/hostel_block/category", _triple(merged))

    for field, value in values.items():
        setattr(mapping, field, value)
    _commit_or_conflict(_triple(merged))
    cache_service.invalidate_mappings()
    logger.info("Mapping %s updated: %s", mapping.id, sorted(values),
                extra={"staff_id": mapping.staff_id, "event_type": "mapping_updated"})
    return mapping


def deactivate_mapping(mapping_id: int) -> StaffMapping:
    """Soft delete. Deactivating an inactive mapping is a no-op."""
    mapping = get_mapping(mapping_id)
    if mapping.is_active:
        mapping.is_active = False
        db.session.commit()
        cache_service.invalidate_mappings()
        logger.info("Mapping %s deactivated", mapping.id,
                    extra={"staff_id": mapping.staff_id, "event_type": "mapping_deactivated"})
    return mapping


# ═════════════════════════════════════════════════════════════════════════════
# Health checks & analytics
# ═════════════════════════════════════════════════════════════════════════════


def validate_mappings() -> dict:
    """Report routing gaps: uncovered categories, idle staff, dead or odd rules."""
    mappings = list_mappings()
    staff = db.session.execute(
        select(User).where(User.role == ROLE_STAFF).order_by(User.id)
    ).scalars().all()
    staff_by_id = {u.id: u for u in staff}

    covered = {m.category for m in mappings}
    categories_without_mappings = sorted(c for c in CATEGORIES if c not in covered)

    mapped_staff = {m.staff_id for m in mappings}
    staff_without_mappings = [
        u.id for u in staff if u.is_active and u.id not in mapped_staff
    ]

    inactive_staff_mappings = [
        m.id for m in mappings
        if m.staff_id in staff_by_id and not staff_by_id[m.staff_id].is_active
    ]

    keys = {(m.staff_id, m.category, m.hostel_block is None) for m in mappings}
    block_overlaps = sorted({
        m.id for m in mappings
        if m.hostel_block is not None and (m.staff_id, m.category, True) in keys
    })

    incompatible = []
    for m in mappings:
        user = staff_by_id.get(m.staff_id)
        vertical = STAFF_VERTICALS.get(user.staff_vertical) if user and user.staff_vertical else None
        if vertical and m.category in CATEGORIES and m.category not in vertical.compatible_categories:
            incompatible.append(m.id)

    return {
        "is_valid": not categories_without_mappings and not inactive_staff_mappings,
        "categories_without_mappings": categories_without_mappings,
        "staff_without_mappings": staff_without_mappings,
        "inactive_staff_mappings": inactive_staff_mappings,
        "block_overlaps": block_overlaps,
        "incompatible_vertical_mappings": incompatible,
    }


def mapping_analytics() -> dict:
    mappings = list_mappings()
    by_category = Counter(m.category for m in mappings)
    by_block = Counter(m.hostel_block or "ALL" for m in mappings)
    covered_known = {m.category for m in mappings} & set(CATEGORIES)
    return {
        "total_active": len(mappings),
        "staff_count": len({m.staff_id for m in mappings}),
        "by_category": dict(sorted(by_category.items())),
        "by_hostel_block": dict(sorted(by_block.items())),
        "category_coverage_pct": round(len(covered_known) / len(CATEGORIES) * 100, 1),
        "avg_expertise_level": (
            round(sum(m.expertise_level for m in mappings) / len(mappings), 2) if mappings else 0.0
        ),
    }
