"""
Discount rule store.

System rule rows (one active row per SYSTEM_DISCOUNT_TYPES entry) are
auto-created the first time the engine applies that type. ensure_rule is an
idempotent upsert: the insert runs in a SAVEPOINT and a unique-index
conflict from a concurrent transaction falls back to reading the winner.
When an older row already holds the default name, the rule is created
under "<default name> (<TYPE>)" instead. Operator rules cannot take either
name.

Operator rules are created/edited through create_rule/update_rule and
soft-deleted by soft_delete_rule.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DiscountRule, Service
from ..models.discounts import (
    SYSTEM_DISCOUNT_TYPES,
    PROMOTIONAL_DISCOUNT_TYPES,
    TYPE_SIXTH_VISIT,
    TYPE_BIRTHDAY_MONTH,
    TYPE_SERVICE_COMBO,
    TYPE_BRING_OWN_PRODUCT,
    TYPE_MANUAL_DISCOUNT,
)
from ..money import to_money, ZERO
from ..validation import ValidationError, ConflictError, ModelValidationPolicy, validate_payload
from salon.time_utils import utcnow


DELETED_MARKER = "_deleted_"

# Defaults for auto-created system rule rows
SYSTEM_RULE_DEFAULTS: dict[str, dict] = {
    TYPE_SIXTH_VISIT: {"name": "6th Visit Discount (20%)", "value": Decimal("20"), "is_percentage": True},
    TYPE_BIRTHDAY_MONTH: {"name": "Birthday Month Discount (20%)", "value": Decimal("20"), "is_percentage": True},
    TYPE_SERVICE_COMBO: {"name": "Shampoo + Service Combo Discount", "value": Decimal("2000"), "is_percentage": False},
    TYPE_BRING_OWN_PRODUCT: {"name": "Bring Your Own Product Discount", "value": Decimal("1000"), "is_percentage": False},
    TYPE_MANUAL_DISCOUNT: {"name": "Manual Discount", "value": Decimal("0"), "is_percentage": False},
}


def _system_rule_names(discount_type: str) -> tuple[str, str]:
    """Default name, then the type-suffixed name used when the default is taken."""
    name = SYSTEM_RULE_DEFAULTS[discount_type]["name"]
    return name, f"{name} ({discount_type})"


# Operator rules may not use these (ensure_rule inserts them on first use)
RESERVED_RULE_NAMES = frozenset(n for t in SYSTEM_RULE_DEFAULTS for n in _system_rule_names(t))


RULE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "type", "description", "value", "is_percentage", "min_amount",
        "max_discount", "start_date", "end_date", "apply_to_all_services", "is_active",
    },
    required_on_create={"name", "type", "value"},
)


def find_active_by_type(discount_type: str) -> DiscountRule | None:
    return (
        db.session.query(DiscountRule)
        .filter_by(type=discount_type, is_active=True)
        .order_by(DiscountRule.id)
        .first()
    )


def find_active_valid_now(now: datetime | None = None) -> list[DiscountRule]:
    """Active operator rules whose optional [start_date, end_date] window contains now."""
    now = now or utcnow()
    return (
        db.session.query(DiscountRule)
        .filter(
            DiscountRule.is_active.is_(True),
            DiscountRule.type.in_(PROMOTIONAL_DISCOUNT_TYPES),
            or_(DiscountRule.start_date.is_(None), DiscountRule.start_date <= now),
            or_(DiscountRule.end_date.is_(None), DiscountRule.end_date >= now),
        )
        .order_by(DiscountRule.id)
        .all()
    )


def ensure_rule(discount_type: str) -> DiscountRule:
    """
    Return the active rule row for a system discount type, creating it once.

    Safe to call repeatedly and from concurrent transactions.
    """
    if discount_type not in SYSTEM_DISCOUNT_TYPES:
        raise ValueError(f"{discount_type} is not a system discount type")

    rule = find_active_by_type(discount_type)
    if rule:
        return rule

    defaults = SYSTEM_RULE_DEFAULTS[discount_type]
    last_exc = None
    for name in _system_rule_names(discount_type):
        try:
            with db.session.begin_nested():
                rule = DiscountRule(
                    name=name,
                    type=discount_type,
                    value=defaults["value"],
                    is_percentage=defaults["is_percentage"],
                    description=defaults["name"],
                    apply_to_all_services=False,
                    is_active=True,
                )
                db.session.add(rule)
                db.session.flush()
            return rule
        except IntegrityError as exc:
            # Another transaction inserted it first
            rule = find_active_by_type(discount_type)
            if rule:
                return rule
            # Otherwise the name belongs to an older row; try the next one
            last_exc = exc
    raise last_exc


def ensure_system_rules() -> list[DiscountRule]:
    return [ensure_rule(t) for t in SYSTEM_DISCOUNT_TYPES]


def list_rules(include_deleted: bool = False) -> list[DiscountRule]:
    q = db.session.query(DiscountRule)
    if not include_deleted:
        q = q.filter(~DiscountRule.name.contains(DELETED_MARKER, autoescape=True))
    return q.order_by(DiscountRule.created_at.desc(), DiscountRule.id.desc()).all()


def _load_services(service_ids) -> list[Service]:
    if not isinstance(service_ids, list):
        raise ValidationError("service_ids must be a list")
    ids = []
    for sid in service_ids:
        if isinstance(sid, bool) or not str(sid).strip().isdigit():
            raise ValidationError("service_ids must contain integer ids")
        ids.append(int(sid))
    ids = sorted(set(ids))
    services = db.session.query(Service).filter(Service.id.in_(ids)).all() if ids else []
    missing = sorted(set(ids) - {s.id for s in services})
    if missing:
        raise ValidationError(f"Unknown service ids: {missing}")
    return services


def _enforce_rule_fields(patch: dict, rule: DiscountRule | None = None) -> None:
    if "type" in patch and patch["type"] not in PROMOTIONAL_DISCOUNT_TYPES:
        raise ValidationError(f"type must be one of {list(PROMOTIONAL_DISCOUNT_TYPES)}")

    for key in ("value", "min_amount", "max_discount"):
        if key in patch and patch[key] is not None:
            try:
                patch[key] = to_money(patch[key])
            except ValueError:
                raise ValidationError(f"{key} must be a number")
            if patch[key] < ZERO:
                raise ValidationError(f"{key} must be >= 0")

    is_percentage = patch.get("is_percentage", rule.is_percentage if rule else True)
    value = patch.get("value", rule.value if rule else None)
    if is_percentage and value is not None and to_money(value) > Decimal("100"):
        raise ValidationError("percentage value cannot exceed 100")

    start = patch.get("start_date", rule.start_date if rule else None)
    end = patch.get("end_date", rule.end_date if rule else None)
    if start and end and end < start:
        raise ValidationError("end_date must be on or after start_date")

    name = patch.get("name")
    if name is not None:
        if DELETED_MARKER in name:
            raise ValidationError("name cannot contain the deleted marker")
        if name in RESERVED_RULE_NAMES:
            raise ConflictError("This name is reserved for an automatic discount rule.")
        q = db.session.query(DiscountRule).filter(DiscountRule.name == name)
        if rule is not None:
            q = q.filter(DiscountRule.id != rule.id)
        if q.first():
            raise ConflictError("A discount rule with this name already exists.")


def create_rule(data: dict) -> DiscountRule:
    """Create an operator (promotional) discount rule."""
    data = dict(data or {})
    service_ids = data.pop("service_ids", None)
    patch = validate_payload(model=DiscountRule, payload=data, policy=RULE_POLICY, partial=False)
    _enforce_rule_fields(patch)

    rule = DiscountRule(**patch)
    if rule.apply_to_all_services is None:
        rule.apply_to_all_services = False
    if service_ids and not rule.apply_to_all_services:
        rule.services = _load_services(service_ids)

    db.session.add(rule)
    db.session.commit()
    return rule


def update_rule(rule_id: int, data: dict) -> DiscountRule | None:
    rule = db.session.query(DiscountRule).filter_by(id=rule_id).first()
    if not rule:
        return None
    if rule.is_system:
        raise ConflictError("System discount rules cannot be edited")

    data = dict(data or {})
    service_ids = data.pop("service_ids", None)
    patch = validate_payload(model=DiscountRule, payload=data, policy=RULE_POLICY, partial=True)
    _enforce_rule_fields(patch, rule)
    services = _load_services(service_ids) if service_ids is not None else None

    for key, value in patch.items():
        setattr(rule, key, value)

    if rule.apply_to_all_services:
        rule.services = []
    elif services is not None:
        rule.services = services

    db.session.commit()
    return rule


def soft_delete_rule(rule_id: int) -> DiscountRule | None:
    """Deactivate and rename (frees the name, keeps history on past sales)."""
    rule = db.session.query(DiscountRule).filter_by(id=rule_id).first()
    if not rule:
        return None
    if DELETED_MARKER not in rule.name:
        stamp = int(utcnow().timestamp() * 1000)
        rule.name = f"{rule.name}{DELETED_MARKER}{stamp}"[:255]
    rule.is_active = False
    db.session.commit()
    return rule
