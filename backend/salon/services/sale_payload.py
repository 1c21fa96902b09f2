"""
Normalization of create/update sale payloads.

The transport layer accepts either a detailed ``services`` array or a
simplified ``service_ids`` list (with optional per-service add-on map and a
global add-on fallback). Everything is turned into one canonical set of
dataclasses here, before any pricing or discount logic runs.

For updates, ``None`` on a collection means "not supplied, keep existing";
an empty list means "replace with nothing".
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from ..money import to_money, ZERO
from .exceptions import SaleValidationError


@dataclass(frozen=True)
class ServiceSelection:
    service_id: int
    quantity: int = 1
    is_child: bool = False
    add_shampoo: bool = False


@dataclass(frozen=True)
class ProductSelection:
    product_id: int
    quantity: int = 1


@dataclass(frozen=True)
class PaymentInput:
    payment_method: str | None
    amount: Decimal


@dataclass(frozen=True)
class ManualAdjustment:
    """Operator-entered discount or surcharge. Only counts with a non-blank reason."""
    amount: Decimal
    reason: str

    @property
    def applies(self) -> bool:
        return self.amount > ZERO and bool(self.reason)


@dataclass
class SalePayload:
    customer_id: int | None = None
    services: list[ServiceSelection] | None = None
    products: list[ProductSelection] | None = None
    staff_ids: list[int] | None = None
    custom_staff_names: list[str] | None = None
    payments: list[PaymentInput] | None = None
    payment_method: str | None = None
    bring_own_product: bool = False
    manual_discount: ManualAdjustment | None = None
    manual_increment: ManualAdjustment | None = None
    notes: str | None = None
    notes_supplied: bool = False
    is_completed: bool | None = None
    created_by: str | None = None
    ignored: list[str] = field(default_factory=list)

    @property
    def staff_supplied(self) -> bool:
        return self.staff_ids is not None or self.custom_staff_names is not None


def _to_id(value: Any, label: str) -> int:
    if isinstance(value, bool) or value is None:
        raise SaleValidationError(f"{label} must be an integer id")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text.isdigit():
        raise SaleValidationError(f"{label} must be an integer id", details={"value": value})
    return int(text)


def _to_quantity(value: Any, label: str) -> int:
    if value is None or value == "":
        return 1
    if isinstance(value, bool):
        raise SaleValidationError(f"{label} must be a whole number")
    if isinstance(value, float):
        if not value.is_integer():
            raise SaleValidationError(f"{label} must be a whole number")
        value = int(value)
    try:
        qty = int(value)
    except (TypeError, ValueError):
        raise SaleValidationError(f"{label} must be a whole number", details={"value": value})
    if qty <= 0:
        raise SaleValidationError(f"{label} must be >= 1", details={"value": qty})
    return qty


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _to_amount(value: Any, label: str) -> Decimal:
    try:
        return to_money(value)
    except ValueError:
        raise SaleValidationError(f"{label} must be a number", details={"value": value})


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _manual(data: dict, amount_key: str, reason_key: str) -> ManualAdjustment | None:
    if amount_key not in data and reason_key not in data:
        return None
    return ManualAdjustment(
        amount=_to_amount(data.get(amount_key), amount_key),
        reason=_to_text(data.get(reason_key)),
    )


def _services(data: dict) -> list[ServiceSelection] | None:
    services = data.get("services")
    if isinstance(services, list) and services:
        out = []
        for i, raw in enumerate(services):
            if not isinstance(raw, dict):
                # bare ids are tolerated inside the detailed array
                raw = {"service_id": raw}
            add_on = raw.get("add_shampoo", raw.get("is_combined", False))
            out.append(ServiceSelection(
                service_id=_to_id(raw.get("service_id"), f"services[{i}].service_id"),
                quantity=_to_quantity(raw.get("quantity"), f"services[{i}].quantity"),
                is_child=_to_bool(raw.get("is_child", False)),
                add_shampoo=_to_bool(add_on),
            ))
        return out

    service_ids = data.get("service_ids")
    if isinstance(service_ids, list) and service_ids:
        options = data.get("service_addon_options") or {}
        global_add_on = _to_bool(data.get("add_shampoo", False))
        out = []
        for i, sid in enumerate(service_ids):
            service_id = _to_id(sid, f"service_ids[{i}]")
            add_on = options.get(str(service_id), options.get(service_id, global_add_on))
            out.append(ServiceSelection(service_id=service_id, add_shampoo=_to_bool(add_on)))
        return out

    if isinstance(services, list) or isinstance(service_ids, list):
        return []
    return None


def _products(data: dict) -> list[ProductSelection] | None:
    products = data.get("products")
    if products is None:
        return None
    if not isinstance(products, list):
        raise SaleValidationError("products must be a list")
    out = []
    for i, raw in enumerate(products):
        if not isinstance(raw, dict):
            raise SaleValidationError(f"products[{i}] must be an object")
        out.append(ProductSelection(
            product_id=_to_id(raw.get("product_id"), f"products[{i}].product_id"),
            quantity=_to_quantity(raw.get("quantity"), f"products[{i}].quantity"),
        ))
    return out


def _payments(data: dict) -> list[PaymentInput] | None:
    payments = data.get("payments")
    if payments is None:
        return None
    if not isinstance(payments, list):
        raise SaleValidationError("payments must be a list")
    out = []
    for i, raw in enumerate(payments):
        if not isinstance(raw, dict):
            raise SaleValidationError(f"payments[{i}] must be an object")
        amount = _to_amount(raw.get("amount"), f"payments[{i}].amount")
        if amount < ZERO:
            raise SaleValidationError(f"payments[{i}].amount must be >= 0", details={"amount": str(amount)})
        out.append(PaymentInput(payment_method=raw.get("payment_method"), amount=amount))
    return out


def normalize_sale_payload(data: dict | None, *, for_update: bool = False) -> SalePayload:
    """
    Build a SalePayload from request JSON.

    Create requires customer_id and at least one service or product.
    Update takes only the keys present; customer cannot be changed.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SaleValidationError("Invalid JSON payload")

    payload = SalePayload()

    if not for_update:
        if data.get("customer_id") in (None, ""):
            raise SaleValidationError("customer_id is required")
        payload.customer_id = _to_id(data.get("customer_id"), "customer_id")
    elif "customer_id" in data:
        payload.ignored.append("customer_id")

    payload.services = _services(data)
    payload.products = _products(data)

    staff_ids = data.get("staff_ids")
    if staff_ids is not None:
        if not isinstance(staff_ids, list):
            raise SaleValidationError("staff_ids must be a list")
        seen: list[int] = []
        for i, sid in enumerate(staff_ids):
            staff_id = _to_id(sid, f"staff_ids[{i}]")
            if staff_id not in seen:
                seen.append(staff_id)
        payload.staff_ids = seen

    custom_names = data.get("custom_staff_names")
    if custom_names is not None:
        if not isinstance(custom_names, list):
            raise SaleValidationError("custom_staff_names must be a list")
        payload.custom_staff_names = [n for n in (_to_text(v) for v in custom_names) if n]

    payload.payments = _payments(data)
    payload.payment_method = data.get("payment_method")
    payload.bring_own_product = _to_bool(data.get("bring_own_product", False))

    payload.manual_discount = _manual(data, "manual_discount_amount", "manual_discount_reason")
    payload.manual_increment = _manual(data, "manual_increment_amount", "manual_increment_reason")

    if "notes" in data:
        payload.notes_supplied = True
        payload.notes = _to_text(data.get("notes")) or None

    if "is_completed" in data:
        payload.is_completed = _to_bool(data.get("is_completed"))

    created_by = _to_text(data.get("created_by"))
    payload.created_by = created_by or None

    if not for_update and not payload.services and not payload.products:
        raise SaleValidationError("At least one service or product is required")

    return payload
