# Overview: Payment allocator for sales; normalizes tenders and checks they cover the final amount.

"""
Payment Allocator

A sale is paid either by an explicit list of {payment_method, amount} rows
(split payment) or, for legacy callers, by a single method that pays the
whole final amount.

RULES:
- Methods are upper-cased and trimmed; anything outside VALID_PAYMENT_METHODS
  becomes CASH (logged as a warning, never an error)
- sum(amounts) must equal final_amount within PAYMENT_TOLERANCE, otherwise
  PaymentMismatchError and the sale is not written
- The first allocated method is the sale's legacy payment_method
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..money import to_money, PAYMENT_TOLERANCE, ZERO
from .exceptions import PaymentMismatchError
from .sale_payload import PaymentInput


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "CASH"
METHOD_MOBILE_MONEY = "MOBILE_MONEY"
METHOD_MOMO = "MOMO"
METHOD_BANK_CARD = "BANK_CARD"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_MOBILE_MONEY,
    METHOD_MOMO,
    METHOD_BANK_CARD,
    METHOD_BANK_TRANSFER,
]

DEFAULT_PAYMENT_METHOD = METHOD_CASH


@dataclass(frozen=True)
class PaymentAllocation:
    payment_method: str
    amount: Decimal


def normalize_method(method) -> str:
    raw = str(method or DEFAULT_PAYMENT_METHOD).strip().upper()
    if raw in VALID_PAYMENT_METHODS:
        return raw
    current_app.logger.warning('Invalid payment method "%s" normalized to "%s"', raw, DEFAULT_PAYMENT_METHOD)
    return DEFAULT_PAYMENT_METHOD


def payments_total(payments) -> Decimal:
    return to_money(sum((to_money(p.amount) for p in payments), ZERO))


def allocate_payments(
    payments: list[PaymentInput] | None,
    final_amount: Decimal,
    *,
    legacy_method: str | None = None,
) -> list[PaymentAllocation]:
    """
    Turn request payments into allocation rows for a sale.

    payments=None or [] -> one row of legacy_method (default CASH) for the full amount.
    """
    final_amount = to_money(final_amount)

    if not payments:
        return [PaymentAllocation(payment_method=normalize_method(legacy_method), amount=final_amount)]

    allocations = [
        PaymentAllocation(payment_method=normalize_method(p.payment_method), amount=to_money(p.amount))
        for p in payments
    ]

    total = payments_total(allocations)
    if abs(total - final_amount) > PAYMENT_TOLERANCE:
        raise PaymentMismatchError(
            f"Payment amounts total ({total}) must equal final amount ({final_amount})",
            details={"payments_total": str(total), "final_amount": str(final_amount)},
        )

    return allocations


def primary_method(allocations: list[PaymentAllocation], fallback: str | None = None) -> str:
    if allocations:
        return allocations[0].payment_method
    return normalize_method(fallback)
