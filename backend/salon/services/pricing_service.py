"""
Pricing resolver for sale line items.

Pure functions: no queries, no writes. Callers pass catalog rows (or any
object with the same price attributes) plus the customer's selections.
"""
from __future__ import annotations

from decimal import Decimal

from ..money import to_money, ZERO


def resolve_service_unit_price(service, *, is_child: bool = False, add_shampoo: bool = False) -> Decimal:
    """
    Unit price for a service given audience and add-on selection.

    child:  add-on and child_combined_price -> child_combined_price,
            else child_price, else single_price
    adult:  add-on and combined_price -> combined_price, else single_price

    A missing or zero add-on tier silently falls back to the base tier.
    """
    if is_child:
        if add_shampoo and service.child_combined_price:
            price = service.child_combined_price
        else:
            price = service.child_price if service.child_price is not None else service.single_price
    else:
        if add_shampoo and service.combined_price:
            price = service.combined_price
        else:
            price = service.single_price

    price = to_money(price)
    return price if price > ZERO else ZERO


def resolve_product_unit_price(product) -> Decimal:
    """Products have a single catalog price; no tiers."""
    price = to_money(product.price)
    return price if price > ZERO else ZERO


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return to_money(Decimal(unit_price) * quantity)
