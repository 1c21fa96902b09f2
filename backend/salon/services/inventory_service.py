# Overview: Inventory ledger for sale product lines; every stock change goes through reserve/release.

# backend/salon/services/inventory_service.py

"""
Inventory invariants (sales side):

- Product.quantity is the on-hand figure and is never negative at commit.
- reserve() checks quantity >= requested BEFORE decrementing; it never
  clamps. A failed check raises OutOfStockError and the caller's transaction
  rolls back every write made so far.
- release() is the exact inverse of reserve() and is used when a sale is
  deleted or its product lines are replaced.
- Edits release the whole prior set of lines before reserving the new set,
  so a net-zero edit is a no-op and an increase is checked against
  post-release stock.
- Each reserve/release appends a StockMovement row in the same transaction.
- Product rows are read with FOR UPDATE so two sales for the same product
  serialize on the decrement.
"""

from ..extensions import db
from ..models import Product, StockMovement
from salon.time_utils import utcnow
from .concurrency import lock_for_update
from .exceptions import NotFoundError, OutOfStockError, SaleValidationError


MOVEMENT_SALE = "SALE"
MOVEMENT_SALE_RELEASE = "SALE_RELEASE"


def _locked_product(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if not product:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise SaleValidationError("quantity must be a positive integer", details={"quantity": quantity})
    return quantity


def _record(product: Product, movement_type: str, delta: int, sale_id: int | None, note: str | None) -> StockMovement:
    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity_delta=delta,
        quantity_after=product.quantity,
        sale_id=sale_id,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement


def reserve(product_id: int, quantity: int, *, sale_id: int | None = None, note: str | None = None) -> Product:
    """Decrement stock; raises OutOfStockError when quantity exceeds on-hand."""
    quantity = _check_quantity(quantity)
    product = _locked_product(product_id)

    available = product.quantity or 0
    if available < quantity:
        raise OutOfStockError(
            f"Insufficient stock for {product.name}",
            details={"product_id": product.id, "requested": quantity, "available": available},
        )

    product.quantity = available - quantity
    _record(product, MOVEMENT_SALE, -quantity, sale_id, note)
    db.session.flush()
    return product


def release(product_id: int, quantity: int, *, sale_id: int | None = None, note: str | None = None) -> Product:
    """Increment stock (inverse of reserve)."""
    quantity = _check_quantity(quantity)
    product = _locked_product(product_id)

    product.quantity = (product.quantity or 0) + quantity
    _record(product, MOVEMENT_SALE_RELEASE, quantity, sale_id, note)
    db.session.flush()
    return product


def release_sale_products(sale, *, note: str | None = None) -> int:
    """
    Release every product line of a sale. Returns total units released.

    Lines are released in product id order so concurrent edits lock rows in
    the same sequence.
    """
    released = 0
    for line in sorted(sale.product_lines, key=lambda l: (l.product_id, l.id or 0)):
        release(line.product_id, line.quantity, sale_id=sale.id, note=note)
        released += line.quantity
    return released


def movements_for_sale(sale_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(sale_id=sale_id)
        .order_by(StockMovement.id)
        .all()
    )
