# Overview: Service-layer operations for inventory; encapsulates stock mutation and its ledger.

# backend/bizdesk/services/inventory_service.py
"""
Inventory invariants (authoritative)

Quantity model:
- Product.quantity is the on-hand count and is never negative. A change that
  would take it below zero fails the whole operation; it is never clamped.
- Every change appends exactly one StockMovement in the same DB transaction,
  recording previous_quantity and new_quantity.
- Product.status is recomputed from quantity vs min_stock_level on every change.

Two layers:
- apply_* / sell_stock / restore_stock operate on an already loaded (and
  locked) Product inside the caller's transaction. They never commit. The sale
  engine composes them into its own unit of work.
- add_stock / remove_stock / adjust_stock are standalone units of work: they
  lock the product, mutate, commit, and retry on optimistic-lock conflicts.

Time semantics:
- All internal datetimes are UTC-naive; occurred_at is server time.
"""

from __future__ import annotations

import logging

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import (
    MOVEMENT_ADDED,
    MOVEMENT_ADJUSTED,
    MOVEMENT_REMOVED,
    MOVEMENT_RETURNED,
    MOVEMENT_SOLD,
)
from bizdesk.time_utils import utcnow
from .concurrency import atomic, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


def _require_positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return value


def get_owned_product(
    owner_id: int,
    product_id: int,
    *,
    require_active: bool = False,
    lock: bool = False,
) -> Product:
    """
    Load a product scoped to its owner.

    Products owned by someone else are reported exactly like missing ones.
    """
    query = db.session.query(Product).filter_by(id=product_id, owner_id=owner_id)
    if require_active:
        query = query.filter(Product.is_active.is_(True))
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product not found: {product_id}", details={"product_id": product_id})
    return product


def _apply_change(
    product: Product,
    *,
    delta: int,
    movement_type: str,
    quantity: int,
    reason: str | None,
    actor_user_id: int | None,
    sale_id: int | None = None,
    occurred_at=None,
) -> StockMovement:
    previous = product.quantity
    new_quantity = previous + delta
    if new_quantity < 0:
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            available=previous,
            requested=-delta,
        )

    product.quantity = new_quantity
    product.recompute_status()

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        previous_quantity=previous,
        new_quantity=new_quantity,
        reason=reason,
        performed_by_user_id=actor_user_id,
        sale_id=sale_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    return movement


def apply_add(product: Product, quantity: int, reason: str | None, actor_user_id: int | None) -> StockMovement:
    return _apply_change(
        product,
        delta=quantity,
        movement_type=MOVEMENT_ADDED,
        quantity=quantity,
        reason=reason or "Stock added",
        actor_user_id=actor_user_id,
    )


def apply_remove(product: Product, quantity: int, reason: str | None, actor_user_id: int | None) -> StockMovement:
    return _apply_change(
        product,
        delta=-quantity,
        movement_type=MOVEMENT_REMOVED,
        quantity=quantity,
        reason=reason or "Stock removed",
        actor_user_id=actor_user_id,
    )


def sell_stock(
    product: Product,
    *,
    quantity: int,
    unit_price_cents: int,
    actor_user_id: int | None,
    sale_id: int | None,
    occurred_at=None,
) -> StockMovement:
    """
    Deduct sold units and fold the sale into the product's analytics.

    Caller owns the transaction.
    """
    now = occurred_at or utcnow()
    movement = _apply_change(
        product,
        delta=-quantity,
        movement_type=MOVEMENT_SOLD,
        quantity=quantity,
        reason=f"Sold {quantity} unit(s) at {unit_price_cents} each",
        actor_user_id=actor_user_id,
        sale_id=sale_id,
        occurred_at=now,
    )

    product.total_sold = (product.total_sold or 0) + quantity
    product.total_revenue_cents = (product.total_revenue_cents or 0) + unit_price_cents * quantity
    product.average_sale_price_cents = _average(product.total_revenue_cents, product.total_sold)
    product.last_sold_at = now
    product.popularity_score = (product.popularity_score or 0) + 1
    return movement


def restore_stock(
    product: Product,
    *,
    quantity: int,
    unit_price_cents: int,
    reason: str,
    actor_user_id: int | None,
    sale_id: int | None,
) -> StockMovement:
    """
    Compensate a sell_stock: add the sold units back and back out the revenue.

    The adjustment is relative (quantity += sold), so stock received or
    removed since the sale is preserved. Caller owns the transaction.
    """
    movement = _apply_change(
        product,
        delta=quantity,
        movement_type=MOVEMENT_RETURNED,
        quantity=quantity,
        reason=reason,
        actor_user_id=actor_user_id,
        sale_id=sale_id,
    )

    product.total_sold = max((product.total_sold or 0) - quantity, 0)
    product.total_revenue_cents = max((product.total_revenue_cents or 0) - unit_price_cents * quantity, 0)
    product.average_sale_price_cents = _average(product.total_revenue_cents, product.total_sold)
    return movement


def _average(total_cents: int, units: int) -> int:
    if units <= 0:
        return 0
    # nearest-cent rounding (half-up)
    return (total_cents + (units // 2)) // units


# =============================================================================
# STANDALONE STOCK OPERATIONS
# =============================================================================

def add_stock(
    owner_id: int,
    product_id: int,
    quantity: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Product:
    """Receive stock into a product. quantity must be > 0."""
    _require_positive_int(quantity, "quantity")

    def _op():
        with atomic():
            product = get_owned_product(owner_id, product_id, lock=True)
            apply_add(product, quantity, reason, actor_user_id)
        logger.info("Added %d to product %s (now %d)", quantity, product_id, product.quantity)
        return product

    return run_with_retry(_op)


def remove_stock(
    owner_id: int,
    product_id: int,
    quantity: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Product:
    """
    Remove stock from a product (damage, shrinkage, personal use).

    Raises InsufficientStockError if quantity exceeds what is on hand.
    """
    _require_positive_int(quantity, "quantity")

    def _op():
        with atomic():
            product = get_owned_product(owner_id, product_id, lock=True)
            apply_remove(product, quantity, reason, actor_user_id)
        logger.info("Removed %d from product %s (now %d)", quantity, product_id, product.quantity)
        return product

    return run_with_retry(_op)


def adjust_stock(
    owner_id: int,
    product_id: int,
    new_quantity: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Product:
    """
    Set an absolute on-hand count after a physical count.

    The movement records the signed difference in `quantity`.
    """
    if isinstance(new_quantity, bool) or not isinstance(new_quantity, int):
        raise ValidationError("new_quantity must be an integer")
    if new_quantity < 0:
        raise ValidationError("new_quantity must be >= 0")

    def _op():
        with atomic():
            product = get_owned_product(owner_id, product_id, lock=True)
            delta = new_quantity - product.quantity
            if delta == 0:
                return product
            _apply_change(
                product,
                delta=delta,
                movement_type=MOVEMENT_ADJUSTED,
                quantity=delta,
                reason=reason or "Stock count adjustment",
                actor_user_id=actor_user_id,
            )
        logger.info("Adjusted product %s to %d", product_id, new_quantity)
        return product

    return run_with_retry(_op)


def list_stock_history(
    owner_id: int,
    product_id: int,
    *,
    limit: int | None = None,
    offset: int = 0,
) -> list[StockMovement]:
    """Movements for a product, oldest first."""
    get_owned_product(owner_id, product_id)
    query = (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.asc())
        .offset(offset)
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()
