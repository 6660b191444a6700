# backend/bizdesk/services/products_service.py
"""
Products Service

OWNER SCOPE: Every product operation is scoped to the owning business
account (owner_id). A product owned by another account is NotFound.

Quantity is set directly only at creation (recorded as the first `added`
movement). Afterwards it changes solely through inventory_service and the
sale engine.
"""
from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError
from ..extensions import db
from ..models import Product
from ..models.inventory import (
    DEFAULT_MIN_STOCK_LEVEL,
    PRODUCT_STATUS_LOW_STOCK,
    PRODUCT_STATUS_OUT_OF_STOCK,
)
from .concurrency import atomic, run_with_retry
from .identifier_service import normalize_product_code
from .inventory_service import apply_add, get_owned_product

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "product_code", "name", "description", "category", "sale_type",
    "unit_price_cents", "cost_price_cents", "wholesale_price_cents", "currency",
    "min_stock_level", "sku", "barcode", "unit", "notes", "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_code_available(owner_id: int, code: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(
        Product.owner_id == owner_id,
        Product.product_code == code,
    )
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("Product code already exists.", details={"product_code": code})


def list_products(
    owner_id: int,
    *,
    page: int | None = None,
    per_page: int | None = None,
    status: str | None = None,
    category: str | None = None,
    search: str | None = None,
    include_inactive: bool = False,
) -> dict:
    """
    Owner-scoped product listing with optional pagination.

    Args:
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default 20, max 100)
        search: Case-insensitive match on name, product_code, sku or barcode

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product).filter(Product.owner_id == owner_id)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    if status:
        base_query = base_query.filter(Product.status == status)
    if category:
        base_query = base_query.filter(Product.category == category)
    if search:
        pattern = f"%{search.strip()}%"
        base_query = base_query.filter(or_(
            Product.name.ilike(pattern),
            Product.product_code.ilike(pattern),
            Product.sku.ilike(pattern),
            Product.barcode.ilike(pattern),
        ))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = max(1, min(per_page or 20, 100))  # Default 20, range 1..100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(owner_id: int, product_id: int) -> Product:
    return get_owned_product(owner_id, product_id)


def create_product(owner_id: int, *, patch: dict, actor_user_id: int | None = None) -> Product:
    """
    Create product using a validated patch dict.

    An opening quantity is recorded as an `added` movement.

    Raises:
        ConflictError: If product_code already exists for this owner
    """
    code = normalize_product_code(patch["product_code"])
    opening_quantity = patch.get("quantity") or 0

    try:
        with atomic():
            _ensure_code_available(owner_id, code)

            p = Product(
                owner_id=owner_id,
                quantity=0,
                min_stock_level=DEFAULT_MIN_STOCK_LEVEL,
                currency=patch.get("currency") or current_app.config.get("DEFAULT_CURRENCY", "NGN"),
            )
            apply_product_patch(p, patch)
            p.product_code = code
            p.recompute_status()

            db.session.add(p)
            db.session.flush()  # ensure p.id exists before the movement row

            if opening_quantity > 0:
                apply_add(p, opening_quantity, "Initial stock", actor_user_id or owner_id)
    except IntegrityError:
        raise ConflictError("Product code already exists.", details={"product_code": code})

    logger.info("Product %s (%s) created for owner %s", p.id, p.product_code, owner_id)
    return p


def update_product(owner_id: int, product_id: int, *, patch: dict) -> Product:
    """
    Update catalog fields. Quantity is not patchable here.

    Raises:
        NotFoundError: If the product does not exist for this owner
        ConflictError: If the new product_code already exists for this owner
    """
    def _op():
        with atomic():
            p = get_owned_product(owner_id, product_id, lock=True)

            if "product_code" in patch:
                code = normalize_product_code(patch["product_code"])
                if code != p.product_code:
                    _ensure_code_available(owner_id, code, exclude_id=p.id)
                patch["product_code"] = code

            apply_product_patch(p, patch)
            p.recompute_status()
        return p

    return run_with_retry(_op)


def deactivate_product(owner_id: int, product_id: int) -> Product:
    """
    Soft-delete a product.

    Historical sales keep their snapshots; the product can no longer be sold.
    """
    def _op():
        with atomic():
            p = get_owned_product(owner_id, product_id, lock=True)
            if p.is_active:
                p.is_active = False
        logger.info("Product %s deactivated", product_id)
        return p

    return run_with_retry(_op)


def low_stock_products(owner_id: int) -> list[Product]:
    """Active products at or below their minimum stock level, emptiest first."""
    return (
        db.session.query(Product)
        .filter(
            Product.owner_id == owner_id,
            Product.is_active.is_(True),
            Product.status.in_((PRODUCT_STATUS_LOW_STOCK, PRODUCT_STATUS_OUT_OF_STOCK)),
        )
        .order_by(Product.quantity.asc(), Product.id.asc())
        .all()
    )


def top_selling_products(owner_id: int, limit: int = 10) -> list[Product]:
    limit = max(1, min(limit or 10, 100))
    return (
        db.session.query(Product)
        .filter(
            Product.owner_id == owner_id,
            Product.is_active.is_(True),
            Product.total_sold > 0,
        )
        .order_by(Product.total_sold.desc(), Product.total_revenue_cents.desc(), Product.id.asc())
        .limit(limit)
        .all()
    )

