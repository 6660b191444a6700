# Overview: Flask API routes for products and stock operations; parses input and returns JSON responses.

# backend/bizdesk/routes/products.py
"""
Product management routes.

OWNER SCOPE: All product operations are scoped to g.owner_id (set by
@require_auth). Another account's product is reported as not found.
"""
from flask import Blueprint, request, g, jsonify

from ..models import Product
from ..services import inventory_service, products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)
from ..errors import ValidationError
from ..decorators import require_auth

PRODUCT_FIELDS = frozenset({
    "product_code", "name", "description", "category", "sale_type",
    "unit_price_cents", "cost_price_cents", "wholesale_price_cents", "currency",
    "min_stock_level", "sku", "barcode", "unit", "notes",
})

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_FIELDS | {"quantity"},
    required_on_create=frozenset({"product_code", "name", "unit_price_cents"}),
)

# Quantity changes go through the stock endpoints
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_FIELDS | {"is_active"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _stock_payload() -> tuple[dict, str | None]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data, data.get("reason")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products.

    Query params:
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    - status, category, search: optional filters
    - include_inactive: "true" to include deactivated products
    """
    result = products_service.list_products(
        g.owner_id,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        status=request.args.get("status"),
        category=request.args.get("category"),
        search=request.args.get("search"),
        include_inactive=request.args.get("include_inactive", "").lower() == "true",
    )
    return jsonify(result)


@products_bp.post("")
@require_auth
def create_product_route():
    payload = request.get_json(silent=True) or {}

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
    enforce_rules_product(patch)

    product = products_service.create_product(g.owner_id, patch=patch, actor_user_id=g.current_user.id)
    return jsonify(product.to_dict()), 201


@products_bp.get("/low-stock")
@require_auth
def low_stock_route():
    products = products_service.low_stock_products(g.owner_id)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})


@products_bp.get("/top-selling")
@require_auth
def top_selling_route():
    products = products_service.top_selling_products(
        g.owner_id, limit=request.args.get("limit", 10, type=int)
    )
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    product = products_service.get_product(g.owner_id, product_id)
    return jsonify(product.to_dict())


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    enforce_rules_product(patch)

    product = products_service.update_product(g.owner_id, product_id, patch=patch)
    return jsonify(product.to_dict()), 200


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    """Soft delete: the product is deactivated, never removed."""
    product = products_service.deactivate_product(g.owner_id, product_id)
    return jsonify({"ok": True, "product": product.to_dict()}), 200


@products_bp.post("/<int:product_id>/stock/add")
@require_auth
def add_stock_route(product_id: int):
    data, reason = _stock_payload()
    product = inventory_service.add_stock(
        g.owner_id, product_id, data.get("quantity"), reason=reason, actor_user_id=g.current_user.id
    )
    return jsonify(product.to_dict()), 200


@products_bp.post("/<int:product_id>/stock/remove")
@require_auth
def remove_stock_route(product_id: int):
    data, reason = _stock_payload()
    product = inventory_service.remove_stock(
        g.owner_id, product_id, data.get("quantity"), reason=reason, actor_user_id=g.current_user.id
    )
    return jsonify(product.to_dict()), 200


@products_bp.post("/<int:product_id>/stock/adjust")
@require_auth
def adjust_stock_route(product_id: int):
    data, reason = _stock_payload()
    product = inventory_service.adjust_stock(
        g.owner_id, product_id, data.get("new_quantity"), reason=reason, actor_user_id=g.current_user.id
    )
    return jsonify(product.to_dict()), 200


@products_bp.get("/<int:product_id>/stock-history")
@require_auth
def stock_history_route(product_id: int):
    movements = inventory_service.list_stock_history(
        g.owner_id,
        product_id,
        limit=request.args.get("limit", type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)})
