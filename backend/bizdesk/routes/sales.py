# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/bizdesk/routes/sales.py
"""
Sales API routes.

Typed service failures propagate to the app-level error handler, which maps
ValidationError/InsufficientStock to 400, NotFound to 404 and Conflict to 409.
"""

from flask import Blueprint, request, jsonify, g

from ..errors import ValidationError
from ..services import reporting_service, sales_service
from ..decorators import require_auth


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Record a sale and deduct its stock.

    Body: items[{product_id, quantity, unit_price_cents?, discount_cents?, tax_cents?}],
    customer{name, phone, email, address}, payment_method, amount_paid_cents,
    discount, discount_type, tax_cents, shipping_fee_cents, channel, notes.
    Omitting amount_paid_cents records the sale as paid in full.
    """
    data = _json_body()

    sale = sales_service.create_sale(
        g.owner_id,
        data.get("items"),
        customer=data.get("customer"),
        payment_method=data.get("payment_method"),
        amount_paid_cents=data.get("amount_paid_cents"),
        discount=data.get("discount"),
        discount_type=data.get("discount_type"),
        tax_cents=data.get("tax_cents"),
        shipping_fee_cents=data.get("shipping_fee_cents"),
        channel=data.get("channel"),
        notes=data.get("notes"),
        actor_user_id=g.current_user.id,
    )

    return jsonify({"sale": sale.to_dict(), "message": "Sale recorded successfully"}), 201


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Query params: page, per_page, status, payment_status, start, end, search,
    sort (sale_date | total_amount | balance, "-" prefix for descending).
    """
    result = sales_service.list_sales(
        g.owner_id,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        status=request.args.get("status"),
        payment_status=request.args.get("payment_status"),
        start=request.args.get("start"),
        end=request.args.get("end"),
        search=request.args.get("search"),
        sort=request.args.get("sort", "-sale_date"),
    )
    return jsonify(result)


@sales_bp.get("/analytics")
@require_auth
def analytics_route():
    result = reporting_service.sales_analytics(
        g.owner_id,
        start=request.args.get("start"),
        end=request.args.get("end"),
    )
    return jsonify(result)


@sales_bp.get("/monthly-performance")
@require_auth
def monthly_performance_route():
    result = reporting_service.monthly_performance(
        g.owner_id,
        year=request.args.get("year", type=int),
    )
    return jsonify(result)


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(g.owner_id, sale_id)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.put("/<int:sale_id>")
@require_auth
def update_sale_route(sale_id: int):
    """Customer, notes and delivery fields only."""
    sale = sales_service.update_sale(g.owner_id, sale_id, _json_body())
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/payments")
@require_auth
def add_payment_route(sale_id: int):
    """Body: amount_cents, method, reference?, notes?"""
    data = _json_body()

    sale = sales_service.add_payment(
        g.owner_id,
        sale_id,
        data.get("amount_cents"),
        method=data.get("method"),
        reference=data.get("reference"),
        notes=data.get("notes"),
        actor_user_id=g.current_user.id,
    )
    return jsonify({"sale": sale.to_dict(), "message": "Payment added successfully"}), 200


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
def cancel_sale_route(sale_id: int):
    """Cancel sale and return its stock. Body: reason (required)."""
    data = _json_body()

    sale = sales_service.cancel_sale(
        g.owner_id,
        sale_id,
        data.get("reason"),
        actor_user_id=g.current_user.id,
    )
    return jsonify({"sale": sale.to_dict(), "message": "Sale cancelled successfully"}), 200
