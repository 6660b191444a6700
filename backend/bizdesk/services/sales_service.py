"""
Sales Service - the sale transaction engine

WHY: A sale couples three things that must agree at all times: the stock it
took from each product, its own derived totals, and its payment history.
Every operation here runs as one unit of work (atomic + run_with_retry), so
a failure at any step leaves no product or sale partially updated.

OPERATIONS:
- create_sale: lock products, check availability, insert the sale, deduct
  stock and record analytics, record the point-of-sale payment.
- add_payment: append to the payment history and recompute balance/status.
- cancel_sale: compensating transaction; returns every line's quantity to its
  product (relative, not absolute) and marks the sale cancelled + deleted.
- update_sale: customer, notes and delivery details only.

Owner scoping: every lookup filters by seller_id. A sale or product owned by
someone else is reported as NotFound.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, Sale, SaleItem, SalePayment
from ..models.sales import SALE_STATUS_CANCELLED, SALE_STATUS_COMPLETED
from ..validation import MAX_DB_INT, ModelValidationPolicy, validate_payload
from bizdesk.time_utils import parse_iso_datetime, utcnow
from .concurrency import atomic, lock_for_update, run_with_retry
from .identifier_service import generate_invoice_number, generate_sale_number
from .inventory_service import restore_stock, sell_stock
from .sale_totals import (
    DISCOUNT_FIXED,
    DISCOUNT_PERCENTAGE,
    VALID_DISCOUNT_TYPES,
    compute_totals,
    line_gross,
    line_subtotal,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

VALID_PAYMENT_METHODS = ("cash", "card", "transfer", "mobile_money", "pos", "other")
VALID_CHANNELS = ("in_store", "online", "phone", "social_media", "other")
VALID_DELIVERY_STATUSES = ("none", "pending", "shipped", "delivered")
VALID_PAYMENT_STATUSES = ("unpaid", "partial", "paid")
VALID_SALE_STATUSES = ("completed", "pending", "cancelled", "refunded")

SALE_UPDATABLE_FIELDS = frozenset({
    "customer_name",
    "customer_phone",
    "customer_email",
    "customer_address",
    "notes",
    "delivery_address",
    "delivery_status",
})

SALE_UPDATE_POLICY = ModelValidationPolicy(writable_fields=SALE_UPDATABLE_FIELDS)

SORTABLE_FIELDS = {
    "sale_date": Sale.sale_date,
    "total_amount": Sale.total_amount_cents,
    "balance": Sale.balance_cents,
}


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int | None
    discount_cents: int
    tax_cents: int


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def _int_field(value, field: str, *, default: int | None = None, minimum: int | None = 0) -> int | None:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if abs(value) > MAX_DB_INT:
        raise ValidationError(f"{field} is out of range")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return value


def _text_field(value, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value or None


def _choice(value, field: str, choices: tuple[str, ...], default: str) -> str:
    if value is None:
        return default
    if value not in choices:
        raise ValidationError(f"Invalid {field}: {value}. Must be one of {list(choices)}")
    return value


def _parse_lines(items) -> list[LineRequest]:
    if not items or not isinstance(items, list):
        raise ValidationError("Please provide at least one item")

    lines = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = raw.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int) or not 0 < product_id <= MAX_DB_INT:
            raise ValidationError(f"items[{index}].product_id must be a positive integer")

        quantity = _int_field(raw.get("quantity"), f"items[{index}].quantity", minimum=1)
        if quantity is None:
            raise ValidationError(f"items[{index}].quantity is required")

        unit_price = _int_field(raw.get("unit_price_cents"), f"items[{index}].unit_price_cents")
        discount = _int_field(raw.get("discount_cents"), f"items[{index}].discount_cents", default=0)
        tax = _int_field(raw.get("tax_cents"), f"items[{index}].tax_cents", default=0)

        if unit_price is not None and discount > line_gross(quantity, unit_price):
            raise ValidationError(f"items[{index}].discount_cents exceeds the line amount")

        lines.append(LineRequest(
            product_id=product_id,
            quantity=quantity,
            unit_price_cents=unit_price,
            discount_cents=discount,
            tax_cents=tax,
        ))
    return lines


def _customer_fields(customer) -> dict:
    if customer is None:
        return {}
    if not isinstance(customer, dict):
        raise ValidationError("customer must be an object")
    fields = {}
    for key, max_length in (("name", 255), ("phone", 32), ("email", 255), ("address", 512)):
        value = _text_field(customer.get(key), f"customer.{key}", max_length=max_length)
        if value is not None:
            fields[f"customer_{key}"] = value
    return fields


# =============================================================================
# LOOKUPS
# =============================================================================

def _get_owned_sale(seller_id: int, sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id, seller_id=seller_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def _lock_products(owner_id: int, product_ids, *, active_only: bool) -> dict[int, Product]:
    """Lock the referenced products in ascending id order and index them by id."""
    query = db.session.query(Product).filter(
        Product.id.in_(sorted(set(product_ids))),
        Product.owner_id == owner_id,
    )
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    products = lock_for_update(query.order_by(Product.id.asc())).all()
    return {p.id: p for p in products}


def get_sale(seller_id: int, sale_id: int) -> Sale:
    return _get_owned_sale(seller_id, sale_id)


# =============================================================================
# CREATE
# =============================================================================

def create_sale(
    seller_id: int,
    items,
    *,
    customer: dict | None = None,
    payment_method: str | None = None,
    amount_paid_cents: int | None = None,
    discount: int | None = None,
    discount_type: str | None = None,
    tax_cents: int | None = None,
    shipping_fee_cents: int | None = None,
    channel: str | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Sale:
    """
    Record a sale and deduct its stock as one indivisible unit.

    Raises:
        ValidationError: malformed input (nothing written)
        NotFoundError: a product is missing, inactive or not owned (nothing written)
        InsufficientStockError: a product lacks stock (nothing written)
        ConflictError: optimistic-lock retries exhausted (nothing written)

    amount_paid_cents=None means paid in full at the point of sale.
    """
    lines = _parse_lines(items)
    method = _choice(payment_method, "payment_method", VALID_PAYMENT_METHODS, "cash")
    sale_channel = _choice(channel, "channel", VALID_CHANNELS, "in_store")
    dtype = _choice(discount_type, "discount_type", VALID_DISCOUNT_TYPES, DISCOUNT_FIXED)
    disc = _int_field(discount, "discount", default=0)
    if dtype == DISCOUNT_PERCENTAGE and disc > 100:
        raise ValidationError("discount must be between 0 and 100 for percentage discounts")
    tax = _int_field(tax_cents, "tax_cents", default=0)
    shipping = _int_field(shipping_fee_cents, "shipping_fee_cents", default=0)
    paid = _int_field(amount_paid_cents, "amount_paid_cents")
    notes = _text_field(notes, "notes")
    customer_fields = _customer_fields(customer)
    actor = actor_user_id or seller_id

    def _op() -> Sale:
        with atomic():
            products = _lock_products(seller_id, (line.product_id for line in lines), active_only=True)

            requested: dict[int, int] = {}
            for line in lines:
                requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

            # Check every line before touching anything
            for line in lines:
                product = products.get(line.product_id)
                if product is None:
                    raise NotFoundError(
                        f"Product not found: {line.product_id}",
                        details={"product_id": line.product_id},
                    )
                if product.quantity < requested[line.product_id]:
                    raise InsufficientStockError(
                        product_id=product.id,
                        product_name=product.name,
                        available=product.quantity,
                        requested=requested[line.product_id],
                    )

            now = utcnow()
            sale_number = generate_sale_number()
            sale = Sale(
                sale_number=sale_number,
                seller_id=seller_id,
                discount=disc,
                discount_type=dtype,
                tax_cents=tax,
                shipping_fee_cents=shipping,
                payment_method=method,
                status=SALE_STATUS_COMPLETED,
                channel=sale_channel,
                notes=notes,
                invoice_number=generate_invoice_number(sale_number),
                invoice_issued_at=now,
                sale_date=now,
                amount_paid_cents=0,
                **customer_fields,
            )

            for position, line in enumerate(lines, start=1):
                product = products[line.product_id]
                unit_price = line.unit_price_cents if line.unit_price_cents is not None else product.unit_price_cents
                if line.discount_cents > line_gross(line.quantity, unit_price):
                    raise ValidationError(f"items[{position - 1}].discount_cents exceeds the line amount")
                sale.items.append(SaleItem(
                    position=position,
                    product_id=product.id,
                    product_name=product.name,
                    product_code=product.product_code,
                    quantity=line.quantity,
                    unit_price_cents=unit_price,
                    discount_cents=line.discount_cents,
                    tax_cents=line.tax_cents,
                    subtotal_cents=line_subtotal(line.quantity, unit_price, line.discount_cents, line.tax_cents),
                ))

            totals = compute_totals(
                sale.items,
                discount=disc,
                discount_type=dtype,
                tax=tax,
                shipping_fee=shipping,
            )
            if totals.discount_amount > totals.subtotal:
                raise ValidationError("discount exceeds the sale subtotal")

            initial_payment = totals.total_amount if paid is None else paid
            if initial_payment > totals.total_amount:
                raise ValidationError(
                    "amount_paid_cents exceeds the sale total",
                    details={"total_amount_cents": totals.total_amount},
                )

            db.session.add(sale)
            db.session.flush()  # Get sale.id for stock movements

            for item in sale.items:
                sell_stock(
                    products[item.product_id],
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    actor_user_id=actor,
                    sale_id=sale.id,
                    occurred_at=now,
                )

            if initial_payment > 0:
                sale.payments.append(SalePayment(
                    amount_cents=initial_payment,
                    method=method,
                    notes="Payment at point of sale",
                    recorded_by_user_id=actor,
                    paid_at=now,
                ))
                sale.amount_paid_cents = initial_payment

            sale.recompute_totals()

        logger.info(
            "Sale %s created for seller %s: %d line(s), total=%d, paid=%d",
            sale.sale_number, seller_id, len(lines), sale.total_amount_cents, sale.amount_paid_cents,
        )
        return sale

    return run_with_retry(_op)


# =============================================================================
# PAYMENTS
# =============================================================================

def add_payment(
    seller_id: int,
    sale_id: int,
    amount_cents: int,
    method: str | None = None,
    reference: str | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Sale:
    """
    Apply a payment against a sale's outstanding balance.

    The payment row and the amount_paid increment are written together.
    Overpayment is rejected; so is any payment on a fully paid or
    cancelled/refunded sale.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("Please provide a valid payment amount")
    pay_method = _choice(method, "method", VALID_PAYMENT_METHODS, "cash")
    reference = _text_field(reference, "reference", max_length=128)
    notes = _text_field(notes, "notes", max_length=512)

    def _op() -> Sale:
        with atomic():
            sale = _get_owned_sale(seller_id, sale_id, lock=True)

            if sale.is_terminal:
                raise ValidationError(f"Cannot add payment to a {sale.status} sale")

            if sale.balance_cents <= 0:
                raise ValidationError("Sale is already fully paid")

            if amount_cents > sale.balance_cents:
                raise ValidationError(
                    f"Payment amount exceeds balance. Balance: {sale.balance_cents}",
                    details={"balance_cents": sale.balance_cents},
                )

            sale.payments.append(SalePayment(
                amount_cents=amount_cents,
                method=pay_method,
                reference=reference,
                notes=notes,
                recorded_by_user_id=actor_user_id or seller_id,
                paid_at=utcnow(),
            ))
            sale.amount_paid_cents = sale.amount_paid_cents + amount_cents
            sale.recompute_totals()

        logger.info(
            "Payment of %d applied to sale %s (balance now %d)",
            amount_cents, sale.sale_number, sale.balance_cents,
        )
        return sale

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_sale(
    seller_id: int,
    sale_id: int,
    reason: str,
    actor_user_id: int | None = None,
) -> Sale:
    """
    Cancel a sale and return its stock.

    Compensates create_sale: each line's quantity is added back to its product
    (quantity += sold), with a `returned` stock movement naming the reason.
    Products deactivated since the sale are still restored. If any product
    cannot be restored, nothing is.
    """
    reason = _text_field(reason, "reason", max_length=255)
    if reason is None:
        raise ValidationError("reason required")
    actor = actor_user_id or seller_id

    def _op() -> Sale:
        with atomic():
            sale = _get_owned_sale(seller_id, sale_id, lock=True)

            if sale.status == SALE_STATUS_CANCELLED:
                raise ValidationError("Sale is already cancelled")
            if sale.is_terminal:
                raise ValidationError(f"Cannot cancel a {sale.status} sale")

            products = _lock_products(
                seller_id, (item.product_id for item in sale.items), active_only=False
            )

            for item in sale.items:
                product = products.get(item.product_id)
                if product is None:
                    raise NotFoundError(
                        f"Product not found: {item.product_id}",
                        details={"product_id": item.product_id},
                    )
                restore_stock(
                    product,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    reason=f"Sale cancelled: {reason}",
                    actor_user_id=actor,
                    sale_id=sale.id,
                )

            now = utcnow()
            sale.status = SALE_STATUS_CANCELLED
            sale.is_deleted = True
            sale.cancelled_at = now
            sale.cancelled_by_user_id = actor
            sale.cancellation_reason = reason
            cancel_note = f"Cancelled: {reason}"
            sale.notes = f"{sale.notes}\n{cancel_note}" if sale.notes else cancel_note
            sale.recompute_totals()

        logger.info("Sale %s cancelled by user %s: %s", sale.sale_number, actor, reason)
        return sale

    return run_with_retry(_op)


# =============================================================================
# UPDATE / QUERY
# =============================================================================

def update_sale(seller_id: int, sale_id: int, patch: dict) -> Sale:
    """Edit customer, notes and delivery details. Financial fields are not editable."""
    if not isinstance(patch, dict):
        raise ValidationError("Invalid JSON payload")
    changes = validate_payload(model=Sale, payload=patch, policy=SALE_UPDATE_POLICY, partial=True)
    if "delivery_status" in changes:
        _choice(changes["delivery_status"], "delivery_status", VALID_DELIVERY_STATUSES, "none")

    def _op() -> Sale:
        with atomic():
            sale = _get_owned_sale(seller_id, sale_id, lock=True)
            if sale.is_terminal:
                raise ValidationError(f"Cannot update {sale.status} sale")
            for key, value in changes.items():
                setattr(sale, key, value)
            sale.recompute_totals()
        return sale

    return run_with_retry(_op)


def _parse_filter_date(value: str | None, field: str) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date or datetime")


def list_sales(
    seller_id: int,
    *,
    page: int | None = None,
    per_page: int | None = None,
    status: str | None = None,
    payment_status: str | None = None,
    start: str | None = None,
    end: str | None = None,
    search: str | None = None,
    sort: str = "-sale_date",
) -> dict:
    """
    Owner-scoped sale listing, newest first by default.

    Cancelled sales are soft-deleted and never listed.
    sort: field name from SORTABLE_FIELDS, prefixed with "-" for descending.
    """
    query = db.session.query(Sale).filter(
        Sale.seller_id == seller_id,
        Sale.is_deleted.is_(False),
    )

    if status:
        _choice(status, "status", VALID_SALE_STATUSES, status)
        query = query.filter(Sale.status == status)
    if payment_status:
        _choice(payment_status, "payment_status", VALID_PAYMENT_STATUSES, payment_status)
        query = query.filter(Sale.payment_status == payment_status)

    start_dt = _parse_filter_date(start, "start")
    end_dt = _parse_filter_date(end, "end")
    if start_dt:
        query = query.filter(Sale.sale_date >= start_dt)
    if end_dt:
        query = query.filter(Sale.sale_date <= end_dt)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Sale.sale_number.ilike(pattern),
            Sale.customer_name.ilike(pattern),
            Sale.customer_phone.ilike(pattern),
        ))

    descending = sort.startswith("-")
    column = SORTABLE_FIELDS.get(sort.lstrip("-"))
    if column is None:
        raise ValidationError(f"Cannot sort by {sort.lstrip('-')}. Must be one of {sorted(SORTABLE_FIELDS)}")
    query = query.order_by(column.desc() if descending else column.asc(), Sale.id.desc())

    per_page = max(1, min(per_page or 20, 100))  # Default 20, range 1..100
    page = max(page or 1, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    sales = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [s.to_dict() for s in sales],
        "count": len(sales),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
