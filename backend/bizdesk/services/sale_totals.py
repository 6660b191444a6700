# Overview: Pure arithmetic for a sale's derived financial state.

"""
Sale totals

A sale's subtotal, discount amount, total, balance and payment status are never
set directly. They are a function of the line items, the sale-level
adjustments, and the amount paid, and are recomputed with compute_totals()
before every write of a Sale row.

All amounts are integer cents. Percentage discounts are whole percents
(0..100, stored in the integer discount column) and round half-up to the
nearest cent.

    subtotal        = sum(quantity * unit_price)        (pre line discount/tax)
    discount_amount = subtotal * discount / 100         if discount_type == percentage
                    = discount                          otherwise
    total_amount    = subtotal - discount_amount + tax + shipping_fee
    balance         = total_amount - amount_paid
    payment_status  = paid     if balance <= 0
                      partial  if amount_paid > 0
                      unpaid   otherwise
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable


DISCOUNT_FIXED = "fixed"
DISCOUNT_PERCENTAGE = "percentage"
VALID_DISCOUNT_TYPES = (DISCOUNT_FIXED, DISCOUNT_PERCENTAGE)

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"


@dataclass(frozen=True)
class SaleTotals:
    subtotal: int
    discount_amount: int
    total_amount: int
    balance: int
    payment_status: str

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal,
            "discount_amount_cents": self.discount_amount,
            "total_amount_cents": self.total_amount,
            "balance_cents": self.balance,
            "payment_status": self.payment_status,
        }


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item[name]
    return getattr(item, name)


def line_gross(quantity: int, unit_price: int) -> int:
    """quantity * unit_price, before line discount and tax."""
    return quantity * unit_price


def line_subtotal(quantity: int, unit_price: int, discount: int = 0, tax: int = 0) -> int:
    """Stored subtotal of a single line: gross - discount + tax."""
    return line_gross(quantity, unit_price) - (discount or 0) + (tax or 0)


def discount_amount(subtotal: int, discount: int | float | Decimal, discount_type: str) -> int:
    if discount_type == DISCOUNT_PERCENTAGE:
        amount = Decimal(subtotal) * Decimal(str(discount or 0)) / Decimal(100)
        return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return int(discount or 0)


def payment_status_for(balance: int, amount_paid: int) -> str:
    if balance <= 0:
        return PAYMENT_STATUS_PAID
    if amount_paid > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_UNPAID


def compute_totals(
    items: Iterable[Any],
    discount: int | float | Decimal = 0,
    discount_type: str = DISCOUNT_FIXED,
    tax: int = 0,
    shipping_fee: int = 0,
    amount_paid: int = 0,
) -> SaleTotals:
    """
    Derive a sale's financial state.

    items: objects or dicts exposing ``quantity`` and ``unit_price_cents``
    (``unit_price`` is accepted for dicts).
    """
    subtotal = 0
    for item in items:
        if isinstance(item, dict) and "unit_price_cents" not in item:
            price = item["unit_price"]
        else:
            price = _field(item, "unit_price_cents")
        subtotal += line_gross(_field(item, "quantity"), price)

    disc = discount_amount(subtotal, discount, discount_type)
    total = subtotal - disc + (tax or 0) + (shipping_fee or 0)
    paid = amount_paid or 0
    balance = total - paid

    return SaleTotals(
        subtotal=subtotal,
        discount_amount=disc,
        total_amount=total,
        balance=balance,
        payment_status=payment_status_for(balance, paid),
    )
