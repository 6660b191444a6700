# Overview: Generation and normalization of human-readable identifiers.

"""
Identifier Service

Sale numbers look like SALE-<millis base36>-<5 random base36>, upper-cased.
The timestamp prefix makes them roughly sortable by creation time; the random
suffix makes collisions between concurrent requests negligible. The unique
constraint on sales.sale_number is the final guard.

Product codes are owner-scoped and normalized to uppercase with no spaces.
"""

from __future__ import annotations

import secrets
import string
import time

_BASE36 = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _random_suffix(length: int = 5) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_sale_number(now_ms: int | None = None) -> str:
    """Globally unique, timestamp-prefixed sale identifier."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"SALE-{to_base36(now_ms)}-{_random_suffix()}"


def generate_invoice_number(sale_number: str) -> str:
    """Invoice numbers are derived from the sale number they belong to."""
    return f"INV-{sale_number.removeprefix('SALE-')}"


def normalize_product_code(value: str) -> str:
    """Normalize to uppercase, no spaces."""
    return value.upper().strip().replace(" ", "")
