# Overview: Payload validation for catalog writes, driven by model column metadata.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# 9,999,999.99 in major units
MAX_PRICE_CENTS = 999_999_999

# Largest value a BIGINT column holds
MAX_DB_INT = 2**63 - 1

PRICE_FIELDS = ("unit_price_cents", "cost_price_cents", "wholesale_price_cents")
COUNT_FIELDS = ("quantity", "min_stock_level")
VALID_SALE_TYPES = ("unit", "bulk", "wholesale", "retail")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    What a client may send for one model and operation.

    writable_fields is the security boundary: anything else (owner_id,
    analytics counters, version_id, status) is rejected, not ignored.
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    return {c.key: c for c in model.__mapper__.columns}


def _coerce_value(col, value: Any):
    """
    JSON values only: integers must arrive as JSON integers and booleans as
    JSON booleans. Strings are stripped.
    """
    coltype = col.type

    if isinstance(coltype, Integer):
        if isinstance(value, bool) or not isinstance(value, int):
            if isinstance(value, float):
                raise ValidationError(f"{col.key} must be an integer amount of cents/units, not a decimal")
            raise ValidationError(f"{col.key} must be an integer")
        if abs(value) > MAX_DB_INT:
            raise ValidationError(f"{col.key} is out of range")
        return value

    if isinstance(coltype, Boolean):
        if not isinstance(value, bool):
            raise ValidationError(f"{col.key} must be true or false")
        return value

    if isinstance(coltype, (String, Text)):
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a string")
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Check a JSON body against the policy allowlist and the model's columns.

    partial=False: create semantics, every required_on_create key must be present.
    partial=True: update semantics, only the keys sent are checked.

    Returns the cleaned patch.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(policy.required_on_create - payload.keys())
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    patch: dict = {}

    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        col = cols.get(key)
        if col is None:
            raise ValidationError(f"Unknown field: {key}")

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce_value(col, raw)

        if isinstance(value, str):
            if value == "" and not col.nullable:
                raise ValidationError(f"{key} cannot be blank")
            length = getattr(col.type, "length", None)
            if length and len(value) > length:
                raise ValidationError(f"{key} exceeds max length {length}")

        patch[key] = value

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Catalog rules the column types cannot express."""
    for name in PRICE_FIELDS:
        price = patch.get(name)
        if price is None:
            continue
        if price < 0:
            raise ValidationError(f"{name} must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS}")

    for name in COUNT_FIELDS:
        if patch.get(name) is not None and patch[name] < 0:
            raise ValidationError(f"{name} must be >= 0")

    if "sale_type" in patch and patch["sale_type"] not in VALID_SALE_TYPES:
        raise ValidationError(f"sale_type must be one of {list(VALID_SALE_TYPES)}")

    currency = patch.get("currency")
    if currency is not None:
        currency = currency.upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError("currency must be a 3-letter ISO code")
        patch["currency"] = currency

    if "product_code" in patch and not patch["product_code"].replace(" ", ""):
        raise ValidationError("product_code cannot be blank")
