# Overview: Service-layer operations for reporting; read-only aggregation over sales.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import extract, func

from ..errors import ValidationError
from ..extensions import db
from ..models import Sale, SaleItem
from ..models.sales import SALE_STATUS_COMPLETED
from bizdesk.time_utils import resolve_window, to_utc_z, utcnow, year_bounds

REPORT_WINDOW_DAYS = 30


def _parse_range(start: str | None, end: str | None) -> tuple[datetime, datetime]:
    try:
        return resolve_window(start, end, REPORT_WINDOW_DAYS)
    except ValueError as exc:
        raise ValidationError(f"Invalid report window: {exc}")


def _reportable_sales(seller_id: int):
    """Completed, non-deleted sales of one seller."""
    return db.session.query(Sale).filter(
        Sale.seller_id == seller_id,
        Sale.status == SALE_STATUS_COMPLETED,
        Sale.is_deleted.is_(False),
    )


def sales_analytics(seller_id: int, start: str | None = None, end: str | None = None) -> dict:
    """
    Overview plus breakdowns by payment method and channel for a window.

    Window defaults to the last 30 days; both bounds are inclusive.
    """
    start_dt, end_dt = _parse_range(start, end)

    in_window = (Sale.sale_date >= start_dt, Sale.sale_date <= end_dt)
    base = _reportable_sales(seller_id).filter(*in_window)

    overview = base.with_entities(
        func.count(Sale.id).label("total_sales"),
        func.coalesce(func.sum(Sale.total_amount_cents), 0).label("revenue"),
        func.coalesce(func.sum(Sale.amount_paid_cents), 0).label("collected"),
        func.coalesce(func.sum(Sale.balance_cents), 0).label("outstanding"),
    ).one()

    items_sold = (
        db.session.query(func.coalesce(func.sum(SaleItem.quantity), 0))
        .join(Sale, SaleItem.sale_id == Sale.id)
        .filter(
            Sale.seller_id == seller_id,
            Sale.status == SALE_STATUS_COMPLETED,
            Sale.is_deleted.is_(False),
            *in_window,
        )
        .scalar()
    )

    total_sales = int(overview.total_sales or 0)
    revenue = int(overview.revenue or 0)

    def _breakdown(column):
        rows = (
            base.with_entities(
                column.label("key"),
                func.count(Sale.id).label("count"),
                func.coalesce(func.sum(Sale.total_amount_cents), 0).label("revenue"),
            )
            .group_by(column)
            .order_by(func.sum(Sale.total_amount_cents).desc(), column.asc())
            .all()
        )
        return [
            {"key": row.key, "count": int(row.count), "revenue_cents": int(row.revenue)}
            for row in rows
        ]

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "overview": {
            "total_sales": total_sales,
            "total_revenue_cents": revenue,
            "amount_collected_cents": int(overview.collected or 0),
            "outstanding_balance_cents": int(overview.outstanding or 0),
            # Integer cents, half-up
            "average_sale_value_cents": (revenue + total_sales // 2) // total_sales if total_sales else 0,
            "items_sold": int(items_sold or 0),
        },
        "by_payment_method": _breakdown(Sale.payment_method),
        "by_channel": _breakdown(Sale.channel),
    }


def monthly_performance(seller_id: int, year: int | None = None) -> dict:
    """Sales count and revenue for each month of a year, zero-filled."""
    if year is None:
        year = utcnow().year
    if isinstance(year, bool) or not isinstance(year, int) or not (1970 <= year <= 9999):
        raise ValidationError("year must be a valid year")

    start_dt, end_dt = year_bounds(year)
    month = extract("month", Sale.sale_date)

    rows = (
        _reportable_sales(seller_id)
        .filter(Sale.sale_date >= start_dt, Sale.sale_date < end_dt)
        .with_entities(
            month.label("month"),
            func.count(Sale.id).label("sales"),
            func.coalesce(func.sum(Sale.total_amount_cents), 0).label("revenue"),
        )
        .group_by(month)
        .all()
    )
    by_month = {int(row.month): row for row in rows}

    months = []
    for m in range(1, 13):
        row = by_month.get(m)
        months.append({
            "month": m,
            "sales": int(row.sales) if row else 0,
            "revenue_cents": int(row.revenue) if row else 0,
        })

    return {
        "year": year,
        "months": months,
        "total_sales": sum(m["sales"] for m in months),
        "total_revenue_cents": sum(m["revenue_cents"] for m in months),
    }
