# Overview: Read-only reporting over allocations, items and salespeople.

"""
Reporting semantics (authoritative):
- Figures are derived from Allocation rows; nothing here writes.
- Date filters apply to allocation_date; both ends are whole days, inclusive.
- Sold / returned / revenue count SETTLED allocations only (SOLD or RETURNED).
  returned = quantity - sold_quantity, so a partly sold allocation contributes
  to both.
- revenue is the sum of payment_received_cents as recorded; expected is
  sold_quantity * item_price_cents (snapshot price); difference = revenue -
  expected. Sums run over integer cents and become currency units only in
  the returned dicts.
- conversionRate = sold / allocated * 100 over every allocation in range,
  0 when nothing was allocated.
"""

from __future__ import annotations

from datetime import date, timedelta
from types import SimpleNamespace
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import case, func, or_

from salesdesk.extensions import db
from salesdesk.models import (
    Allocation,
    Item,
    Salesperson,
    ALLOCATION_STATUS_ALLOCATED,
    ALLOCATION_STATUS_SOLD,
    ALLOCATION_STATUS_RETURNED,
)
from salesdesk.time_utils import day_bounds, parse_iso_date
from salesdesk.validation import ValidationError, money_to_json
from salesdesk.services.item_service import get_item
from salesdesk.services.salesperson_service import get_salesperson

# Max span for date-range summaries, to keep per-day rows bounded
MAX_RANGE_DAYS = 366


def _cents(value) -> int:
    return int(value or 0)


def _parse_day(value: str | None, name: str) -> date | None:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date (YYYY-MM-DD)", field=name)


def _parse_range(start: str | None, end: str | None) -> tuple[date | None, date | None]:
    start_day = _parse_day(start, "startDate")
    end_day = _parse_day(end, "endDate")
    if start_day and end_day and start_day > end_day:
        raise ValidationError("startDate must be on or before endDate", field="startDate")
    return start_day, end_day


def _apply_range(query, start_day: date | None, end_day: date | None):
    if start_day is not None:
        query = query.filter(Allocation.allocation_date >= day_bounds(start_day)[0])
    if end_day is not None:
        query = query.filter(Allocation.allocation_date < day_bounds(end_day)[1])
    return query


def _aggregate_columns() -> list:
    settled = Allocation.status != ALLOCATION_STATUS_ALLOCATED
    return [
        func.count(Allocation.id).label("allocation_count"),
        func.coalesce(func.sum(Allocation.quantity), 0).label("allocated"),
        func.coalesce(func.sum(case((settled, Allocation.sold_quantity), else_=0)), 0).label("sold"),
        func.coalesce(
            func.sum(case((settled, Allocation.quantity - Allocation.sold_quantity), else_=0)), 0
        ).label("returned"),
        func.coalesce(
            func.sum(case((settled, 0), else_=Allocation.quantity)), 0
        ).label("outstanding"),
        func.coalesce(
            func.sum(case((settled, Allocation.payment_received_cents), else_=0)), 0
        ).label("revenue"),
        func.coalesce(
            func.sum(case((settled, Allocation.sold_quantity * Allocation.item_price_cents), else_=0)), 0
        ).label("expected"),
        func.coalesce(
            func.sum(case((Allocation.status == ALLOCATION_STATUS_ALLOCATED, 1), else_=0)), 0
        ).label("allocated_count"),
        func.coalesce(
            func.sum(case((Allocation.status == ALLOCATION_STATUS_SOLD, 1), else_=0)), 0
        ).label("sold_count"),
        func.coalesce(
            func.sum(case((Allocation.status == ALLOCATION_STATUS_RETURNED, 1), else_=0)), 0
        ).label("returned_count"),
    ]


_NO_ACTIVITY = SimpleNamespace(
    allocation_count=0, allocated=0, sold=0, returned=0, outstanding=0,
    revenue=0, expected=0, allocated_count=0, sold_count=0, returned_count=0,
)


def _figures(row=None) -> dict:
    if row is None:
        row = _NO_ACTIVITY
    allocated = int(row.allocated or 0)
    sold = int(row.sold or 0)
    revenue = _cents(row.revenue)
    expected = _cents(row.expected)
    return {
        "allocationCount": int(row.allocation_count or 0),
        "totalAllocated": allocated,
        "totalSold": sold,
        "totalReturned": int(row.returned or 0),
        "outstanding": int(row.outstanding or 0),
        "totalRevenue": money_to_json(revenue),
        "expectedRevenue": money_to_json(expected),
        "paymentDifference": money_to_json(revenue - expected),
        "conversionRate": round(sold / allocated * 100, 2) if allocated else 0.0,
        "statusCounts": {
            ALLOCATION_STATUS_ALLOCATED: int(row.allocated_count or 0),
            ALLOCATION_STATUS_SOLD: int(row.sold_count or 0),
            ALLOCATION_STATUS_RETURNED: int(row.returned_count or 0),
        },
    }


def salesperson_performance(*, start: str | None = None, end: str | None = None) -> dict:
    """
    One row per salesperson: allocated/sold/returned units, revenue vs
    expected, conversion rate. Active salespeople appear even with no
    allocations; inactive ones only if they have allocations in range.
    """
    start_day, end_day = _parse_range(start, end)

    query = db.session.query(Allocation.salesperson_id, *_aggregate_columns())
    query = _apply_range(query, start_day, end_day).group_by(Allocation.salesperson_id)
    by_id = {row.salesperson_id: row for row in query.all()}

    people = (
        db.session.query(Salesperson)
        .filter(or_(Salesperson.is_active.is_(True), Salesperson.id.in_(list(by_id))))
        .order_by(Salesperson.name.asc(), Salesperson.id.asc())
        .all()
    )

    rows = []
    for person in people:
        rows.append({
            "salespersonId": person.id,
            "salespersonName": person.name,
            "totalSales": money_to_json(person.total_sales_cents),
            "itemsAllocated": person.items_allocated,
            **_figures(by_id.get(person.id)),
        })

    overall = _apply_range(db.session.query(*_aggregate_columns()), start_day, end_day).one()
    return {
        "startDate": start_day.isoformat() if start_day else None,
        "endDate": end_day.isoformat() if end_day else None,
        "rows": rows,
        "totals": _figures(overall),
    }


def item_performance(*, start: str | None = None, end: str | None = None) -> dict:
    """One row per item: allocated/sold units, revenue and conversion rate."""
    start_day, end_day = _parse_range(start, end)

    query = db.session.query(Allocation.item_id, *_aggregate_columns())
    query = _apply_range(query, start_day, end_day).group_by(Allocation.item_id)
    by_id = {row.item_id: row for row in query.all()}

    items = (
        db.session.query(Item)
        .filter(or_(Item.is_active.is_(True), Item.id.in_(list(by_id))))
        .order_by(Item.name.asc(), Item.id.asc())
        .all()
    )

    rows = []
    for item in items:
        rows.append({
            "itemId": item.id,
            "itemName": item.name,
            "itemPrice": money_to_json(item.price_cents),
            "stock": item.stock,
            **_figures(by_id.get(item.id)),
        })

    return {
        "startDate": start_day.isoformat() if start_day else None,
        "endDate": end_day.isoformat() if end_day else None,
        "rows": rows,
    }


def daily_summary(*, day: str) -> dict:
    """Totals for allocations dated on one calendar day, with a per-salesperson split."""
    target = _parse_day(day, "date")
    if target is None:
        raise ValidationError("date is required", field="date")

    totals = _apply_range(db.session.query(*_aggregate_columns()), target, target).one()

    per_person = (
        _apply_range(
            db.session.query(Allocation.salesperson_id, Salesperson.name, *_aggregate_columns())
            .join(Salesperson, Salesperson.id == Allocation.salesperson_id),
            target,
            target,
        )
        .group_by(Allocation.salesperson_id, Salesperson.name)
        .order_by(Salesperson.name.asc())
        .all()
    )

    return {
        "date": target.isoformat(),
        **_figures(totals),
        "bySalesperson": [
            {"salespersonId": row.salesperson_id, "salespersonName": row.name, **_figures(row)}
            for row in per_person
        ],
    }


def date_range_summary(*, start: str | None, end: str | None) -> dict:
    """One row per day with allocation activity in [start, end], plus totals."""
    start_day, end_day = _parse_range(start, end)
    if start_day is None or end_day is None:
        raise ValidationError("startDate and endDate are required", field="startDate")
    if (end_day - start_day) > timedelta(days=MAX_RANGE_DAYS):
        raise ValidationError(f"Date range cannot exceed {MAX_RANGE_DAYS} days", field="endDate")

    day_expr = func.date(Allocation.allocation_date)
    rows = (
        _apply_range(db.session.query(day_expr.label("day"), *_aggregate_columns()), start_day, end_day)
        .group_by(day_expr)
        .order_by(day_expr)
        .all()
    )
    overall = _apply_range(db.session.query(*_aggregate_columns()), start_day, end_day).one()

    return {
        "startDate": start_day.isoformat(),
        "endDate": end_day.isoformat(),
        "days": [{"date": str(row.day), **_figures(row)} for row in rows],
        "totals": _figures(overall),
    }


def item_quantity_sold(*, item_id: int, start: str | None = None, end: str | None = None) -> dict:
    """Units of one item sold (settled allocations), split per salesperson."""
    item = get_item(item_id)
    start_day, end_day = _parse_range(start, end)

    totals = _apply_range(
        db.session.query(*_aggregate_columns()).filter(Allocation.item_id == item_id),
        start_day,
        end_day,
    ).one()

    per_person = (
        _apply_range(
            db.session.query(Allocation.salesperson_id, Salesperson.name, *_aggregate_columns())
            .join(Salesperson, Salesperson.id == Allocation.salesperson_id)
            .filter(Allocation.item_id == item_id),
            start_day,
            end_day,
        )
        .group_by(Allocation.salesperson_id, Salesperson.name)
        .order_by(Salesperson.name.asc())
        .all()
    )

    figures = _figures(totals)
    return {
        "itemId": item.id,
        "itemName": item.name,
        "startDate": start_day.isoformat() if start_day else None,
        "endDate": end_day.isoformat() if end_day else None,
        "quantitySold": figures["totalSold"],
        **figures,
        "bySalesperson": [
            {
                "salespersonId": row.salesperson_id,
                "salespersonName": row.name,
                "quantitySold": int(row.sold or 0),
                "revenue": money_to_json(_cents(row.revenue)),
            }
            for row in per_person
        ],
    }


def salesperson_revenue(
    *, salesperson_id: int, start: str | None = None, end: str | None = None
) -> dict:
    """Revenue and units sold by one salesperson over settled allocations in range."""
    person = get_salesperson(salesperson_id)
    start_day, end_day = _parse_range(start, end)

    totals = _apply_range(
        db.session.query(*_aggregate_columns()).filter(Allocation.salesperson_id == salesperson_id),
        start_day,
        end_day,
    ).one()

    figures = _figures(totals)
    return {
        "salespersonId": person.id,
        "salespersonName": person.name,
        "revenue": figures["totalRevenue"],
        "itemsSold": figures["totalSold"],
        "dateRange": {
            "startDate": start_day.isoformat() if start_day else None,
            "endDate": end_day.isoformat() if end_day else None,
        },
        **figures,
    }


def dashboard_summary() -> dict:
    """Headline numbers for the landing page."""
    total_sales = db.session.query(
        func.coalesce(func.sum(Salesperson.total_sales_cents), 0)
    ).filter(Salesperson.is_active.is_(True)).scalar()

    item_row = db.session.query(
        func.count(Item.id).label("items"),
        func.coalesce(func.sum(Item.stock), 0).label("stock"),
        func.coalesce(func.sum(case((Item.stock <= Item.min_stock, 1), else_=0)), 0).label("low"),
        func.coalesce(func.sum(case((Item.stock == 0, 1), else_=0)), 0).label("out"),
    ).filter(Item.is_active.is_(True)).one()

    active_salespeople = db.session.query(func.count(Salesperson.id)).filter(
        Salesperson.is_active.is_(True)
    ).scalar()

    outstanding = db.session.query(
        func.count(Allocation.id).label("allocations"),
        func.coalesce(func.sum(Allocation.quantity), 0).label("units"),
    ).filter(Allocation.status == ALLOCATION_STATUS_ALLOCATED).one()

    active = int(active_salespeople or 0)
    sales = _cents(total_sales)
    average = (
        int((Decimal(sales) / active).quantize(Decimal(1), rounding=ROUND_HALF_UP)) if active else 0
    )
    return {
        "totalSales": money_to_json(sales),
        "averageSalesPerSalesperson": money_to_json(average),
        "totalStock": int(item_row.stock or 0),
        "activeItems": int(item_row.items or 0),
        "lowStockCount": int(item_row.low or 0),
        "outOfStockCount": int(item_row.out or 0),
        "activeSalespeople": active,
        "outstandingAllocations": int(outstanding.allocations or 0),
        "outstandingUnits": int(outstanding.units or 0),
    }
