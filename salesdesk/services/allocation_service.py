# salesdesk/services/allocation_service.py
"""
Allocation Lifecycle Engine

STATE MACHINE (per allocation):
    ALLOCATED --end-of-day--> SOLD      (sold_quantity > 0)
    ALLOCATED --end-of-day--> RETURNED  (sold_quantity == 0)
SOLD and RETURNED are terminal. Quantity edits are legal only while
ALLOCATED. Delete is legal in every state (administrative).

EFFECTS (each operation is one unit of work: allocation + item + salesperson
commit together or not at all):
- allocate:       stock -= qty, items_allocated += qty, insert ALLOCATED row
- edit quantity:  stock and items_allocated move by the delta; staged
                  sold_quantity above the new quantity is clamped down and the
                  staged payment reset to new_quantity * item_price_cents
- delete:         ALLOCATED -> stock += qty, items_allocated -= qty
                  SOLD/RETURNED -> see ALLOCATION_DELETE_REVERSES_SETTLEMENT

Settlement itself lives in end_of_day_service.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from flask import current_app

from ..extensions import db
from ..models import (
    Allocation,
    ALLOCATION_STATUS_ALLOCATED,
    ALLOCATION_STATUSES,
)
from ..validation import InvalidStateError, NotFoundError, ValidationError, money_to_json
from salesdesk.time_utils import utcnow
from . import item_service, salesperson_service
from .concurrency import lock_for_update, run_with_retry


def get_allocation(allocation_id: int, *, lock: bool = False) -> Allocation:
    query = db.session.query(Allocation).filter(Allocation.id == allocation_id)
    if lock:
        query = lock_for_update(query)
    allocation = query.first()
    if allocation is None:
        raise NotFoundError(f"Allocation {allocation_id} not found", allocation_id=allocation_id)
    return allocation


def list_allocations(
    *,
    salesperson_id: int | None = None,
    item_id: int | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Allocation]:
    """
    List allocations, newest first. start is inclusive, end is exclusive.
    """
    if status is not None and status not in ALLOCATION_STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(ALLOCATION_STATUSES)}", field="status"
        )
    query = db.session.query(Allocation)
    if salesperson_id is not None:
        query = query.filter(Allocation.salesperson_id == salesperson_id)
    if item_id is not None:
        query = query.filter(Allocation.item_id == item_id)
    if status is not None:
        query = query.filter(Allocation.status == status)
    if start is not None:
        query = query.filter(Allocation.allocation_date >= start)
    if end is not None:
        query = query.filter(Allocation.allocation_date < end)
    return query.order_by(Allocation.allocation_date.desc(), Allocation.id.desc()).all()


def require_allocated(allocation: Allocation, action: str) -> None:
    if allocation.status != ALLOCATION_STATUS_ALLOCATED:
        raise InvalidStateError(
            f"Cannot {action} allocation {allocation.id}: status is {allocation.status}",
            allocation_id=allocation.id,
            status=allocation.status,
        )


def _normalize_allocation_date(value: datetime | None) -> datetime:
    if value is None:
        return utcnow()
    tolerance = timedelta(minutes=current_app.config.get("FUTURE_DATE_TOLERANCE_MINUTES", 2))
    if value > utcnow() + tolerance:
        raise ValidationError("allocationDate cannot be in the future", field="allocationDate")
    return value


def allocate(
    *,
    salesperson_id: int,
    item_id: int,
    quantity: int,
    allocation_date: datetime | None = None,
) -> Allocation:
    """
    Hand `quantity` units of an item to a salesperson.

    The stock check is the conditional UPDATE inside adjust_stock(), executed
    in this same transaction, so it always sees the current stock rather than
    a value read earlier.

    Raises:
        ValidationError: quantity <= 0 or a future allocation date
        NotFoundError: unknown salesperson or item
        InvalidStateError: inactive salesperson or item
        InsufficientStockError: quantity exceeds current stock
    """
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0", field="quantity")
    allocation_dt = _normalize_allocation_date(allocation_date)

    def _op():
        salesperson_service.get_salesperson(salesperson_id, require_active=True)
        item = item_service.get_item(item_id, lock=True, require_active=True)

        item_service.adjust_stock(item_id, -quantity)
        salesperson_service.record_allocation(salesperson_id, quantity)

        allocation = Allocation(
            salesperson_id=salesperson_id,
            item_id=item_id,
            item_name=item.name,
            item_price_cents=item.price_cents,
            quantity=quantity,
            sold_quantity=0,
            payment_received_cents=0,
            allocation_date=allocation_dt,
            status=ALLOCATION_STATUS_ALLOCATED,
        )
        db.session.add(allocation)
        db.session.commit()

        current_app.logger.info(
            "Allocated %s x item=%s to salesperson=%s (allocation=%s, stock now %s)",
            quantity, item_id, salesperson_id, allocation.id, item.stock,
        )
        return allocation

    return run_with_retry(_op)


def _apply_quantity_edit(allocation: Allocation, new_quantity: int) -> None:
    """Move stock/items_allocated by the delta and clamp staged settlement values."""
    if new_quantity is None or new_quantity <= 0:
        raise ValidationError(
            "quantity must be > 0", field="quantity", allocation_id=allocation.id
        )

    delta = new_quantity - allocation.quantity
    if delta < 0:
        item_service.adjust_stock(allocation.item_id, -delta)
        salesperson_service.release_allocation(allocation.salesperson_id, -delta)
    elif delta > 0:
        item_service.adjust_stock(allocation.item_id, -delta)
        salesperson_service.record_allocation(allocation.salesperson_id, delta)

    if allocation.sold_quantity > new_quantity:
        current_app.logger.info(
            "Clamping staged sold quantity of allocation=%s from %s to %s",
            allocation.id, allocation.sold_quantity, new_quantity,
        )
        allocation.sold_quantity = new_quantity
        allocation.payment_received_cents = new_quantity * allocation.item_price_cents

    allocation.quantity = new_quantity


def edit_quantity(*, allocation_id: int, new_quantity: int) -> Allocation:
    """
    Change the allocated quantity of an ALLOCATED allocation.

    Raises:
        InvalidStateError: allocation already settled
        InsufficientStockError: increase exceeds current stock
    """
    def _op():
        allocation = get_allocation(allocation_id, lock=True)
        require_allocated(allocation, "edit")
        previous = allocation.quantity
        _apply_quantity_edit(allocation, new_quantity)
        db.session.commit()
        current_app.logger.info(
            "Edited allocation=%s quantity %s -> %s", allocation_id, previous, new_quantity
        )
        return allocation

    return run_with_retry(_op)


def update_allocation(
    *,
    allocation_id: int,
    quantity: int | None = None,
    sold_quantity: int | None = None,
    payment_received_cents: int | None = None,
    status: str | None = None,
) -> Allocation:
    """
    PUT semantics for an allocation still out with its salesperson.

    sold_quantity / payment_received_cents are staged values (entered ahead of
    end-of-day). A staged sold quantity may not exceed the larger of the old
    and new quantity; one that fits the old quantity but not a lowered new one
    is clamped, and the staged payment reset, as for a plain quantity edit.

    status may only echo ALLOCATED: settling happens through end-of-day
    processing, never through an edit.
    """
    if status is not None and status not in ALLOCATION_STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(ALLOCATION_STATUSES)}", field="status"
        )
    if sold_quantity is not None and sold_quantity < 0:
        raise ValidationError("soldQuantity must be >= 0", field="soldQuantity")
    if payment_received_cents is not None and payment_received_cents < 0:
        raise ValidationError("paymentReceived must be >= 0", field="paymentReceived")

    def _op():
        allocation = get_allocation(allocation_id, lock=True)
        require_allocated(allocation, "edit")

        if status is not None and status != ALLOCATION_STATUS_ALLOCATED:
            raise InvalidStateError(
                f"Allocation {allocation_id} can only be settled through end-of-day processing",
                allocation_id=allocation_id,
                status=allocation.status,
                requested_status=status,
            )

        limit = max(allocation.quantity, quantity or 0)
        if sold_quantity is not None and sold_quantity > limit:
            raise ValidationError(
                f"soldQuantity {sold_quantity} exceeds allocated quantity {limit}",
                field="soldQuantity",
                allocation_id=allocation_id,
                quantity=limit,
            )

        # Ledger UPDATEs autoflush, so the row is only touched after they run
        if quantity is not None:
            _apply_quantity_edit(allocation, quantity)

        clamped = False
        if sold_quantity is not None:
            if sold_quantity > allocation.quantity:
                clamped = True
                allocation.sold_quantity = allocation.quantity
                allocation.payment_received_cents = allocation.quantity * allocation.item_price_cents
            else:
                allocation.sold_quantity = sold_quantity
        if payment_received_cents is not None and not clamped:
            allocation.payment_received_cents = payment_received_cents

        db.session.commit()
        return allocation

    return run_with_retry(_op)


def delete_allocation(*, allocation_id: int) -> dict:
    """
    Remove an allocation and undo what it did to the ledgers.

    ALLOCATED: the units come back to stock and leave the salesperson.

    SOLD/RETURNED: with ALLOCATION_DELETE_REVERSES_SETTLEMENT (default) the
    allocation is undone as if it never happened: the sold units go back to
    stock (returned units already did at settlement) and the payment comes off
    total_sales_cents. With the setting off, only the record is removed
    and the ledgers keep the settled figures.

    Returns a summary of what was reversed.
    """
    reverse_settled = current_app.config.get("ALLOCATION_DELETE_REVERSES_SETTLEMENT", True)

    def _op():
        allocation = get_allocation(allocation_id, lock=True)
        summary = {
            "id": allocation.id,
            "status": allocation.status,
            "stockReturned": 0,
            "itemsReleased": 0,
            "salesReversed": 0.0,
            "settlementReversed": False,
        }

        if allocation.status == ALLOCATION_STATUS_ALLOCATED:
            item_service.adjust_stock(allocation.item_id, allocation.quantity)
            salesperson_service.release_allocation(allocation.salesperson_id, allocation.quantity)
            summary["stockReturned"] = allocation.quantity
            summary["itemsReleased"] = allocation.quantity
        elif reverse_settled:
            if allocation.sold_quantity:
                item_service.adjust_stock(allocation.item_id, allocation.sold_quantity)
            if allocation.payment_received_cents:
                salesperson_service.reverse_settlement(
                    allocation.salesperson_id, payment_received_cents=allocation.payment_received_cents
                )
            summary["stockReturned"] = allocation.sold_quantity
            summary["salesReversed"] = money_to_json(allocation.payment_received_cents)
            summary["settlementReversed"] = True
        else:
            current_app.logger.warning(
                "Deleting settled allocation=%s without reversing its settlement", allocation.id
            )

        db.session.delete(allocation)
        db.session.commit()
        current_app.logger.info("Deleted allocation=%s (%s)", allocation_id, summary)
        return summary

    return run_with_retry(_op)
