# salesdesk/services/salesperson_service.py
"""
Salesperson Ledger

Invariants (authoritative):
- items_allocated is the number of units currently out with the salesperson.
  +qty on allocation, -qty on settlement, downward edit or delete of an
  outstanding allocation. Never negative.
- total_sales_cents accumulates payment_received_cents (integer cents) at
  settlement. It only goes down through reverse_settlement() (administrative
  delete of a settled allocation). Never negative.
- The ledger performs no recomputation: callers pass the exact amounts.

All ledger operations run inside the caller's unit of work (no commit) and
write through conditional UPDATEs so concurrent settlements cannot lose an
increment.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update

from ..extensions import db
from ..models import Salesperson, Allocation, ALLOCATION_STATUS_ALLOCATED
from ..validation import InvalidStateError, NotFoundError, ValidationError
from .concurrency import lock_for_update, run_with_retry

SALESPERSON_MUTABLE_FIELDS = {"name", "phone"}


def get_salesperson(
    salesperson_id: int, *, lock: bool = False, require_active: bool = False
) -> Salesperson:
    query = db.session.query(Salesperson).filter(Salesperson.id == salesperson_id)
    if lock:
        query = lock_for_update(query)
    salesperson = query.first()
    if salesperson is None:
        raise NotFoundError(
            f"Salesperson {salesperson_id} not found", salesperson_id=salesperson_id
        )
    if require_active and not salesperson.is_active:
        raise InvalidStateError(
            f"Salesperson {salesperson_id} is inactive", salesperson_id=salesperson_id
        )
    return salesperson


def list_salespeople(*, include_inactive: bool = False) -> list[Salesperson]:
    query = db.session.query(Salesperson)
    if not include_inactive:
        query = query.filter(Salesperson.is_active.is_(True))
    return query.order_by(Salesperson.name.asc(), Salesperson.id.asc()).all()


def _apply_ledger_update(salesperson_id: int, *conditions, **values) -> Salesperson | None:
    salesperson = get_salesperson(salesperson_id, lock=True)
    result = db.session.execute(
        update(Salesperson)
        .where(Salesperson.id == salesperson_id, *conditions)
        .values(updated_at=func.now(), **values)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(salesperson)
    if result.rowcount == 0:
        return None
    return salesperson


def record_allocation(salesperson_id: int, qty: int) -> Salesperson:
    """items_allocated += qty."""
    if qty is None or qty <= 0:
        raise ValidationError("allocated quantity must be > 0", salesperson_id=salesperson_id)
    return _apply_ledger_update(
        salesperson_id,
        items_allocated=Salesperson.items_allocated + qty,
    )


def release_allocation(salesperson_id: int, qty: int) -> Salesperson:
    """items_allocated -= qty, for units handed back before settlement."""
    if qty is None or qty <= 0:
        raise ValidationError("released quantity must be > 0", salesperson_id=salesperson_id)
    salesperson = _apply_ledger_update(
        salesperson_id,
        Salesperson.items_allocated >= qty,
        items_allocated=Salesperson.items_allocated - qty,
    )
    if salesperson is None:
        current = get_salesperson(salesperson_id)
        raise InvalidStateError(
            f"Salesperson {salesperson_id} has only {current.items_allocated} unit(s) allocated, "
            f"cannot release {qty}",
            salesperson_id=salesperson_id,
            items_allocated=current.items_allocated,
            requested=qty,
        )
    return salesperson


def record_settlement(
    salesperson_id: int,
    *,
    allocated_quantity: int,
    returned_quantity: int,
    payment_received_cents: int,
) -> Salesperson:
    """
    End-of-day settlement of one allocation:
        items_allocated -= allocated_quantity   (the whole allocation leaves the salesperson)
        total_sales     += payment_received     (recorded verbatim, in cents)

    returned_quantity is what went back to stock; it is carried for the log
    line only, the ledger does not recompute anything from it.
    """
    salesperson = _apply_ledger_update(
        salesperson_id,
        Salesperson.items_allocated >= allocated_quantity,
        items_allocated=Salesperson.items_allocated - allocated_quantity,
        total_sales_cents=Salesperson.total_sales_cents + payment_received_cents,
    )
    if salesperson is None:
        current = get_salesperson(salesperson_id)
        raise InvalidStateError(
            f"Salesperson {salesperson_id} ledger shows {current.items_allocated} unit(s) allocated, "
            f"cannot settle {allocated_quantity}",
            salesperson_id=salesperson_id,
            items_allocated=current.items_allocated,
            requested=allocated_quantity,
        )
    current_app.logger.debug(
        "Settlement salesperson=%s allocated=%s returned=%s payment_cents=%s",
        salesperson_id, allocated_quantity, returned_quantity, payment_received_cents,
    )
    return salesperson


def reverse_settlement(salesperson_id: int, *, payment_received_cents: int) -> Salesperson:
    """total_sales -= payment_received (administrative reversal only, in cents)."""
    salesperson = _apply_ledger_update(
        salesperson_id,
        Salesperson.total_sales_cents >= payment_received_cents,
        total_sales_cents=Salesperson.total_sales_cents - payment_received_cents,
    )
    if salesperson is None:
        current = get_salesperson(salesperson_id)
        raise InvalidStateError(
            f"Salesperson {salesperson_id} total sales {current.total_sales_cents / 100:,.2f} "
            f"cannot absorb a reversal of {payment_received_cents / 100:,.2f}",
            salesperson_id=salesperson_id,
        )
    return salesperson


def outstanding_allocation_count(salesperson_id: int) -> int:
    return (
        db.session.query(func.count(Allocation.id))
        .filter(
            Allocation.salesperson_id == salesperson_id,
            Allocation.status == ALLOCATION_STATUS_ALLOCATED,
        )
        .scalar()
        or 0
    )


def create_salesperson(*, patch: dict) -> Salesperson:
    if not patch.get("name"):
        raise ValidationError("name is required", field="name")

    def _op():
        salesperson = Salesperson(total_sales_cents=0, items_allocated=0, is_active=True)
        for k, v in patch.items():
            if k in SALESPERSON_MUTABLE_FIELDS:
                setattr(salesperson, k, v)
        db.session.add(salesperson)
        db.session.commit()
        current_app.logger.info("Created salesperson id=%s name=%s", salesperson.id, salesperson.name)
        return salesperson

    return run_with_retry(_op)


def update_salesperson(*, salesperson_id: int, patch: dict) -> Salesperson:
    """Contact details only; ledger totals are not settable from here."""
    def _op():
        salesperson = get_salesperson(salesperson_id, lock=True)
        for k, v in patch.items():
            if k in SALESPERSON_MUTABLE_FIELDS:
                setattr(salesperson, k, v)
        db.session.commit()
        return salesperson

    return run_with_retry(_op)


def delete_salesperson(*, salesperson_id: int) -> Salesperson:
    """
    Soft-delete a salesperson. Refused while any allocation is still
    outstanding: those units must be settled or deleted first.
    """
    def _op():
        salesperson = get_salesperson(salesperson_id, lock=True)
        outstanding = outstanding_allocation_count(salesperson_id)
        if outstanding:
            raise InvalidStateError(
                f"Salesperson {salesperson_id} has {outstanding} outstanding allocation(s)",
                salesperson_id=salesperson_id,
                outstanding_allocations=outstanding,
            )
        salesperson.is_active = False
        db.session.commit()
        current_app.logger.info("Deactivated salesperson id=%s", salesperson_id)
        return salesperson

    return run_with_retry(_op)
