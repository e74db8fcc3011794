# salesdesk/services/item_service.py
"""
Item Ledger

Invariants (authoritative):
- Item.stock >= 0 at all times.
- adjust_stock() is the ONLY code path that writes Item.stock. Allocation,
  quantity edits, settlement returns, deletes and the administrative override
  all route through it, so one conditional UPDATE guards every caller.
- SKU is unique among active items. Soft-deleted items keep their SKU.

Units of work:
- adjust_stock() participates in the caller's transaction (no commit).
- create/update/delete/set_stock own their transaction and commit. A stock
  override in update_item() commits together with the descriptive fields.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Item, Allocation, ALLOCATION_STATUS_ALLOCATED
from ..validation import (
    ConflictError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from .concurrency import lock_for_update, run_with_retry

ITEM_MUTABLE_FIELDS = {"sku", "name", "description", "category", "price_cents", "min_stock"}


def apply_item_patch(item: Item, patch: dict) -> None:
    for k, v in patch.items():
        if k not in ITEM_MUTABLE_FIELDS:
            continue
        setattr(item, k, v)


def get_item(item_id: int, *, lock: bool = False, require_active: bool = False) -> Item:
    query = db.session.query(Item).filter(Item.id == item_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise NotFoundError(f"Item {item_id} not found", item_id=item_id)
    if require_active and not item.is_active:
        raise InvalidStateError(f"Item {item_id} is inactive", item_id=item_id)
    return item


def list_items(*, include_inactive: bool = False, category: str | None = None) -> list[Item]:
    query = db.session.query(Item)
    if not include_inactive:
        query = query.filter(Item.is_active.is_(True))
    if category:
        query = query.filter(Item.category == category)
    return query.order_by(Item.name.asc(), Item.id.asc()).all()


def list_low_stock_items() -> list[Item]:
    """Active items at or below their reorder threshold (stock <= min_stock)."""
    return (
        db.session.query(Item)
        .filter(Item.is_active.is_(True), Item.stock <= Item.min_stock)
        .order_by(Item.stock.asc(), Item.name.asc())
        .all()
    )


def _ensure_sku_available(sku: str, *, exclude_item_id: int | None = None) -> None:
    query = db.session.query(Item).filter(Item.sku == sku, Item.is_active.is_(True))
    if exclude_item_id is not None:
        query = query.filter(Item.id != exclude_item_id)
    existing = query.first()
    if existing:
        raise ConflictError(
            f"SKU {sku!r} already exists on active item {existing.id}",
            sku=sku,
            item_id=existing.id,
        )


def outstanding_allocation_count(item_id: int) -> int:
    return (
        db.session.query(func.count(Allocation.id))
        .filter(Allocation.item_id == item_id, Allocation.status == ALLOCATION_STATUS_ALLOCATED)
        .scalar()
        or 0
    )


def adjust_stock(item_id: int, delta: int, *, expected_stock: int | None = None) -> Item:
    """
    Apply stock += delta inside the caller's unit of work.

    The availability check and the write are one statement:
        UPDATE items SET stock = stock + :delta
        WHERE id = :id AND stock + :delta >= 0
    so two concurrent callers can never both pass the check against the same
    stale value. The row is locked first where the backend supports it.

    expected_stock turns the update into a compare-and-set on the current
    value; a mismatch raises StaleDataError so run_with_retry re-reads.

    Raises:
        NotFoundError: unknown item
        InsufficientStockError: the result would be negative
    """
    item = get_item(item_id, lock=True)
    if delta == 0 and expected_stock is None:
        return item

    conditions = [Item.id == item_id, Item.stock + delta >= 0]
    if expected_stock is not None:
        conditions.append(Item.stock == expected_stock)

    result = db.session.execute(
        update(Item)
        .where(*conditions)
        .values(stock=Item.stock + delta, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(item)

    if result.rowcount == 0:
        if expected_stock is not None and item.stock != expected_stock:
            raise StaleDataError(f"Item {item_id} stock changed concurrently")
        raise InsufficientStockError(
            f"Insufficient stock for item {item_id}: requested {-delta}, available {item.stock}",
            item_id=item_id,
            requested=-delta,
            available=item.stock,
        )
    return item


def set_stock(*, item_id: int, new_stock: int) -> Item:
    """
    Administrative override (manual count correction).

    Routed through adjust_stock() with the computed delta, as a
    compare-and-set against the stock value the delta was computed from.
    """
    if new_stock is None or new_stock < 0:
        raise ValidationError("stock must be >= 0", field="stock", item_id=item_id)

    def _op():
        item = get_item(item_id, lock=True)
        previous = item.stock
        adjust_stock(item_id, new_stock - previous, expected_stock=previous)
        db.session.commit()
        current_app.logger.info("Stock override item=%s %s -> %s", item_id, previous, new_stock)
        return item

    return run_with_retry(_op)


def create_item(*, patch: dict) -> Item:
    """
    Create an item from a validated patch.

    Raises:
        ValidationError: missing sku/name or negative numbers
        ConflictError: SKU already used by an active item
    """
    for required in ("sku", "name"):
        if not patch.get(required):
            raise ValidationError(f"{required} is required", field=required)
    for attr, label in (("price_cents", "price"), ("stock", "stock"), ("min_stock", "minStock")):
        if patch.get(attr) is not None and patch[attr] < 0:
            raise ValidationError(f"{label} must be >= 0", field=label)

    def _op():
        _ensure_sku_available(patch["sku"])

        item = Item(stock=patch.get("stock") or 0, is_active=True)
        apply_item_patch(item, patch)
        if item.price_cents is None:
            item.price_cents = 0
        if item.min_stock is None:
            item.min_stock = 0

        db.session.add(item)
        db.session.commit()
        current_app.logger.info("Created item id=%s sku=%s stock=%s", item.id, item.sku, item.stock)
        return item

    return run_with_retry(_op)


def update_item(*, item_id: int, patch: dict) -> Item:
    """
    Update descriptive fields. A 'stock' key is an administrative override:
    it goes through adjust_stock() as a compare-and-set, in the same
    transaction as the other fields, so either the whole PUT lands or none
    of it does.
    """
    new_stock = patch.get("stock")
    if new_stock is not None and new_stock < 0:
        raise ValidationError("stock must be >= 0", field="stock", item_id=item_id)

    def _op():
        item = get_item(item_id, lock=True)

        if "sku" in patch and patch["sku"] != item.sku and item.is_active:
            _ensure_sku_available(patch["sku"], exclude_item_id=item.id)

        previous = item.stock
        if new_stock is not None and new_stock != previous:
            adjust_stock(item_id, new_stock - previous, expected_stock=previous)

        apply_item_patch(item, patch)
        db.session.commit()
        if new_stock is not None and new_stock != previous:
            current_app.logger.info("Stock override item=%s %s -> %s", item_id, previous, new_stock)
        return item

    return run_with_retry(_op)


def delete_item(*, item_id: int) -> Item:
    """
    Soft-delete an item (is_active = False).

    Refused while units of the item are still out with salespeople, since
    settling them would return stock to an item nobody can see.
    """
    def _op():
        item = get_item(item_id, lock=True)
        outstanding = outstanding_allocation_count(item_id)
        if outstanding:
            raise InvalidStateError(
                f"Item {item_id} has {outstanding} outstanding allocation(s)",
                item_id=item_id,
                outstanding_allocations=outstanding,
            )
        if item.is_active:
            item.is_active = False
        db.session.commit()
        current_app.logger.info("Deactivated item id=%s sku=%s", item.id, item.sku)
        return item

    return run_with_retry(_op)
