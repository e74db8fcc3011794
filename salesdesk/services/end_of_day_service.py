# salesdesk/services/end_of_day_service.py
"""
End-of-Day Reconciliation

Input: one salesperson and a list of
    {"allocationId": ..., "soldQuantity": ..., "paymentReceived": ...}
covering some or all of that salesperson's ALLOCATED allocations.

Per tuple, in its own transaction:
    1. returned = quantity - sold_quantity
    2. allocation.sold_quantity / payment_received_cents / status / settled_at set
       and flushed first, so the optimistic lock claims the row before any
       ledger moves
    3. stock += returned
    4. items_allocated -= quantity, total_sales += payment_received

PARTIAL SUCCESS: a failing tuple is rolled back on its own and reported;
tuples already committed in the same batch stay committed. Resubmitting an
already-settled tuple fails with InvalidStateError and touches nothing, so a
retried batch cannot double-count.

MONEY: paymentReceived is converted to integer cents at the edge and recorded
verbatim. expected payment (sold_quantity x item_price_cents) and the
difference are derived for reporting and never used to reject a settlement.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import (
    Allocation,
    Salesperson,
    ALLOCATION_STATUS_SOLD,
    ALLOCATION_STATUS_RETURNED,
)
from ..validation import (
    ServiceError,
    ValidationError,
    coerce_int,
    coerce_money,
    money_to_json,
)
from salesdesk.time_utils import utcnow
from . import item_service, salesperson_service
from .allocation_service import get_allocation, require_allocated
from .concurrency import run_with_retry


@dataclass
class SettlementEntry:
    allocation_id: int
    sold_quantity: int
    payment_received_cents: int


@dataclass
class SettlementResult:
    allocation_id: Any
    ok: bool
    allocation: Allocation | None = None
    error: ServiceError | None = None

    def to_dict(self) -> dict:
        if self.ok:
            return {"allocationId": self.allocation_id, "ok": True, "allocation": self.allocation.to_dict()}
        return {"allocationId": self.allocation_id, "ok": False, **self.error.to_dict()}


@dataclass
class SettlementBatch:
    salesperson: Salesperson
    results: list[SettlementResult] = field(default_factory=list)

    @property
    def settled(self) -> list[Allocation]:
        return [r.allocation for r in self.results if r.ok]

    @property
    def failed(self) -> list[SettlementResult]:
        return [r for r in self.results if not r.ok]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def expected_total_cents(self) -> int:
        return sum(a.expected_payment_cents for a in self.settled)

    @property
    def received_total_cents(self) -> int:
        return sum(a.payment_received_cents for a in self.settled)

    def to_dict(self) -> dict:
        return {
            "salesperson": self.salesperson.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "settledCount": len(self.settled),
            "failedCount": len(self.failed),
            "expectedTotal": money_to_json(self.expected_total_cents),
            "receivedTotal": money_to_json(self.received_total_cents),
            "paymentDifference": money_to_json(self.received_total_cents - self.expected_total_cents),
        }

    def to_list(self) -> list[dict]:
        """
        Flat array: updated allocation records for settled tuples, error
        entries (no "id" key) for failed ones.
        """
        out = []
        for r in self.results:
            if r.ok:
                out.append(r.allocation.to_dict())
            else:
                out.append({"allocationId": r.allocation_id, **r.error.to_dict()})
        return out


def parse_entry(raw: Any, index: int) -> SettlementEntry:
    if not isinstance(raw, dict):
        raise ValidationError(f"Entry {index} must be an object", index=index)
    for key in ("allocationId", "soldQuantity", "paymentReceived"):
        if raw.get(key) is None:
            raise ValidationError(f"Entry {index} is missing {key}", index=index, field=key)

    sold_quantity = coerce_int(raw["soldQuantity"], "soldQuantity")
    if sold_quantity < 0:
        raise ValidationError("soldQuantity must be >= 0", field="soldQuantity")
    payment_received_cents = coerce_money(raw["paymentReceived"], "paymentReceived")
    if payment_received_cents < 0:
        raise ValidationError("paymentReceived must be >= 0", field="paymentReceived")

    return SettlementEntry(
        allocation_id=coerce_int(raw["allocationId"], "allocationId"),
        sold_quantity=sold_quantity,
        payment_received_cents=payment_received_cents,
    )


def settle_allocation(
    *,
    salesperson_id: int,
    allocation_id: int,
    sold_quantity: int,
    payment_received_cents: int,
) -> Allocation:
    """
    Settle one allocation as a single unit of work.

    Raises:
        NotFoundError: unknown allocation
        ValidationError: allocation belongs to someone else, or sold > quantity
        InvalidStateError: allocation is not ALLOCATED (already settled)
    """
    def _op():
        allocation = get_allocation(allocation_id, lock=True)
        if allocation.salesperson_id != salesperson_id:
            raise ValidationError(
                f"Allocation {allocation_id} does not belong to salesperson {salesperson_id}",
                allocation_id=allocation_id,
                salesperson_id=salesperson_id,
            )
        require_allocated(allocation, "settle")
        if sold_quantity > allocation.quantity:
            raise ValidationError(
                f"soldQuantity {sold_quantity} exceeds allocated quantity {allocation.quantity}",
                allocation_id=allocation_id,
                field="soldQuantity",
                quantity=allocation.quantity,
            )

        returned = allocation.quantity - sold_quantity

        allocation.sold_quantity = sold_quantity
        allocation.payment_received_cents = payment_received_cents
        allocation.status = ALLOCATION_STATUS_SOLD if sold_quantity > 0 else ALLOCATION_STATUS_RETURNED
        allocation.settled_at = utcnow()
        db.session.flush()

        if returned:
            item_service.adjust_stock(allocation.item_id, returned)
        salesperson_service.record_settlement(
            salesperson_id,
            allocated_quantity=allocation.quantity,
            returned_quantity=returned,
            payment_received_cents=payment_received_cents,
        )

        db.session.commit()
        current_app.logger.info(
            "Settled allocation=%s salesperson=%s sold=%s returned=%s payment_cents=%s expected_cents=%s",
            allocation_id, salesperson_id, sold_quantity, returned,
            payment_received_cents, allocation.expected_payment_cents,
        )
        return allocation

    return run_with_retry(_op)


def process_end_of_day(*, salesperson_id: int, entries: Any) -> SettlementBatch:
    """
    Settle a batch of tuples for one salesperson with per-tuple isolation.

    Raises (whole batch):
        NotFoundError: unknown salesperson
        ValidationError: entries is not a list

    Per-tuple failures are captured in the returned batch.
    """
    salesperson_service.get_salesperson(salesperson_id)
    if not isinstance(entries, list):
        raise ValidationError("End-of-day payload must be an array of settlement entries")

    batch_results: list[SettlementResult] = []
    for index, raw in enumerate(entries):
        raw_id = raw.get("allocationId") if isinstance(raw, dict) else None
        try:
            entry = parse_entry(raw, index)
            allocation = settle_allocation(
                salesperson_id=salesperson_id,
                allocation_id=entry.allocation_id,
                sold_quantity=entry.sold_quantity,
                payment_received_cents=entry.payment_received_cents,
            )
            batch_results.append(SettlementResult(allocation_id=allocation.id, ok=True, allocation=allocation))
        except ServiceError as exc:
            current_app.logger.warning(
                "End-of-day entry %s for salesperson=%s failed: %s", index, salesperson_id, exc
            )
            batch_results.append(SettlementResult(allocation_id=raw_id, ok=False, error=exc))

    salesperson = salesperson_service.get_salesperson(salesperson_id)
    batch = SettlementBatch(salesperson=salesperson, results=batch_results)
    current_app.logger.info(
        "End-of-day salesperson=%s settled=%s failed=%s received_cents=%s expected_cents=%s",
        salesperson_id, len(batch.settled), len(batch.failed),
        batch.received_total_cents, batch.expected_total_cents,
    )
    return batch
