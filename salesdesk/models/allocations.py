from __future__ import annotations

from ..extensions import db
from salesdesk.time_utils import to_utc_z
from salesdesk.validation import money_to_json


ALLOCATION_STATUS_ALLOCATED = "ALLOCATED"
ALLOCATION_STATUS_SOLD = "SOLD"
ALLOCATION_STATUS_RETURNED = "RETURNED"

ALLOCATION_STATUSES = (
    ALLOCATION_STATUS_ALLOCATED,
    ALLOCATION_STATUS_SOLD,
    ALLOCATION_STATUS_RETURNED,
)


class Allocation(db.Model):
    """
    N units of one item handed to one salesperson on one date.

    LIFECYCLE: ALLOCATED -> SOLD | RETURNED (terminal). Settlement happens only
    through end-of-day processing.

    SNAPSHOT: item_name and item_price_cents are copied from the Item at creation and
    never refreshed, so historical allocation value is stable when the item
    price changes later.

    STAGED VALUES: while ALLOCATED, sold_quantity / payment_received_cents hold the
    provisional figures entered ahead of end-of-day. Settlement overwrites them.

    version_id guards against two writers settling/editing the same row
    (StaleDataError on conflict).
    """
    __tablename__ = "allocations"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_allocations_quantity_positive"),
        db.CheckConstraint(
            "sold_quantity >= 0 AND sold_quantity <= quantity",
            name="ck_allocations_sold_within_quantity",
        ),
        db.CheckConstraint("payment_received_cents >= 0", name="ck_allocations_payment_non_negative"),
        db.Index("ix_allocations_salesperson_status", "salesperson_id", "status"),
        db.Index("ix_allocations_item_status", "item_id", "status"),
        db.Index("ix_allocations_date", "allocation_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    salesperson_id = db.Column(db.Integer, db.ForeignKey("salespeople.id"), nullable=False)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)

    # Snapshot at allocation time
    item_name = db.Column(db.String(255), nullable=False)
    item_price_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    sold_quantity = db.Column(db.Integer, nullable=False, default=0)
    payment_received_cents = db.Column(db.Integer, nullable=False, default=0)

    allocation_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ALLOCATION_STATUS_ALLOCATED)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    salesperson = db.relationship("Salesperson", backref=db.backref("allocations", lazy=True))
    item = db.relationship("Item", backref=db.backref("allocations", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_settled(self) -> bool:
        return self.status != ALLOCATION_STATUS_ALLOCATED

    @property
    def expected_payment_cents(self) -> int:
        """soldQuantity x itemPrice. Derived for comparison, never stored."""
        return (self.sold_quantity or 0) * (self.item_price_cents or 0)

    @property
    def payment_difference_cents(self) -> int:
        return (self.payment_received_cents or 0) - self.expected_payment_cents

    @property
    def returned_quantity(self) -> int:
        if not self.is_settled:
            return 0
        return self.quantity - self.sold_quantity

    def __repr__(self) -> str:
        return (
            f"<Allocation id={self.id} salesperson_id={self.salesperson_id} "
            f"item_id={self.item_id} qty={self.quantity} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salespersonId": self.salesperson_id,
            "salespersonName": self.salesperson.name if self.salesperson else None,
            "itemId": self.item_id,
            "itemName": self.item_name,
            "itemPrice": money_to_json(self.item_price_cents),
            "quantity": self.quantity,
            "soldQuantity": self.sold_quantity,
            "returnedQuantity": self.returned_quantity,
            "paymentReceived": money_to_json(self.payment_received_cents),
            "expectedPayment": money_to_json(self.expected_payment_cents),
            "paymentDifference": money_to_json(self.payment_difference_cents),
            "allocationDate": to_utc_z(self.allocation_date),
            "date": to_utc_z(self.allocation_date),
            "status": self.status,
            "settledAt": to_utc_z(self.settled_at),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
