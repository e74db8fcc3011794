from __future__ import annotations

from ..extensions import db
from salesdesk.time_utils import to_utc_z
from salesdesk.validation import money_to_json


class Salesperson(db.Model):
    """
    Field salesperson.

    LEDGER FIELDS:
    - items_allocated: units currently out with this salesperson (NOT cumulative).
      Goes up on allocation, down on settlement/return/delete.
    - total_sales_cents: cumulative cash recorded at end-of-day settlement.
    Both are written only by salesperson_service ledger operations.
    """
    __tablename__ = "salespeople"
    __table_args__ = (
        db.CheckConstraint("items_allocated >= 0", name="ck_salespeople_items_allocated_non_negative"),
        db.CheckConstraint("total_sales_cents >= 0", name="ck_salespeople_total_sales_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(64), nullable=True)

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    items_allocated = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Salesperson id={self.id} name={self.name!r} items_allocated={self.items_allocated}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "totalSales": money_to_json(self.total_sales_cents),
            "itemsAllocated": self.items_allocated,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
