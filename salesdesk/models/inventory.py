from __future__ import annotations

from ..extensions import db
from salesdesk.time_utils import to_utc_z
from salesdesk.validation import money_to_json


class Item(db.Model):
    """
    Stocked item.

    STOCK INVARIANT: stock >= 0 at all times. The column is only ever written
    through item_service.adjust_stock(), which issues a conditional UPDATE;
    the CHECK constraint is the last line if anything bypasses it.

    SKU: unique among active items only. Soft-deleted items keep their SKU for
    history, so uniqueness is enforced in the service rather than by a
    table-wide unique constraint.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_items_stock_non_negative"),
        db.CheckConstraint("min_stock >= 0", name="ck_items_min_stock_non_negative"),
        db.CheckConstraint("price_cents >= 0", name="ck_items_price_non_negative"),
        db.Index("ix_items_sku_active", "sku", "is_active"),
        db.Index("ix_items_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(120), nullable=True)

    # Money columns hold integer cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    def __repr__(self) -> str:
        return f"<Item id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": money_to_json(self.price_cents),
            "stock": self.stock,
            "minStock": self.min_stock,
            "category": self.category,
            "sku": self.sku,
            "isActive": self.is_active,
            "lowStock": self.is_low_stock,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
