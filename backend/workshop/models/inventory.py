from __future__ import annotations

from ..extensions import db
from workshop.time_utils import to_utc_z, utcnow


class Category(db.Model):
    """Inventory grouping (Spare Parts, Fluids & Lubricants, ...)."""
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_categories_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryItem(db.Model):
    """
    Stocked part or consumable.

    STOCK INVARIANT:
    current_stock is the authoritative quantity on hand and is only ever
    changed by stock_service, which appends a StockMovement carrying the
    same signed delta in the same DB transaction. Therefore
    current_stock == SUM(stock_movements.quantity) for every item.

    Catalog edits (update_item) never touch current_stock.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_inventory_items_sku"),
        db.UniqueConstraint("barcode", name="uq_inventory_items_barcode"),
        db.Index("ix_inventory_items_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    # Authoritative storage in cents
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=10)
    unit = db.Column(db.String(16), nullable=False, default="pcs")
    barcode = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    category = db.relationship("Category", backref=db.backref("items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.current_stock <= self.reorder_level

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} sku={self.sku!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "current_stock": self.current_stock,
            "reorder_level": self.reorder_level,
            "unit": self.unit,
            "barcode": self.barcode,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    quantity is signed: receipts/credits positive, debits negative.
    Rows are never updated or deleted; reversals append a compensating row.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_item_created", "item_id", "created_at"),
        db.Index("ix_stock_movements_type_created", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    # purchase, adjustment, job_usage, sale, shop_use
    type = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    unit_cost_cents = db.Column(db.Integer, nullable=True)
    reference = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    item = db.relationship("InventoryItem", backref=db.backref("movements", lazy="dynamic"))
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "type": self.type,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "reference": self.reference,
            "notes": self.notes,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "created_at": to_utc_z(self.created_at),
        }


class ShopUsage(db.Model):
    """
    Consumables used on the shop floor (rags, cleaner, sandpaper).

    Each row is mirrored by a shop_use StockMovement; deleting the row
    credits the quantity back with a compensating movement.
    """
    __tablename__ = "shop_usages"
    __table_args__ = (
        db.Index("ix_shop_usages_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    # shop_floor, cleaning, maintenance, other
    reason = db.Column(db.String(32), nullable=False, default="shop_floor", index=True)
    notes = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    item = db.relationship("InventoryItem")
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "quantity": self.quantity,
            "reason": self.reason,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
