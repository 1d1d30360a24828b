from __future__ import annotations

from ..extensions import db
from workshop.time_utils import to_utc_z, utcnow


POS_SALE_STATUSES = ("completed", "refunded")


class PosSale(db.Model):
    """
    Walk-in retail sale, independent of any job card.

    Created already completed: the header, its items and the stock debits
    are written in one transaction. A refund credits every line back and
    flips the status; there is no partial refund.
    """
    __tablename__ = "pos_sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_pos_sales_sale_number"),
        db.Index("ix_pos_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "POS202610190001"
    sale_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cashier_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    # cash, card
    payment_method = db.Column(db.String(16), nullable=False)
    # completed, refunded
    status = db.Column(db.String(16), nullable=False, default="completed")
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("pos_sales", lazy=True))
    cashier = db.relationship("User", foreign_keys=[cashier_user_id])
    items = db.relationship(
        "PosSaleItem", back_populates="sale", cascade="all, delete-orphan",
        order_by="PosSaleItem.id", lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "cashier_user_id": self.cashier_user_id,
            "cashier_name": self.cashier.name if self.cashier else None,
            "subtotal_cents": self.subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "change_cents": self.change_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "notes": self.notes,
            "item_count": len(self.items),
            "created_at": to_utc_z(self.created_at),
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "refunded_by_user_id": self.refunded_by_user_id,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [i.to_dict() for i in self.items]
        return data


class PosSaleItem(db.Model):
    __tablename__ = "pos_sale_items"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("pos_sales.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Cost price snapshot used by profitability reports
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    sale = db.relationship("PosSale", back_populates="items")
    item = db.relationship("InventoryItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "unit_cost_cents": self.unit_cost_cents,
        }
