from __future__ import annotations

from ..extensions import db
from workshop.time_utils import to_utc_z, utcnow


INVOICE_STATUSES = ("pending", "partial", "paid", "cancelled")
PAYMENT_METHODS = ("cash", "card")


class Invoice(db.Model):
    """
    Bill for a job card.

    SNAPSHOT SEMANTICS:
    Every *_cents amount is computed once, at creation, from the job card's
    lines and never recomputed. Editing the job card afterwards does not
    change the invoice.

    A job card has exactly one invoice at most. A cancelled invoice stays
    attached to its job card and still blocks a second one.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.UniqueConstraint("job_card_id", name="uq_invoices_job_card_id"),
        db.Index("ix_invoices_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False)
    job_card_id = db.Column(db.Integer, db.ForeignKey("job_cards.id"), nullable=False, index=True)

    # Line-group breakdown of subtotal_cents, frozen with the invoice
    services_cents = db.Column(db.Integer, nullable=False, default=0)
    parts_cents = db.Column(db.Integer, nullable=False, default=0)
    labor_cents = db.Column(db.Integer, nullable=False, default=0)
    # Cost of fitted parts at invoice time (profitability)
    parts_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Sum of payments net of change given
    paid_cents = db.Column(db.Integer, nullable=False, default=0)

    # pending, partial, paid, cancelled
    status = db.Column(db.String(16), nullable=False, default="pending")
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    job_card = db.relationship("JobCard", back_populates="invoice")
    payments = db.relationship(
        "Payment", back_populates="invoice", cascade="all, delete-orphan",
        order_by="Payment.id", lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_cents(self) -> int:
        if self.status == "cancelled":
            return 0
        return max(0, self.total_cents - self.paid_cents)

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status!r}>"

    def to_dict(self, include_payments: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "job_card_id": self.job_card_id,
            "job_number": self.job_card.job_number if self.job_card else None,
            "services_cents": self.services_cents,
            "parts_cents": self.parts_cents,
            "labor_cents": self.labor_cents,
            "parts_cost_cents": self.parts_cost_cents,
            "subtotal_cents": self.subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_cents": self.balance_cents,
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class Payment(db.Model):
    """Append-only payment against an invoice."""
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    # Amount tendered; change_cents is the cash handed back
    amount_cents = db.Column(db.Integer, nullable=False)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    # cash, card
    method = db.Column(db.String(16), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    invoice = db.relationship("Invoice", back_populates="payments")

    @property
    def applied_cents(self) -> int:
        return self.amount_cents - self.change_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "change_cents": self.change_cents,
            "applied_cents": self.applied_cents,
            "method": self.method,
            "reference": self.reference,
            "notes": self.notes,
            "received_by_user_id": self.received_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
