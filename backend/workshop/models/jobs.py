from __future__ import annotations

from ..extensions import db
from workshop.time_utils import to_utc_z, utcnow


# Linear workflow; index order is the forward direction
JOB_STATUSES = ("pending", "in_progress", "quality_check", "ready", "invoiced", "paid")

MANUAL_ENTRY_CATEGORIES = ("tinkering", "painting", "other")


class JobCard(db.Model):
    """
    Work order for one vehicle visit.

    actual_total_cents is a cache that jobcard_service recomputes from the
    current child lines after every line mutation; it is never adjusted
    incrementally.
    """
    __tablename__ = "job_cards"
    __table_args__ = (
        db.UniqueConstraint("job_number", name="uq_job_cards_job_number"),
        db.Index("ix_job_cards_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number, e.g. "JC2026100001"
    job_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False, index=True)
    assigned_to_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    odometer = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending")
    actual_total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("job_cards", lazy=True))
    vehicle = db.relationship("Vehicle", backref=db.backref("job_cards", lazy=True))
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])

    services = db.relationship(
        "JobService", back_populates="job_card", cascade="all, delete-orphan",
        order_by="JobService.id", lazy=True,
    )
    parts = db.relationship(
        "JobPart", back_populates="job_card", cascade="all, delete-orphan",
        order_by="JobPart.id", lazy=True,
    )
    manual_entries = db.relationship(
        "JobManualEntry", back_populates="job_card", cascade="all, delete-orphan",
        order_by="JobManualEntry.id", lazy=True,
    )
    # One invoice per job card, cancelled or not
    invoice = db.relationship(
        "Invoice", back_populates="job_card", cascade="all, delete-orphan",
        uselist=False, lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<JobCard id={self.id} job_number={self.job_number!r} status={self.status!r}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "job_number": self.job_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "vehicle_id": self.vehicle_id,
            "registration_number": self.vehicle.registration_number if self.vehicle else None,
            "assigned_to_id": self.assigned_to_id,
            "assigned_to_name": self.assigned_to.name if self.assigned_to else None,
            "odometer": self.odometer,
            "notes": self.notes,
            "status": self.status,
            "actual_total_cents": self.actual_total_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            invoice = self.invoice
            data["services"] = [line.to_dict() for line in self.services]
            data["parts"] = [line.to_dict() for line in self.parts]
            data["manual_entries"] = [entry.to_dict() for entry in self.manual_entries]
            data["invoice"] = invoice.to_dict() if invoice else None
        return data


class JobService(db.Model):
    __tablename__ = "job_services"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    job_card_id = db.Column(db.Integer, db.ForeignKey("job_cards.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    # quantity * unit_price_cents - discount_cents
    total_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    job_card = db.relationship("JobCard", back_populates="services")
    service = db.relationship("Service")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_card_id": self.job_card_id,
            "service_id": self.service_id,
            "service_name": self.service.name if self.service else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class JobPart(db.Model):
    """
    Part fitted on a job. Creating the row debits stock (job_usage);
    deleting it credits the quantity back.
    """
    __tablename__ = "job_parts"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    job_card_id = db.Column(db.Integer, db.ForeignKey("job_cards.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Cost price snapshot used by profitability reports
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    job_card = db.relationship("JobCard", back_populates="parts")
    item = db.relationship("InventoryItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_card_id": self.job_card_id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "sku": self.item.sku if self.item else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class JobManualEntry(db.Model):
    """Free-form labour/paint charge. actual_cost_cents, once set, replaces the estimate."""
    __tablename__ = "job_manual_entries"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    job_card_id = db.Column(db.Integer, db.ForeignKey("job_cards.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=False)
    # tinkering, painting, other
    category = db.Column(db.String(16), nullable=False, default="other")
    estimated_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    actual_cost_cents = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    job_card = db.relationship("JobCard", back_populates="manual_entries")

    @property
    def effective_cost_cents(self) -> int:
        if self.actual_cost_cents is not None:
            return self.actual_cost_cents
        return self.estimated_cost_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_card_id": self.job_card_id,
            "description": self.description,
            "category": self.category,
            "estimated_cost_cents": self.estimated_cost_cents,
            "actual_cost_cents": self.actual_cost_cents,
            "effective_cost_cents": self.effective_cost_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
