from __future__ import annotations

from ..extensions import db
from workshop.time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Workshop customer. Owns vehicles and job cards.

    Deletion is blocked while job cards or POS sales reference the customer;
    vehicles are removed together with their owner.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        db.Index("ix_customers_phone", "phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    vehicles = db.relationship(
        "Vehicle",
        back_populates="customer",
        cascade="all, delete-orphan",
        order_by="Vehicle.registration_number",
        lazy=True,
    )

    def to_dict(self, include_vehicles: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_vehicles:
            data["vehicles"] = [v.to_dict() for v in self.vehicles]
        return data


class Vehicle(db.Model):
    """
    Vehicle belonging to exactly one customer.

    registration_number is stored upper-cased without surrounding
    whitespace and is unique within the shop.
    """
    __tablename__ = "vehicles"
    __table_args__ = (
        db.UniqueConstraint("registration_number", name="uq_vehicles_registration"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    registration_number = db.Column(db.String(32), nullable=False)
    make = db.Column(db.String(64), nullable=True)
    model = db.Column(db.String(64), nullable=True)
    color = db.Column(db.String(32), nullable=True)
    year = db.Column(db.Integer, nullable=True)
    vin = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    customer = db.relationship("Customer", back_populates="vehicles")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "registration_number": self.registration_number,
            "make": self.make,
            "model": self.model,
            "color": self.color,
            "year": self.year,
            "vin": self.vin,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
