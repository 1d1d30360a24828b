from __future__ import annotations

from ..extensions import db
from workshop.time_utils import to_utc_z, utcnow


class ServiceCategory(db.Model):
    """Grouping for labour services (Mechanical, Electrical, Body & Paint)."""
    __tablename__ = "service_categories"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_service_categories_name"),
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


class Service(db.Model):
    """
    Priced labour service offered by the workshop.

    base_price_cents is the list price; job lines copy a unit price at the
    time they are added and never follow later catalog edits.
    """
    __tablename__ = "services"
    __table_args__ = (
        db.UniqueConstraint("category_id", "name", name="uq_services_category_name"),
        db.Index("ix_services_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("service_categories.id"), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    base_price_cents = db.Column(db.Integer, nullable=False, default=0)

    # Expected duration in minutes
    duration_minutes = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    category = db.relationship("ServiceCategory", backref=db.backref("services", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "category_name": self.category.name if self.category else None,
            "name": self.name,
            "description": self.description,
            "base_price_cents": self.base_price_cents,
            "duration_minutes": self.duration_minutes,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
