from __future__ import annotations

from ..extensions import db
from workshop.time_utils import to_utc_z, utcnow


class Setting(db.Model):
    """
    Shop-wide key-value settings (tax_rate, currency, business_name, gst_tin,
    taxable_activity_number, ...).

    Values are stored as text and read fresh on every request.
    """
    __tablename__ = "settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)

    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
