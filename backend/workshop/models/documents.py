from __future__ import annotations

from ..extensions import db
from workshop.time_utils import to_utc_z, utcnow


class DocumentSequence(db.Model):
    """
    Atomic per-prefix document counters.

    WHY: Job, invoice and POS numbers embed their period in the prefix
    ("JC202610", "INV202610", "POS20261019"), so one row per prefix gives
    a counter that restarts each month/day without a max-then-increment
    read.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_document_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
