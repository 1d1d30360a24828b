# Overview: Sequential human-readable numbers for job cards, invoices and POS sales.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from workshop.time_utils import utcnow
from ..errors import ValidationError


def job_number_prefix(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"JC{now.year:04d}{now.month:02d}"


def invoice_number_prefix(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"INV{now.year:04d}{now.month:02d}"


def sale_number_prefix(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"POS{now.year:04d}{now.month:02d}{now.day:02d}"


def _current_next_number(prefix: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(prefix=prefix)
        .scalar()
    )


def next_document_number(*, prefix: str, pad: int = 4) -> str:
    """
    Allocate the next number for a prefix inside the caller's transaction.

    The counter row is bumped with a single UPDATE (which takes the row
    lock) before it is read back, so two concurrent allocations for the
    same prefix serialize instead of both observing the same value.
    Callers commit together with the document that uses the number.
    """
    if not prefix:
        raise ValidationError("prefix is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.prefix == prefix)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_next_number(prefix) - 1
    else:
        seq = DocumentSequence(prefix=prefix, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            # Another transaction created the row first; take the next slot
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_next_number(prefix) - 1

    return f"{prefix}{next_num:0{pad}d}"
