# Overview: Transaction helpers shared by every mutating service operation.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    populate_existing() makes the locked read overwrite any stale copy
    already in the session identity map.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation as one atomic unit.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back before propagating, so a failed operation leaves no partial writes.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrency conflict (%s), retrying attempt %d/%d",
                type(exc).__name__, attempt + 2, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
