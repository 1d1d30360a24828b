# backend/workshop/routes/system.py
"""
System health endpoint.

Reports database reachability and whether the stock ledger still
reconciles, for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import InventoryItem, JobCard, Setting
from ..services import stock_service
from workshop.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        item_count = db.session.query(InventoryItem).count()
        job_card_count = db.session.query(JobCard).count()
        settings_count = db.session.query(Setting).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "inventory_items": item_count,
                "job_cards": job_card_count,
                "settings": settings_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_stock_ledger_health() -> dict:
    """
    Degraded when any item's on-hand quantity disagrees with its movements.
    """
    start_time = time.time()
    try:
        mismatches = stock_service.reconcile_all()
        elapsed_ms = (time.time() - start_time) * 1000

        if mismatches:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{len(mismatches)} item(s) out of balance with the stock ledger",
                "details": {"item_ids": [m["item_id"] for m in mismatches]},
            }

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"mismatched_items": 0},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Stock ledger health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Stock ledger error"
        }


def overall_status(checks: dict) -> str:
    """Worst status across checks: unhealthy > degraded > healthy."""
    statuses = {c["status"] for c in checks.values()}
    for status in ("unhealthy", "degraded"):
        if status in statuses:
            return status
    return "healthy"


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    200 when healthy or degraded, 503 when any check is unhealthy.
    """
    started = time.time()
    checks = {
        "database": check_database_health(),
        "stock_ledger": check_stock_ledger_health(),
    }
    status = overall_status(checks)

    return {
        "status": status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - started) * 1000, 2),
        "checks": checks,
    }, 503 if status == "unhealthy" else 200
