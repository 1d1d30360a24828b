from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import ShopUsage, InventoryItem
from ..actor import Actor, actor_user_id
from ..errors import NotFoundError
from ..validation import positive_quantity, choice, optional_text
from workshop.time_utils import utcnow, parse_iso_datetime, end_of_day, today_bounds
from .concurrency import lock_for_update, run_with_retry
from . import stock_service


USAGE_REASONS = ("shop_floor", "cleaning", "maintenance", "other")


def record_usage(
    item_id: int,
    quantity: int,
    *,
    reason: str = "shop_floor",
    notes: str | None = None,
    actor: Actor | None = None,
) -> ShopUsage:
    """Log consumables used in the shop; debits stock as shop_use."""
    qty = positive_quantity(quantity)
    reason = choice(reason or "shop_floor", USAGE_REASONS, "reason")
    notes = optional_text(notes)

    def _op():
        item = stock_service.get_item(item_id, lock=True, require_active=True)
        usage = ShopUsage(
            item_id=item.id,
            quantity=qty,
            reason=reason,
            notes=notes,
            user_id=actor_user_id(actor),
            created_at=utcnow(),
        )
        db.session.add(usage)
        stock_service.debit_locked(
            item,
            qty,
            stock_service.MOVEMENT_SHOP_USE,
            reference=f"Shop Use: {reason}",
            notes=notes,
            actor=actor,
        )
        db.session.commit()
        return usage

    return run_with_retry(_op)


def delete_usage(usage_id: int, actor: Actor | None = None) -> None:
    """Remove a usage record and return its quantity to stock."""
    def _op():
        usage = lock_for_update(db.session.query(ShopUsage).filter_by(id=usage_id)).first()
        if usage is None:
            raise NotFoundError(f"Usage record {usage_id} not found")
        item = stock_service.get_item(usage.item_id, lock=True)
        stock_service.credit_locked(
            item,
            usage.quantity,
            reference="Shop use deletion reversal",
            actor=actor,
        )
        db.session.delete(usage)
        db.session.commit()

    run_with_retry(_op)


def list_usage(
    *,
    reason: str | None = None,
    item_id: int | None = None,
    date_from=None,
    date_to=None,
    limit: int = 100,
) -> list[ShopUsage]:
    q = db.session.query(ShopUsage)
    if reason:
        q = q.filter(ShopUsage.reason == choice(reason, USAGE_REASONS, "reason"))
    if item_id is not None:
        q = q.filter(ShopUsage.item_id == item_id)
    if isinstance(date_from, str):
        date_from = parse_iso_datetime(date_from)
    if isinstance(date_to, str):
        date_to = parse_iso_datetime(date_to)
    if date_from is not None:
        q = q.filter(ShopUsage.created_at >= date_from)
    if date_to is not None:
        q = q.filter(ShopUsage.created_at <= end_of_day(date_to))
    return q.order_by(ShopUsage.created_at.desc(), ShopUsage.id.desc()).limit(limit).all()


def today_usage_summary() -> dict:
    """Quantity and cost of today's consumption, valued at current cost price."""
    start, end = today_bounds()
    rows = (
        db.session.query(
            ShopUsage.reason,
            func.count(ShopUsage.id),
            func.coalesce(func.sum(ShopUsage.quantity), 0),
            func.coalesce(func.sum(ShopUsage.quantity * InventoryItem.cost_price_cents), 0),
        )
        .join(InventoryItem, ShopUsage.item_id == InventoryItem.id)
        .filter(ShopUsage.created_at >= start, ShopUsage.created_at < end)
        .group_by(ShopUsage.reason)
        .all()
    )
    by_reason = {}
    count = total_items = total_cost = 0
    for reason, n, qty, cost in rows:
        by_reason[reason] = int(qty)
        count += int(n)
        total_items += int(qty)
        total_cost += int(cost)
    return {
        "count": count,
        "total_items": total_items,
        "total_cost_cents": total_cost,
        "by_reason": by_reason,
    }
