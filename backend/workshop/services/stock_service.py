# Overview: Stock ledger; the only code allowed to change InventoryItem.current_stock.

from __future__ import annotations

from sqlalchemy import func, update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import InventoryItem, StockMovement
from ..actor import Actor, actor_user_id
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..validation import positive_quantity, non_negative_quantity, amount_cents, choice, optional_text
from workshop.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
"""
Workshop Stock Ledger Invariants (authoritative)

- InventoryItem.current_stock is the quantity on hand.
- Every change to current_stock appends exactly one StockMovement whose
  signed quantity equals the change, in the same DB transaction.
  Hence for every item: current_stock == SUM(StockMovement.quantity).
- StockMovement rows are append-only; reversals append a compensating row.
- current_stock never goes negative. Debits use a conditional UPDATE
  (... WHERE current_stock >= qty) so two concurrent debits cannot both
  pass the availability check against the same stale value.

Movement types:
- purchase    receive_stock()          +qty, optional unit cost
- adjustment  set_absolute_level()     new - old (may be negative)
              credit()                 +qty (returns, deletions, refunds)
- job_usage   debit() from job cards   -qty
- sale        debit() from POS         -qty
- shop_use    debit() from shop usage  -qty

The *_locked helpers flush but never commit; they are composed by the job
card, POS and shop-usage services inside their own transactions. The public
wrappers commit.
"""

MOVEMENT_PURCHASE = "purchase"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_JOB_USAGE = "job_usage"
MOVEMENT_SALE = "sale"
MOVEMENT_SHOP_USE = "shop_use"

MOVEMENT_TYPES = (
    MOVEMENT_PURCHASE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_JOB_USAGE,
    MOVEMENT_SALE,
    MOVEMENT_SHOP_USE,
)

DEBIT_TYPES = (MOVEMENT_JOB_USAGE, MOVEMENT_SALE, MOVEMENT_SHOP_USE)


def get_item(item_id: int, *, lock: bool = False, require_active: bool = False) -> InventoryItem:
    query = db.session.query(InventoryItem).filter_by(id=item_id)
    if lock:
        query = lock_for_update(query)
    item = query.first()
    if item is None:
        raise NotFoundError(f"Inventory item {item_id} not found")
    if require_active and not item.is_active:
        raise ValidationError(f"Inventory item {item.name} is inactive")
    return item


def _append_movement(
    *,
    item: InventoryItem,
    movement_type: str,
    quantity: int,
    reference: str | None,
    notes: str | None = None,
    unit_cost_cents: int | None = None,
    actor: Actor | None = None,
) -> StockMovement:
    movement = StockMovement(
        item_id=item.id,
        type=movement_type,
        quantity=quantity,
        unit_cost_cents=unit_cost_cents,
        reference=reference,
        notes=notes,
        user_id=actor_user_id(actor),
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _shift_stock(item: InventoryItem, delta: int) -> None:
    db.session.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item.id)
        .values(current_stock=InventoryItem.current_stock + delta)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(item, ["current_stock", "updated_at"])


# =============================================================================
# COMPOSABLE OPERATIONS (no commit)
# =============================================================================

def receive_stock_locked(
    item: InventoryItem,
    quantity: int,
    *,
    unit_cost_cents: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
    actor: Actor | None = None,
    update_cost_price: bool = True,
) -> StockMovement:
    _shift_stock(item, quantity)
    if unit_cost_cents is not None and update_cost_price:
        item.cost_price_cents = unit_cost_cents
    return _append_movement(
        item=item,
        movement_type=MOVEMENT_PURCHASE,
        quantity=quantity,
        unit_cost_cents=unit_cost_cents,
        reference=reference,
        notes=notes,
        actor=actor,
    )


def debit_locked(
    item: InventoryItem,
    quantity: int,
    movement_type: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    actor: Actor | None = None,
) -> StockMovement:
    """
    Decrement stock by quantity, or raise InsufficientStockError untouched.

    The availability check and the decrement are the same statement.
    """
    choice(movement_type, DEBIT_TYPES, "movement type")

    result = db.session.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item.id, InventoryItem.current_stock >= quantity)
        .values(current_stock=InventoryItem.current_stock - quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(item, ["current_stock", "updated_at"])

    if not result.rowcount:
        raise InsufficientStockError(
            item_id=item.id,
            item_name=item.name,
            requested=quantity,
            available=item.current_stock,
        )

    return _append_movement(
        item=item,
        movement_type=movement_type,
        quantity=-quantity,
        unit_cost_cents=item.cost_price_cents,
        reference=reference,
        notes=notes,
        actor=actor,
    )


def credit_locked(
    item: InventoryItem,
    quantity: int,
    *,
    reference: str | None = None,
    notes: str | None = None,
    actor: Actor | None = None,
) -> StockMovement:
    """Return quantity to stock. Unconditional: no ceiling is enforced."""
    _shift_stock(item, quantity)
    return _append_movement(
        item=item,
        movement_type=MOVEMENT_ADJUSTMENT,
        quantity=quantity,
        reference=reference,
        notes=notes,
        actor=actor,
    )


def set_absolute_level_locked(
    item: InventoryItem,
    new_quantity: int,
    *,
    reference: str | None = "Stock Adjustment",
    notes: str | None = None,
    actor: Actor | None = None,
) -> StockMovement:
    db.session.refresh(item, ["current_stock"])
    observed = item.current_stock
    delta = new_quantity - observed

    # Compare-and-set against the value the delta was computed from
    result = db.session.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item.id, InventoryItem.current_stock == observed)
        .values(current_stock=new_quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(item, ["current_stock", "updated_at"])
    if not result.rowcount:
        raise StaleDataError(f"current_stock of item {item.id} changed during adjustment")

    return _append_movement(
        item=item,
        movement_type=MOVEMENT_ADJUSTMENT,
        quantity=delta,
        reference=reference,
        notes=notes,
        actor=actor,
    )


# =============================================================================
# PUBLIC OPERATIONS (commit)
# =============================================================================

def receive_stock(
    item_id: int,
    quantity: int,
    *,
    unit_cost_cents: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
    actor: Actor | None = None,
) -> StockMovement:
    """
    Receive purchased stock: +quantity, 'purchase' movement.

    A supplied unit cost also becomes the item's current cost price.
    """
    qty = positive_quantity(quantity)
    cost = amount_cents(unit_cost_cents, "unit_cost_cents") if unit_cost_cents is not None else None

    def _op():
        item = get_item(item_id, lock=True)
        movement = receive_stock_locked(
            item,
            qty,
            unit_cost_cents=cost,
            reference=optional_text(reference),
            notes=optional_text(notes),
            actor=actor,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def set_absolute_level(
    item_id: int,
    new_quantity: int,
    *,
    notes: str | None = None,
    actor: Actor | None = None,
) -> StockMovement:
    """Set stock to an absolute count (e.g. after a physical count)."""
    qty = non_negative_quantity(new_quantity)

    def _op():
        item = get_item(item_id, lock=True)
        movement = set_absolute_level_locked(item, qty, notes=optional_text(notes), actor=actor)
        db.session.commit()
        return movement

    return run_with_retry(_op)


def debit(
    item_id: int,
    quantity: int,
    movement_type: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    actor: Actor | None = None,
) -> StockMovement:
    qty = positive_quantity(quantity)
    choice(movement_type, DEBIT_TYPES, "movement type")

    def _op():
        item = get_item(item_id, lock=True)
        movement = debit_locked(item, qty, movement_type, reference=reference, notes=notes, actor=actor)
        db.session.commit()
        return movement

    return run_with_retry(_op)


def credit(
    item_id: int,
    quantity: int,
    *,
    reference: str | None = None,
    notes: str | None = None,
    actor: Actor | None = None,
) -> StockMovement:
    qty = positive_quantity(quantity)

    def _op():
        item = get_item(item_id, lock=True)
        movement = credit_locked(item, qty, reference=reference, notes=notes, actor=actor)
        db.session.commit()
        return movement

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def ledger_balance(item_id: int) -> int:
    """Signed sum of all movements for an item."""
    total = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity), 0)
    ).filter(StockMovement.item_id == item_id).scalar()
    return int(total or 0)


def list_movements(
    item_id: int,
    *,
    movement_type: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    get_item(item_id)
    q = db.session.query(StockMovement).filter_by(item_id=item_id)
    if movement_type:
        q = q.filter(StockMovement.type == choice(movement_type, MOVEMENT_TYPES, "movement type"))
    return q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()


def reconcile_all() -> list[dict]:
    """
    Items whose current_stock disagrees with their movement sum.

    An empty list means the ledger invariant holds for every item.
    """
    sums = (
        db.session.query(
            StockMovement.item_id,
            func.sum(StockMovement.quantity).label("ledger"),
        )
        .group_by(StockMovement.item_id)
        .subquery()
    )
    rows = (
        db.session.query(InventoryItem, func.coalesce(sums.c.ledger, 0))
        .outerjoin(sums, sums.c.item_id == InventoryItem.id)
        .order_by(InventoryItem.id)
        .all()
    )
    mismatches = []
    for item, ledger in rows:
        ledger = int(ledger or 0)
        if ledger != item.current_stock:
            mismatches.append({
                "item_id": item.id,
                "sku": item.sku,
                "name": item.name,
                "current_stock": item.current_stock,
                "ledger_quantity": ledger,
                "difference": item.current_stock - ledger,
            })
    return mismatches
