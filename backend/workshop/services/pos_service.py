# Overview: Walk-in retail checkout; sales debit stock at creation and credit it back on refund.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import PosSale, PosSaleItem, Customer
from ..models.billing import PAYMENT_METHODS
from ..actor import Actor, actor_user_id
from ..errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from ..validation import (
    amount_cents,
    positive_quantity,
    line_total_cents,
    tax_rate_to_bps,
    tax_cents,
    choice,
    optional_text,
)
from workshop.time_utils import utcnow, parse_iso_datetime, end_of_day, today_bounds
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number, sale_number_prefix
from .settings_service import get_tax_rate_bps
from . import stock_service
"""
POS Sale Invariants (authoritative)

Totals:
- subtotal = SUM(quantity * unit_price) over the cart (line discounts are
  shown on the line only)
- tax      = round_half_up(subtotal * tax_rate_bps / 10000)
- total    = subtotal + tax - discount
- change   = max(0, paid - total)

Atomicity:
- Availability is checked for the whole cart before anything is written;
  the first short item aborts the sale with InsufficientStockError.
- Header, lines and 'sale' debits commit together. A debit that still fails
  (stock moved between check and write) rolls the whole sale back.

Refund:
- Whole-sale only. Every line is credited back with reference
  "refund:<sale_number>" and the status becomes refunded.
- Refunding a refunded sale is a ConflictError and changes nothing.
"""

SALE_COMPLETED = "completed"
SALE_REFUNDED = "refunded"


def _get_sale(sale_id: int, *, lock: bool = False) -> PosSale:
    query = db.session.query(PosSale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def get_sale(sale_id: int) -> PosSale:
    return _get_sale(sale_id)


def _normalize_cart(lines) -> list[dict]:
    if not lines:
        raise ValidationError("Cart is empty")
    cart = []
    for idx, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise ValidationError(f"Cart line {idx} is invalid")
        if raw.get("item_id") is None:
            raise ValidationError(f"Cart line {idx}: item_id is required")
        unit_price = raw.get("unit_price_cents")
        cart.append({
            "item_id": raw["item_id"],
            "quantity": positive_quantity(raw.get("quantity"), f"line {idx} quantity"),
            "unit_price_cents": None if unit_price is None else amount_cents(unit_price, f"line {idx} unit_price_cents"),
            "discount_cents": amount_cents(raw.get("discount_cents") or 0, f"line {idx} discount_cents"),
        })
    return cart


def create_sale(
    *,
    lines: list[dict],
    payment_method: str,
    paid_cents: int | None = None,
    discount_cents: int = 0,
    tax_rate=None,
    customer_id: int | None = None,
    notes: str | None = None,
    actor: Actor | None = None,
) -> PosSale:
    """
    Complete a retail sale.

    lines: [{"item_id", "quantity", "unit_price_cents"?, "discount_cents"?}];
    unit price defaults to the item's selling price. tax_rate is a percentage
    and defaults to the shop setting. Card sales default paid_cents to the
    total. An underpaid sale is recorded as tendered with no change.
    """
    cart = _normalize_cart(lines)
    choice(payment_method, PAYMENT_METHODS, "payment method")
    discount = amount_cents(discount_cents or 0, "discount_cents")
    bps = get_tax_rate_bps() if tax_rate is None else tax_rate_to_bps(tax_rate)

    def _op():
        if customer_id is not None and db.session.get(Customer, customer_id) is None:
            raise NotFoundError(f"Customer {customer_id} not found")

        # Lock items in id order and check the whole cart up front
        requested: dict[int, int] = {}
        for line in cart:
            requested[line["item_id"]] = requested.get(line["item_id"], 0) + line["quantity"]
        items = {}
        for item_id in sorted(requested):
            items[item_id] = stock_service.get_item(item_id, lock=True, require_active=True)
        for item_id, qty in requested.items():
            item = items[item_id]
            if item.current_stock < qty:
                raise InsufficientStockError(
                    item_id=item.id,
                    item_name=item.name,
                    requested=qty,
                    available=item.current_stock,
                )

        priced = []
        for line in cart:
            item = items[line["item_id"]]
            price = item.selling_price_cents if line["unit_price_cents"] is None else line["unit_price_cents"]
            priced.append((line, item, price, line_total_cents(line["quantity"], price, line["discount_cents"])))

        subtotal = sum(line["quantity"] * price for line, _, price, _ in priced)
        tax = tax_cents(subtotal, bps)
        if discount > subtotal + tax:
            raise ValidationError("discount cannot exceed the sale amount")
        total = subtotal + tax - discount

        paid = total if paid_cents is None and payment_method != "cash" else paid_cents
        if paid is None:
            raise ValidationError("paid_cents is required for cash sales")
        paid = amount_cents(paid, "paid_cents")

        now = utcnow()
        sale = PosSale(
            sale_number=next_document_number(prefix=sale_number_prefix(now)),
            customer_id=customer_id,
            cashier_user_id=actor_user_id(actor),
            subtotal_cents=subtotal,
            tax_rate_bps=bps,
            tax_cents=tax,
            discount_cents=discount,
            total_cents=total,
            paid_cents=paid,
            change_cents=max(0, paid - total),
            payment_method=payment_method,
            status=SALE_COMPLETED,
            notes=optional_text(notes),
            created_at=now,
        )
        db.session.add(sale)
        db.session.flush()

        for line, item, price, line_total in priced:
            db.session.add(PosSaleItem(
                sale_id=sale.id,
                item_id=item.id,
                quantity=line["quantity"],
                unit_price_cents=price,
                discount_cents=line["discount_cents"],
                total_cents=line_total,
                unit_cost_cents=item.cost_price_cents,
            ))
            stock_service.debit_locked(
                item,
                line["quantity"],
                stock_service.MOVEMENT_SALE,
                reference=sale.sale_number,
                actor=actor,
            )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info(
        "POS sale %s completed total=%d method=%s", sale.sale_number, sale.total_cents, payment_method,
    )
    return sale


def refund_sale(sale_id: int, actor: Actor | None = None) -> PosSale:
    """Refund a whole sale, returning every line to stock."""
    def _op():
        sale = _get_sale(sale_id, lock=True)
        if sale.status == SALE_REFUNDED:
            raise ConflictError(f"Sale {sale.sale_number} is already refunded")

        reference = f"refund:{sale.sale_number}"
        for line in sale.items:
            item = stock_service.get_item(line.item_id, lock=True)
            stock_service.credit_locked(item, line.quantity, reference=reference, actor=actor)

        sale.status = SALE_REFUNDED
        sale.refunded_at = utcnow()
        sale.refunded_by_user_id = actor_user_id(actor)
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info("POS sale %s refunded", sale.sale_number)
    return sale


def list_sales(
    *,
    search: str | None = None,
    date_from=None,
    date_to=None,
    status: str | None = None,
    limit: int = 100,
) -> list[PosSale]:
    q = db.session.query(PosSale).outerjoin(Customer, PosSale.customer_id == Customer.id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(PosSale.sale_number.ilike(like), Customer.name.ilike(like)))
    if status:
        q = q.filter(PosSale.status == choice(status, (SALE_COMPLETED, SALE_REFUNDED), "status"))
    if isinstance(date_from, str):
        date_from = parse_iso_datetime(date_from)
    if isinstance(date_to, str):
        date_to = parse_iso_datetime(date_to)
    if date_from is not None:
        q = q.filter(PosSale.created_at >= date_from)
    if date_to is not None:
        q = q.filter(PosSale.created_at <= end_of_day(date_to))
    return q.order_by(PosSale.created_at.desc(), PosSale.id.desc()).limit(limit).all()


def today_summary() -> dict:
    """Completed sales since midnight: totals overall and per payment method."""
    start, end = today_bounds()
    rows = (
        db.session.query(
            PosSale.payment_method,
            func.count(PosSale.id),
            func.coalesce(func.sum(PosSale.total_cents), 0),
        )
        .filter(
            PosSale.status == SALE_COMPLETED,
            PosSale.created_at >= start,
            PosSale.created_at < end,
        )
        .group_by(PosSale.payment_method)
        .all()
    )
    by_method = {m: 0 for m in PAYMENT_METHODS}
    count = 0
    for method, n, total in rows:
        by_method[method] = int(total)
        count += int(n)
    return {
        "total_sales_cents": sum(by_method.values()),
        "total_transactions": count,
        "cash_sales_cents": by_method["cash"],
        "card_sales_cents": by_method["card"],
    }
