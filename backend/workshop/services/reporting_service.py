# Overview: Read-only reporting over sales, invoices, stock and shop usage.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from workshop.extensions import db
from workshop.models import (
    InventoryItem,
    Invoice,
    JobCard,
    Customer,
    Vehicle,
    Payment,
    PosSale,
    ShopUsage,
    StockMovement,
)
from workshop.validation import tax_cents
from workshop.time_utils import (
    resolve_period,
    to_utc_z,
    today_bounds,
    start_of_month,
    next_month,
    utcnow,
)
from .settings_service import get_setting_value, get_tax_rate_bps
from .stock_service import MOVEMENT_PURCHASE
from .jobcard_service import WORKSHOP_STATUSES
"""
Reporting semantics:
- Every report takes optional start/end (datetime or ISO string). The
  window defaults to the first of the current month through today; the end
  date is inclusive to the last instant of its day.
- Invoice figures come from the invoice snapshot columns, never from the
  job card's current lines.
- Refunded POS sales and cancelled invoices are excluded everywhere.
- Money is integer cents; margins are percentages rounded to 2 places.
"""

OPEN_INVOICE_STATUSES = ("pending", "partial")
BILLED_INVOICE_STATUSES = ("pending", "partial", "paid")


def _period(start_dt: datetime, end_dt: datetime) -> dict:
    return {"from": to_utc_z(start_dt), "to": to_utc_z(end_dt)}


def _completed_sales(start_dt: datetime, end_dt: datetime):
    return (
        db.session.query(PosSale)
        .filter(
            PosSale.status == "completed",
            PosSale.created_at >= start_dt,
            PosSale.created_at <= end_dt,
        )
        .order_by(PosSale.created_at.asc(), PosSale.id.asc())
        .all()
    )


def _margin(profit: int, revenue: int) -> float:
    if revenue <= 0:
        return 0.0
    return round(profit * 100.0 / revenue, 2)


def sales_report(start=None, end=None) -> dict:
    """Completed POS sales plus invoices settled in the window (by paid_at)."""
    start_dt, end_dt = resolve_period(start, end)

    sales = _completed_sales(start_dt, end_dt)
    invoices = (
        db.session.query(Invoice)
        .filter(
            Invoice.status == "paid",
            Invoice.paid_at >= start_dt,
            Invoice.paid_at <= end_dt,
        )
        .all()
    )

    pos_total = sum(s.total_cents for s in sales)
    pos_net = sum(s.subtotal_cents for s in sales)
    invoice_total = sum(i.total_cents for i in invoices)

    return {
        "period": _period(start_dt, end_dt),
        "total_revenue_cents": pos_total + invoice_total,
        "pos_sales_cents": pos_total,
        "job_card_sales_cents": invoice_total,
        "parts_revenue_cents": sum(i.parts_cents for i in invoices) + pos_net,
        "services_revenue_cents": sum(i.services_cents for i in invoices),
        "labor_revenue_cents": sum(i.labor_cents for i in invoices),
        "tax_collected_cents": sum(s.tax_cents for s in sales) + sum(i.tax_cents for i in invoices),
        "transaction_count": len(sales) + len(invoices),
    }


def inventory_report() -> dict:
    """Valuation of active stock at cost and at retail, with low-stock detail."""
    items = (
        db.session.query(InventoryItem)
        .filter(InventoryItem.is_active.is_(True))
        .order_by(InventoryItem.name.asc())
        .all()
    )

    by_category: dict[str, dict] = {}
    low_stock = []
    cost_value = retail_value = total_stock = out_of_stock = 0
    for item in items:
        item_cost = item.current_stock * item.cost_price_cents
        cost_value += item_cost
        retail_value += item.current_stock * item.selling_price_cents
        total_stock += item.current_stock
        if item.current_stock == 0:
            out_of_stock += 1
        if item.is_low_stock:
            low_stock.append({
                "id": item.id,
                "sku": item.sku,
                "name": item.name,
                "current_stock": item.current_stock,
                "reorder_level": item.reorder_level,
                "category": item.category.name if item.category else None,
            })
        name = item.category.name if item.category else "Uncategorized"
        bucket = by_category.setdefault(name, {"count": 0, "stock": 0, "value_cents": 0})
        bucket["count"] += 1
        bucket["stock"] += item.current_stock
        bucket["value_cents"] += item_cost

    return {
        "as_of": to_utc_z(utcnow()),
        "total_items": len(items),
        "total_stock": total_stock,
        "total_value_cents": cost_value,
        "retail_value_cents": retail_value,
        "potential_profit_cents": retail_value - cost_value,
        "low_stock_count": len(low_stock),
        "out_of_stock_count": out_of_stock,
        "by_category": by_category,
        "low_stock_items": low_stock,
    }


def job_profitability_report(start=None, end=None) -> dict:
    """
    Revenue versus parts cost per invoiced job (paid or partially paid).

    Services and labour carry no recorded cost, so their revenue counts in
    full toward profit.
    """
    start_dt, end_dt = resolve_period(start, end)

    rows = (
        db.session.query(Invoice, JobCard, Customer, Vehicle)
        .join(JobCard, Invoice.job_card_id == JobCard.id)
        .join(Customer, JobCard.customer_id == Customer.id)
        .join(Vehicle, JobCard.vehicle_id == Vehicle.id)
        .filter(
            Invoice.status.in_(("paid", "partial")),
            Invoice.created_at >= start_dt,
            Invoice.created_at <= end_dt,
        )
        .order_by(Invoice.created_at.asc(), Invoice.id.asc())
        .all()
    )

    jobs = []
    for inv, job, customer, vehicle in rows:
        revenue = inv.parts_cents + inv.services_cents + inv.labor_cents
        cost = inv.parts_cost_cents
        profit = revenue - cost
        jobs.append({
            "invoice_number": inv.invoice_number,
            "job_number": job.job_number,
            "customer": customer.name,
            "vehicle": vehicle.registration_number,
            "parts_revenue_cents": inv.parts_cents,
            "parts_cost_cents": cost,
            "services_revenue_cents": inv.services_cents,
            "labor_revenue_cents": inv.labor_cents,
            "total_revenue_cents": revenue,
            "total_cost_cents": cost,
            "profit_cents": profit,
            "margin": _margin(profit, revenue),
            "date": to_utc_z(inv.created_at),
        })

    total_revenue = sum(j["total_revenue_cents"] for j in jobs)
    total_cost = sum(j["total_cost_cents"] for j in jobs)
    return {
        "period": _period(start_dt, end_dt),
        "summary": {
            "total_jobs": len(jobs),
            "total_revenue_cents": total_revenue,
            "total_cost_cents": total_cost,
            "total_profit_cents": total_revenue - total_cost,
            "average_margin": round(sum(j["margin"] for j in jobs) / len(jobs), 2) if jobs else 0.0,
        },
        "jobs": jobs,
    }


def shop_usage_report(start=None, end=None) -> dict:
    """Consumables used in the shop, valued at current cost price."""
    start_dt, end_dt = resolve_period(start, end)

    rows = (
        db.session.query(ShopUsage, InventoryItem)
        .join(InventoryItem, ShopUsage.item_id == InventoryItem.id)
        .filter(ShopUsage.created_at >= start_dt, ShopUsage.created_at <= end_dt)
        .order_by(ShopUsage.created_at.asc())
        .all()
    )

    by_reason: dict[str, dict] = {}
    by_category: dict[str, dict] = {}
    total_cost = total_qty = 0
    for usage, item in rows:
        cost = usage.quantity * item.cost_price_cents
        total_cost += cost
        total_qty += usage.quantity

        reason = by_reason.setdefault(usage.reason, {"quantity": 0, "cost_cents": 0, "items": []})
        reason["quantity"] += usage.quantity
        reason["cost_cents"] += cost
        reason["items"].append({"item": item.name, "quantity": usage.quantity, "cost_cents": cost})

        cat_name = item.category.name if item.category else "Uncategorized"
        cat = by_category.setdefault(cat_name, {"quantity": 0, "cost_cents": 0})
        cat["quantity"] += usage.quantity
        cat["cost_cents"] += cost

    return {
        "period": _period(start_dt, end_dt),
        "summary": {
            "total_cost_cents": total_cost,
            "total_quantity": total_qty,
            "record_count": len(rows),
        },
        "by_reason": by_reason,
        "by_category": by_category,
    }


def _monthly_breakdown(start_dt: datetime, end_dt: datetime) -> list[dict]:
    months = []
    cursor = start_of_month(start_dt)
    while cursor <= end_dt:
        month_end = next_month(cursor)
        pos_total, pos_tax = db.session.query(
            func.coalesce(func.sum(PosSale.total_cents), 0),
            func.coalesce(func.sum(PosSale.tax_cents), 0),
        ).filter(
            PosSale.status == "completed",
            PosSale.created_at >= cursor,
            PosSale.created_at < month_end,
        ).one()
        inv_total, inv_tax = db.session.query(
            func.coalesce(func.sum(Invoice.total_cents), 0),
            func.coalesce(func.sum(Invoice.tax_cents), 0),
        ).filter(
            Invoice.status.in_(BILLED_INVOICE_STATUSES),
            Invoice.created_at >= cursor,
            Invoice.created_at < month_end,
        ).one()
        months.append({
            "month": cursor.strftime("%B %Y"),
            "pos_total_cents": int(pos_total),
            "pos_tax_cents": int(pos_tax),
            "invoice_total_cents": int(inv_total),
            "invoice_tax_cents": int(inv_tax),
            "total_sales_cents": int(pos_total) + int(inv_total),
            "total_tax_cents": int(pos_tax) + int(inv_tax),
        })
        cursor = month_end
    return months


def tax_report(start=None, end=None) -> dict:
    """
    GST return figures for the period.

    Output tax is what POS sales and non-cancelled invoices charged. Input
    tax is an estimate: the shop tax rate applied to the cost of stock
    purchased in the period. A positive net is payable, negative refundable.
    """
    start_dt, end_dt = resolve_period(start, end)
    bps = get_tax_rate_bps()

    sales = _completed_sales(start_dt, end_dt)
    invoices = (
        db.session.query(Invoice)
        .filter(
            Invoice.status.in_(BILLED_INVOICE_STATUSES),
            Invoice.created_at >= start_dt,
            Invoice.created_at <= end_dt,
        )
        .order_by(Invoice.created_at.asc(), Invoice.id.asc())
        .all()
    )

    pos_inclusive = sum(s.total_cents for s in sales)
    pos_tax = sum(s.tax_cents for s in sales)
    inv_inclusive = sum(i.total_cents for i in invoices)
    inv_tax = sum(i.tax_cents for i in invoices)
    sales_inclusive = pos_inclusive + inv_inclusive
    output_tax = pos_tax + inv_tax

    purchases = (
        db.session.query(StockMovement, InventoryItem)
        .join(InventoryItem, StockMovement.item_id == InventoryItem.id)
        .filter(
            StockMovement.type == MOVEMENT_PURCHASE,
            StockMovement.created_at >= start_dt,
            StockMovement.created_at <= end_dt,
        )
        .all()
    )
    purchases_exclusive = sum(
        m.quantity * (m.unit_cost_cents if m.unit_cost_cents is not None else item.cost_price_cents)
        for m, item in purchases
    )
    input_tax = tax_cents(purchases_exclusive, bps)
    net = output_tax - input_tax

    transactions = [
        {
            "date": to_utc_z(s.created_at),
            "type": "POS Sale",
            "reference": s.sale_number,
            "description": f"POS Sale - {len(s.items)} items",
            "gross_cents": s.total_cents,
            "tax_cents": s.tax_cents,
            "net_cents": s.subtotal_cents,
        }
        for s in sales
    ] + [
        {
            "date": to_utc_z(i.created_at),
            "type": "Invoice",
            "reference": i.invoice_number,
            "description": f"Job Card {i.job_card.job_number}",
            "gross_cents": i.total_cents,
            "tax_cents": i.tax_cents,
            "net_cents": i.subtotal_cents,
        }
        for i in invoices
    ]
    transactions.sort(key=lambda t: t["date"])

    count = len(sales) + len(invoices)
    return {
        "taxpayer": {
            "business_name": get_setting_value("business_name", ""),
            "gst_tin": get_setting_value("gst_tin", ""),
            "taxable_activity_number": get_setting_value("taxable_activity_number", ""),
            "taxable_period": _period(start_dt, end_dt),
        },
        "tax_rate_bps": bps,
        "output_tax": {
            "total_sales_inclusive_cents": sales_inclusive,
            "total_sales_exclusive_cents": sales_inclusive - output_tax,
            "tax_collected_cents": output_tax,
            "pos_sales": {"count": len(sales), "inclusive_cents": pos_inclusive, "tax_cents": pos_tax},
            "invoices": {"count": len(invoices), "inclusive_cents": inv_inclusive, "tax_cents": inv_tax},
        },
        "input_tax": {
            "total_purchases_exclusive_cents": purchases_exclusive,
            "tax_paid_cents": input_tax,
            "purchase_count": len(purchases),
        },
        "net_tax": {
            "output_tax_cents": output_tax,
            "input_tax_cents": input_tax,
            "net_payable_cents": net,
            "status": "PAYABLE" if net > 0 else "REFUNDABLE",
        },
        "sales_by_type": {
            "parts_cents": sum(i.parts_cents for i in invoices) + sum(s.subtotal_cents for s in sales),
            "services_cents": sum(i.services_cents for i in invoices),
            "labor_cents": sum(i.labor_cents for i in invoices),
        },
        "monthly": _monthly_breakdown(start_dt, end_dt),
        "transactions": transactions,
        "summary": {
            "total_transactions": count,
            "total_revenue_cents": sales_inclusive,
            "total_tax_collected_cents": output_tax,
            "average_transaction_cents": sales_inclusive // count if count else 0,
        },
    }


def _revenue_between(start_dt: datetime, end_dt: datetime) -> tuple[int, int]:
    pos = db.session.query(func.coalesce(func.sum(PosSale.total_cents), 0)).filter(
        PosSale.status == "completed",
        PosSale.created_at >= start_dt,
        PosSale.created_at < end_dt,
    ).scalar()
    payments = db.session.query(
        func.coalesce(func.sum(Payment.amount_cents - Payment.change_cents), 0)
    ).filter(
        Payment.created_at >= start_dt,
        Payment.created_at < end_dt,
    ).scalar()
    return int(pos), int(payments)


def dashboard_summary() -> dict:
    """Front-page snapshot: workshop load, takings, receivables and stock alerts."""
    today_start, tomorrow = today_bounds()
    month_start = start_of_month(today_start)

    status_counts = dict(
        db.session.query(JobCard.status, func.count(JobCard.id))
        .filter(JobCard.status.in_(WORKSHOP_STATUSES))
        .group_by(JobCard.status)
        .all()
    )
    today_new = db.session.query(func.count(JobCard.id)).filter(
        JobCard.created_at >= today_start, JobCard.created_at < tomorrow,
    ).scalar()

    today_pos, today_invoices = _revenue_between(today_start, tomorrow)
    month_pos, month_invoices = _revenue_between(month_start, next_month(month_start))

    pending_amount, pending_count = db.session.query(
        func.coalesce(func.sum(Invoice.total_cents - Invoice.paid_cents), 0),
        func.count(Invoice.id),
    ).filter(Invoice.status.in_(OPEN_INVOICE_STATUSES)).one()

    low_stock = db.session.query(func.count(InventoryItem.id)).filter(
        InventoryItem.is_active.is_(True),
        InventoryItem.current_stock <= InventoryItem.reorder_level,
    ).scalar()

    recent_jobs = (
        db.session.query(JobCard)
        .order_by(JobCard.created_at.desc(), JobCard.id.desc())
        .limit(5)
        .all()
    )
    recent_sales = (
        db.session.query(PosSale)
        .order_by(PosSale.created_at.desc(), PosSale.id.desc())
        .limit(5)
        .all()
    )

    return {
        "job_cards": {
            **{s: int(status_counts.get(s, 0)) for s in WORKSHOP_STATUSES},
            "today_new": int(today_new or 0),
        },
        "revenue": {
            "today_cents": today_pos + today_invoices,
            "today_pos_cents": today_pos,
            "today_invoices_cents": today_invoices,
            "month_cents": month_pos + month_invoices,
            "month_pos_cents": month_pos,
            "month_invoices_cents": month_invoices,
            "pending_amount_cents": int(pending_amount),
            "pending_invoice_count": int(pending_count),
        },
        "inventory": {"low_stock_count": int(low_stock or 0)},
        "recent_jobs": [j.to_dict() for j in recent_jobs],
        "recent_sales": [s.to_dict() for s in recent_sales],
    }
