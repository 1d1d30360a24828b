# Overview: Invoicing and payment ledger for job cards.

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Invoice, Payment, JobCard, Customer
from ..models.billing import INVOICE_STATUSES, PAYMENT_METHODS
from ..actor import Actor, actor_user_id
from ..errors import ConflictError, NotFoundError, ValidationError
from ..validation import amount_cents, tax_rate_to_bps, tax_cents, choice, optional_text
from workshop.time_utils import utcnow, parse_iso_datetime, end_of_day
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number, invoice_number_prefix
from .settings_service import get_tax_rate_bps
from . import jobcard_service
"""
Invoice Invariants (authoritative)

- A job card has at most one invoice. A cancelled invoice still counts, so
  a job card is never billed twice.
- Amounts are a snapshot taken at creation from the job card's lines:
    subtotal = services + parts + labour
    tax      = round_half_up(subtotal * tax_rate_bps / 10000)
    total    = subtotal + tax - discount
  Later edits to the job card never change an existing invoice.
- paid_cents is the sum of applied payments (tendered - change) and never
  exceeds total_cents.
- Status: pending -> partial -> paid, or pending/partial -> cancelled.
  paid and cancelled are terminal.
- Settling an invoice moves its job card to paid; cancelling moves it back
  to ready. Neither touches stock or existing payments.
"""

INVOICE_PENDING = "pending"
INVOICE_PARTIAL = "partial"
INVOICE_PAID = "paid"
INVOICE_CANCELLED = "cancelled"

METHOD_CASH = "cash"
METHOD_CARD = "card"


def _get_invoice(invoice_id: int, *, lock: bool = False) -> Invoice:
    query = db.session.query(Invoice).filter_by(id=invoice_id)
    if lock:
        query = lock_for_update(query)
    invoice = query.first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def get_invoice(invoice_id: int) -> Invoice:
    return _get_invoice(invoice_id)


def get_balance(invoice_id: int) -> dict:
    invoice = _get_invoice(invoice_id)
    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "total_cents": invoice.total_cents,
        "paid_cents": invoice.paid_cents,
        "balance_cents": invoice.balance_cents,
    }


def create_invoice(
    job_card_id: int,
    *,
    tax_rate=None,
    discount_cents: int = 0,
    notes: str | None = None,
    actor: Actor | None = None,
) -> Invoice:
    """
    Bill a job card.

    tax_rate is a percentage; when omitted the shop's tax_rate setting
    applies. The job card moves to invoiced.
    """
    discount = amount_cents(discount_cents or 0, "discount_cents")
    bps = get_tax_rate_bps() if tax_rate is None else tax_rate_to_bps(tax_rate)

    def _op():
        job = jobcard_service.get_job_card(job_card_id, lock=True)
        existing = job.invoice
        if existing is not None:
            raise ConflictError(
                f"Job card {job.job_number} already has invoice {existing.invoice_number}"
                f" ({existing.status})",
                details={"invoice_id": existing.id, "status": existing.status},
            )

        sums = jobcard_service.compute_line_sums(job.id)
        subtotal = sums["services_cents"] + sums["parts_cents"] + sums["labor_cents"]
        tax = tax_cents(subtotal, bps)
        if discount > subtotal + tax:
            raise ValidationError("discount cannot exceed the invoice amount")

        now = utcnow()
        invoice = Invoice(
            invoice_number=next_document_number(prefix=invoice_number_prefix(now)),
            job_card_id=job.id,
            services_cents=sums["services_cents"],
            parts_cents=sums["parts_cents"],
            labor_cents=sums["labor_cents"],
            parts_cost_cents=sums["parts_cost_cents"],
            subtotal_cents=subtotal,
            tax_rate_bps=bps,
            tax_cents=tax,
            discount_cents=discount,
            total_cents=subtotal + tax - discount,
            paid_cents=0,
            status=INVOICE_PENDING,
            notes=optional_text(notes),
            created_by_user_id=actor_user_id(actor),
            created_at=now,
        )
        db.session.add(invoice)

        if job.actual_total_cents != subtotal:
            job.actual_total_cents = subtotal
        jobcard_service.apply_status_locked(job, jobcard_service.STATUS_INVOICED)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info(
        "Invoice %s created for job card %s total=%d",
        invoice.invoice_number, job_card_id, invoice.total_cents,
    )
    return invoice


def add_payment(
    invoice_id: int,
    amount: int,
    method: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    actor: Actor | None = None,
) -> Payment:
    """
    Record a payment.

    Cash above the balance is accepted and the excess is returned as change;
    card payments may not exceed the balance. Settling the invoice stamps
    paid_at and moves the job card to paid.
    """
    tendered = amount_cents(amount, "amount", allow_zero=False)
    choice(method, PAYMENT_METHODS, "payment method")

    def _op():
        invoice = _get_invoice(invoice_id)
        job = jobcard_service.get_job_card(invoice.job_card_id, lock=True)
        invoice = _get_invoice(invoice_id, lock=True)

        if invoice.status == INVOICE_CANCELLED:
            raise ConflictError(f"Invoice {invoice.invoice_number} is cancelled")
        if invoice.status == INVOICE_PAID:
            raise ConflictError(f"Invoice {invoice.invoice_number} is already paid")

        balance = invoice.total_cents - invoice.paid_cents
        change = 0
        if tendered > balance:
            if method != METHOD_CASH:
                raise ValidationError(
                    f"Card payment exceeds the balance of {balance}",
                    details={"balance_cents": balance, "amount_cents": tendered},
                )
            change = tendered - balance

        now = utcnow()
        payment = Payment(
            invoice_id=invoice.id,
            amount_cents=tendered,
            change_cents=change,
            method=method,
            reference=optional_text(reference),
            notes=optional_text(notes),
            received_by_user_id=actor_user_id(actor),
            created_at=now,
        )
        db.session.add(payment)

        invoice.paid_cents = invoice.paid_cents + tendered - change
        if invoice.paid_cents >= invoice.total_cents:
            invoice.status = INVOICE_PAID
            invoice.paid_at = now
            jobcard_service.apply_status_locked(job, jobcard_service.STATUS_PAID)
        else:
            invoice.status = INVOICE_PARTIAL

        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    current_app.logger.info(
        "Payment %d (%s) recorded on invoice %s", payment.applied_cents, method, payment.invoice.invoice_number,
    )
    return payment


def cancel_invoice(invoice_id: int, actor: Actor | None = None) -> Invoice:
    """
    Cancel an unpaid invoice and return its job card to ready.

    Billing-only: fitted parts stay deducted and recorded payments stay.
    """
    def _op():
        invoice = _get_invoice(invoice_id)
        job = jobcard_service.get_job_card(invoice.job_card_id, lock=True)
        invoice = _get_invoice(invoice_id, lock=True)

        if invoice.status == INVOICE_PAID:
            raise ConflictError(f"Invoice {invoice.invoice_number} is paid and cannot be cancelled")
        if invoice.status == INVOICE_CANCELLED:
            raise ConflictError(f"Invoice {invoice.invoice_number} is already cancelled")

        invoice.status = INVOICE_CANCELLED
        invoice.cancelled_at = utcnow()
        invoice.cancelled_by_user_id = actor_user_id(actor)
        jobcard_service.apply_status_locked(job, jobcard_service.STATUS_READY)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info("Invoice %s cancelled", invoice.invoice_number)
    return invoice


def list_invoices(
    *,
    status: str | None = None,
    search: str | None = None,
    date_from=None,
    date_to=None,
) -> list[Invoice]:
    q = (
        db.session.query(Invoice)
        .join(JobCard, Invoice.job_card_id == JobCard.id)
        .join(Customer, JobCard.customer_id == Customer.id)
    )
    if status and status != "all":
        q = q.filter(Invoice.status == choice(status, INVOICE_STATUSES, "status"))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Invoice.invoice_number.ilike(like),
            JobCard.job_number.ilike(like),
            Customer.name.ilike(like),
        ))
    if isinstance(date_from, str):
        date_from = parse_iso_datetime(date_from)
    if isinstance(date_to, str):
        date_to = parse_iso_datetime(date_to)
    if date_from is not None:
        q = q.filter(Invoice.created_at >= date_from)
    if date_to is not None:
        q = q.filter(Invoice.created_at <= end_of_day(date_to))
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()
