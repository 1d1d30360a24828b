# Overview: Job card engine; work orders accumulating services, parts and manual labour.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import (
    JobCard,
    JobService,
    JobPart,
    JobManualEntry,
    Customer,
    Vehicle,
    User,
    Service,
)
from ..models.jobs import JOB_STATUSES, MANUAL_ENTRY_CATEGORIES
from ..actor import Actor, actor_user_id
from ..errors import ConflictError, NotFoundError, ValidationError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    positive_quantity,
    amount_cents,
    line_total_cents,
    choice,
    optional_text,
)
from workshop.time_utils import utcnow, parse_iso_datetime, end_of_day, today_bounds
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number, job_number_prefix
from . import stock_service
"""
Job Card Invariants (authoritative)

Totals:
- actual_total_cents = SUM(JobService.total_cents)
                     + SUM(JobPart.total_cents)
                     + SUM(COALESCE(JobManualEntry.actual_cost_cents, estimated_cost_cents))
- It is recomputed from the rows in the database after every line mutation,
  never adjusted by a delta.

Stock:
- Adding a JobPart debits the stock ledger (job_usage, reference=job_number)
  in the same transaction as the line insert. InsufficientStockError aborts
  both.
- Removing a JobPart, or deleting the whole job card, credits every part
  quantity back.

Status:
- pending -> in_progress -> quality_check -> ready -> invoiced -> paid
- Workshop states (pending .. ready) may move freely between each other.
- Once invoiced, status only moves forward; cancelling the invoice is the
  only way back to ready.
- Entering ready/invoiced stamps completed_at; entering paid stamps paid_at.

Lock order: job card row, then child rows, then the stock ledger.
"""

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_QUALITY_CHECK = "quality_check"
STATUS_READY = "ready"
STATUS_INVOICED = "invoiced"
STATUS_PAID = "paid"

WORKSHOP_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_QUALITY_CHECK, STATUS_READY)
BILLING_STATUSES = (STATUS_INVOICED, STATUS_PAID)

JOB_CARD_POLICY = ModelValidationPolicy(
    writable_fields={"odometer", "notes", "assigned_to_id"},
    non_negative_fields={"odometer"},
)

MANUAL_ENTRY_POLICY = ModelValidationPolicy(
    writable_fields={"description", "category", "estimated_cost_cents", "actual_cost_cents", "notes"},
    required_on_create={"description"},
    non_negative_fields={"estimated_cost_cents", "actual_cost_cents"},
)


def get_job_card(job_card_id: int, *, lock: bool = False) -> JobCard:
    query = db.session.query(JobCard).filter_by(id=job_card_id)
    if lock:
        query = lock_for_update(query)
    job = query.first()
    if job is None:
        raise NotFoundError(f"Job card {job_card_id} not found")
    return job


def _ensure_user(user_id: int | None) -> None:
    if user_id is not None and db.session.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found")


# =============================================================================
# TOTALS
# =============================================================================

def compute_line_sums(job_card_id: int) -> dict:
    """Per-group sums straight from the child tables."""
    db.session.flush()
    services = db.session.query(
        func.coalesce(func.sum(JobService.total_cents), 0)
    ).filter(JobService.job_card_id == job_card_id).scalar()
    parts, parts_cost = db.session.query(
        func.coalesce(func.sum(JobPart.total_cents), 0),
        func.coalesce(func.sum(JobPart.quantity * JobPart.unit_cost_cents), 0),
    ).filter(JobPart.job_card_id == job_card_id).one()
    labor = db.session.query(
        func.coalesce(
            func.sum(func.coalesce(JobManualEntry.actual_cost_cents, JobManualEntry.estimated_cost_cents)),
            0,
        )
    ).filter(JobManualEntry.job_card_id == job_card_id).scalar()
    return {
        "services_cents": int(services),
        "parts_cents": int(parts),
        "labor_cents": int(labor),
        "parts_cost_cents": int(parts_cost),
    }


def recompute_total_locked(job: JobCard) -> int:
    sums = compute_line_sums(job.id)
    total = sums["services_cents"] + sums["parts_cents"] + sums["labor_cents"]
    if job.actual_total_cents != total:
        job.actual_total_cents = total
    return total


def recompute_total(job_card_id: int) -> int:
    """Recompute and persist actual_total_cents; idempotent."""
    def _op():
        job = get_job_card(job_card_id, lock=True)
        total = recompute_total_locked(job)
        db.session.commit()
        return total

    return run_with_retry(_op)


# =============================================================================
# LIFECYCLE
# =============================================================================

def create_job_card(
    *,
    customer_id: int,
    vehicle_id: int,
    odometer: int | None = None,
    notes: str | None = None,
    assigned_to_id: int | None = None,
    actor: Actor | None = None,
) -> JobCard:
    patch = validate_payload(
        model=JobCard,
        payload={"odometer": odometer, "notes": notes, "assigned_to_id": assigned_to_id},
        policy=JOB_CARD_POLICY,
        partial=True,
    )

    def _op():
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        vehicle = db.session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError(f"Vehicle {vehicle_id} not found")
        if vehicle.customer_id != customer.id:
            raise ValidationError(
                f"Vehicle {vehicle.registration_number} does not belong to customer {customer.name}"
            )
        _ensure_user(patch.get("assigned_to_id"))

        now = utcnow()
        job = JobCard(
            job_number=next_document_number(prefix=job_number_prefix(now)),
            customer_id=customer.id,
            vehicle_id=vehicle.id,
            odometer=patch.get("odometer"),
            notes=patch.get("notes"),
            assigned_to_id=patch.get("assigned_to_id"),
            status=STATUS_PENDING,
            actual_total_cents=0,
            created_by_user_id=actor_user_id(actor),
            created_at=now,
            updated_at=now,
        )
        db.session.add(job)
        db.session.commit()
        return job

    job = run_with_retry(_op)
    current_app.logger.info("Job card %s created for vehicle %s", job.job_number, vehicle_id)
    return job


def update_job_card(job_card_id: int, payload: dict) -> JobCard:
    """Edit odometer, notes or the assigned technician."""
    patch = validate_payload(model=JobCard, payload=payload, policy=JOB_CARD_POLICY, partial=True)

    def _op():
        job = get_job_card(job_card_id, lock=True)
        _ensure_user(patch.get("assigned_to_id"))
        for k, v in patch.items():
            setattr(job, k, v)
        db.session.commit()
        return job

    return run_with_retry(_op)


def check_status_transition(current: str, target: str) -> None:
    choice(target, JOB_STATUSES, "status")
    if current == target:
        return
    if current in BILLING_STATUSES and JOB_STATUSES.index(target) < JOB_STATUSES.index(current):
        raise ConflictError(
            f"Job card is {current}; cancel the invoice to reopen it",
            details={"current": current, "requested": target},
        )


def apply_status_locked(job: JobCard, target: str) -> None:
    """Set status and its timestamps. Callers have already checked the move."""
    now = utcnow()
    if target in (STATUS_READY, STATUS_INVOICED) and job.status != target:
        job.completed_at = now
    elif target in (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_QUALITY_CHECK):
        job.completed_at = None
    if target == STATUS_PAID and job.status != STATUS_PAID:
        job.paid_at = now
    job.status = target
    job.updated_at = now


def update_status(job_card_id: int, status: str, actor: Actor | None = None) -> JobCard:
    """
    Explicit status change.

    invoiced and paid need a matching open invoice; they are normally set by
    invoice_service rather than by hand.
    """
    def _op():
        job = get_job_card(job_card_id, lock=True)
        previous = job.status
        check_status_transition(previous, status)
        if status in BILLING_STATUSES and previous != status:
            invoice = job.invoice
            if invoice is None or invoice.status == "cancelled":
                raise ConflictError(f"Job card {job.job_number} has no open invoice")
            if status == STATUS_PAID and invoice.status != "paid":
                raise ConflictError(f"Invoice {invoice.invoice_number} is not settled")
        apply_status_locked(job, status)
        db.session.commit()
        return job, previous

    job, previous = run_with_retry(_op)
    current_app.logger.info(
        "Job card %s status %s -> %s (user %s)", job.job_number, previous, status, actor_user_id(actor)
    )
    return job


def delete_job_card(job_card_id: int, actor: Actor | None = None) -> None:
    """
    Delete a job card, returning every fitted part to stock.

    All credits and the delete commit together or not at all.
    """
    def _op():
        job = get_job_card(job_card_id, lock=True)
        invoice = job.invoice
        if invoice is not None and invoice.status != "cancelled":
            raise ConflictError(
                f"Job card {job.job_number} has invoice {invoice.invoice_number}; cancel it first"
            )
        if invoice is not None and invoice.payments:
            raise ConflictError(f"Job card {job.job_number} has payment history and cannot be deleted")

        job_number = job.job_number
        for part in list(job.parts):
            item = stock_service.get_item(part.item_id, lock=True)
            stock_service.credit_locked(
                item,
                part.quantity,
                reference="Job card deleted",
                notes=job_number,
                actor=actor,
            )
        db.session.delete(job)
        db.session.commit()
        return job_number

    job_number = run_with_retry(_op)
    current_app.logger.info("Job card %s deleted", job_number)


# =============================================================================
# SERVICE LINES
# =============================================================================

def add_service(
    job_card_id: int,
    service_id: int,
    *,
    quantity: int = 1,
    unit_price_cents: int | None = None,
    discount_cents: int = 0,
    notes: str | None = None,
) -> JobService:
    """Attach a catalog service; unit price defaults to the service's base price."""
    qty = positive_quantity(quantity)
    discount = amount_cents(discount_cents or 0, "discount_cents")

    def _op():
        job = get_job_card(job_card_id, lock=True)
        service = db.session.get(Service, service_id)
        if service is None:
            raise NotFoundError(f"Service {service_id} not found")
        price = service.base_price_cents if unit_price_cents is None else amount_cents(unit_price_cents, "unit_price_cents")

        line = JobService(
            job_card_id=job.id,
            service_id=service.id,
            quantity=qty,
            unit_price_cents=price,
            discount_cents=discount,
            total_cents=line_total_cents(qty, price, discount),
            notes=optional_text(notes),
            created_at=utcnow(),
        )
        db.session.add(line)
        recompute_total_locked(job)
        db.session.commit()
        return line

    return run_with_retry(_op)


def remove_service(job_card_id: int, line_id: int) -> None:
    def _op():
        job = get_job_card(job_card_id, lock=True)
        line = db.session.query(JobService).filter_by(id=line_id, job_card_id=job.id).first()
        if line is None:
            raise NotFoundError(f"Service line {line_id} not found on job card {job.job_number}")
        job.services.remove(line)
        recompute_total_locked(job)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# PART LINES (stock-affecting)
# =============================================================================

def add_part(
    job_card_id: int,
    item_id: int,
    *,
    quantity: int,
    unit_price_cents: int | None = None,
    discount_cents: int = 0,
    notes: str | None = None,
    actor: Actor | None = None,
) -> JobPart:
    """
    Fit a part: debit stock (job_usage) and add the line.

    Unit price defaults to the item's selling price. InsufficientStockError
    propagates unchanged and nothing is written.
    """
    qty = positive_quantity(quantity)
    discount = amount_cents(discount_cents or 0, "discount_cents")

    def _op():
        job = get_job_card(job_card_id, lock=True)
        item = stock_service.get_item(item_id, lock=True, require_active=True)
        price = item.selling_price_cents if unit_price_cents is None else amount_cents(unit_price_cents, "unit_price_cents")
        total = line_total_cents(qty, price, discount)

        line = JobPart(
            job_card_id=job.id,
            item_id=item.id,
            quantity=qty,
            unit_price_cents=price,
            discount_cents=discount,
            total_cents=total,
            unit_cost_cents=item.cost_price_cents,
            notes=optional_text(notes),
            created_at=utcnow(),
        )
        db.session.add(line)
        stock_service.debit_locked(
            item,
            qty,
            stock_service.MOVEMENT_JOB_USAGE,
            reference=job.job_number,
            actor=actor,
        )
        recompute_total_locked(job)
        db.session.commit()
        return line

    return run_with_retry(_op)


def remove_part(job_card_id: int, line_id: int, actor: Actor | None = None) -> None:
    """Remove a part line and return its quantity to stock unconditionally."""
    def _op():
        job = get_job_card(job_card_id, lock=True)
        line = db.session.query(JobPart).filter_by(id=line_id, job_card_id=job.id).first()
        if line is None:
            raise NotFoundError(f"Part line {line_id} not found on job card {job.job_number}")
        item = stock_service.get_item(line.item_id, lock=True)
        job.parts.remove(line)
        stock_service.credit_locked(
            item,
            line.quantity,
            reference="Part removed from job",
            notes=job.job_number,
            actor=actor,
        )
        recompute_total_locked(job)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# MANUAL ENTRIES (labour, painting, other)
# =============================================================================

def _validate_manual_entry(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(model=JobManualEntry, payload=payload, policy=MANUAL_ENTRY_POLICY, partial=partial)
    if "category" in patch:
        patch["category"] = choice(patch["category"] or "other", MANUAL_ENTRY_CATEGORIES, "category")
    return patch


def add_manual_entry(job_card_id: int, payload: dict) -> JobManualEntry:
    patch = _validate_manual_entry(payload, partial=False)

    def _op():
        job = get_job_card(job_card_id, lock=True)
        now = utcnow()
        entry = JobManualEntry(job_card_id=job.id, category="other", estimated_cost_cents=0, created_at=now, updated_at=now)
        for k, v in patch.items():
            setattr(entry, k, v)
        db.session.add(entry)
        recompute_total_locked(job)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def update_manual_entry(job_card_id: int, entry_id: int, payload: dict) -> JobManualEntry:
    """
    Patch a manual entry. Setting actual_cost_cents overrides the estimate;
    setting it back to None restores the estimate.
    """
    patch = _validate_manual_entry(payload, partial=True)

    def _op():
        job = get_job_card(job_card_id, lock=True)
        entry = db.session.query(JobManualEntry).filter_by(id=entry_id, job_card_id=job.id).first()
        if entry is None:
            raise NotFoundError(f"Manual entry {entry_id} not found on job card {job.job_number}")
        for k, v in patch.items():
            setattr(entry, k, v)
        recompute_total_locked(job)
        db.session.commit()
        return entry

    return run_with_retry(_op)


def remove_manual_entry(job_card_id: int, entry_id: int) -> None:
    def _op():
        job = get_job_card(job_card_id, lock=True)
        entry = db.session.query(JobManualEntry).filter_by(id=entry_id, job_card_id=job.id).first()
        if entry is None:
            raise NotFoundError(f"Manual entry {entry_id} not found on job card {job.job_number}")
        job.manual_entries.remove(entry)
        recompute_total_locked(job)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def list_job_cards(
    *,
    status: str | None = None,
    search: str | None = None,
    customer_id: int | None = None,
    assigned_to_id: int | None = None,
    date_from=None,
    date_to=None,
) -> list[JobCard]:
    q = (
        db.session.query(JobCard)
        .join(Customer, JobCard.customer_id == Customer.id)
        .join(Vehicle, JobCard.vehicle_id == Vehicle.id)
    )
    if status and status != "all":
        q = q.filter(JobCard.status == choice(status, JOB_STATUSES, "status"))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            JobCard.job_number.ilike(like),
            Vehicle.registration_number.ilike(like),
            Customer.name.ilike(like),
        ))
    if customer_id is not None:
        q = q.filter(JobCard.customer_id == customer_id)
    if assigned_to_id is not None:
        q = q.filter(JobCard.assigned_to_id == assigned_to_id)
    if isinstance(date_from, str):
        date_from = parse_iso_datetime(date_from)
    if isinstance(date_to, str):
        date_to = parse_iso_datetime(date_to)
    if date_from is not None:
        q = q.filter(JobCard.created_at >= date_from)
    if date_to is not None:
        q = q.filter(JobCard.created_at <= end_of_day(date_to))
    return q.order_by(JobCard.created_at.desc(), JobCard.id.desc()).all()


def job_card_stats() -> dict:
    """Counts per status plus today's intake."""
    rows = (
        db.session.query(JobCard.status, func.count(JobCard.id))
        .group_by(JobCard.status)
        .all()
    )
    counts = {s: 0 for s in JOB_STATUSES}
    counts.update({status: int(n) for status, n in rows})

    start, end = today_bounds()
    created_today = (
        db.session.query(func.count(JobCard.id))
        .filter(JobCard.created_at >= start, JobCard.created_at < end)
        .scalar()
    )
    return {
        "by_status": counts,
        "open": sum(counts[s] for s in WORKSHOP_STATUSES),
        "total": sum(counts.values()),
        "created_today": int(created_today or 0),
    }
