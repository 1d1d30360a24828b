# backend/workshop/services/customer_service.py
"""
Customer and vehicle records.

Customers own vehicles; job cards and POS sales reference both. A customer
or vehicle that has history (job cards, POS sales) cannot be deleted.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer, Vehicle, JobCard, PosSale
from ..errors import ConflictError, NotFoundError
from ..validation import ModelValidationPolicy, validate_payload
from .concurrency import run_with_retry

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "address", "notes"},
    required_on_create={"name"},
)

VEHICLE_POLICY = ModelValidationPolicy(
    writable_fields={"customer_id", "registration_number", "make", "model", "color", "year", "vin", "notes"},
    required_on_create={"customer_id", "registration_number"},
    non_negative_fields={"year"},
)


def normalize_registration(value: str) -> str:
    return value.strip().upper()


def _apply_patch(obj, patch: dict) -> None:
    for k, v in patch.items():
        setattr(obj, k, v)


# =============================================================================
# CUSTOMERS
# =============================================================================

def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def list_customers(*, search: str | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Customer.name.ilike(like),
            Customer.phone.ilike(like),
            Customer.email.ilike(like),
        ))
    return q.order_by(Customer.name.asc(), Customer.id.asc()).all()


def create_customer(payload: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)

    def _op():
        customer = Customer()
        _apply_patch(customer, patch)
        db.session.add(customer)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def update_customer(customer_id: int, payload: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)

    def _op():
        customer = get_customer(customer_id)
        _apply_patch(customer, patch)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def delete_customer(customer_id: int) -> None:
    def _op():
        customer = get_customer(customer_id)
        job_count = db.session.query(JobCard).filter_by(customer_id=customer.id).count()
        sale_count = db.session.query(PosSale).filter_by(customer_id=customer.id).count()
        if job_count or sale_count:
            raise ConflictError(
                f"Customer '{customer.name}' has job cards or sales and cannot be deleted",
                details={"job_card_count": job_count, "pos_sale_count": sale_count},
            )
        # vehicles go with the customer (delete-orphan)
        db.session.delete(customer)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# VEHICLES
# =============================================================================

def get_vehicle(vehicle_id: int) -> Vehicle:
    vehicle = db.session.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise NotFoundError(f"Vehicle {vehicle_id} not found")
    return vehicle


def list_vehicles(*, customer_id: int | None = None, search: str | None = None) -> list[Vehicle]:
    q = db.session.query(Vehicle)
    if customer_id is not None:
        q = q.filter(Vehicle.customer_id == customer_id)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Vehicle.registration_number.ilike(like),
            Vehicle.make.ilike(like),
            Vehicle.model.ilike(like),
        ))
    return q.order_by(Vehicle.registration_number.asc()).all()


def search_vehicles(registration_fragment: str, *, limit: int = 10) -> list[Vehicle]:
    """Quick lookup by partial registration number (job card intake)."""
    fragment = normalize_registration(registration_fragment or "")
    if not fragment:
        return []
    return (
        db.session.query(Vehicle)
        .filter(Vehicle.registration_number.ilike(f"%{fragment}%"))
        .order_by(Vehicle.registration_number.asc())
        .limit(limit)
        .all()
    )


def _ensure_unique_registration(registration: str, vehicle_id: int | None = None) -> None:
    q = db.session.query(Vehicle).filter(Vehicle.registration_number == registration)
    if vehicle_id is not None:
        q = q.filter(Vehicle.id != vehicle_id)
    if q.first():
        raise ConflictError(f"Vehicle with registration {registration} already exists")


def create_vehicle(payload: dict) -> Vehicle:
    patch = validate_payload(model=Vehicle, payload=payload, policy=VEHICLE_POLICY, partial=False)
    patch["registration_number"] = normalize_registration(patch["registration_number"])

    def _op():
        get_customer(patch["customer_id"])
        _ensure_unique_registration(patch["registration_number"])
        vehicle = Vehicle()
        _apply_patch(vehicle, patch)
        db.session.add(vehicle)
        db.session.commit()
        return vehicle

    return run_with_retry(_op)


def update_vehicle(vehicle_id: int, payload: dict) -> Vehicle:
    patch = validate_payload(model=Vehicle, payload=payload, policy=VEHICLE_POLICY, partial=True)
    if patch.get("registration_number"):
        patch["registration_number"] = normalize_registration(patch["registration_number"])

    def _op():
        vehicle = get_vehicle(vehicle_id)
        if "customer_id" in patch:
            get_customer(patch["customer_id"])
        if "registration_number" in patch:
            _ensure_unique_registration(patch["registration_number"], vehicle_id=vehicle.id)
        _apply_patch(vehicle, patch)
        db.session.commit()
        return vehicle

    return run_with_retry(_op)


def delete_vehicle(vehicle_id: int) -> None:
    def _op():
        vehicle = get_vehicle(vehicle_id)
        job_count = db.session.query(JobCard).filter_by(vehicle_id=vehicle.id).count()
        if job_count:
            raise ConflictError(
                f"Vehicle {vehicle.registration_number} has {job_count} job card(s) and cannot be deleted",
                details={"job_card_count": job_count},
            )
        db.session.delete(vehicle)
        db.session.commit()

    run_with_retry(_op)
