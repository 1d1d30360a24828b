# backend/workshop/services/catalog_service.py
"""
Catalog Service: inventory categories, inventory items, service categories
and services.

Reference data for the job card and POS engines. Input is a plain dict,
validated against the model's column metadata with a field policy.

DELETION POLICY:
- A category or service category that still has items/services is not
  deleted (ConflictError); move or delete the children first.
- An inventory item referenced by job parts, POS lines or shop usage is not
  deleted (ConflictError); deactivate it instead (is_active=False).
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import (
    Category,
    InventoryItem,
    ServiceCategory,
    Service,
    StockMovement,
    JobPart,
    JobService,
    PosSaleItem,
    ShopUsage,
)
from ..actor import Actor, actor_user_id
from ..errors import ConflictError, NotFoundError, ValidationError
from ..validation import ModelValidationPolicy, validate_payload
from workshop.time_utils import utcnow
from .concurrency import run_with_retry
from .stock_service import MOVEMENT_ADJUSTMENT


CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "description",
        "category_id",
        "cost_price_cents",
        "selling_price_cents",
        "current_stock",
        "reorder_level",
        "unit",
        "barcode",
        "is_active",
    },
    required_on_create={"sku", "name", "cost_price_cents", "selling_price_cents"},
    non_negative_fields={"cost_price_cents", "selling_price_cents", "current_stock", "reorder_level"},
)

# current_stock is only writable on create (opening balance)
ITEM_MUTABLE_FIELDS = ITEM_POLICY.writable_fields - {"current_stock"}

SERVICE_POLICY = ModelValidationPolicy(
    writable_fields={"category_id", "name", "description", "base_price_cents", "duration_minutes", "is_active"},
    required_on_create={"name", "base_price_cents"},
    non_negative_fields={"base_price_cents", "duration_minutes"},
)


def _apply_patch(obj, patch: dict, mutable_fields: set[str]) -> None:
    for k, v in patch.items():
        if k not in mutable_fields:
            continue
        setattr(obj, k, v)


def _get_or_404(model, obj_id: int, label: str):
    obj = db.session.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} {obj_id} not found")
    return obj


# =============================================================================
# CATEGORIES (inventory and service) share one implementation
# =============================================================================

def _list_named(model) -> list:
    return db.session.query(model).order_by(model.name.asc()).all()


def _create_named(model, payload: dict, label: str):
    patch = validate_payload(model=model, payload=payload, policy=CATEGORY_POLICY, partial=False)

    def _op():
        if db.session.query(model).filter_by(name=patch["name"]).first():
            raise ConflictError(f"{label} '{patch['name']}' already exists")
        obj = model()
        _apply_patch(obj, patch, CATEGORY_POLICY.writable_fields)
        db.session.add(obj)
        db.session.commit()
        return obj

    return run_with_retry(_op)


def _update_named(model, obj_id: int, payload: dict, label: str):
    patch = validate_payload(model=model, payload=payload, policy=CATEGORY_POLICY, partial=True)

    def _op():
        obj = _get_or_404(model, obj_id, label)
        if "name" in patch and patch["name"] != obj.name:
            clash = db.session.query(model).filter(model.name == patch["name"], model.id != obj.id).first()
            if clash:
                raise ConflictError(f"{label} '{patch['name']}' already exists")
        _apply_patch(obj, patch, CATEGORY_POLICY.writable_fields)
        db.session.commit()
        return obj

    return run_with_retry(_op)


def list_categories() -> list[Category]:
    return _list_named(Category)


def create_category(payload: dict) -> Category:
    return _create_named(Category, payload, "Category")


def update_category(category_id: int, payload: dict) -> Category:
    return _update_named(Category, category_id, payload, "Category")


def delete_category(category_id: int) -> None:
    def _op():
        category = _get_or_404(Category, category_id, "Category")
        count = db.session.query(InventoryItem).filter_by(category_id=category.id).count()
        if count:
            raise ConflictError(
                f"Category '{category.name}' still has {count} inventory item(s)",
                details={"item_count": count},
            )
        db.session.delete(category)
        db.session.commit()

    run_with_retry(_op)


def list_service_categories() -> list[ServiceCategory]:
    return _list_named(ServiceCategory)


def create_service_category(payload: dict) -> ServiceCategory:
    return _create_named(ServiceCategory, payload, "Service category")


def update_service_category(category_id: int, payload: dict) -> ServiceCategory:
    return _update_named(ServiceCategory, category_id, payload, "Service category")


def delete_service_category(category_id: int) -> None:
    def _op():
        category = _get_or_404(ServiceCategory, category_id, "Service category")
        count = db.session.query(Service).filter_by(category_id=category.id).count()
        if count:
            raise ConflictError(
                f"Service category '{category.name}' still has {count} service(s)",
                details={"service_count": count},
            )
        db.session.delete(category)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# INVENTORY ITEMS
# =============================================================================

def _ensure_unique_item_codes(patch: dict, item_id: int | None = None) -> None:
    for field in ("sku", "barcode"):
        value = patch.get(field)
        if value is None:
            continue
        q = db.session.query(InventoryItem).filter(getattr(InventoryItem, field) == value)
        if item_id is not None:
            q = q.filter(InventoryItem.id != item_id)
        if q.first():
            raise ConflictError(f"{field} '{value}' is already used by another item")


def _ensure_category(model, category_id: int | None, label: str) -> None:
    if category_id is not None:
        _get_or_404(model, category_id, label)


def list_items(
    *,
    search: str | None = None,
    category_id: int | None = None,
    low_stock: bool = False,
    active: bool | None = None,
) -> list[InventoryItem]:
    q = db.session.query(InventoryItem)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            InventoryItem.name.ilike(like),
            InventoryItem.sku.ilike(like),
            InventoryItem.barcode.ilike(like),
        ))
    if category_id is not None:
        q = q.filter(InventoryItem.category_id == category_id)
    if low_stock:
        q = q.filter(InventoryItem.current_stock <= InventoryItem.reorder_level)
    if active is not None:
        q = q.filter(InventoryItem.is_active.is_(active))
    return q.order_by(InventoryItem.name.asc(), InventoryItem.id.asc()).all()


def list_low_stock_items() -> list[InventoryItem]:
    """Active items at or below their reorder level, emptiest first."""
    return (
        db.session.query(InventoryItem)
        .filter(
            InventoryItem.is_active.is_(True),
            InventoryItem.current_stock <= InventoryItem.reorder_level,
        )
        .order_by(InventoryItem.current_stock.asc(), InventoryItem.name.asc())
        .all()
    )


def get_item(item_id: int) -> InventoryItem:
    return _get_or_404(InventoryItem, item_id, "Inventory item")


def find_item_by_barcode(barcode: str) -> InventoryItem:
    item = (
        db.session.query(InventoryItem)
        .filter(InventoryItem.barcode == barcode.strip(), InventoryItem.is_active.is_(True))
        .first()
    )
    if item is None:
        raise NotFoundError(f"No active item with barcode {barcode}")
    return item


def create_item(payload: dict, actor: Actor | None = None) -> InventoryItem:
    """
    Create an inventory item.

    An opening current_stock > 0 is recorded as an 'adjustment' movement
    referenced "Initial Stock" so the ledger sums to the opening balance.
    """
    patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_POLICY, partial=False)
    opening = patch.pop("current_stock", None) or 0

    def _op():
        _ensure_unique_item_codes(patch)
        _ensure_category(Category, patch.get("category_id"), "Category")

        item = InventoryItem(current_stock=opening)
        _apply_patch(item, patch, ITEM_MUTABLE_FIELDS)
        db.session.add(item)
        db.session.flush()

        if opening > 0:
            db.session.add(StockMovement(
                item_id=item.id,
                type=MOVEMENT_ADJUSTMENT,
                quantity=opening,
                unit_cost_cents=item.cost_price_cents,
                reference="Initial Stock",
                user_id=actor_user_id(actor),
                created_at=utcnow(),
            ))

        db.session.commit()
        return item

    return run_with_retry(_op)


def update_item(item_id: int, payload: dict) -> InventoryItem:
    """
    Edit catalog fields. Stock levels change only through stock_service.
    """
    patch = validate_payload(model=InventoryItem, payload=payload, policy=ITEM_POLICY, partial=True)
    if "current_stock" in patch:
        raise ValidationError("current_stock cannot be edited; use a stock adjustment")

    def _op():
        item = get_item(item_id)
        _ensure_unique_item_codes(patch, item_id=item.id)
        _ensure_category(Category, patch.get("category_id"), "Category")
        _apply_patch(item, patch, ITEM_MUTABLE_FIELDS)
        db.session.commit()
        return item

    return run_with_retry(_op)


def delete_item(item_id: int) -> None:
    """
    Hard-delete an item together with its movement history.

    Refused while any job part, POS line or shop usage references the item.
    """
    def _op():
        item = get_item(item_id)
        references = {
            "job_parts": db.session.query(JobPart).filter_by(item_id=item.id).count(),
            "pos_sale_items": db.session.query(PosSaleItem).filter_by(item_id=item.id).count(),
            "shop_usages": db.session.query(ShopUsage).filter_by(item_id=item.id).count(),
        }
        if any(references.values()):
            raise ConflictError(
                f"Item '{item.name}' is referenced by past work; deactivate it instead",
                details=references,
            )
        db.session.query(StockMovement).filter_by(item_id=item.id).delete(synchronize_session=False)
        db.session.delete(item)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# SERVICES
# =============================================================================

def list_services(*, category_id: int | None = None, active: bool | None = None) -> list[Service]:
    q = db.session.query(Service)
    if category_id is not None:
        q = q.filter(Service.category_id == category_id)
    if active is not None:
        q = q.filter(Service.is_active.is_(active))
    return q.order_by(Service.name.asc(), Service.id.asc()).all()


def get_service(service_id: int) -> Service:
    return _get_or_404(Service, service_id, "Service")


def _ensure_unique_service_name(patch: dict, service: Service | None = None) -> None:
    name = patch.get("name", service.name if service else None)
    category_id = patch.get("category_id", service.category_id if service else None)
    q = db.session.query(Service).filter(Service.name == name, Service.category_id == category_id)
    if service is not None:
        q = q.filter(Service.id != service.id)
    if q.first():
        raise ConflictError(f"Service '{name}' already exists in this category")


def create_service(payload: dict) -> Service:
    patch = validate_payload(model=Service, payload=payload, policy=SERVICE_POLICY, partial=False)

    def _op():
        _ensure_category(ServiceCategory, patch.get("category_id"), "Service category")
        _ensure_unique_service_name(patch)
        service = Service()
        _apply_patch(service, patch, SERVICE_POLICY.writable_fields)
        db.session.add(service)
        db.session.commit()
        return service

    return run_with_retry(_op)


def update_service(service_id: int, payload: dict) -> Service:
    patch = validate_payload(model=Service, payload=payload, policy=SERVICE_POLICY, partial=True)

    def _op():
        service = get_service(service_id)
        _ensure_category(ServiceCategory, patch.get("category_id"), "Service category")
        if "name" in patch or "category_id" in patch:
            _ensure_unique_service_name(patch, service)
        _apply_patch(service, patch, SERVICE_POLICY.writable_fields)
        db.session.commit()
        return service

    return run_with_retry(_op)


def delete_service(service_id: int) -> None:
    def _op():
        service = get_service(service_id)
        used = db.session.query(JobService).filter_by(service_id=service.id).count()
        if used:
            raise ConflictError(
                f"Service '{service.name}' is used on {used} job line(s); deactivate it instead",
                details={"job_service_count": used},
            )
        db.session.delete(service)
        db.session.commit()

    run_with_retry(_op)
