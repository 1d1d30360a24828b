from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from workshop.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum money amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999

# Tax rates are percentages in [0, 100]; stored as basis points
MAX_TAX_RATE_BPS = 10_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what callers are allowed to set
    - required_on_create: fields required on create
    - non_negative_fields: integer columns that may not go below zero
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    non_negative_fields: set[str] = field(default_factory=set)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes an incoming dict against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    - non_negative_fields
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Blank optional strings are stored as NULL
        if isinstance(col.type, (String, Text)) and col.nullable and val == "":
            val = None

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        if k in policy.non_negative_fields and isinstance(val, int) and val < 0:
            raise ValidationError(f"{k} must be >= 0")

        if k.endswith("_cents") and isinstance(val, int) and val > MAX_AMOUNT_CENTS:
            raise ValidationError(f"{k} cannot exceed {MAX_AMOUNT_CENTS}")

        patch[k] = val

    return patch


# =============================================================================
# SCALAR ARGUMENTS
# =============================================================================

def positive_quantity(value: Any, key: str = "quantity") -> int:
    qty = _coerce_int(key, value)
    if qty <= 0:
        raise ValidationError(f"{key} must be > 0")
    return qty


def non_negative_quantity(value: Any, key: str = "quantity") -> int:
    qty = _coerce_int(key, value)
    if qty < 0:
        raise ValidationError(f"{key} must be >= 0")
    return qty


def amount_cents(value: Any, key: str = "amount_cents", *, allow_zero: bool = True) -> int:
    cents = _coerce_int(key, value)
    if cents < 0 or (cents == 0 and not allow_zero):
        raise ValidationError(f"{key} must be {'>= 0' if allow_zero else '> 0'}")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_AMOUNT_CENTS}")
    return cents


def tax_rate_to_bps(value: Any) -> int:
    """
    Convert a percentage (5, "8.5", Decimal("12")) to basis points.

    None and "" mean zero.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValidationError("tax_rate must be a number")
    try:
        pct = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("tax_rate must be a number")
    if not pct.is_finite():
        raise ValidationError("tax_rate must be a number")
    bps = int((pct * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if bps < 0 or bps > MAX_TAX_RATE_BPS:
        raise ValidationError("tax_rate must be between 0 and 100")
    return bps


def tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """Tax on a subtotal, nearest-cent rounding (half-up)."""
    product = subtotal_cents * tax_rate_bps
    if product >= 0:
        return (product + 5_000) // 10_000
    return -((-product + 5_000) // 10_000)


def line_total_cents(quantity: int, unit_price_cents: int, discount_cents: int) -> int:
    gross = quantity * unit_price_cents
    if discount_cents > gross:
        raise ValidationError("discount cannot exceed the line amount")
    return gross - discount_cents


def choice(value: Any, allowed: tuple[str, ...] | list[str], key: str) -> str:
    if value not in allowed:
        raise ValidationError(f"Invalid {key}: {value}. Must be one of {list(allowed)}")
    return value


def required_text(value: Any, key: str) -> str:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{key} is required")
    return str(value).strip()


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
