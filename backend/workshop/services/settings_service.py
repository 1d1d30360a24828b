from __future__ import annotations

from typing import Any

from flask import current_app

from ..extensions import db
from ..models import Setting
from ..actor import Actor, ROLE_ADMIN, actor_user_id, require_role
from ..errors import NotFoundError, ValidationError
from ..validation import tax_rate_to_bps
from .concurrency import run_with_retry


# Keys seeded by `flask system seed-defaults`; values are stored as text.
DEFAULT_SETTINGS = {
    "business_name": "Workshop",
    "business_address": "",
    "business_phone": "",
    "currency": "MVR",
    "tax_rate": "8",
    "gst_tin": "",
    "taxable_activity_number": "",
    "invoice_footer": "Thank you for your business",
}

NUMERIC_KEYS = {"tax_rate"}


def _normalize_value(key: str, value: Any) -> str | None:
    if value is None:
        return None
    if key in NUMERIC_KEYS:
        # reject garbage before it reaches invoices
        tax_rate_to_bps(value)
    return str(value).strip()


def _upsert(key: str, value: Any, actor: Actor) -> Setting:
    key = (key or "").strip()
    if not key:
        raise ValidationError("Setting key is required")
    row = db.session.query(Setting).filter_by(key=key).first()
    if row is None:
        row = Setting(key=key)
        db.session.add(row)
    row.value = _normalize_value(key, value)
    row.updated_by_user_id = actor_user_id(actor)
    return row


def get_all_settings() -> dict[str, str | None]:
    rows = db.session.query(Setting).order_by(Setting.key.asc()).all()
    return {r.key: r.value for r in rows}


def get_setting(key: str) -> Setting:
    row = db.session.query(Setting).filter_by(key=key).first()
    if row is None:
        raise NotFoundError(f"Setting {key} not found")
    return row


def get_setting_value(key: str, default: str | None = None) -> str | None:
    value = db.session.query(Setting.value).filter_by(key=key).scalar()
    return default if value is None else value


def set_setting(key: str, value: Any, actor: Actor) -> Setting:
    require_role(actor, ROLE_ADMIN)

    def _op():
        row = _upsert(key, value, actor)
        db.session.commit()
        return row

    row = run_with_retry(_op)
    current_app.logger.info("Setting %s updated by user %s", row.key, actor.user_id)
    return row


def bulk_update_settings(values: dict, actor: Actor) -> dict[str, str | None]:
    """Write several keys in one transaction; all or nothing."""
    require_role(actor, ROLE_ADMIN)
    if not isinstance(values, dict):
        raise ValidationError("Settings must be an object")

    def _op():
        for key, value in values.items():
            _upsert(key, value, actor)
        db.session.commit()

    run_with_retry(_op)
    current_app.logger.info("Settings %s updated by user %s", sorted(values), actor.user_id)
    return get_all_settings()


def seed_default_settings() -> int:
    """Insert any missing DEFAULT_SETTINGS rows; existing values are kept."""
    existing = {k for (k,) in db.session.query(Setting.key).all()}
    missing = [k for k in DEFAULT_SETTINGS if k not in existing]
    for key in missing:
        value = DEFAULT_SETTINGS[key]
        if key == "tax_rate":
            value = str(current_app.config.get("DEFAULT_TAX_RATE", value))
        elif key == "currency":
            value = current_app.config.get("CURRENCY", value)
        db.session.add(Setting(key=key, value=value))
    db.session.commit()
    return len(missing)


def get_tax_rate_bps() -> int:
    """Shop tax rate in basis points; falls back to DEFAULT_TAX_RATE config."""
    fallback = current_app.config.get("DEFAULT_TAX_RATE", DEFAULT_SETTINGS["tax_rate"])
    return tax_rate_to_bps(get_setting_value("tax_rate", fallback))
