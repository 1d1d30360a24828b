# backend/workshop/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/workshop.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///workshop.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("WORKSHOP_LOG_LEVEL", "INFO")

    # Used when no "tax_rate" row exists in the settings table
    DEFAULT_TAX_RATE = os.environ.get("WORKSHOP_DEFAULT_TAX_RATE", "8")
    CURRENCY = os.environ.get("WORKSHOP_CURRENCY", "MVR")
