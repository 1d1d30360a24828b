# backend/workshop/__init__.py
from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import WorkshopError
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp

    app.register_blueprint(system_bp)

    @app.errorhandler(WorkshopError)
    def handle_workshop_error(e: WorkshopError):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        if isinstance(e, HTTPException):
            return e
        app.logger.exception("Unhandled error")
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
