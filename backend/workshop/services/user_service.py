# Overview: Staff records used for attribution and job assignment; credentials live elsewhere.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import User
from ..actor import Actor, ROLE_ADMIN, VALID_ROLES, require_role
from ..errors import ConflictError, NotFoundError, ValidationError
from ..validation import choice, required_text
from .concurrency import run_with_retry


def _normalize_email(value) -> str:
    email = required_text(value, "email").lower()
    if "@" not in email:
        raise ValidationError("email is invalid")
    return email


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def list_users(*, active: bool | None = None) -> list[User]:
    q = db.session.query(User)
    if active is not None:
        q = q.filter(User.is_active.is_(active))
    return q.order_by(User.name.asc(), User.id.asc()).all()


def create_user(*, name: str, email: str, role: str) -> User:
    """
    Create a staff member.

    Email is unique (case-insensitive); role must be one of VALID_ROLES.
    """
    name = required_text(name, "name")
    email = _normalize_email(email)
    role = choice(role, VALID_ROLES, "role")

    def _op():
        if db.session.query(User).filter_by(email=email).first():
            raise ConflictError(f"A user with email {email} already exists")
        user = User(name=name, email=email, role=role, is_active=True)
        db.session.add(user)
        db.session.commit()
        return user

    user = run_with_retry(_op)
    current_app.logger.info("User %s created with role %s", user.email, user.role)
    return user


def update_user(user_id: int, payload: dict, actor: Actor) -> User:
    """Change name, role or active flag. Admin only."""
    require_role(actor, ROLE_ADMIN)
    patch = {}
    if "name" in payload:
        patch["name"] = required_text(payload["name"], "name")
    if "role" in payload:
        patch["role"] = choice(payload["role"], VALID_ROLES, "role")
    if "is_active" in payload:
        if not isinstance(payload["is_active"], bool):
            raise ValidationError("is_active must be a boolean")
        patch["is_active"] = payload["is_active"]

    def _op():
        user = get_user(user_id)
        for k, v in patch.items():
            setattr(user, k, v)
        db.session.commit()
        return user

    return run_with_retry(_op)
