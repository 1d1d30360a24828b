# Overview: The authenticated caller attached to every mutating service call.

from __future__ import annotations

from dataclasses import dataclass

from .errors import PermissionDeniedError

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_FOREMAN = "foreman"
ROLE_TECHNICIAN = "technician"
ROLE_CASHIER = "cashier"

VALID_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_FOREMAN, ROLE_TECHNICIAN, ROLE_CASHIER)


@dataclass(frozen=True)
class Actor:
    """
    Who is performing an operation.

    Issued by the authentication layer and trusted as-is; used for
    movement/payment attribution and role gating only.
    """
    user_id: int | None
    name: str
    role: str

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, name=user.name, role=user.role)


def require_role(actor: Actor | None, *roles: str) -> Actor:
    if actor is None:
        raise PermissionDeniedError("Authentication required")
    if actor.role not in roles:
        raise PermissionDeniedError(
            f"Role '{actor.role}' is not allowed to perform this action",
            details={"required_roles": list(roles)},
        )
    return actor


def actor_user_id(actor: Actor | None) -> int | None:
    return actor.user_id if actor is not None else None
