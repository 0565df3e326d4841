from dataclasses import dataclass, field
from functools import wraps
from typing import FrozenSet, Optional

from flask import g, jsonify

ADMIN = "ADMIN"

STAFF = ("RECEPTIONIST", "CASHIER", "MANAGER")
BILLING = ("CASHIER", "MANAGER")

# action -> roles allowed to perform it; ADMIN passes every check
ACTION_ROLES = {
    "booking.hold": ("CUSTOMER",) + STAFF,
    "booking.confirm": ("CUSTOMER",) + STAFF,
    "booking.edit": ("CUSTOMER",) + STAFF,
    "booking.cancel": STAFF,
    "booking.view_all": STAFF,
    "invoice.create": BILLING,
    "invoice.pay": BILLING,
    "invoice.cancel": BILLING,
    "invoice.refund": BILLING,
    "invoice.view": BILLING,
    "invoice.adjust": ("MANAGER",),
    "holds.expire": ("MANAGER",),
}


@dataclass(frozen=True)
class Principal:
    user_id: Optional[int]
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user) -> "Principal":
        return cls(user_id=user.id, roles=frozenset(user.role_names))

    @property
    def is_staff(self) -> bool:
        return ADMIN in self.roles or bool(self.roles.intersection(STAFF))


def can_perform(action: str, principal: Optional[Principal]) -> bool:
    if principal is None:
        return False
    if ADMIN in principal.roles:
        return True
    return bool(principal.roles.intersection(ACTION_ROLES.get(action, ())))


def current_principal() -> Optional[Principal]:
    user = getattr(g, "user", None)
    if user is None:
        return None
    return Principal.from_user(user)


def require_roles(*role_names: str):
    """
    Usage: @require_roles("MANAGER")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            principal = current_principal()
            if principal is None:
                return jsonify(error="Authentication required"), 401

            if ADMIN not in principal.roles and not principal.roles.intersection(set(role_names)):
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def require_permission(action: str):
    """
    Usage: @require_permission("invoice.refund")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            principal = current_principal()
            if principal is None:
                return jsonify(error="Authentication required"), 401
            if not can_perform(action, principal):
                return jsonify(error="Forbidden"), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator
