from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g

from app.contacthub.constants import ROLE_ADMIN, ROLE_SUPERADMIN, ROLE_USER
from app.contacthub.models import User

_BASE = frozenset(
    {
        "contacts.view",
        "contacts.create",
        "contacts.edit_own",
        "contacts.export",
        "contacts.download",
    }
)

_ADMIN = _BASE | {
    "contacts.edit_any",
    "users.view",
    "users.create",
    "users.edit",
    "changelog.view",
    "changelog.export",
    "activity.view",
}

# Role -> capability set. The only place role permissions are decided.
ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    ROLE_USER: _BASE,
    ROLE_ADMIN: frozenset(_ADMIN),
    ROLE_SUPERADMIN: frozenset(
        _ADMIN
        | {
            "contacts.delete",
            "users.delete",
            "users.reset_password",
            "users.grant_superadmin",
            "system.diagnostics",
        }
    ),
}


def capabilities_for(user: User | None) -> frozenset[str]:
    if not user:
        return frozenset()
    return ROLE_CAPABILITIES.get(user.role, frozenset())


def user_has_permission(user: User | None, permission_key: str) -> bool:
    return permission_key in capabilities_for(user)


def can_edit_contact(user: User | None, contact: Any) -> bool:
    if user_has_permission(user, "contacts.edit_any"):
        return True
    return user_has_permission(user, "contacts.edit_own") and _owner_id(contact) == user.id  # type: ignore[union-attr]


def can_delete_contact(user: User | None) -> bool:
    return user_has_permission(user, "contacts.delete")


def contact_actions(user: User | None, contact: Any) -> set[str]:
    """Actions a client may offer on this contact."""
    actions: set[str] = set()
    if can_edit_contact(user, contact):
        actions.add("edit")
    if can_delete_contact(user):
        actions.add("delete")
    return actions


def _owner_id(contact: Any) -> int | None:
    if isinstance(contact, dict):
        return contact.get("owner_id")
    return getattr(contact, "user_id", None)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401 (the SPA shows its login page).
            if not user:
                abort(401)
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not getattr(g, "current_user", None):
            abort(401)
        return fn(*args, **kwargs)

    return wrapped
