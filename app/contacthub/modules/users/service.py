from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.contacthub.audit import record_event
from app.contacthub.constants import (
    MIN_PASSWORD_LENGTH,
    MIN_USERNAME_LENGTH,
    ROLE_LABELS,
    ROLE_SUPERADMIN,
    ROLE_USER,
    ROLES,
)
from app.contacthub.models import User
from app.contacthub.modules.contacts.models import Contact
from app.contacthub.modules.users.utils import (
    base_username,
    default_avatar,
    is_valid_email,
    is_valid_username,
    unique_username,
)
from app.contacthub.rbac import user_has_permission
from app.contacthub.utils import ValidationError, clean_str, iso_or_empty

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "email", "username", "employee_number", "position", "role", "avatar")


def user_to_dict(u: User) -> dict[str, Any]:
    """Public user record. The password hash never leaves the service layer."""
    return {
        "id": u.id,
        "email": u.email,
        "username": u.username,
        "name": u.name,
        "role": u.role,
        "role_label": ROLE_LABELS.get(u.role, u.role),
        "employee_number": u.employee_number or "",
        "position": u.position or "",
        "avatar": u.avatar or default_avatar(u.name),
        "terms_accepted": u.terms_accepted_at is not None,
        "created_at": iso_or_empty(u.created_at),
        "updated_at": iso_or_empty(u.updated_at),
    }


def get_user(s: Session, user_id: int) -> User | None:
    return s.get(User, user_id)


def find_user_by_login(s: Session, identifier: str) -> User | None:
    """Email (case-insensitive) or username."""
    ident = clean_str(identifier)
    if not ident:
        return None
    if "@" in ident:
        return s.query(User).filter(func.lower(User.email) == ident.lower()).one_or_none()
    return s.query(User).filter(User.username == ident).one_or_none()


def validate_user_payload(payload: dict[str, Any], *, partial: bool = False) -> list[ValidationError]:
    errs: list[ValidationError] = []

    def present(key: str) -> bool:
        return not partial or key in payload

    if present("name") and not clean_str(payload.get("name")):
        errs.append(ValidationError("name", "Name is required."))
    if present("email"):
        email = clean_str(payload.get("email"))
        if not email:
            errs.append(ValidationError("email", "Email is required."))
        elif not is_valid_email(email):
            errs.append(ValidationError("email", "Enter a valid email address."))
    if not partial or "password" in payload:
        password = payload.get("password") or ""
        if len(password) < MIN_PASSWORD_LENGTH:
            errs.append(ValidationError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters."))
    # Username may be left blank on create; one is generated.
    username = clean_str(payload.get("username"))
    if username or (partial and "username" in payload):
        if len(username) < MIN_USERNAME_LENGTH or not is_valid_username(username):
            errs.append(
                ValidationError(
                    "username",
                    f"Username must be at least {MIN_USERNAME_LENGTH} letters or digits.",
                )
            )
    if present("employee_number") and not clean_str(payload.get("employee_number")):
        errs.append(ValidationError("employee_number", "Employee number is required."))
    if present("position") and not clean_str(payload.get("position")):
        errs.append(ValidationError("position", "Position is required."))
    if "role" in payload and clean_str(payload.get("role")) not in ROLES:
        errs.append(ValidationError("role", "Unknown role."))
    return errs


def _uniqueness_errors(s: Session, *, email: str | None, username: str | None, exclude_id: int | None = None) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if email:
        q = s.query(User.id).filter(func.lower(User.email) == email.lower())
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            errs.append(ValidationError("email", "Email is already in use."))
    if username:
        q = s.query(User.id).filter(User.username == username)
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            errs.append(ValidationError("username", "Username is already taken."))
    return errs


def generate_username(s: Session, name: str, employee_number: str) -> str:
    base = base_username(name, employee_number)
    if not base:
        base = "user"
    taken = set(s.scalars(select(User.username).where(User.username.like(f"{base}%"))).all())
    return unique_username(base, taken)


def _check_role_grant(actor: User, role: str) -> None:
    if role == ROLE_SUPERADMIN and not user_has_permission(actor, "users.grant_superadmin"):
        raise PermissionError("Only a superadmin can grant the superadmin role.")


def _check_can_manage(actor: User, target: User) -> None:
    if target.role == ROLE_SUPERADMIN and actor.role != ROLE_SUPERADMIN:
        raise PermissionError("Only a superadmin can modify a superadmin account.")


def create_user(s: Session, payload: dict[str, Any], *, actor: User) -> User:
    """
    Caller validates the payload first (validate_user_payload). Raises
    PermissionError for a role the actor may not grant and ValueError carrying
    ValidationErrors for duplicate email/username.
    """
    role = clean_str(payload.get("role")) or ROLE_USER
    _check_role_grant(actor, role)

    name = clean_str(payload.get("name"))
    email = clean_str(payload.get("email")).lower()
    employee_number = clean_str(payload.get("employee_number"))
    username = clean_str(payload.get("username")) or generate_username(s, name, employee_number)

    dupes = _uniqueness_errors(s, email=email, username=username)
    if dupes:
        raise ValueError(dupes)

    now = datetime.utcnow()
    u = User(
        email=email,
        username=username,
        password_hash=generate_password_hash(payload.get("password") or ""),
        role=role,
        name=name,
        employee_number=employee_number or None,
        position=clean_str(payload.get("position")) or None,
        avatar=clean_str(payload.get("avatar")) or default_avatar(name),
        created_at=now,
        updated_at=now,
    )
    s.add(u)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="create",
        entity="user",
        entity_id=u.id,
        entity_name=u.name,
        description=f"Created user {u.name}",
        details=f"Role: {ROLE_LABELS.get(role, role)}",
    )
    return u


def update_user(s: Session, target: User, payload: dict[str, Any], *, actor: User) -> User:
    _check_can_manage(actor, target)
    if "role" in payload:
        role = clean_str(payload.get("role"))
        if role != target.role:
            _check_role_grant(actor, role)
            if target.id == actor.id:
                raise PermissionError("You cannot change your own role.")

    email = clean_str(payload.get("email")).lower() if "email" in payload else None
    username = clean_str(payload.get("username")) if "username" in payload else None
    dupes = _uniqueness_errors(s, email=email, username=username, exclude_id=target.id)
    if dupes:
        raise ValueError(dupes)

    changed: list[str] = []
    for key in EDITABLE_FIELDS:
        if key not in payload:
            continue
        value: Any = clean_str(payload.get(key)) or None
        if key == "email":
            value = email
        if getattr(target, key) != value:
            setattr(target, key, value)
            changed.append(key)

    if changed:
        target.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=actor,
            action="update",
            entity="user",
            entity_id=target.id,
            entity_name=target.name,
            description=f"Updated user {target.name}",
            details="Changed: " + ", ".join(changed),
        )
    return target


def delete_user(s: Session, target: User, *, actor: User) -> None:
    if not user_has_permission(actor, "users.delete"):
        raise PermissionError("Only a superadmin can delete users.")
    if target.id == actor.id:
        raise PermissionError("You cannot delete your own account.")
    owned = s.execute(select(func.count(Contact.id)).where(Contact.user_id == target.id)).scalar() or 0
    if owned:
        raise ValueError(
            [ValidationError("user", f"{target.name} still owns {owned} contact(s); reassign or delete them first.")]
        )
    record_event(
        s,
        actor=actor,
        action="delete",
        entity="user",
        entity_id=target.id,
        entity_name=target.name,
        description=f"Deleted user {target.name}",
        details=f"Email: {target.email}",
    )
    s.delete(target)


def reset_password(s: Session, target: User, new_password: str, *, actor: User) -> User:
    if not user_has_permission(actor, "users.reset_password"):
        raise PermissionError("Only a superadmin can reset passwords.")
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(
            [ValidationError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")]
        )
    target.password_hash = generate_password_hash(new_password)
    target.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="update",
        entity="user",
        entity_id=target.id,
        entity_name=target.name,
        description=f"Reset password for {target.name}",
    )
    logger.info("Password reset for user_id=%s by user_id=%s", target.id, actor.id)
    return target


def accept_terms(s: Session, u: User) -> User:
    if u.terms_accepted_at is None:
        u.terms_accepted_at = datetime.utcnow()
    return u
