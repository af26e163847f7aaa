from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.contacthub.cache import TieredCache, last_sync_key, users_key
from app.contacthub.fallback import ChainResult, Envelope, FallbackChain, Stage
from app.contacthub.models import User
from app.contacthub.modules.users.service import user_to_dict
from app.contacthub.modules.users.utils import default_avatar
from app.contacthub.rbac import user_has_permission
from app.contacthub.utils import iso_or_empty


def admin_listing(s: Session, user: User) -> Envelope:
    if not user_has_permission(user, "users.view"):
        return Envelope.failed("Access denied: admin only")
    rows = s.scalars(select(User).order_by(User.created_at.desc(), User.id.desc())).all()
    return Envelope.ok([user_to_dict(u) for u in rows])


def simple_listing(s: Session) -> Envelope:
    rows = s.scalars(select(User).order_by(User.name.asc(), User.id.asc())).all()
    return Envelope.ok([user_to_dict(u) for u in rows])


def table_listing(s: Session) -> Envelope:
    t = User.__table__
    rows = s.execute(
        select(
            t.c.id,
            t.c.email,
            t.c.username,
            t.c.name,
            t.c.role,
            t.c.employee_number,
            t.c.position,
            t.c.avatar,
            t.c.terms_accepted_at,
            t.c.created_at,
            t.c.updated_at,
        ).order_by(t.c.created_at.desc())
    ).mappings().all()
    items = [
        {
            "id": r["id"],
            "email": r["email"],
            "username": r["username"],
            "name": r["name"],
            "role": r["role"],
            "employee_number": r["employee_number"] or "",
            "position": r["position"] or "",
            "avatar": r["avatar"] or default_avatar(r["name"]),
            "terms_accepted": r["terms_accepted_at"] is not None,
            "created_at": iso_or_empty(r["created_at"]),
            "updated_at": iso_or_empty(r["updated_at"]),
        }
        for r in rows
    ]
    return Envelope.ok(items)


def user_stages(s: Session, user: User) -> list[Stage]:
    return [
        ("admin", lambda: admin_listing(s, user)),
        ("simple", lambda: simple_listing(s)),
        ("table", lambda: table_listing(s)),
    ]


def load_users(
    s: Session,
    user: User,
    *,
    cache: TieredCache | None = None,
    stages: Sequence[Stage] | None = None,
) -> ChainResult:
    chain = FallbackChain(
        stages if stages is not None else user_stages(s, user),
        cache=cache,
        cache_key=users_key(user.id),
        last_sync_key=last_sync_key("users", user.id),
        on_stage_error=lambda _name, _exc: s.rollback(),
    )
    return chain.run()
