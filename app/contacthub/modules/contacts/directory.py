from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.contacthub.cache import TieredCache, contacts_key, last_sync_key
from app.contacthub.constants import ROLE_SUPERADMIN, ROLE_USER, UNKNOWN_OWNER_NAME
from app.contacthub.fallback import ChainResult, Envelope, FallbackChain, Stage
from app.contacthub.models import User
from app.contacthub.modules.contacts.models import Contact
from app.contacthub.modules.contacts.service import contact_to_dict
from app.contacthub.utils import iso_or_empty


def _owner_filter(user: User) -> int | None:
    return user.id if user.role == ROLE_USER else None


def collaborative_listing(s: Session) -> Envelope:
    """Every contact with its owner's name; open to all signed-in users."""
    rows = s.scalars(select(Contact).order_by(Contact.created_at.desc(), Contact.id.desc())).all()
    return Envelope.ok([contact_to_dict(c) for c in rows])


def superadmin_listing(s: Session, user: User) -> Envelope:
    if user.role != ROLE_SUPERADMIN:
        return Envelope.failed("Access denied: superadmin only")
    rows = s.scalars(select(Contact).order_by(Contact.created_at.desc(), Contact.id.desc())).all()
    return Envelope.ok([contact_to_dict(c) for c in rows])


def filtered_listing(s: Session, owner_id: int | None) -> Envelope:
    q = select(Contact).order_by(Contact.first_name.asc(), Contact.id.asc())
    if owner_id is not None:
        q = q.where(Contact.user_id == owner_id)
    return Envelope.ok([contact_to_dict(c) for c in s.scalars(q).all()])


def table_listing(s: Session, owner_id: int | None) -> Envelope:
    """
    Plain column reads with the owner join done by hand, so it still works
    when the ORM relationship load is what is failing.
    """
    t = Contact.__table__
    q = select(t).order_by(t.c.created_at.desc())
    if owner_id is not None:
        q = q.where(t.c.user_id == owner_id)
    rows = s.execute(q).mappings().all()
    owner_ids = {r["user_id"] for r in rows}
    names: dict[int, str] = {}
    if owner_ids:
        ut = User.__table__
        names = {
            r["id"]: r["name"]
            for r in s.execute(select(ut.c.id, ut.c.name).where(ut.c.id.in_(owner_ids))).mappings().all()
        }
    items = [
        {
            "id": r["id"],
            "first_name": r["first_name"] or "",
            "middle_name": r["middle_name"] or "",
            "last_name": r["last_name"] or "",
            "birthday": iso_or_empty(r["birthday"]),
            "phone": r["phone"] or "",
            "company": r["company"] or "",
            "owner_id": r["user_id"],
            "owner_name": names.get(r["user_id"]) or UNKNOWN_OWNER_NAME,
            "created_at": iso_or_empty(r["created_at"]),
            "updated_at": iso_or_empty(r["updated_at"]),
        }
        for r in rows
    ]
    return Envelope.ok(items)


def contact_stages(s: Session, user: User) -> list[Stage]:
    owner_id = _owner_filter(user)
    return [
        ("collaborative", lambda: collaborative_listing(s)),
        ("superadmin", lambda: superadmin_listing(s, user)),
        ("filtered", lambda: filtered_listing(s, owner_id)),
        ("table", lambda: table_listing(s, owner_id)),
    ]


def load_contacts(
    s: Session,
    user: User,
    *,
    cache: TieredCache | None = None,
    stages: Sequence[Stage] | None = None,
) -> ChainResult:
    chain = FallbackChain(
        stages if stages is not None else contact_stages(s, user),
        cache=cache,
        cache_key=contacts_key(user.id),
        last_sync_key=last_sync_key("contacts", user.id),
        on_stage_error=lambda _name, _exc: s.rollback(),
    )
    return chain.run()
