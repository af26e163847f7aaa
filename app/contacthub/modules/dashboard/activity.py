from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.contacthub.models import ChangelogEntry, User
from app.contacthub.modules.contacts.models import Contact
from app.contacthub.utils import iso_or_empty


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def _count_today(s: Session, start: datetime, end: datetime, *, action: str, entity: str | None = None) -> int:
    q = select(func.count(ChangelogEntry.id)).where(
        ChangelogEntry.action == action,
        ChangelogEntry.timestamp >= start,
        ChangelogEntry.timestamp < end,
    )
    if entity:
        q = q.where(ChangelogEntry.entity == entity)
    return int(s.execute(q).scalar() or 0)


def get_system_activity_summary(s: Session, *, today: date | None = None) -> dict[str, Any]:
    """Counters for the activity dashboard; "today" is the UTC calendar day."""
    today = today or datetime.utcnow().date()
    start, end = _day_bounds(today)

    users_logged_in_today = s.execute(
        select(func.count(func.distinct(ChangelogEntry.user_id))).where(
            ChangelogEntry.action == "login",
            ChangelogEntry.timestamp >= start,
            ChangelogEntry.timestamp < end,
        )
    ).scalar()

    most_active = s.execute(
        select(ChangelogEntry.user_name, func.count(ChangelogEntry.id).label("n"))
        .where(
            ChangelogEntry.timestamp >= start,
            ChangelogEntry.timestamp < end,
            ChangelogEntry.user_name.isnot(None),
        )
        .group_by(ChangelogEntry.user_name)
        .order_by(func.count(ChangelogEntry.id).desc(), ChangelogEntry.user_name.asc())
        .limit(1)
    ).first()

    last_login = s.execute(
        select(ChangelogEntry.timestamp, ChangelogEntry.user_name)
        .where(ChangelogEntry.action == "login")
        .order_by(ChangelogEntry.timestamp.desc(), ChangelogEntry.id.desc())
        .limit(1)
    ).first()

    last_contact = s.execute(
        select(ChangelogEntry.timestamp, ChangelogEntry.user_name)
        .where(ChangelogEntry.action == "create", ChangelogEntry.entity == "contact")
        .order_by(ChangelogEntry.timestamp.desc(), ChangelogEntry.id.desc())
        .limit(1)
    ).first()

    return {
        "total_users": int(s.execute(select(func.count(User.id))).scalar() or 0),
        "total_contacts": int(s.execute(select(func.count(Contact.id))).scalar() or 0),
        "total_changelog_entries": int(s.execute(select(func.count(ChangelogEntry.id))).scalar() or 0),
        "users_logged_in_today": int(users_logged_in_today or 0),
        "contacts_created_today": _count_today(s, start, end, action="create", entity="contact"),
        "contacts_updated_today": _count_today(s, start, end, action="update", entity="contact"),
        "contacts_deleted_today": _count_today(s, start, end, action="delete", entity="contact"),
        "most_active_user_today": most_active[0] if most_active else None,
        "most_active_user_today_count": int(most_active[1]) if most_active else 0,
        "last_login_time": iso_or_empty(last_login[0]) if last_login else None,
        "last_login_user": last_login[1] if last_login else None,
        "last_contact_created": iso_or_empty(last_contact[0]) if last_contact else None,
        "last_contact_created_by": last_contact[1] if last_contact else None,
    }


def get_user_activity_timeline(s: Session, *, limit: int = 10) -> list[dict[str, Any]]:
    limit = max(1, min(int(limit), 100))
    rows = s.scalars(
        select(ChangelogEntry).order_by(ChangelogEntry.timestamp.desc(), ChangelogEntry.id.desc()).limit(limit)
    ).all()
    return [
        {
            "activity_timestamp": iso_or_empty(e.timestamp),
            "user_name": e.user_name,
            "action": e.action,
            "entity": e.entity,
            "description": e.description,
            "entity_name": e.entity_name,
        }
        for e in rows
    ]
