from __future__ import annotations

import re
from collections.abc import Container
from urllib.parse import quote_plus

from app.contacthub.constants import AVATAR_URL_TEMPLATE
from app.contacthub.utils import clean_str

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9]+$")


def is_valid_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value or ""))


def is_valid_username(value: str) -> bool:
    return bool(_USERNAME_RE.match(value or ""))


def base_username(name: str, employee_number: str) -> str:
    """
    First name, lower-cased, followed by the last three characters of the
    employee number; anything that is not a-z or 0-9 is dropped.

        >>> base_username("Maria Clara Santos", "EMP-00123")
        'maria123'
    """
    first = (clean_str(name).split() or [""])[0].lower()
    suffix = clean_str(employee_number)[-3:].lower()
    return re.sub(r"[^a-z0-9]", "", first + suffix)


def unique_username(base: str, taken: Container[str]) -> str:
    """Append 1, 2, 3... to `base` until it is not taken."""
    candidate = base
    counter = 0
    while candidate in taken:
        counter += 1
        candidate = f"{base}{counter}"
    return candidate


def default_avatar(name: str) -> str:
    return AVATAR_URL_TEMPLATE.format(name=quote_plus(clean_str(name) or "User"))
