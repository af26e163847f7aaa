"""
Central constants for the Contact Hub application.
"""
from __future__ import annotations

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPERADMIN = "superadmin"
ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_SUPERADMIN)

ROLE_LABELS = {
    ROLE_USER: "User",
    ROLE_ADMIN: "Administrator",
    ROLE_SUPERADMIN: "Super Administrator",
}

CHANGELOG_ACTIONS = frozenset({"create", "update", "delete", "login", "logout", "export", "download"})
CHANGELOG_ENTITIES = frozenset({"contact", "user", "system"})

# Session-held UI preferences
UI_TABS = ("personal", "collaborative", "users", "changelog")
UI_VIEW_MODES = ("card", "list")
DEFAULT_TAB = "personal"
DEFAULT_VIEW_MODE = "card"

# Birthday dashboard windows (days from today, inclusive upper bounds)
UPCOMING_WINDOW_DAYS = 30
ADVANCE_WINDOW_DAYS = 60

MIN_PASSWORD_LENGTH = 6
MIN_USERNAME_LENGTH = 3

AVATAR_URL_TEMPLATE = "https://ui-avatars.com/api/?name={name}&background=3b82f6&color=fff"

UNKNOWN_OWNER_NAME = "Unknown User"
