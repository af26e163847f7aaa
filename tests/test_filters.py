"""
Unit tests for the contact and changelog filter predicates.
"""
from datetime import datetime
from itertools import permutations

from app.contacthub.modules.changelog.filters import (
    ChangelogFilters,
    apply_changelog_filters,
    sort_entries,
    window_start,
)
from app.contacthub.modules.contacts.filters import ContactFilters, apply_contact_filters, has_active_filters

CONTACTS = [
    {"id": 1, "first_name": "Ann", "last_name": "Lee", "company": "Acme Corp", "owner_name": "Alice Agent", "phone": "0917-111", "birthday": "1990-01-15"},
    {"id": 2, "first_name": "Ben", "last_name": "Ong", "company": "Acme Corp", "owner_name": "Bob Agent", "phone": "0917-222", "birthday": "1985-06-30"},
    {"id": 3, "first_name": "Cid", "last_name": "Tan", "company": "Globex", "owner_name": "Alice Agent", "phone": "0999-333", "birthday": "2001-12-01"},
    {"id": 4, "first_name": "Dee", "last_name": "Uy", "company": "globex", "owner_name": "Bob Agent", "phone": "", "birthday": "garbage"},
]


def _ids(rows):
    return [r["id"] for r in rows]


class TestContactFilters:
    def test_no_filters_keeps_everything(self):
        f = ContactFilters()
        assert not has_active_filters(f)
        assert _ids(apply_contact_filters(CONTACTS, f)) == [1, 2, 3, 4]

    def test_search_matches_any_field_case_insensitive(self):
        assert _ids(apply_contact_filters(CONTACTS, ContactFilters(search="ONG"))) == [2]
        assert _ids(apply_contact_filters(CONTACTS, ContactFilters(search="alice"))) == [1, 3]

    def test_field_substrings(self):
        assert _ids(apply_contact_filters(CONTACTS, ContactFilters(company="GLOB"))) == [3, 4]
        assert _ids(apply_contact_filters(CONTACTS, ContactFilters(phone="0917"))) == [1, 2]
        assert _ids(apply_contact_filters(CONTACTS, ContactFilters(owner="bob"))) == [2, 4]

    def test_birthday_range_defaults_and_bad_dates(self):
        f = ContactFilters(birthday_from="1986-01-01")
        assert has_active_filters(f)
        # open upper bound defaults to 2100-12-31; unparsable birthdays fail an active range
        assert _ids(apply_contact_filters(CONTACTS, f)) == [1, 3]
        assert _ids(apply_contact_filters(CONTACTS, ContactFilters(birthday_to="1990-01-15"))) == [1, 2]

    def test_from_args_ignores_unknown_keys(self):
        f = ContactFilters.from_args({"company": " acme ", "scope": "personal"})
        assert f == ContactFilters(company="acme")

    def test_filters_are_order_independent(self):
        single = [ContactFilters(company="acme"), ContactFilters(owner="alice"), ContactFilters(phone="0917")]
        combined = ContactFilters(company="acme", owner="alice", phone="0917")
        expected = _ids(apply_contact_filters(CONTACTS, combined))
        assert expected == [1]
        for order in permutations(single):
            rows = CONTACTS
            for f in order:
                rows = apply_contact_filters(rows, f)
            assert _ids(rows) == expected


NOW = datetime(2025, 3, 31, 12, 0, 0)

ENTRIES = [
    {"id": 1, "timestamp": "2025-03-30T10:00:00", "user_name": "Alice Agent", "user_role": "user", "action": "create", "entity": "contact", "entity_name": "Ann Lee", "description": "Created contact Ann Lee", "details": ""},
    {"id": 2, "timestamp": "2025-03-10T10:00:00", "user_name": "Bea Boss", "user_role": "admin", "action": "update", "entity": "user", "entity_name": "Alice Agent", "description": "Updated user Alice Agent", "details": "Changed: position"},
    {"id": 3, "timestamp": "2024-06-01T10:00:00", "user_name": "Root Super", "user_role": "superadmin", "action": "delete", "entity": "contact", "entity_name": "Old One", "description": "Deleted contact Old One", "details": "Owner: Bob Agent"},
    {"id": 4, "timestamp": "2023-01-01T10:00:00", "user_name": "Alice Agent", "user_role": "user", "action": "login", "entity": "system", "entity_name": "Alice Agent", "description": "Alice Agent logged in", "details": ""},
]


class TestChangelogFilters:
    def test_time_windows(self):
        assert window_start("week", NOW) == datetime(2025, 3, 24, 12, 0, 0)
        # Mar 31 minus one month clamps to Feb 28
        assert window_start("month", NOW) == datetime(2025, 2, 28)
        assert window_start("year", NOW) == datetime(2024, 3, 31)
        assert window_start("all", NOW) is None

        def ids(window):
            return _ids(apply_changelog_filters(ENTRIES, ChangelogFilters(time_window=window), now=NOW))

        assert ids("week") == [1]
        assert ids("month") == [1, 2]
        assert ids("year") == [1, 2, 3]
        assert ids("all") == [1, 2, 3, 4]

    def test_action_entity_and_text_fields(self):
        def ids(**kw):
            return _ids(apply_changelog_filters(ENTRIES, ChangelogFilters(**kw), now=NOW))

        assert ids(action="delete") == [3]
        assert ids(entity="contact") == [1, 3]
        assert ids(user="admin") == [2, 3]  # role match, "superadmin" contains "admin"
        assert ids(user="alice") == [1, 4]
        assert ids(description="created") == [1]
        assert ids(details="owner") == [3]
        assert ids(search="bob") == [3]

    def test_active_labels(self):
        f = ChangelogFilters.from_args({"search": "ann", "action": "create", "time_window": "century"})
        assert f.time_window == "all"
        assert f.active_labels() == ['Search: "ann"', "Action: create"]

    def test_sort(self):
        assert _ids(sort_entries(list(ENTRIES))) == [1, 2, 3, 4]
        assert _ids(sort_entries(list(ENTRIES), field="timestamp", order="asc")) == [4, 3, 2, 1]
        assert _ids(sort_entries(list(ENTRIES), field="user_name", order="asc"))[:2] == [1, 4]
        # unknown sort fields fall back to timestamp
        assert _ids(sort_entries(list(ENTRIES), field="password")) == [1, 2, 3, 4]
