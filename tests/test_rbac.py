import pytest

from app.contacthub.models import User
from app.contacthub.rbac import (
    ROLE_CAPABILITIES,
    can_delete_contact,
    can_edit_contact,
    capabilities_for,
    contact_actions,
    user_has_permission,
)

OWN = {"id": 1, "owner_id": 10}
OTHER = {"id": 2, "owner_id": 99}


@pytest.mark.parametrize(
    "role,edit_own,edit_other,delete",
    [
        ("user", True, False, False),
        ("admin", True, True, False),
        ("superadmin", True, True, True),
    ],
)
def test_contact_permission_matrix(role, edit_own, edit_other, delete):
    u = User(id=10, role=role)
    assert can_edit_contact(u, OWN) is edit_own
    assert can_edit_contact(u, OTHER) is edit_other
    assert can_delete_contact(u) is delete


def test_actions_follow_the_matrix():
    assert contact_actions(User(id=10, role="user"), OWN) == {"edit"}
    assert contact_actions(User(id=10, role="user"), OTHER) == set()
    assert contact_actions(User(id=10, role="superadmin"), OTHER) == {"edit", "delete"}


def test_anonymous_and_unknown_roles_have_nothing():
    assert capabilities_for(None) == frozenset()
    assert capabilities_for(User(id=1, role="owner")) == frozenset()
    assert not can_edit_contact(None, OWN)
    assert contact_actions(None, OWN) == set()


def test_user_management_is_admin_and_above():
    assert not user_has_permission(User(id=1, role="user"), "users.view")
    assert user_has_permission(User(id=1, role="admin"), "users.create")
    assert not user_has_permission(User(id=1, role="admin"), "users.delete")
    assert user_has_permission(User(id=1, role="superadmin"), "users.grant_superadmin")


def test_roles_are_nested():
    assert ROLE_CAPABILITIES["user"] < ROLE_CAPABILITIES["admin"] < ROLE_CAPABILITIES["superadmin"]
