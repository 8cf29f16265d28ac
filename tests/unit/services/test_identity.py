"""Tests for the directory-backed identity service."""

from uuid import uuid4

import pytest

from approvalflow.core.rbac.roles import REQUESTER_PERMISSIONS

pytestmark = pytest.mark.db


@pytest.fixture
def org(org_factory):
    return org_factory()


class TestAuthorize:

    def test_approver_role_may_act_on_any_entity_type(self, identity, org, user_factory):
        user = user_factory(org=org)
        assert identity.authorize(user.id, org.id, "expense")
        assert identity.authorize(user.id, org.id, "purchase_order")

    def test_entity_specific_permission(self, identity, org, role_factory, user_factory):
        role = role_factory(org=org, permissions=["expense:approve"])
        user = user_factory(org=org, role=role)
        assert identity.authorize(user.id, org.id, "expense")
        assert not identity.authorize(user.id, org.id, "invoice")

    def test_requester_cannot_approve(self, identity, org, role_factory, user_factory):
        role = role_factory(org=org, permissions=list(REQUESTER_PERMISSIONS))
        user = user_factory(org=org, role=role)
        assert not identity.authorize(user.id, org.id, "expense")

    def test_inactive_or_foreign_users_denied(self, identity, org, org_factory, user_factory):
        inactive = user_factory(org=org, is_active=False)
        outsider = user_factory(org=org_factory())
        assert not identity.authorize(inactive.id, org.id, "expense")
        assert not identity.authorize(outsider.id, org.id, "expense")
        assert not identity.authorize(uuid4(), org.id, "expense")


class TestDirectoryLookups:

    def test_role_members(self, identity, org, role_factory, user_factory):
        finance = role_factory(org=org, name="Finance")
        a = user_factory(org=org, role=finance)
        b = user_factory(org=org, role=finance)
        user_factory(org=org, role=finance, is_active=False)
        user_factory(org=org)

        assert identity.role_members(org.id, "Finance") == {a.id, b.id}
        assert identity.role_members(org.id, "Nobody") == set()

    def test_managers_of_walks_the_chain(self, identity, org, user_factory):
        director = user_factory(org=org)
        manager = user_factory(org=org, manager=director)
        employee = user_factory(org=org, manager=manager)

        assert identity.managers_of(employee.id, org.id) == [manager.id]
        assert identity.managers_of(employee.id, org.id, levels=3) == [manager.id, director.id]
        assert identity.managers_of(director.id, org.id) == []

    def test_managers_of_skips_inactive_managers(self, identity, org, user_factory):
        director = user_factory(org=org)
        manager = user_factory(org=org, manager=director, is_active=False)
        employee = user_factory(org=org, manager=manager)

        assert identity.managers_of(employee.id, org.id, levels=2) == [director.id]

    def test_active_users(self, identity, org, org_factory, user_factory):
        active = user_factory(org=org)
        inactive = user_factory(org=org, is_active=False)
        outsider = user_factory(org=org_factory())

        assert identity.active_users(org.id, [active.id, inactive.id, outsider.id, uuid4()]) == {active.id}
        assert identity.active_users(org.id, []) == set()
        assert identity.is_valid_user(active.id, org.id)
        assert not identity.is_valid_user(inactive.id, org.id)
