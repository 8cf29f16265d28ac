"""Tests for approver spec parsing and resolution."""

from uuid import uuid4

import pytest

from approvalflow.core.approval.resolver import (
    ApproverResolver,
    EntityContext,
    EntityField,
    RequesterManager,
    RoleMembers,
    StaticUsers,
    parse_approver_spec,
)
from approvalflow.core.errors import InvalidApproverSpecError, NoEligibleApproversError
from approvalflow.db.models import WorkflowStep
from approvalflow.services.identity import IdentityService


class FakeIdentity(IdentityService):
    """In-memory identity directory."""

    def __init__(self, active=(), roles=None, managers=None):
        self.active = set(active)
        self.roles = roles or {}
        self.managers = managers or {}
        self.calls = []

    def authorize(self, user_id, org_id, entity_type):
        return user_id in self.active

    def role_members(self, org_id, role):
        self.calls.append(("role_members", role))
        return set(self.roles.get(role, ()))

    def managers_of(self, user_id, org_id, levels=1):
        return list(self.managers.get(user_id, []))[:levels]

    def active_users(self, org_id, user_ids):
        return {u for u in user_ids if u in self.active}


def _step(spec, order=1):
    return WorkflowStep(workflow_id=uuid4(), step_order=order, approver_spec=spec)


def _context(snapshot=None, requested_by=None):
    return EntityContext("expense", "EXP-1", snapshot or {}, requested_by or uuid4())


class TestParseApproverSpec:

    def test_users_spec(self):
        a, b = uuid4(), uuid4()
        spec = parse_approver_spec({"type": "users", "user_ids": [str(a), b]})
        assert spec == StaticUsers(user_ids=(a, b))

    def test_role_spec(self):
        assert parse_approver_spec({"type": "role", "role": "Finance"}) == RoleMembers("Finance")

    def test_entity_field_spec(self):
        assert parse_approver_spec({"type": "entity_field", "field": "owner_id"}) == EntityField("owner_id")

    def test_requester_manager_defaults_to_one_level(self):
        assert parse_approver_spec({"type": "requester_manager"}) == RequesterManager(levels=1)

    @pytest.mark.parametrize("data", [
        None,
        {"type": "robot"},
        {"type": "users", "user_ids": []},
        {"type": "users", "user_ids": ["not-a-uuid"]},
        {"type": "role", "role": "  "},
        {"type": "entity_field"},
        {"type": "requester_manager", "levels": 0},
    ])
    def test_invalid_specs(self, data):
        with pytest.raises(InvalidApproverSpecError):
            parse_approver_spec(data)


class TestApproverResolver:

    def test_static_users_filtered_to_active_members(self):
        a, b, inactive = uuid4(), uuid4(), uuid4()
        resolver = ApproverResolver(FakeIdentity(active=[a, b]))

        step = _step({"type": "users", "user_ids": [str(a), str(b), str(inactive), str(a)]})
        assert resolver.resolve(step, uuid4(), _context()) == frozenset({a, b})

    def test_role_members_resolved_at_call_time(self):
        a, b = uuid4(), uuid4()
        identity = FakeIdentity(active=[a, b], roles={"Finance": [a]})
        resolver = ApproverResolver(identity)
        step = _step({"type": "role", "role": "Finance"})

        assert resolver.resolve(step, uuid4(), _context()) == frozenset({a})
        identity.roles["Finance"] = [a, b]
        assert resolver.resolve(step, uuid4(), _context()) == frozenset({a, b})
        assert identity.calls == [("role_members", "Finance")] * 2

    def test_entity_field_single_and_list(self):
        a, b = uuid4(), uuid4()
        resolver = ApproverResolver(FakeIdentity(active=[a, b]))

        single = _step({"type": "entity_field", "field": "owner_id"})
        assert resolver.resolve(single, uuid4(), _context({"owner_id": str(a)})) == frozenset({a})

        many = _step({"type": "entity_field", "field": "reviewers"})
        snapshot = {"reviewers": [str(a), "garbage", str(b)]}
        assert resolver.resolve(many, uuid4(), _context(snapshot)) == frozenset({a, b})

    def test_requester_manager_chain(self):
        requester, manager, director = uuid4(), uuid4(), uuid4()
        identity = FakeIdentity(active=[manager, director], managers={requester: [manager, director]})
        resolver = ApproverResolver(identity)

        step = _step({"type": "requester_manager", "levels": 2})
        result = resolver.resolve(step, uuid4(), _context(requested_by=requester))
        assert result == frozenset({manager, director})

    def test_empty_resolution_is_an_error(self):
        resolver = ApproverResolver(FakeIdentity(active=[]))
        step = _step({"type": "entity_field", "field": "owner_id"}, order=3)

        with pytest.raises(NoEligibleApproversError) as exc_info:
            resolver.resolve(step, uuid4(), _context({}))
        assert exc_info.value.step_order == 3
        assert exc_info.value.workflow_id == step.workflow_id
