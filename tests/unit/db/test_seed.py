"""Tests for seeding roles, organizations and workflow definitions."""

import io

import pytest

from approvalflow.core.errors import InvalidApproverSpecError, InvalidConditionError, InvalidInputError
from approvalflow.db.models import ApprovalWorkflow, Role
from approvalflow.db.seed import (
    get_role_by_name,
    load_workflow_definitions,
    seed_default_roles,
    seed_organization,
    seed_workflows,
)

WORKFLOWS_YAML = """
workflows:
  - name: Large expenses
    entity_type: expense
    priority: 10
    conditions: {field: amount, operator: gte, value: 10000}
    steps:
      - name: Finance review
        approvers: {type: role, role: Approver}
        quorum: all
      - name: Director sign-off
        approvers: {type: requester_manager, levels: 2}
        type: single
  - name: Default expenses
    entityType: expense
    steps:
      - approvers: {type: entity_field, field: owner_id}
        type: parallel
        minApprovals: 2
"""


def _load(text):
    return load_workflow_definitions(io.StringIO(text))


class TestLoadWorkflowDefinitions:
    """Tests for parsing workflow YAML."""

    def test_load_definitions(self):
        """Test both workflows and their steps are parsed and normalized."""
        large, default = _load(WORKFLOWS_YAML)

        assert large.name == "Large expenses"
        assert large.priority == 10
        assert large.conditions == {"field": "amount", "operator": "gte", "value": 10000}
        assert [s.step_order for s in large.steps] == [1, 2]
        assert large.steps[0].quorum is None
        assert large.steps[1].quorum == 1
        assert large.steps[1].approver_spec == {"type": "requester_manager", "levels": 2}

        assert default.entity_type == "expense"
        assert default.conditions is None
        assert default.steps[0].quorum == 2

    def test_bare_list_document(self):
        """Test a top-level list is accepted."""
        definitions = _load("- name: W\n  entity_type: invoice\n  steps:\n    - approvers: {type: role, role: AP}\n")
        assert definitions[0].entity_type == "invoice"

    def test_explicit_step_orders_are_sorted(self):
        """Test steps are ordered by their declared order."""
        text = """
- name: W
  entity_type: expense
  steps:
    - {order: 2, approvers: {type: role, role: B}}
    - {order: 1, approvers: {type: role, role: A}}
"""
        steps = _load(text)[0].steps
        assert [s.approver_spec["role"] for s in steps] == ["A", "B"]

    @pytest.mark.parametrize("text", [
        "workflows: {}",
        "- just a string",
        "- {name: W, steps: [{approvers: {type: role, role: A}}]}",
        "- {name: W, entity_type: expense, steps: []}",
        "- {name: W, entity_type: expense, priority: high, steps: [{approvers: {type: role, role: A}}]}",
        "- {name: W, entity_type: expense, steps: [{order: 1, approvers: {type: role, role: A}},"
        " {order: 1, approvers: {type: role, role: B}}]}",
    ])
    def test_structural_errors(self, text):
        """Test malformed documents are rejected."""
        with pytest.raises(InvalidInputError):
            _load(text)

    def test_invalid_approver_spec(self):
        with pytest.raises(InvalidApproverSpecError):
            _load("- {name: W, entity_type: expense, steps: [{approvers: {type: robots}}]}")

    def test_invalid_conditions(self):
        with pytest.raises(InvalidConditionError):
            _load("- {name: W, entity_type: expense, conditions: {field: a, operator: between},"
                  " steps: [{approvers: {type: role, role: A}}]}")

    def test_load_from_path(self, tmp_path):
        """Test loading definitions from a file on disk."""
        path = tmp_path / "workflows.yaml"
        path.write_text(WORKFLOWS_YAML, encoding="utf-8")
        assert len(load_workflow_definitions(path)) == 2


@pytest.mark.db
class TestSeeding:
    """Tests for writing seed data."""

    def test_seed_organization_creates_default_roles(self, db_session):
        org = seed_organization(db_session, "Acme", "acme-seed")

        names = {r.name for r in db_session.query(Role).filter(Role.org_id == org.id)}
        assert names == {"Admin", "Approver", "Requester", "Viewer"}
        assert get_role_by_name(db_session, org.id, "Approver").is_system

    def test_seeding_is_idempotent(self, db_session):
        org = seed_organization(db_session, "Acme", "acme-idem")
        assert seed_organization(db_session, "Other", "acme-idem").id == org.id

        roles = seed_default_roles(db_session, org.id)
        assert db_session.query(Role).filter(Role.org_id == org.id).count() == 4
        assert roles["admin"].permissions == ["*:*"]

    def test_seed_workflows(self, db_session, org_factory):
        org = org_factory()
        definitions = _load(WORKFLOWS_YAML)

        created = seed_workflows(db_session, org.id, definitions)
        again = seed_workflows(db_session, org.id, definitions)

        assert [w.id for w in created] == [w.id for w in again]
        assert db_session.query(ApprovalWorkflow).filter(ApprovalWorkflow.org_id == org.id).count() == 2

        large = created[0]
        db_session.refresh(large)
        assert [(s.step_order, s.quorum) for s in large.steps] == [(1, None), (2, 1)]
