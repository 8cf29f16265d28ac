"""Tests for approval read models: inbox, detail, entity history, timeline."""

from uuid import uuid4

import pytest

from approvalflow.core.approval import ApprovalQueryService, ApprovalService
from approvalflow.core.errors import InvalidInputError, RequestNotFoundError

from tests.factories import users_spec

pytestmark = [pytest.mark.db, pytest.mark.integration]


@pytest.fixture
def org(org_factory):
    return org_factory()


@pytest.fixture
def people(org, user_factory):
    return {name: user_factory(org=org, name=name) for name in ("requester", "first", "second", "delegate")}


@pytest.fixture
def workflow(org, people, workflow_factory):
    return workflow_factory(org=org, steps=[
        {"approver_spec": users_spec(people["first"])},
        {"approver_spec": users_spec(people["second"])},
    ])


@pytest.fixture
def service(db_session, org, identity, notifier):
    return ApprovalService(db_session, org.id, identity, notifier)


@pytest.fixture
def queries(db_session, org):
    return ApprovalQueryService(db_session, org.id)


class TestListForApprover:
    """Tests for the approver inbox."""

    def test_inbox_follows_the_open_step(self, service, queries, people, workflow):
        request_id = service.submit("expense", "EXP-1", {}, people["requester"].id).request_id

        assert [r["id"] for r in queries.list_for_approver(people["first"].id)] == [str(request_id)]
        assert queries.list_for_approver(people["second"].id) == []

        service.approve(request_id, people["first"].id)

        assert queries.list_for_approver(people["first"].id) == []
        inbox = queries.list_for_approver(people["second"].id)
        assert inbox[0]["current_step"] == 2
        assert inbox[0]["total_steps"] == 2

    def test_delegated_steps_move_between_inboxes(self, service, queries, people, workflow):
        request_id = service.submit("expense", "EXP-1", {}, people["requester"].id).request_id
        service.delegate(request_id, people["first"].id, people["delegate"].id)

        assert queries.list_for_approver(people["first"].id) == []
        assert len(queries.list_for_approver(people["delegate"].id)) == 1

    def test_status_filter(self, service, queries, people, workflow):
        request_id = service.submit("expense", "EXP-1", {}, people["requester"].id).request_id
        service.approve(request_id, people["first"].id)
        service.approve(request_id, people["second"].id)

        for user in ("first", "second"):
            approved = queries.list_for_approver(people[user].id, status="APPROVED")
            assert [r["id"] for r in approved] == [str(request_id)]
        assert queries.list_for_approver(people["delegate"].id, status="approved") == []

    def test_unknown_status(self, queries, people):
        with pytest.raises(InvalidInputError):
            queries.list_for_approver(people["first"].id, status="stuck")

    def test_pagination(self, service, queries, people, workflow):
        for n in range(3):
            service.submit("expense", f"EXP-{n}", {}, people["requester"].id)

        first_page = queries.list_for_approver(people["first"].id, limit=2, offset=0)
        second_page = queries.list_for_approver(people["first"].id, limit=2, offset=2)

        assert len(first_page) == 2
        assert len(second_page) == 1
        ids = {r["id"] for r in first_page} | {r["id"] for r in second_page}
        assert len(ids) == 3


class TestRequestDetail:
    """Tests for request detail and history views."""

    def test_get_request(self, service, queries, people, workflow):
        request_id = service.submit("expense", "EXP-1", {"amount": 42}, people["requester"].id).request_id
        service.approve(request_id, people["first"].id, "fine")

        detail = queries.get_request(request_id)

        assert detail["status"] == "pending"
        assert detail["entity_snapshot"] == {"amount": 42}
        assert detail["requested_by"] == str(people["requester"].id)
        assert [(s["step_order"], s["status"], s["comments"]) for s in detail["steps"]] == [
            (1, "approved", "fine"),
            (2, "pending", None),
        ]
        assert detail["steps"][0]["action_at"] is not None

    def test_get_request_scoped_to_organization(self, db_session, org_factory, service, people, workflow):
        request_id = service.submit("expense", "EXP-1", {}, people["requester"].id).request_id
        other = ApprovalQueryService(db_session, org_factory().id)

        with pytest.raises(RequestNotFoundError):
            other.get_request(request_id)
        with pytest.raises(RequestNotFoundError):
            other.get_timeline(request_id)

    def test_unknown_request(self, queries):
        with pytest.raises(RequestNotFoundError):
            queries.get_request(uuid4())

    def test_entity_history(self, service, queries, people, workflow):
        first = service.submit("expense", "EXP-1", {}, people["requester"].id).request_id
        service.cancel(first, people["requester"].id)
        second = service.submit("expense", "EXP-1", {}, people["requester"].id).request_id
        service.submit("expense", "EXP-2", {}, people["requester"].id)

        history = queries.get_entity_history("expense", "EXP-1")

        assert {(r["id"], r["status"]) for r in history} == {
            (str(first), "cancelled"),
            (str(second), "pending"),
        }
        assert queries.get_entity_history("expense", "EXP-404") == []

    def test_timeline(self, service, queries, people, workflow):
        request_id = service.submit("expense", "EXP-1", {}, people["requester"].id).request_id
        service.reject(request_id, people["first"].id, "duplicate")

        timeline = queries.get_timeline(request_id)

        assert [(t["sequence"], t["transition"], t["to_state"]) for t in timeline] == [
            (0, "submit", "pending"),
            (1, "reject", "rejected"),
        ]
        assert timeline[1]["comment"] == "duplicate"
        assert timeline[1]["user_id"] == str(people["first"].id)
        assert timeline[0]["metadata"]["approvers"] == [str(people["first"].id)]
