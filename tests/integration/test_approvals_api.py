"""Tests for the HTTP API."""

from uuid import uuid4

import pytest

from approvalflow.api.main import status_code_for
from approvalflow.core.errors import (
    DuplicateSubmissionError,
    InsufficientPermissionError,
    InvalidInputError,
    NoEligibleStepError,
    NoMatchingWorkflowError,
    RequestNotFoundError,
    RequestNotPendingError,
)
from approvalflow.core.rbac.roles import ADMIN_PERMISSIONS, REQUESTER_PERMISSIONS, VIEWER_PERMISSIONS

from tests.factories import users_spec

pytestmark = [pytest.mark.db, pytest.mark.integration]


@pytest.fixture
def org(org_factory):
    return org_factory()


@pytest.fixture
def requester(org, role_factory, user_factory):
    return user_factory(org=org, role=role_factory(org=org, permissions=list(REQUESTER_PERMISSIONS)))


@pytest.fixture
def approver(org, user_factory):
    return user_factory(org=org)


@pytest.fixture
def workflow(org, approver, workflow_factory):
    return workflow_factory(org=org, steps=[{"approver_spec": users_spec(approver)}])


@pytest.fixture
def submitted(client, auth_headers, requester, workflow):
    response = client.post(
        "/api/approvals/submit",
        json={"entity_type": "expense", "entity_id": "EXP-1", "entity_snapshot": {"amount": 120}},
        headers=auth_headers(requester),
    )
    assert response.status_code == 201
    return response.json()


class TestErrorMapping:

    @pytest.mark.parametrize("error,expected", [
        (RequestNotFoundError(uuid4()), 404),
        (InvalidInputError("bad"), 400),
        (NoMatchingWorkflowError(uuid4(), "expense"), 422),
        (RequestNotPendingError(uuid4(), "approved"), 409),
        (NoEligibleStepError(uuid4(), uuid4()), 409),
        (InsufficientPermissionError(uuid4(), "expense"), 403),
        (DuplicateSubmissionError("expense", "EXP-1"), 409),
    ])
    def test_status_codes(self, error, expected):
        assert status_code_for(error) == expected


class TestAuthentication:

    def test_missing_token(self, client):
        assert client.get("/api/approvals").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/api/approvals", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_inactive_user(self, client, auth_headers, org, user_factory):
        user = user_factory(org=org, is_active=False)
        assert client.get("/api/approvals", headers=auth_headers(user)).status_code == 401

    def test_missing_permission(self, client, auth_headers, org, role_factory, user_factory):
        viewer = user_factory(org=org, role=role_factory(org=org, permissions=list(VIEWER_PERMISSIONS)))
        response = client.post(
            "/api/approvals/submit",
            json={"entity_type": "expense", "entity_id": "EXP-1"},
            headers=auth_headers(viewer),
        )
        assert response.status_code == 403


class TestApprovalEndpoints:

    def test_submit(self, submitted, workflow):
        assert submitted["status"] == "pending"
        assert submitted["workflow_id"] == str(workflow.id)
        assert submitted["approver_count"] == 1

    def test_duplicate_submit(self, client, auth_headers, requester, submitted):
        response = client.post(
            "/api/approvals/submit",
            json={"entity_type": "expense", "entity_id": "EXP-1"},
            headers=auth_headers(requester),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_submission"

    def test_submit_without_workflow(self, client, auth_headers, requester, workflow):
        response = client.post(
            "/api/approvals/submit",
            json={"entity_type": "invoice", "entity_id": "INV-1"},
            headers=auth_headers(requester),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "no_matching_workflow"

    def test_submit_with_broken_conditions(
        self, client, auth_headers, org, approver, requester, workflow, workflow_factory
    ):
        workflow_factory(
            org=org,
            priority=10,
            conditions={"field": "amount", "operator": "between"},
            steps=[{"approver_spec": users_spec(approver)}],
        )

        response = client.post(
            "/api/approvals/submit",
            json={"entity_type": "expense", "entity_id": "EXP-1", "entity_snapshot": {"amount": 3}},
            headers=auth_headers(requester),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_condition"
        assert client.get("/api/approvals", headers=auth_headers(approver)).json()["items"] == []

    def test_inbox_and_approve(self, client, auth_headers, approver, submitted):
        inbox = client.get("/api/approvals", headers=auth_headers(approver))
        assert inbox.status_code == 200
        assert [item["id"] for item in inbox.json()["items"]] == [submitted["request_id"]]

        response = client.post(
            f"/api/approvals/{submitted['request_id']}/approve",
            json={"comments": "ok"},
            headers=auth_headers(approver),
        )
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "request_id": submitted["request_id"],
            "status": "approved",
            "current_step": 1,
        }

    def test_approve_without_a_step(self, client, auth_headers, requester, submitted):
        response = client.post(
            f"/api/approvals/{submitted['request_id']}/approve", headers=auth_headers(requester)
        )
        assert response.status_code == 409
        assert response.json()["error"] == "no_eligible_step"

    def test_reject_then_approve(self, client, auth_headers, approver, submitted):
        url = f"/api/approvals/{submitted['request_id']}"
        assert client.post(f"{url}/reject", json={"comments": "no"}, headers=auth_headers(approver)).json()[
            "status"] == "rejected"

        response = client.post(f"{url}/approve", headers=auth_headers(approver))
        assert response.status_code == 409
        assert response.json()["error"] == "request_not_pending"

    def test_delegate(self, client, auth_headers, org, approver, user_factory, submitted):
        delegate = user_factory(org=org)
        url = f"/api/approvals/{submitted['request_id']}"

        response = client.post(
            f"{url}/delegate",
            json={"delegate_user_id": str(delegate.id), "comments": "away"},
            headers=auth_headers(approver),
        )
        assert response.status_code == 200
        assert client.post(f"{url}/approve", headers=auth_headers(delegate)).json()["status"] == "approved"

    def test_cancel(self, client, auth_headers, approver, requester, org, role_factory, user_factory, submitted):
        url = f"/api/approvals/{submitted['request_id']}/cancel"
        assert client.post(url, headers=auth_headers(approver)).status_code == 403

        admin = user_factory(org=org, role=role_factory(org=org, permissions=list(ADMIN_PERMISSIONS)))
        response = client.post(url, json={"comments": "closed"}, headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_detail_history_and_timeline(self, client, auth_headers, requester, approver, submitted):
        request_id = submitted["request_id"]
        client.post(f"/api/approvals/{request_id}/approve", headers=auth_headers(approver))

        detail = client.get(f"/api/approvals/{request_id}", headers=auth_headers(requester))
        assert detail.status_code == 200
        assert detail.json()["status"] == "approved"
        assert detail.json()["entity_snapshot"] == {"amount": 120}
        assert detail.json()["steps"][0]["approver_id"] == str(approver.id)

        history = client.get("/api/approvals/history/expense/EXP-1", headers=auth_headers(requester))
        assert [r["id"] for r in history.json()] == [request_id]

        timeline = client.get(f"/api/approvals/{request_id}/history", headers=auth_headers(requester))
        assert [t["transition"] for t in timeline.json()] == ["submit", "approve_step", "complete"]

    def test_unknown_request(self, client, auth_headers, requester):
        response = client.get(f"/api/approvals/{uuid4()}", headers=auth_headers(requester))
        assert response.status_code == 404
        assert response.json()["error"] == "request_not_found"

    def test_invalid_status_filter(self, client, auth_headers, approver):
        response = client.get("/api/approvals", params={"status": "stuck"}, headers=auth_headers(approver))
        assert response.status_code == 400


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"]["dialect"] == "sqlite"

    def test_root(self, client):
        assert "version" in client.get("/").json()
