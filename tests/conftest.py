"""Pytest configuration and shared fixtures.

Tests run against an in-memory SQLite database. Each test gets a session
bound to a connection whose outer transaction is rolled back afterwards,
so data never leaks between tests; service-level SAVEPOINTs and the
routers' commits stay inside that transaction.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import approvalflow.db.models  # noqa: F401  (registers tables on Base.metadata)
from approvalflow.core.security import create_access_token
from approvalflow.db.base import Base
from approvalflow.db.session import create_db_engine
from approvalflow.services.identity import DirectoryIdentityService
from approvalflow.services.notifications import RecordingNotifier

from tests.factories import create_organization, create_role, create_user, create_workflow


@pytest.fixture(scope="session")
def engine():
    engine = create_db_engine("sqlite://", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    """Session whose work is rolled back after the test."""
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint")
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


# ---------------------------------------------------------------------------
# Factory fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def org_factory(db_session):
    def _create(**kwargs):
        return create_organization(db_session, **kwargs)
    return _create


@pytest.fixture()
def role_factory(db_session):
    def _create(**kwargs):
        return create_role(db_session, **kwargs)
    return _create


@pytest.fixture()
def user_factory(db_session):
    def _create(**kwargs):
        return create_user(db_session, **kwargs)
    return _create


@pytest.fixture()
def workflow_factory(db_session):
    def _create(**kwargs):
        return create_workflow(db_session, **kwargs)
    return _create


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture()
def identity(db_session):
    return DirectoryIdentityService(db_session)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture()
def client(db_session):
    from approvalflow.api.deps import get_db
    from approvalflow.api.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    """Build bearer headers for a user."""
    def _headers(user):
        token = create_access_token(user.id, user.org_id)
        return {"Authorization": f"Bearer {token}"}
    return _headers
