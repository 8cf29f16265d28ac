"""Test Alembic migrations: upgrade, downgrade, and parity with the models.

Runs against a throwaway SQLite file so no server is needed.
"""

import os
import warnings

import pytest
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect

import approvalflow.db.models  # noqa: F401  (registers tables on Base.metadata)
from approvalflow.db.base import Base
from approvalflow.db.session import create_db_engine

ALEMBIC_INI = os.path.join(os.path.dirname(__file__), "..", "..", "alembic.ini")

EXPECTED_TABLES = {
    "organizations",
    "roles",
    "users",
    "approval_workflows",
    "workflow_steps",
    "approval_requests",
    "approval_steps",
    "approval_history",
}


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'migrations.db'}"


@pytest.fixture
def alembic_cfg(database_url):
    cfg = Config(ALEMBIC_INI)
    cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


@pytest.fixture
def upgraded(alembic_cfg, database_url):
    command.upgrade(alembic_cfg, "head")
    engine = create_db_engine(database_url, echo=False)
    yield engine
    engine.dispose()


@pytest.mark.integration
class TestMigrations:
    """Run upgrade, verify, downgrade, verify."""

    def test_config_loads_without_separator_warnings(self, alembic_cfg):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            script = ScriptDirectory.from_config(alembic_cfg)

        assert script.get_current_head() is not None
        assert not [w for w in caught if "path_separator" in str(w.message)]

    def test_upgrade_creates_all_tables(self, upgraded):
        tables = set(inspect(upgraded).get_table_names())
        assert EXPECTED_TABLES <= tables
        assert "alembic_version" in tables

    def test_tables_match_models(self, upgraded):
        inspector = inspect(upgraded)
        for name, table in Base.metadata.tables.items():
            migrated = {c["name"] for c in inspector.get_columns(name)}
            assert migrated == set(table.columns.keys()), name

    def test_pending_uniqueness_indexes(self, upgraded):
        inspector = inspect(upgraded)
        requests = {ix["name"]: ix for ix in inspector.get_indexes("approval_requests")}
        steps = {ix["name"]: ix for ix in inspector.get_indexes("approval_steps")}

        assert requests["uq_approval_requests_pending_entity"]["unique"]
        assert steps["uq_approval_steps_pending_approver"]["unique"]

    def test_downgrade_removes_tables(self, upgraded, alembic_cfg):
        command.downgrade(alembic_cfg, "base")
        tables = set(inspect(upgraded).get_table_names())
        assert not (EXPECTED_TABLES & tables)
