"""
End-to-end checks against a real PostgreSQL server in a container.
Set RUN_DOCKER_TESTS=1 to run them.
"""

import os

import psycopg2
import pytest

from schema_sync.domain.entities.evolution import BootstrapRequired, ExecutionState
from schema_sync.domain.services.bootstrap import render_bootstrap_sql
from schema_sync.infrastructure.database.connector import PostgresConnector
from schema_sync.infrastructure.di_container import DIContainer
from schema_sync.infrastructure.executors.destructive_executor import CONFIRMATION_PHRASE
from tests.fixtures.test_data import FULL_REFERENCE_SQL

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_DOCKER_TESTS") != "1", reason="set RUN_DOCKER_TESTS=1 to run container tests"
)


@pytest.fixture(scope="session")
def postgres_container():
    """Start PostgreSQL container for testing."""
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:15") as postgres:
        yield postgres


@pytest.fixture(scope="session")
def dsn(postgres_container):
    return (
        f"host={postgres_container.get_container_host_ip()} "
        f"port={postgres_container.get_exposed_port(5432)} "
        f"user={postgres_container.username} password={postgres_container.password} "
        f"dbname={postgres_container.dbname}"
    )


@pytest.fixture
def clean_database(dsn):
    """Ensure clean database for each test."""
    conn = psycopg2.connect(dsn)
    conn.autocommit = True
    with conn.cursor() as cur:
        cur.execute("DROP SCHEMA public CASCADE; CREATE SCHEMA public;")
        for role in ("app_user", "authenticated"):
            cur.execute("SELECT 1 FROM pg_roles WHERE rolname = %s", (role,))
            if cur.fetchone():
                cur.execute(f"DROP OWNED BY {role}; DROP ROLE {role};")
    yield conn
    conn.close()


def _orchestrator(dsn):
    return DIContainer().configure(
        reference_text=FULL_REFERENCE_SQL,
        tenants={"tenant-a": dsn},
        history_dsn=dsn,
    ).get_orchestrator()


def test_bootstrap_then_converge(clean_database, dsn):
    """Test the full lifecycle against an empty tenant."""
    orchestrator = _orchestrator(dsn)

    # Without the application role the engine only hands out bootstrap SQL.
    outcome = orchestrator.create_plan("tenant-a")
    assert isinstance(outcome, BootstrapRequired)

    with clean_database.cursor() as cur:
        cur.execute(outcome.bootstrap_sql)
        cur.execute("CREATE ROLE authenticated NOLOGIN;")

    plan = orchestrator.create_plan("tenant-a").plan
    assert plan.summary_counts == {"SAFE": 10, "CAUTION": 1, "DESTRUCTIVE": 0}

    safe = orchestrator.apply_safe("tenant-a", plan.plan_id)
    assert safe.result.state == ExecutionState.COMMITTED

    destructive = orchestrator.apply_destructive("tenant-a", plan.plan_id, CONFIRMATION_PHRASE)
    assert destructive.result.state == ExecutionState.COMMITTED

    assert orchestrator.create_plan("tenant-a").plan.changes == []
    statuses = [r.status.value for r in orchestrator.fetch_history("tenant-a")]
    assert statuses[:3] == ["planned", "destructive_applied", "safe_applied"]


def test_bootstrap_sql_is_rerunnable(clean_database):
    """Test that the bootstrap script can run twice."""
    sql = render_bootstrap_sql()
    with clean_database.cursor() as cur:
        cur.execute(sql)
        cur.execute(sql)
        cur.execute("SELECT 1 FROM pg_roles WHERE rolname = 'app_user'")
        assert cur.fetchone() is not None


def test_connector_reports_catalog(clean_database, dsn):
    """Test that the connector reads tables from the catalog."""
    with clean_database.cursor() as cur:
        cur.execute("CREATE TABLE public.students (id uuid PRIMARY KEY, first_name text NOT NULL);")

    rows = PostgresConnector(dsn).fetch_catalog("public")

    assert [t["name"] for t in rows.tables] == ["students"]
    assert {c["name"] for c in rows.columns} == {"id", "first_name"}
