"""
Pytest configuration and fixtures for policy-warehouse tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import io
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator

import psycopg
import pytest
from testcontainers.postgres import PostgresContainer

from policy_warehouse.config import OrchestratorSettings, PipelineConfig
from policy_warehouse.core.schema import SchemaRegistry
from policy_warehouse.ingestion import IngestionLoader
from policy_warehouse.transform import TransformEngine
from policy_warehouse.warehouse import TABLES, InMemoryTableStore
from policy_warehouse.warehouse.connection import DatabaseConnectionPool
from policy_warehouse.warehouse.postgres_store import PostgresTableStore

REPO_ROOT = Path(__file__).resolve().parent.parent

POLICIES_HEADER = (
    "policy_id,customer_id,product_type,policy_start_date,policy_end_date,"
    "monthly_premium,sum_assured,insured_latitude,insured_longitude"
)
CLAIMS_HEADER = (
    "claim_id,policy_id,claim_type,claim_date,claim_amount,claim_status,"
    "loss_latitude,loss_longitude"
)

POLICIES_CSV = "\n".join(
    [
        POLICIES_HEADER,
        "POL001,CUST001,funeral,2023-01-01,,100.00,50000.00,-26.2041,28.0473",
        "POL002,CUST002,LIFE,2023-02-01,NULL,200.00,1000000.00,-33.9249,18.4241",
        "POL003,CUST003,RA,2023-03-01,2033-03-01,150.00,0,-29.8587,31.0218",
    ]
) + "\n"

CLAIMS_CSV = "\n".join(
    [
        CLAIMS_HEADER,
        "CLM001,POL001,death,2024-01-10,50000.00,approved,-26.2041,28.0473",
        "CLM002,POL002,death,2024-02-11,100000.00,approved,-33.9249,18.4241",
        "CLM003,POL001,death,2024-03-12,50000.00,pending,-26.2041,28.0473",
    ]
) + "\n"

LATE_POLICIES_CSV = "\n".join(
    [
        POLICIES_HEADER,
        "POL004,CUST004,LIFE,2023-04-01,,120.00,80000.00,-26.2041,28.0473",
        "POL005,CUST005,LIFE,2023-05-01,,130.00,90000.00,-26.2041,28.0473",
        "POL006,CUST006,RA,2023-06-01,,140.00,0,-29.8587,31.0218",
    ]
) + "\n"


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# ENGINE FIXTURES
# =======================

@pytest.fixture(scope="function")
def memory_store() -> InMemoryTableStore:
    """Fresh in-process table store"""
    return InMemoryTableStore(lock_timeout=5.0)


@pytest.fixture(scope="function")
def registry() -> SchemaRegistry:
    """Registry with the policies and claims schemas"""
    return SchemaRegistry.with_defaults()


@pytest.fixture(scope="function")
def pipeline_config() -> PipelineConfig:
    """
    Default configuration with fast retries for tests

    Returns:
        PipelineConfig with no retry delay and a short stage timeout
    """
    return PipelineConfig(
        orchestrator=OrchestratorSettings(
            stage_timeout_seconds=30,
            stage_retries=2,
            retry_delay_seconds=0,
        )
    )


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture(scope="function")
def write_csv(tmp_path) -> Callable[[str, str], Path]:
    """
    Factory writing CSV text to a file under tmp_path

    Returns:
        Callable (name, content) -> Path
    """
    def _write(name: str, content: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture(scope="function")
def landing_dir(tmp_path) -> Path:
    """
    Landing directory holding the policies and claims scenario files

    Layout: <landing>/policies/policies.csv, <landing>/claims/claims.csv
    """
    root = tmp_path / "landing"
    (root / "policies").mkdir(parents=True)
    (root / "claims").mkdir(parents=True)
    (root / "policies" / "policies.csv").write_text(POLICIES_CSV, encoding="utf-8")
    (root / "claims" / "claims.csv").write_text(CLAIMS_CSV, encoding="utf-8")
    return root


@pytest.fixture(scope="function")
def config_file(tmp_path) -> Path:
    """Pipeline YAML with fast retries and the repository schemas"""
    path = tmp_path / "pipeline.yaml"
    path.write_text(
        "orchestrator:\n"
        "  retry_delay_seconds: 0\n"
        "  stage_retries: 1\n"
        f"schemas_path: {REPO_ROOT / 'config' / 'schemas.yaml'}\n",
        encoding="utf-8",
    )
    return path


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance with initialized database
    """
    container = PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_policy_warehouse",
        driver=None,
    )
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        init_sql = (REPO_ROOT / "docker" / "init-db.sql").read_text()
        with psycopg.connect(container.get_connection_url()) as conn:
            with conn.cursor() as cur:
                cur.execute(init_sql)
            conn.commit()

        yield container
    finally:
        container.stop()


@pytest.fixture(scope="function")
def pg_pool(postgres_container) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Open connection pool against the test container, with every table emptied

    Yields:
        Open DatabaseConnectionPool
    """
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_policy_warehouse",
        user="test_pipeline",
        password="test_password",
    )
    pool.open()

    with pool.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(f"TRUNCATE TABLE {', '.join(TABLES)} RESTART IDENTITY CASCADE")
        conn.commit()

    yield pool
    pool.close()


@pytest.fixture(scope="function")
def pg_store(pg_pool) -> PostgresTableStore:
    """PostgreSQL table store over a clean database"""
    return PostgresTableStore(pg_pool, lock_timeout=5.0)


# =======================
# CONCURRENCY HELPERS
# =======================

class ManifestGate:
    """
    Store wrapper that stops ingests inside their unit of work, after the RAW
    rows are written and before the landed-file entry, until released.
    """

    def __init__(self, store):
        self.store = store
        self.entered = threading.Event()
        self.release = threading.Event()

    def __getattr__(self, name):
        return getattr(self.store, name)

    @contextmanager
    def transaction(self, lock=None):
        with self.store.transaction(lock=lock) as tx:
            yield _GatedTransaction(tx, self)


class _GatedTransaction:
    def __init__(self, tx, gate: ManifestGate):
        self._tx = tx
        self._gate = gate

    def __getattr__(self, name):
        return getattr(self._tx, name)

    def append(self, table, rows):
        if table == "landed_file":
            self._gate.entered.set()
            self._gate.release.wait(10)
        return self._tx.append(table, rows)


def ingest_during_transform(store, registry: SchemaRegistry) -> None:
    """
    Run a slow policies ingest, a second ingest and a transform concurrently

    The slow ingest draws the lowest raw_ids and is held open while the other
    two start; it commits last. Returns once all three have finished.
    """
    gate = ManifestGate(store)
    slow = IngestionLoader(gate, registry)
    fast = IngestionLoader(store, registry)
    engine = TransformEngine(store, registry)

    threads = [
        threading.Thread(
            target=slow.ingest,
            args=("policies", io.BytesIO(POLICIES_CSV.encode()), "policies_early.csv"),
        )
    ]
    threads[0].start()
    assert gate.entered.wait(10)

    threads.append(
        threading.Thread(
            target=fast.ingest,
            args=("policies", io.BytesIO(LATE_POLICIES_CSV.encode()), "policies_late.csv"),
        )
    )
    threads.append(threading.Thread(target=engine.transform, args=("policies",)))
    for thread in threads[1:]:
        thread.start()

    time.sleep(0.3)
    gate.release.set()
    for thread in threads:
        thread.join(10)


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads config/test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(REPO_ROOT, "config", "test.env")

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
