"""
Unit tests for database connection pool

Settings resolution runs without a database; the pool lifecycle tests use
testcontainers.
"""
import pytest

from policy_warehouse.config import DatabaseSettings
from policy_warehouse.warehouse.connection import DatabaseConnectionPool


@pytest.mark.unit
def test_password_required(monkeypatch):
    """Test that a pool without a password is refused"""
    monkeypatch.delenv("PW_DB_PASSWORD", raising=False)

    with pytest.raises(ValueError, match="PW_DB_PASSWORD"):
        DatabaseConnectionPool(host="localhost")


@pytest.mark.unit
def test_settings_from_environment(test_env_vars, monkeypatch):
    """Test that unset settings fall back to PW_DB_* variables"""
    monkeypatch.setenv("PW_DB_HOST", "warehouse-db")
    monkeypatch.setenv("PW_DB_PORT", "6543")

    pool = DatabaseConnectionPool.from_settings(DatabaseSettings())

    assert pool.host == "warehouse-db"
    assert pool.port == 6543
    assert pool.database == "test_policy_warehouse"
    assert pool.user == "test_pipeline"
    assert "dbname=test_policy_warehouse" in pool.conninfo


@pytest.mark.unit
def test_explicit_settings_win(test_env_vars):
    """Test that configured settings override the environment"""
    pool = DatabaseConnectionPool.from_settings(
        DatabaseSettings(host="db", port=5433, name="pw", user="etl", password="secret", max_size=8)
    )

    assert (pool.host, pool.port, pool.database, pool.user) == ("db", 5433, "pw", "etl")
    assert pool.max_size == 8


@pytest.mark.unit
def test_connection_before_open(test_env_vars):
    """Test that borrowing from an unopened pool fails"""
    pool = DatabaseConnectionPool()

    with pytest.raises(RuntimeError, match="not open"):
        with pool.get_connection():
            pass


@pytest.mark.integration
def test_connection_pool_initialization(postgres_container):
    """Test that connection pool initializes correctly"""
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_policy_warehouse",
        user="test_pipeline",
        password="test_password",
        min_size=2,
        max_size=5,
    )

    pool.open()

    assert pool._pool is not None
    assert pool._pool.min_size == 2
    assert pool._pool.max_size == 5

    pool.close()
    assert pool._pool is None


@pytest.mark.integration
def test_get_connection(pg_pool):
    """Test getting a connection from the pool"""
    with pg_pool.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 as test")
            result = cur.fetchone()
            assert result["test"] == 1


@pytest.mark.integration
def test_engine_tables_exist(pg_pool):
    """Test that the init script created every engine table"""
    with pg_pool.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_schema = 'public'"
            )
            tables = {row["table_name"] for row in cur.fetchall()}

    assert {"landed_file", "raw_record", "staging_record", "watermark", "curated_row", "job_run"} <= tables
