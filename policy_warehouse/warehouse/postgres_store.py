"""
PostgreSQL table store.

Implements the TableStore operations with psycopg3 SQL composition.
Transactions map onto a single pooled connection; named locks map onto
PostgreSQL advisory locks.
"""

import json
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterator, Sequence

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb

from policy_warehouse.core.errors import LockUnavailableError, StoreError
from policy_warehouse.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .store import TableStore
from .tables import TableSpec, get_table

logger = get_logger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default)


class _Session:
    """TableStore operations bound to one open connection (no commit)."""

    def __init__(self, conn: psycopg.Connection):
        self.conn = conn

    def append(self, spec: TableSpec, rows: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        if not rows:
            return []
        columns = self._insert_columns(spec)
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(spec.name),
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(sql.Placeholder() * len(columns)),
        )
        stored: list[dict[str, Any]] = []
        with self.conn.cursor() as cur:
            cur.executemany(query, [self._params(spec, columns, row) for row in rows], returning=True)
            while True:
                stored.extend(cur.fetchall())
                if not cur.nextset():
                    break
        return stored

    def upsert(self, spec: TableSpec, rows: Sequence[dict[str, Any]], key: Sequence[str]) -> int:
        if not rows:
            return 0
        columns = self._insert_columns(spec)
        updates = [column for column in columns if column not in key]
        query = sql.SQL(
            "INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) DO UPDATE SET {}"
        ).format(
            sql.Identifier(spec.name),
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(sql.Placeholder() * len(columns)),
            sql.SQL(", ").join(map(sql.Identifier, key)),
            sql.SQL(", ").join(
                sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c))
                for c in updates
            ),
        )
        with self.conn.cursor() as cur:
            cur.executemany(query, [self._params(spec, columns, row) for row in rows])
        return len(rows)

    def delete(self, spec: TableSpec, match: dict[str, Any]) -> int:
        where, params = self._where(match, None)
        query = sql.SQL("DELETE FROM {}{}").format(sql.Identifier(spec.name), where)
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.rowcount

    def query(
        self,
        spec: TableSpec,
        where: dict[str, Any] | None,
        after: tuple[str, Any] | None,
        order_by: str | None,
        descending: bool,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        clause, params = self._where(where or {}, after)
        parts = [sql.SQL("SELECT * FROM {}").format(sql.Identifier(spec.name)), clause]
        if order_by is not None:
            parts.append(
                sql.SQL(" ORDER BY {} {}").format(
                    sql.Identifier(order_by), sql.SQL("DESC" if descending else "ASC")
                )
            )
        if limit is not None:
            parts.append(sql.SQL(" LIMIT {}").format(sql.Literal(limit)))
        with self.conn.cursor() as cur:
            cur.execute(sql.Composed(parts), params)
            return cur.fetchall()

    def count(self, spec: TableSpec, where: dict[str, Any] | None) -> int:
        clause, params = self._where(where or {}, None)
        query = sql.SQL("SELECT count(*) AS n FROM {}").format(sql.Identifier(spec.name)) + clause
        with self.conn.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()["n"]

    @staticmethod
    def _insert_columns(spec: TableSpec) -> list[str]:
        return [column for column in spec.columns if column != spec.id_column]

    @staticmethod
    def _params(spec: TableSpec, columns: list[str], row: dict[str, Any]) -> list[Any]:
        params = []
        for column in columns:
            value = row.get(column)
            if column in spec.json_columns and value is not None:
                value = Jsonb(value, dumps=_dumps)
            params.append(value)
        return params

    @staticmethod
    def _where(match: dict[str, Any], after: tuple[str, Any] | None) -> tuple[sql.Composable, list[Any]]:
        conditions = [sql.SQL("{} = %s").format(sql.Identifier(column)) for column in match]
        params = list(match.values())
        if after is not None:
            conditions.append(sql.SQL("{} > %s").format(sql.Identifier(after[0])))
            params.append(after[1])
        if not conditions:
            return sql.SQL(""), params
        return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(conditions), params


class PostgresTableStore(TableStore):
    """
    TableStore backed by PostgreSQL.

    Outside a transaction each call runs on its own pooled connection and
    commits. Inside transaction() every call shares one connection and the
    block commits once at the end.
    """

    def __init__(self, pool: DatabaseConnectionPool, lock_timeout: float = 30.0):
        self.pool = pool
        self.lock_timeout = lock_timeout

    def append(self, table: str, rows: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        spec = get_table(table)
        with self._session() as session:
            return session.append(spec, rows)

    def upsert(self, table: str, rows: Sequence[dict[str, Any]], key: Sequence[str]) -> int:
        spec = get_table(table)
        with self._session() as session:
            return session.upsert(spec, rows, key)

    def replace(self, table: str, rows: Sequence[dict[str, Any]], match: dict[str, Any]) -> int:
        spec = get_table(table)
        with self._session() as session:
            session.delete(spec, match)
            session.append(spec, rows)
        return len(rows)

    def query(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        after: tuple[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        spec = get_table(table)
        with self._session() as session:
            return session.query(spec, where, after, order_by, descending, limit)

    def count(self, table: str, where: dict[str, Any] | None = None) -> int:
        spec = get_table(table)
        with self._session() as session:
            return session.count(spec, where)

    @contextmanager
    def transaction(self, lock: str | None = None) -> Iterator[TableStore]:
        try:
            with self.pool.get_connection() as conn:
                with conn.transaction():
                    if lock is not None:
                        self._acquire_xact_lock(conn, lock)
                    yield _TransactionStore(conn)
        except psycopg.errors.LockNotAvailable as e:
            raise LockUnavailableError(lock or "") from e
        except psycopg.Error as e:
            raise StoreError(f"Transaction failed: {e}") from e

    @contextmanager
    def lock(self, name: str, blocking: bool = False) -> Iterator[None]:
        try:
            with self.pool.get_connection() as conn:
                conn.autocommit = True
                try:
                    with conn.cursor() as cur:
                        if blocking:
                            cur.execute(
                                sql.SQL("SET lock_timeout = {}").format(
                                    sql.Literal(f"{int(self.lock_timeout * 1000)}ms")
                                )
                            )
                            cur.execute("SELECT pg_advisory_lock(hashtext(%s))", (name,))
                        else:
                            cur.execute(
                                "SELECT pg_try_advisory_lock(hashtext(%s)) AS acquired", (name,)
                            )
                            if not cur.fetchone()["acquired"]:
                                raise LockUnavailableError(name)
                    try:
                        yield
                    finally:
                        with conn.cursor() as cur:
                            cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", (name,))
                finally:
                    conn.autocommit = False
        except psycopg.errors.LockNotAvailable as e:
            raise LockUnavailableError(name) from e
        except psycopg.OperationalError as e:
            raise StoreError(f"Lock '{name}' failed: {e}") from e

    def close(self) -> None:
        self.pool.close()

    def _acquire_xact_lock(self, conn: psycopg.Connection, name: str) -> None:
        with conn.cursor() as cur:
            cur.execute(
                sql.SQL("SET LOCAL lock_timeout = {}").format(
                    sql.Literal(f"{int(self.lock_timeout * 1000)}ms")
                )
            )
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (name,))

    @contextmanager
    def _session(self) -> Iterator[_Session]:
        try:
            with self.pool.get_connection() as conn:
                yield _Session(conn)
                conn.commit()
        except psycopg.Error as e:
            raise StoreError(f"Store operation failed: {e}") from e


class _TransactionStore(TableStore):
    """TableStore view over one connection inside an open transaction."""

    def __init__(self, conn: psycopg.Connection):
        self._session = _Session(conn)

    def append(self, table, rows):
        return self._session.append(get_table(table), rows)

    def upsert(self, table, rows, key):
        return self._session.upsert(get_table(table), rows, key)

    def replace(self, table, rows, match):
        spec = get_table(table)
        self._session.delete(spec, match)
        self._session.append(spec, rows)
        return len(rows)

    def query(self, table, where=None, after=None, order_by=None, descending=False, limit=None):
        return self._session.query(get_table(table), where, after, order_by, descending, limit)

    def count(self, table, where=None):
        return self._session.count(get_table(table), where)

    @contextmanager
    def transaction(self, lock=None):
        # Already inside a unit of work; nested blocks join it
        yield self

    def lock(self, name, blocking=False):
        raise StoreError("Named locks cannot be taken inside a transaction")
