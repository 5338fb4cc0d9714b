"""
In-process table store.

Used for tests and single-process runs. A transaction buffers its writes
per thread and applies them in one step when it commits; a unit of work
that raises is simply discarded.
"""

import threading
from contextlib import contextmanager
from typing import Any, Iterator, NamedTuple, Sequence

from policy_warehouse.core.errors import LockUnavailableError
from policy_warehouse.observability.logger import get_logger

from .store import TableStore
from .tables import TABLES, TableSpec, get_table

logger = get_logger(__name__)


class _Write(NamedTuple):
    kind: str
    table: str
    rows: list[dict[str, Any]]
    arg: Any = None


class InMemoryTableStore(TableStore):
    """
    Thread-safe dict-of-lists table store.

    The mutex guards committed rows and id counters and is held only for a
    single read, a single id draw or a commit, never for a whole unit of
    work. Reads inside a transaction see committed rows plus the
    transaction's own writes; other threads see the writes once they commit.

    Ids are drawn when a row is written, like a database sequence, and are
    not handed out again after a rollback.
    """

    def __init__(self, lock_timeout: float = 30.0):
        self.lock_timeout = lock_timeout
        self._tables: dict[str, list[dict[str, Any]]] = {name: [] for name in TABLES}
        self._next_ids: dict[str, int] = {name: 1 for name in TABLES}
        self._mutex = threading.Lock()
        self._local = threading.local()
        self._named_locks: dict[str, threading.Lock] = {}
        self._named_locks_guard = threading.Lock()

    def append(self, table: str, rows: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        spec = get_table(table)
        stored = self._prepare(spec, rows)
        self._write(_Write("append", table, stored))
        return [dict(row) for row in stored]

    def upsert(self, table: str, rows: Sequence[dict[str, Any]], key: Sequence[str]) -> int:
        spec = get_table(table)
        self._write(_Write("upsert", table, self._prepare(spec, rows), tuple(key)))
        return len(rows)

    def replace(self, table: str, rows: Sequence[dict[str, Any]], match: dict[str, Any]) -> int:
        spec = get_table(table)
        self._write(_Write("replace", table, self._prepare(spec, rows), dict(match)))
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
        get_table(table)
        with self._mutex:
            rows = list(self._tables[table])

        pending = self._pending()
        if pending:
            view = {table: rows}
            for write in pending:
                if write.table == table:
                    _apply(view, write)
            rows = view[table]

        rows = [row for row in rows if _matches(row, where or {})]
        if after is not None:
            column, value = after
            rows = [row for row in rows if row.get(column) is not None and row[column] > value]
        if order_by is not None:
            rows.sort(key=lambda row: row.get(order_by), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [dict(row) for row in rows]

    @contextmanager
    def transaction(self, lock: str | None = None) -> Iterator["InMemoryTableStore"]:
        if self._pending() is not None:
            # Already inside a unit of work on this thread; nested blocks join it
            yield self
            return

        if lock is not None:
            named = self._named_lock(lock)
            if not named.acquire(timeout=self.lock_timeout):
                raise LockUnavailableError(lock)
        try:
            self._local.pending = []
            try:
                yield self
            except BaseException:
                logger.debug("In-memory transaction rolled back")
                raise
            else:
                with self._mutex:
                    for write in self._local.pending:
                        _apply(self._tables, write)
            finally:
                self._local.pending = None
        finally:
            if lock is not None:
                named.release()

    @contextmanager
    def lock(self, name: str, blocking: bool = False) -> Iterator[None]:
        named = self._named_lock(name)
        acquired = named.acquire(timeout=self.lock_timeout) if blocking else named.acquire(blocking=False)
        if not acquired:
            raise LockUnavailableError(name)
        try:
            yield
        finally:
            named.release()

    def _named_lock(self, name: str) -> threading.Lock:
        with self._named_locks_guard:
            return self._named_locks.setdefault(name, threading.Lock())

    def _pending(self) -> list[_Write] | None:
        return getattr(self._local, "pending", None)

    def _write(self, write: _Write) -> None:
        pending = self._pending()
        if pending is not None:
            pending.append(write)
            return
        with self._mutex:
            _apply(self._tables, write)

    def _prepare(self, spec: TableSpec, rows: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        prepared = [{column: row.get(column) for column in spec.columns} for row in rows]
        if spec.id_column:
            with self._mutex:
                for row in prepared:
                    if row[spec.id_column] is None:
                        row[spec.id_column] = self._next_ids[spec.name]
                        self._next_ids[spec.name] += 1
        return prepared


def _apply(tables: dict[str, list[dict[str, Any]]], write: _Write) -> None:
    rows = tables[write.table]
    if write.kind == "append":
        rows.extend(write.rows)
    elif write.kind == "upsert":
        id_column = get_table(write.table).id_column
        for row in write.rows:
            row_key = tuple(row.get(column) for column in write.arg)
            for index, current in enumerate(rows):
                if tuple(current.get(column) for column in write.arg) == row_key:
                    replacement = dict(row)
                    if id_column:
                        replacement[id_column] = current[id_column]
                    rows[index] = replacement
                    break
            else:
                rows.append(row)
    else:
        tables[write.table] = [row for row in rows if not _matches(row, write.arg)] + list(write.rows)


def _matches(row: dict[str, Any], where: dict[str, Any]) -> bool:
    return all(row.get(column) == value for column, value in where.items())
