"""
Table store interface.

The engine only needs typed-row append/upsert/replace/query operations on
named tables, a unit of work, and named locks. Any durable tabular store
that provides these can back the engine.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Sequence


class TableStore(ABC):
    """
    Abstract base class for engine persistence.

    Rows are plain dicts keyed by column name. Tables are declared in
    policy_warehouse.warehouse.tables.
    """

    @abstractmethod
    def append(self, table: str, rows: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Insert rows.

        Returns:
            The stored rows, including store-assigned id columns
        """

    @abstractmethod
    def upsert(self, table: str, rows: Sequence[dict[str, Any]], key: Sequence[str]) -> int:
        """
        Insert rows, replacing any existing row with the same key values.

        Returns:
            Number of rows written
        """

    @abstractmethod
    def replace(self, table: str, rows: Sequence[dict[str, Any]], match: dict[str, Any]) -> int:
        """
        Delete every row matching `match`, then insert `rows`.

        Returns:
            Number of rows inserted
        """

    @abstractmethod
    def query(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        after: tuple[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """
        Select rows.

        Args:
            table: Table name
            where: Column equality filters
            after: (column, value) keeps rows where column > value
            order_by: Sort column
            descending: Sort direction
            limit: Maximum rows returned
        """

    def count(self, table: str, where: dict[str, Any] | None = None) -> int:
        """Number of rows matching the equality filters."""
        return len(self.query(table, where=where))

    @abstractmethod
    def transaction(self, lock: str | None = None) -> AbstractContextManager["TableStore"]:
        """
        Unit of work: every write through the yielded store commits together
        or not at all.

        Args:
            lock: Optional lock name held for the duration, serializing
                writers that share it
        """

    @abstractmethod
    def lock(self, name: str, blocking: bool = False) -> AbstractContextManager[None]:
        """
        Hold a named exclusive lock outside any transaction.

        Raises:
            LockUnavailableError: If the lock is held elsewhere (or the wait
                times out when blocking)
        """

    def close(self) -> None:
        """Release store resources."""
