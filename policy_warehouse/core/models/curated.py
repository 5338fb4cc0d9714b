"""
Curated layer models.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ._time import utcnow


class CuratedRow(BaseModel):
    """One row of a named curated table."""

    table_name: str
    row_data: dict[str, Any]
    computed_at: datetime = Field(default_factory=utcnow)


class CuratedResult(BaseModel):
    """
    Outcome of a curated table recompute.

    Attributes:
        table_name: Curated table that was (re)computed
        rows: Computed rows, in deterministic order
        computed_at: When the rows were computed
        source_mark: Combined staging watermark the rows were computed from
        skipped: True when refresh found the table already current
    """

    table_name: str
    rows: list[dict[str, Any]] = Field(default_factory=list)
    computed_at: datetime = Field(default_factory=utcnow)
    source_mark: int = 0
    skipped: bool = False

    @property
    def row_count(self) -> int:
        return len(self.rows)
