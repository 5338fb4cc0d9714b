"""
StagingRecord model representing a cleaned, normalized row.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ._time import utcnow


class StagingRecord(BaseModel):
    """
    Normalized row derived from exactly one VALID RawRecord.

    Staging rows are only ever regenerated by the transform engine, never
    edited in place.

    Attributes:
        staging_id: Store-assigned id
        dataset: Dataset the row belongs to
        record_key: Business key (policy_id / claim_id)
        raw_id: Lineage id of the RawRecord this row was derived from
        data: Typed, normalized field values (decimals, dates, Location)
        transformed_at: When the transform engine produced the row
    """

    staging_id: int | None = None
    dataset: str = Field(..., min_length=1)
    record_key: str = Field(..., min_length=1)
    raw_id: int
    data: dict[str, Any]
    transformed_at: datetime = Field(default_factory=utcnow)
