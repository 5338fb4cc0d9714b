"""
Watermark model bounding incremental reprocessing.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ._time import utcnow


class Transition(str, Enum):
    """Stage transitions a watermark can guard."""

    RAW_TO_STAGING = "raw_to_staging"
    STAGING_TO_CURATED = "staging_to_curated"


class Watermark(BaseModel):
    """
    Progress pointer for one (dataset, transition) pair.

    For RAW_TO_STAGING the value is the highest RAW lineage id committed to
    STAGING. For STAGING_TO_CURATED the dataset is a curated table name and
    the value is the combined staging mark it was computed from, and the
    fingerprint identifies the settings the table was computed with.
    """

    dataset: str
    transition: Transition
    value: int = Field(0, ge=0)
    updated_at: datetime | None = None
    fingerprint: str | None = None

    @classmethod
    def initial(cls, dataset: str, transition: Transition) -> "Watermark":
        return cls(dataset=dataset, transition=transition, value=0)

    def advanced_to(self, value: int, fingerprint: str | None = None) -> "Watermark":
        return Watermark(
            dataset=self.dataset,
            transition=self.transition,
            value=value,
            updated_at=utcnow(),
            fingerprint=fingerprint,
        )
