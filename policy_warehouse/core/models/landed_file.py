"""
LandedFile model: registry entry for an ingested landing object.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from ._time import utcnow


class LandedFile(BaseModel):
    """
    Manifest entry written once a landing object has been ingested.

    Attributes:
        file_id: Store-assigned id
        dataset: Dataset the file was ingested into
        path: Landing path
        checksum: SHA-256 of the file content
        size_bytes: File size
        modified_at: Landing store modification time (None for direct ingests)
        ingested_at: When ingestion finished
        rows_accepted / rows_rejected: Ingestion counters
    """

    file_id: int | None = None
    dataset: str
    path: str
    checksum: str
    size_bytes: int = 0
    modified_at: datetime | None = None
    ingested_at: datetime = Field(default_factory=utcnow)
    rows_accepted: int = 0
    rows_rejected: int = 0
