"""
RawRecord model representing one landed row plus its provenance.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from ._time import utcnow


class RawRecord(BaseModel):
    """
    One row from a landed file, stored in the RAW layer.

    RAW is append-only: a RawRecord is never updated or deleted once written.

    Attributes:
        raw_id: Monotonic sequence id assigned by the store (lineage id)
        dataset: Dataset the row belongs to ("policies", "claims")
        source_file: Landing path of the file the row came from
        row_number: 1-based line number within the source file
        ingested_at: When the row was written to RAW
        validation_status: "VALID" or "REJECTED"
        rejection_reason: All validation errors joined, for REJECTED rows
        payload: Field name to raw text value (None for null tokens)
    """

    raw_id: int | None = None
    dataset: str = Field(..., min_length=1)
    source_file: str
    row_number: int = Field(..., ge=1)
    ingested_at: datetime = Field(default_factory=utcnow)
    validation_status: Literal["VALID", "REJECTED"]
    rejection_reason: str | None = None
    payload: dict[str, str | None]

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "raw_id": 17,
                "dataset": "policies",
                "source_file": "policies/policies.csv",
                "row_number": 2,
                "validation_status": "VALID",
                "rejection_reason": None,
                "payload": {"policy_id": "POL001", "product_type": "funeral"},
            }
        }

    @model_validator(mode="after")
    def check_rejection_reason(self) -> "RawRecord":
        """REJECTED rows must say why; VALID rows must not."""
        if self.validation_status == "REJECTED" and not self.rejection_reason:
            raise ValueError("REJECTED records require a rejection_reason")
        if self.validation_status == "VALID" and self.rejection_reason:
            raise ValueError("VALID records cannot carry a rejection_reason")
        return self
