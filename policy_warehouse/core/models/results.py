"""
Ephemeral result models returned by the engine components.
"""

from typing import Any

from pydantic import BaseModel, Field


class ValidationOutcome(BaseModel):
    """
    Outcome of validating one row against a dataset schema.

    Note: errors are collected, not short-circuited, so one row reports
    every problem at once. `values` holds the coerced field values when ok.
    """

    ok: bool
    errors: list[str] = Field(default_factory=list)
    values: dict[str, Any] = Field(default_factory=dict)

    def __iter__(self):
        # Allows `ok, errors = registry.validate(...)`
        yield self.ok
        yield self.errors


class IngestResult(BaseModel):
    """Counts from ingesting one landed file."""

    dataset: str
    source_file: str
    accepted: int = 0
    rejected: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.accepted + self.rejected


class TransformResult(BaseModel):
    """
    Counts from one transform invocation (all batches).

    rows_filtered counts rows dropped by numeric/geo filters. These are
    distinct from ingestion rejects and never abort the batch.
    """

    dataset: str
    rows_in: int = 0
    rows_out: int = 0
    rows_filtered: int = 0
    batches: int = 0
    watermark_before: int = 0
    watermark_after: int = 0
    filter_samples: list[str] = Field(default_factory=list)
