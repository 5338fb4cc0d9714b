"""
JobRun model: append-only audit log entry for a stage or pipeline run.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from ._time import utcnow


class JobRun(BaseModel):
    """
    Audit entry for one job execution.

    Attributes:
        job_id: Store-assigned id
        run_id: Pipeline run this job belongs to
        job_name: "<dataset>.<stage>" or "<dataset>.pipeline"
        dataset: Dataset processed
        stage: Stage the job ran (or the stage a pipeline run failed in)
        started_at / ended_at: Wall clock bounds
        status: SUCCESS, FAILED, or PARTIAL (completed with rejects/drops,
            or a cancelled pipeline run)
        rows_processed / rows_rejected / rows_filtered: Counters
        watermark_before / watermark_after: RAW->STAGING mark around the job
        error_message: Fatal error text for FAILED jobs
        error_samples: First N row-level problems
    """

    job_id: int | None = None
    run_id: str
    job_name: str
    dataset: str
    stage: str
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime | None = None
    status: Literal["SUCCESS", "FAILED", "PARTIAL"]
    rows_processed: int = 0
    rows_rejected: int = 0
    rows_filtered: int = 0
    watermark_before: int | None = None
    watermark_after: int | None = None
    error_message: str | None = None
    error_samples: list[str] = Field(default_factory=list)
