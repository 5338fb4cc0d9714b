"""
Core data models for the policy warehouse engine.

All models use Pydantic for runtime validation and type safety.
"""

from .curated import CuratedResult, CuratedRow
from .job_run import JobRun
from .landed_file import LandedFile
from .location import Location
from .raw_record import RawRecord
from .results import IngestResult, TransformResult, ValidationOutcome
from .staging_record import StagingRecord
from .watermark import Transition, Watermark

__all__ = [
    "CuratedResult",
    "CuratedRow",
    "IngestResult",
    "JobRun",
    "LandedFile",
    "Location",
    "RawRecord",
    "StagingRecord",
    "TransformResult",
    "Transition",
    "ValidationOutcome",
    "Watermark",
]
