"""
Pipeline run orchestration.
"""

from .orchestrator import RunHandle, RunOrchestrator
from .state import ALLOWED_TRANSITIONS, STAGES, DatasetStatus, PipelineRun, RunState

__all__ = [
    "ALLOWED_TRANSITIONS",
    "DatasetStatus",
    "PipelineRun",
    "RunHandle",
    "RunOrchestrator",
    "RunState",
    "STAGES",
]
