"""
Pipeline run state machine.

PENDING -> INGESTING -> TRANSFORMING -> AGGREGATING -> SUCCEEDED, with
FAILED and CANCELLED reachable from every non-terminal state.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from policy_warehouse.core.errors import InvalidTransitionError
from policy_warehouse.core.models import CuratedResult, JobRun, TransformResult, Watermark
from policy_warehouse.core.models._time import utcnow
from policy_warehouse.ingestion import IngestionSummary


class RunState(str, Enum):
    PENDING = "PENDING"
    INGESTING = "INGESTING"
    TRANSFORMING = "TRANSFORMING"
    AGGREGATING = "AGGREGATING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED})

ALLOWED_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset({RunState.INGESTING, RunState.FAILED, RunState.CANCELLED}),
    RunState.INGESTING: frozenset({RunState.TRANSFORMING, RunState.FAILED, RunState.CANCELLED}),
    RunState.TRANSFORMING: frozenset({RunState.AGGREGATING, RunState.FAILED, RunState.CANCELLED}),
    RunState.AGGREGATING: frozenset({RunState.SUCCEEDED, RunState.FAILED, RunState.CANCELLED}),
    RunState.SUCCEEDED: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.CANCELLED: frozenset(),
}

# Working state -> stage name used in job names, logs and metrics
STAGES: tuple[tuple[RunState, str], ...] = (
    (RunState.INGESTING, "ingest"),
    (RunState.TRANSFORMING, "transform"),
    (RunState.AGGREGATING, "aggregate"),
)


class StateChange(BaseModel):
    state: RunState
    at: datetime = Field(default_factory=utcnow)


class PipelineRun(BaseModel):
    """
    One pipeline run for one dataset.

    Attributes:
        run_id: Run identifier, shared by the run's JobRun entries
        dataset: Dataset being processed
        state: Current state
        history: Every state entered, in order
        failed_stage: Stage that failed (FAILED runs only)
        error_message: Fatal error text (FAILED runs only)
        ingestion / transform / curated: Stage outputs that committed
        curated_failures: Curated tables that failed to recompute
    """

    run_id: str
    dataset: str
    state: RunState = RunState.PENDING
    history: list[StateChange] = Field(default_factory=lambda: [StateChange(state=RunState.PENDING)])
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime | None = None
    failed_stage: str | None = None
    error_message: str | None = None
    ingestion: IngestionSummary | None = None
    transform: TransformResult | None = None
    curated: list[CuratedResult] = Field(default_factory=list)
    curated_failures: dict[str, str] = Field(default_factory=dict)

    def transition(self, new_state: RunState) -> None:
        """
        Move to new_state.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current state
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, RunState(new_state).value)
        self.state = new_state
        self.history.append(StateChange(state=new_state))
        if new_state.is_terminal:
            self.ended_at = utcnow()

    @property
    def states(self) -> list[RunState]:
        return [change.state for change in self.history]


class DatasetStatus(BaseModel):
    """Operator view of one dataset: last run, progress pointers and row counts."""

    dataset: str
    last_run: JobRun | None = None
    stages: list[JobRun] = Field(default_factory=list)
    watermark: Watermark
    landed_files: int = 0
    raw_valid: int = 0
    raw_rejected: int = 0
    staging_rows: int = 0
    curated: dict[str, Watermark] = Field(default_factory=dict)
