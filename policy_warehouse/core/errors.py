"""
Exception hierarchy for the pipeline engine.

Row-level problems are never raised; they are returned as validation
outcomes and recorded on RAW rows. Everything here is fatal to the call
or stage that raised it.
"""


class PipelineError(Exception):
    """Base class for all engine errors."""


class SchemaNotFoundError(PipelineError):
    """Raised when a dataset has no registered schema."""

    def __init__(self, dataset: str):
        self.dataset = dataset
        super().__init__(f"No schema registered for dataset '{dataset}'")


class SchemaDefinitionError(PipelineError):
    """Raised when a field spec or schema definition is malformed."""


class IngestionError(PipelineError):
    """Raised when a landed file cannot be read or decoded."""

    def __init__(self, source_file: str, message: str):
        self.source_file = source_file
        super().__init__(f"{source_file}: {message}")


class StoreError(PipelineError):
    """Raised when the table store is unreachable or a write fails."""


class WatermarkRegressionError(PipelineError):
    """Raised when a watermark advance would move it backwards."""

    def __init__(self, dataset: str, transition: str, current: int, requested: int):
        self.dataset = dataset
        self.transition = transition
        self.current = current
        self.requested = requested
        super().__init__(
            f"Watermark ({dataset}, {transition}) cannot move from {current} to {requested}"
        )


class AggregationError(PipelineError):
    """Raised when a curated table cannot be computed."""

    def __init__(self, table_name: str, message: str):
        self.table_name = table_name
        super().__init__(f"[{table_name}] {message}")


class UnknownCuratedTableError(AggregationError):
    """Raised when recompute is asked for a table nobody defined."""

    def __init__(self, table_name: str):
        super().__init__(table_name, "no curated table definition with this name")


class StageTimeoutError(PipelineError):
    """Raised when a stage does not finish within its timeout."""

    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"Stage {stage} did not finish within {timeout}s")


class RunInProgressError(PipelineError):
    """Raised when a second run is started for a dataset that is already running."""

    def __init__(self, dataset: str):
        self.dataset = dataset
        super().__init__(f"A pipeline run for dataset '{dataset}' is already in progress")


class InvalidTransitionError(PipelineError):
    """Raised when the run state machine is asked for an illegal move."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot transition run from {current} to {requested}")


class LockUnavailableError(StoreError):
    """Raised when a named store lock cannot be acquired in time."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Lock '{name}' is held by another writer")


class RunCancelledError(PipelineError):
    """Raised between stages when a run has been asked to stop."""

    def __init__(self, dataset: str, next_stage: str):
        self.dataset = dataset
        self.next_stage = next_stage
        super().__init__(f"Run for dataset '{dataset}' cancelled before {next_stage}")
