"""
Job run audit log operations.

The job_run table is append-only: entries are inserted once, when a job
finishes, and never updated.
"""

from policy_warehouse.core.models import JobRun
from policy_warehouse.observability.logger import get_logger

from .store import TableStore

logger = get_logger(__name__)


def record_job_run(store: TableStore, job_run: JobRun) -> JobRun:
    """
    Append a job run entry.

    Args:
        store: Table store
        job_run: Finished job run

    Returns:
        The stored JobRun with its job_id
    """
    row = job_run.model_dump(exclude={"job_id"})
    stored = store.append("job_run", [row])[0]

    logger.debug(
        f"Recorded job run: job_id={stored['job_id']}, "
        f"job={job_run.job_name}, status={job_run.status}"
    )
    return JobRun.model_validate(stored)


def query_job_runs(
    store: TableStore,
    dataset: str | None = None,
    job_name: str | None = None,
    run_id: str | None = None,
    limit: int = 100,
) -> list[JobRun]:
    """
    Query job runs, newest first.

    Args:
        store: Table store
        dataset: Optional dataset filter
        job_name: Optional job name filter
        run_id: Optional pipeline run filter
        limit: Maximum entries returned
    """
    where = {}
    if dataset is not None:
        where["dataset"] = dataset
    if job_name is not None:
        where["job_name"] = job_name
    if run_id is not None:
        where["run_id"] = run_id

    rows = store.query("job_run", where=where, order_by="job_id", descending=True, limit=limit)
    return [JobRun.model_validate(row) for row in rows]


def latest_job_run(store: TableStore, job_name: str) -> JobRun | None:
    """Most recent entry for a job name, or None."""
    runs = query_job_runs(store, job_name=job_name, limit=1)
    return runs[0] if runs else None
