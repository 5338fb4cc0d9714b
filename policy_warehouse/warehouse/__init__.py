"""
Persistence for RAW, STAGING, CURATED, watermark and job run tables.
"""

from .job_log import latest_job_run, query_job_runs, record_job_run
from .memory_store import InMemoryTableStore
from .store import TableStore
from .tables import TABLES, TableSpec

__all__ = [
    "InMemoryTableStore",
    "TABLES",
    "TableSpec",
    "TableStore",
    "latest_job_run",
    "query_job_runs",
    "record_job_run",
]
