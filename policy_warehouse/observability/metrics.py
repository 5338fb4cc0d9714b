"""
Prometheus metrics collection for policy-warehouse

This module provides metrics instrumentation for monitoring
ingestion quality, transform throughput and pipeline health.
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()


# =======================
# INGESTION METRICS
# =======================

rows_ingested_total = Counter(
    name="pipeline_rows_ingested_total",
    documentation="Rows written to RAW",
    labelnames=["dataset", "status"],  # status: VALID, REJECTED
    registry=REGISTRY,
)

files_ingested_total = Counter(
    name="pipeline_files_ingested_total",
    documentation="Landed files ingested or skipped",
    labelnames=["dataset", "outcome"],  # outcome: ingested, skipped
    registry=REGISTRY,
)

# =======================
# TRANSFORM METRICS
# =======================

rows_transformed_total = Counter(
    name="pipeline_rows_transformed_total",
    documentation="Staging rows written by the transform engine",
    labelnames=["dataset"],
    registry=REGISTRY,
)

rows_filtered_total = Counter(
    name="pipeline_rows_filtered_total",
    documentation="RAW rows dropped by transform filters",
    labelnames=["dataset", "rule"],
    registry=REGISTRY,
)

watermark_value = Gauge(
    name="pipeline_watermark_value",
    documentation="Current watermark value",
    labelnames=["dataset", "transition"],
    registry=REGISTRY,
)

# =======================
# CURATED METRICS
# =======================

curated_recomputes_total = Counter(
    name="pipeline_curated_recomputes_total",
    documentation="Curated table recomputes",
    labelnames=["table_name", "outcome"],  # outcome: success, failure, skipped
    registry=REGISTRY,
)

# =======================
# ORCHESTRATION METRICS
# =======================

stage_duration_seconds = Histogram(
    name="pipeline_stage_duration_seconds",
    documentation="Stage wall clock time in seconds",
    labelnames=["dataset", "stage", "outcome"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
    registry=REGISTRY,
)

stage_retries_total = Counter(
    name="pipeline_stage_retries_total",
    documentation="Stage attempts retried after a transient store error",
    labelnames=["dataset", "stage"],
    registry=REGISTRY,
)

pipeline_runs_total = Counter(
    name="pipeline_runs_total",
    documentation="Pipeline runs by final state",
    labelnames=["dataset", "state"],
    registry=REGISTRY,
)


def record_ingest(dataset: str, accepted: int, rejected: int) -> None:
    if accepted:
        rows_ingested_total.labels(dataset=dataset, status="VALID").inc(accepted)
    if rejected:
        rows_ingested_total.labels(dataset=dataset, status="REJECTED").inc(rejected)
    files_ingested_total.labels(dataset=dataset, outcome="ingested").inc()


def record_skipped_file(dataset: str) -> None:
    files_ingested_total.labels(dataset=dataset, outcome="skipped").inc()


def record_transform(dataset: str, rows_out: int, filtered_by_rule: dict[str, int]) -> None:
    if rows_out:
        rows_transformed_total.labels(dataset=dataset).inc(rows_out)
    for rule, count in filtered_by_rule.items():
        rows_filtered_total.labels(dataset=dataset, rule=rule).inc(count)


def record_watermark(dataset: str, transition: str, value: int) -> None:
    watermark_value.labels(dataset=dataset, transition=transition).set(value)


def record_curated(table_name: str, outcome: str) -> None:
    curated_recomputes_total.labels(table_name=table_name, outcome=outcome).inc()


def record_stage(dataset: str, stage: str, outcome: str, duration_seconds: float) -> None:
    stage_duration_seconds.labels(dataset=dataset, stage=stage, outcome=outcome).observe(duration_seconds)


def record_retry(dataset: str, stage: str) -> None:
    stage_retries_total.labels(dataset=dataset, stage=stage).inc()


def record_run(dataset: str, state: str) -> None:
    pipeline_runs_total.labels(dataset=dataset, state=state).inc()


def get_metrics() -> bytes:
    """Return the Prometheus exposition text for the engine registry."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
