"""
Run orchestrator.

Drives one dataset through ingest -> transform -> aggregate. Each stage
runs with a timeout and retries transient store errors; a stage failure
ends the run FAILED without undoing earlier stages, whose output is
already committed. Every stage and every run leaves a JobRun entry.
"""

import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import ExitStack
from typing import Any, Callable

from policy_warehouse.config import PipelineConfig
from policy_warehouse.core.errors import (
    AggregationError,
    LockUnavailableError,
    PipelineError,
    RunCancelledError,
    RunInProgressError,
    StageTimeoutError,
    StoreError,
)
from policy_warehouse.core.models import JobRun, Transition
from policy_warehouse.core.models._time import utcnow
from policy_warehouse.core.schema import SchemaConfigLoader, SchemaRegistry
from policy_warehouse.curated import CuratedAggregator
from policy_warehouse.ingestion import IngestionLoader, IngestionSummary
from policy_warehouse.landing import LandingStore
from policy_warehouse.observability import metrics
from policy_warehouse.observability.logger import get_logger, log_operation
from policy_warehouse.tracking import WatermarkTracker
from policy_warehouse.transform import TransformEngine
from policy_warehouse.warehouse import TableStore, query_job_runs, record_job_run

from .state import STAGES, DatasetStatus, PipelineRun, RunState

logger = get_logger(__name__)


class RunHandle:
    """A submitted run: wait for it or ask it to stop."""

    def __init__(self, dataset: str, future: Future, cancel_event: threading.Event):
        self.dataset = dataset
        self._future = future
        self._cancel_event = cancel_event

    def cancel(self) -> None:
        """Request cancellation; honoured before the next stage starts."""
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> PipelineRun:
        """
        Wait for the run.

        Raises:
            RunInProgressError: If another run held the dataset
            SchemaNotFoundError: If the dataset is unknown
        """
        return self._future.result(timeout=timeout)


class RunOrchestrator:
    """
    Sequences the pipeline stages for a dataset.

    Only one run per dataset is active at a time (a non-blocking store lock);
    runs for different datasets are independent and may run in parallel. A
    stage abandoned after its timeout keeps the dataset locked until it
    actually finishes.
    """

    def __init__(
        self,
        store: TableStore,
        registry: SchemaRegistry,
        landing: LandingStore | None = None,
        config: PipelineConfig | None = None,
    ):
        self.store = store
        self.registry = registry
        self.landing = landing
        self.config = config or PipelineConfig()
        self.settings = self.config.orchestrator

        self.tracker = WatermarkTracker(store)
        self.loader = IngestionLoader(store, registry, self.config)
        self.engine = TransformEngine(store, registry, self.config, tracker=self.tracker)
        self.aggregator = CuratedAggregator(store, self.config, tracker=self.tracker)

        self._executor: ThreadPoolExecutor | None = None
        self._executor_guard = threading.Lock()
        self._abandoned: dict[str, Future] = {}
        self._abandoned_guard = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        store: TableStore,
        landing: LandingStore | None = None,
    ) -> "RunOrchestrator":
        """Build an orchestrator, loading dataset schemas from config.schemas_path when set."""
        if config.schemas_path:
            registry = SchemaRegistry(SchemaConfigLoader(config.schemas_path).load())
        else:
            registry = SchemaRegistry.with_defaults()
        return cls(store, registry, landing=landing, config=config)

    # =======================
    # RUNS
    # =======================

    def run(self, dataset: str, cancel_event: threading.Event | None = None) -> PipelineRun:
        """
        Run every stage for a dataset.

        Stage failures do not raise; they end the returned run in FAILED.

        Raises:
            SchemaNotFoundError: Unknown dataset (nothing is recorded)
            RunInProgressError: Another run for the dataset is active, or a
                stage abandoned by an earlier run has not ended yet
        """
        self.registry.get(dataset)
        cancel_event = cancel_event or threading.Event()
        run = PipelineRun(run_id=uuid.uuid4().hex, dataset=dataset)

        dataset_lock = ExitStack()
        try:
            dataset_lock.enter_context(self.store.lock(f"pipeline:{dataset}"))
        except LockUnavailableError as e:
            raise RunInProgressError(dataset) from e

        with dataset_lock:
            logger.info(f"Pipeline run {run.run_id} started for {dataset}", extra={"run_id": run.run_id})
            self._execute(run, cancel_event)

            with self._abandoned_guard:
                stalled = self._abandoned.pop(run.run_id, None)
            if stalled is not None:
                self._release_when_done(run, stalled, dataset_lock.pop_all())

        metrics.record_run(dataset, run.state.value)
        self._record_pipeline_job(run)
        logger.info(
            f"Pipeline run {run.run_id} for {dataset} finished {run.state.value}",
            extra={"run_id": run.run_id, "state": run.state.value, "failed_stage": run.failed_stage},
        )
        return run

    def submit(self, dataset: str) -> RunHandle:
        """Start a run in the background and return a handle to it."""
        cancel_event = threading.Event()
        future = self._get_executor().submit(self.run, dataset, cancel_event)
        return RunHandle(dataset, future, cancel_event)

    def run_many(self, datasets: list[str]) -> dict[str, PipelineRun | PipelineError]:
        """
        Run several datasets in parallel.

        A dataset listed more than once runs once. Errors that prevent a run
        from starting are returned in place of the run.
        """
        handles: dict[str, RunHandle] = {}
        outcomes: dict[str, PipelineRun | PipelineError] = {}
        for dataset in datasets:
            if dataset in handles:
                logger.warning(f"Dataset {dataset} listed more than once; ignoring the repeat")
                continue
            handles[dataset] = self.submit(dataset)

        for dataset, handle in handles.items():
            try:
                outcomes[dataset] = handle.result()
            except PipelineError as e:
                logger.error(f"Run for {dataset} did not start: {e}")
                outcomes[dataset] = e
        return outcomes

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_guard:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_guard:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.settings.max_parallel_runs,
                    thread_name_prefix="pipeline-run",
                )
            return self._executor

    def _execute(self, run: PipelineRun, cancel_event: threading.Event) -> None:
        stage_fns: dict[str, Callable[[PipelineRun], JobRun]] = {
            "ingest": self._ingest_stage,
            "transform": self._transform_stage,
            "aggregate": self._aggregate_stage,
        }

        for state, stage in STAGES:
            if cancel_event.is_set():
                cancelled = RunCancelledError(run.dataset, stage)
                logger.warning(str(cancelled), extra={"run_id": run.run_id})
                run.error_message = str(cancelled)
                run.transition(RunState.CANCELLED)
                return

            run.transition(state)
            job = self._run_stage(run, stage, stage_fns[stage])
            if job.status == "FAILED":
                run.failed_stage = stage
                run.error_message = job.error_message
                run.transition(RunState.FAILED)
                return

        run.transition(RunState.SUCCEEDED)

    def _run_stage(self, run: PipelineRun, stage: str, fn: Callable[[PipelineRun], JobRun]) -> JobRun:
        """
        Run one stage with timeout and retries, then record its JobRun.

        Only StoreError is retried; a retry resumes after the last commit.
        """
        started_at = utcnow()
        attempts = self.settings.stage_retries + 1
        job: JobRun | None = None

        for attempt in range(1, attempts + 1):
            attempt_started = time.monotonic()
            try:
                with log_operation(f"{stage} {run.dataset}", logger=logger, run_id=run.run_id, attempt=attempt):
                    job = self._call_with_timeout(stage, fn, run)
            except StoreError as e:
                metrics.record_stage(run.dataset, stage, "failure", time.monotonic() - attempt_started)
                if attempt < attempts:
                    metrics.record_retry(run.dataset, stage)
                    logger.warning(
                        f"Stage {stage} for {run.dataset} hit a store error, retrying "
                        f"({attempt}/{self.settings.stage_retries}): {e}"
                    )
                    time.sleep(self.settings.retry_delay_seconds)
                    continue
                job = self._failed_job(run, stage, e)
            except (PipelineError, OSError) as e:
                metrics.record_stage(run.dataset, stage, "failure", time.monotonic() - attempt_started)
                job = self._failed_job(run, stage, e)
            else:
                metrics.record_stage(run.dataset, stage, "success", time.monotonic() - attempt_started)
            break

        job.started_at = started_at
        job.ended_at = utcnow()
        self._record_job(job)
        return job

    def _call_with_timeout(self, stage: str, fn: Callable[[PipelineRun], JobRun], run: PipelineRun) -> JobRun:
        timeout = self.settings.stage_timeout_seconds
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"stage-{stage}")
        try:
            future = executor.submit(fn, run)
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError as e:
                with self._abandoned_guard:
                    self._abandoned[run.run_id] = future
                raise StageTimeoutError(stage, timeout) from e
        finally:
            # A timed out stage is abandoned, not awaited; its open batch rolls back or commits whole
            executor.shutdown(wait=False)

    def _release_when_done(self, run: PipelineRun, stalled: Future, held: ExitStack) -> None:
        """Hand the dataset lock to an abandoned stage; it is released when the stage ends."""
        if not stalled.done():
            logger.warning(
                f"Abandoned stage of run {run.run_id} is still running; {run.dataset} stays locked until it ends",
                extra={"run_id": run.run_id},
            )

        def release(_: Future) -> None:
            try:
                held.close()
            except StoreError:
                logger.error(f"Could not release the lock on {run.dataset} after run {run.run_id}", exc_info=True)
            else:
                logger.info(f"Released {run.dataset} after the abandoned stage of run {run.run_id} ended")

        stalled.add_done_callback(release)

    # =======================
    # STAGES
    # =======================

    def _ingest_stage(self, run: PipelineRun) -> JobRun:
        if self.landing is None:
            logger.info(f"No landing store configured; nothing to ingest for {run.dataset}")
            summary = IngestionSummary(dataset=run.dataset)
        else:
            summary = self.loader.ingest_new(run.dataset, self.landing)
        run.ingestion = summary

        return self._job(
            run,
            "ingest",
            status="PARTIAL" if summary.rejected else "SUCCESS",
            rows_processed=summary.total,
            rows_rejected=summary.rejected,
            error_samples=summary.error_samples[: self.settings.error_sample_size],
        )

    def _transform_stage(self, run: PipelineRun) -> JobRun:
        result = self.engine.transform(run.dataset)
        run.transform = result

        return self._job(
            run,
            "transform",
            status="PARTIAL" if result.rows_filtered else "SUCCESS",
            rows_processed=result.rows_in,
            rows_filtered=result.rows_filtered,
            watermark_before=result.watermark_before,
            watermark_after=result.watermark_after,
            error_samples=result.filter_samples,
        )

    def _aggregate_stage(self, run: PipelineRun) -> JobRun:
        results, failures = self.aggregator.refresh_many(self.aggregator.tables_for(run.dataset))
        run.curated = results
        run.curated_failures = {name: str(error) for name, error in failures.items()}

        if failures:
            # Tables that did compute keep their new contents
            first = next(iter(failures.values()))
            raise AggregationError(first.table_name, f"{len(failures)} curated table(s) failed: {first}")

        return self._job(
            run,
            "aggregate",
            status="SUCCESS",
            rows_processed=sum(result.row_count for result in results),
        )

    # =======================
    # JOB RUNS
    # =======================

    def _job(self, run: PipelineRun, stage: str, status: str, **fields: Any) -> JobRun:
        return JobRun(
            run_id=run.run_id,
            job_name=f"{run.dataset}.{stage}",
            dataset=run.dataset,
            stage=stage,
            status=status,
            **fields,
        )

    def _failed_job(self, run: PipelineRun, stage: str, error: Exception) -> JobRun:
        logger.error(
            f"Stage {stage} failed for {run.dataset}: {error}",
            extra={"run_id": run.run_id, "error_type": type(error).__name__},
        )
        samples = list(run.curated_failures.values()) if stage == "aggregate" else []
        return self._job(run, stage, status="FAILED", error_message=str(error), error_samples=samples)

    def _record_pipeline_job(self, run: PipelineRun) -> None:
        ingestion = run.ingestion or IngestionSummary(dataset=run.dataset)
        transform = run.transform

        if run.state == RunState.SUCCEEDED:
            status = "SUCCESS"
        elif run.state == RunState.FAILED:
            status = "FAILED"
        else:
            status = "PARTIAL"

        job = self._job(
            run,
            "pipeline",
            status=status,
            rows_processed=ingestion.total,
            rows_rejected=ingestion.rejected,
            rows_filtered=transform.rows_filtered if transform else 0,
            watermark_before=transform.watermark_before if transform else None,
            watermark_after=transform.watermark_after if transform else None,
            error_message=run.error_message,
        )
        # The pipeline entry names the stage it stopped in
        job.stage = run.failed_stage or self._last_stage(run)
        job.started_at = run.started_at
        job.ended_at = run.ended_at
        self._record_job(job)

    @staticmethod
    def _last_stage(run: PipelineRun) -> str:
        stage_names = dict(STAGES)
        for state in reversed(run.states):
            if state in stage_names:
                return stage_names[state]
        return "pending"

    def _record_job(self, job: JobRun) -> None:
        try:
            record_job_run(self.store, job)
        except StoreError:
            logger.error(f"Could not record job run {job.job_name} ({job.status})", exc_info=True)

    # =======================
    # STATUS
    # =======================

    def status(self, dataset: str) -> DatasetStatus:
        """
        Last run, watermarks and row counts for a dataset.

        Raises:
            SchemaNotFoundError: Unknown dataset
        """
        self.registry.get(dataset)
        pipeline_runs = query_job_runs(self.store, job_name=f"{dataset}.pipeline", limit=1)
        last_run = pipeline_runs[0] if pipeline_runs else None
        stages = []
        if last_run is not None:
            stages = [
                job
                for job in reversed(query_job_runs(self.store, run_id=last_run.run_id))
                if job.job_name != last_run.job_name
            ]

        return DatasetStatus(
            dataset=dataset,
            last_run=last_run,
            stages=stages,
            watermark=self.tracker.get_watermark(dataset, Transition.RAW_TO_STAGING),
            landed_files=self.store.count("landed_file", where={"dataset": dataset}),
            raw_valid=self.store.count("raw_record", where={"dataset": dataset, "validation_status": "VALID"}),
            raw_rejected=self.store.count(
                "raw_record", where={"dataset": dataset, "validation_status": "REJECTED"}
            ),
            staging_rows=self.store.count("staging_record", where={"dataset": dataset}),
            curated={
                name: self.tracker.get_watermark(name, Transition.STAGING_TO_CURATED)
                for name in self.aggregator.tables_for(dataset)
            },
        )
