"""
Unit tests for the run orchestrator.

Stages are driven against the in-memory store; failures are injected by
replacing component methods on the orchestrator instance.
"""

import threading
import time

import pytest

from policy_warehouse.config import OrchestratorSettings, PipelineConfig, load_config
from policy_warehouse.core.errors import (
    PipelineError,
    RunInProgressError,
    SchemaNotFoundError,
    StoreError,
)
from policy_warehouse.curated import CuratedDefinition
from policy_warehouse.landing import LocalLandingStore
from policy_warehouse.orchestration import RunOrchestrator, RunState
from policy_warehouse.warehouse import query_job_runs


@pytest.fixture
def orchestrator(memory_store, registry, landing_dir, pipeline_config):
    """Orchestrator over the scenario landing directory"""
    orchestrator = RunOrchestrator(
        memory_store,
        registry,
        landing=LocalLandingStore(landing_dir),
        config=pipeline_config,
    )
    yield orchestrator
    orchestrator.shutdown()


def _jobs(store, run_id):
    return {job.job_name: job for job in query_job_runs(store, run_id=run_id)}


@pytest.mark.unit
class TestRun:
    """Tests for RunOrchestrator.run"""

    def test_successful_run(self, orchestrator, memory_store):
        """Test a clean run passes every stage and records four job runs"""
        run = orchestrator.run("policies")

        assert run.state == RunState.SUCCEEDED
        assert run.states == [
            RunState.PENDING,
            RunState.INGESTING,
            RunState.TRANSFORMING,
            RunState.AGGREGATING,
            RunState.SUCCEEDED,
        ]
        assert run.ingestion.accepted == 3
        assert run.transform.rows_out == 3
        assert {result.table_name for result in run.curated} == {
            "geo_fraud_flags",
            "loss_ratio",
            "solvency_exposure",
        }

        jobs = _jobs(memory_store, run.run_id)
        assert set(jobs) == {
            "policies.ingest",
            "policies.transform",
            "policies.aggregate",
            "policies.pipeline",
        }
        assert all(job.status == "SUCCESS" for job in jobs.values())
        assert jobs["policies.transform"].watermark_after == 3
        assert jobs["policies.pipeline"].stage == "aggregate"
        assert jobs["policies.pipeline"].rows_processed == 3

    def test_rejects_make_ingest_partial(self, orchestrator, memory_store, landing_dir):
        """Test row-level rejects mark the ingest job PARTIAL without failing the run"""
        (landing_dir / "claims" / "bad.csv").write_text(
            "claim_id,policy_id,claim_type,claim_date,claim_amount,claim_status,loss_latitude,loss_longitude\n"
            "CLM9,POL001,death,not-a-date,10.00,approved,0,0\n"
        )

        run = orchestrator.run("claims")

        assert run.state == RunState.SUCCEEDED
        jobs = _jobs(memory_store, run.run_id)
        assert jobs["claims.ingest"].status == "PARTIAL"
        assert jobs["claims.ingest"].rows_rejected == 1
        assert jobs["claims.ingest"].error_samples
        assert run.ingestion.total == 4
        assert jobs["claims.ingest"].rows_processed == 4
        assert jobs["claims.pipeline"].rows_processed == 4

    def test_second_run_processes_nothing_new(self, orchestrator):
        """Test landed files and RAW rows are not processed twice"""
        orchestrator.run("policies")

        second = orchestrator.run("policies")

        assert second.state == RunState.SUCCEEDED
        assert second.ingestion.skipped_files == 1
        assert second.transform.rows_in == 0
        assert all(result.skipped for result in second.curated)

    def test_no_landing_store(self, memory_store, registry, pipeline_config):
        """Test a run without a landing store ingests nothing and still succeeds"""
        run = RunOrchestrator(memory_store, registry, config=pipeline_config).run("claims")

        assert run.state == RunState.SUCCEEDED
        assert run.ingestion.accepted == 0

    def test_unknown_dataset(self, orchestrator, memory_store):
        """Test unknown datasets raise before anything is recorded"""
        with pytest.raises(SchemaNotFoundError):
            orchestrator.run("vehicles")

        assert memory_store.count("job_run") == 0

    def test_concurrent_run_rejected(self, orchestrator, memory_store):
        """Test a second run for a dataset already running is refused"""
        with memory_store.lock("pipeline:policies"):
            with pytest.raises(RunInProgressError):
                orchestrator.run("policies")

        assert orchestrator.run("policies").state == RunState.SUCCEEDED


@pytest.mark.unit
class TestStageFailures:
    """Tests for stage failure, retry and timeout handling"""

    def test_transform_failure_keeps_raw(self, orchestrator, memory_store, monkeypatch):
        """Test a failed transform ends FAILED and leaves committed RAW rows"""
        def broken(dataset):
            raise PipelineError("staging schema mismatch")

        monkeypatch.setattr(orchestrator.engine, "transform", broken)

        run = orchestrator.run("policies")

        assert run.state == RunState.FAILED
        assert run.failed_stage == "transform"
        assert "staging schema mismatch" in run.error_message
        assert RunState.AGGREGATING not in run.states
        assert memory_store.count("raw_record", where={"dataset": "policies"}) == 3
        assert memory_store.count("staging_record") == 0

        jobs = _jobs(memory_store, run.run_id)
        assert jobs["policies.ingest"].status == "SUCCESS"
        assert jobs["policies.transform"].status == "FAILED"
        assert "policies.aggregate" not in jobs
        assert jobs["policies.pipeline"].status == "FAILED"
        assert jobs["policies.pipeline"].stage == "transform"

    def test_store_error_retried(self, orchestrator, monkeypatch):
        """Test a transient store error is retried and the run succeeds"""
        original = orchestrator.engine.transform
        calls = []

        def flaky(dataset):
            calls.append(dataset)
            if len(calls) == 1:
                raise StoreError("connection reset")
            return original(dataset)

        monkeypatch.setattr(orchestrator.engine, "transform", flaky)

        run = orchestrator.run("policies")

        assert run.state == RunState.SUCCEEDED
        assert len(calls) == 2
        assert run.transform.rows_out == 3

    def test_retries_exhausted(self, orchestrator, monkeypatch):
        """Test a persistent store error fails the stage after every retry"""
        calls = []

        def down(dataset):
            calls.append(dataset)
            raise StoreError("database unavailable")

        monkeypatch.setattr(orchestrator.engine, "transform", down)

        run = orchestrator.run("policies")

        assert run.state == RunState.FAILED
        assert run.failed_stage == "transform"
        assert len(calls) == orchestrator.settings.stage_retries + 1

    def test_non_store_errors_not_retried(self, orchestrator, monkeypatch):
        """Test pipeline errors other than store errors fail on the first attempt"""
        calls = []

        def broken(dataset):
            calls.append(dataset)
            raise PipelineError("bad rule")

        monkeypatch.setattr(orchestrator.engine, "transform", broken)

        orchestrator.run("policies")

        assert len(calls) == 1

    def test_stage_timeout(self, memory_store, registry, landing_dir, monkeypatch):
        """Test a stage exceeding its timeout fails the run"""
        config = PipelineConfig(
            orchestrator=OrchestratorSettings(stage_timeout_seconds=0.2, retry_delay_seconds=0)
        )
        orchestrator = RunOrchestrator(memory_store, registry, LocalLandingStore(landing_dir), config)
        release = threading.Event()

        def slow(dataset):
            release.wait(5)
            return None

        monkeypatch.setattr(orchestrator.engine, "transform", slow)

        started = time.monotonic()
        run = orchestrator.run("policies")
        release.set()

        assert run.state == RunState.FAILED
        assert run.failed_stage == "transform"
        assert "did not finish within 0.2s" in run.error_message
        assert time.monotonic() - started < 5

    def test_stall_inside_open_batch_fails_on_time(self, memory_store, registry, landing_dir, monkeypatch):
        """Test a stage stuck inside its unit of work still fails the run within the timeout"""
        config = PipelineConfig(
            orchestrator=OrchestratorSettings(stage_timeout_seconds=0.2, retry_delay_seconds=0)
        )
        orchestrator = RunOrchestrator(memory_store, registry, LocalLandingStore(landing_dir), config)
        release = threading.Event()
        stage_row = orchestrator.engine._stage_row

        def stuck(schema, rules, raw):
            release.wait(5)
            return stage_row(schema, rules, raw)

        monkeypatch.setattr(orchestrator.engine, "_stage_row", stuck)

        started = time.monotonic()
        run = orchestrator.run("policies")
        elapsed = time.monotonic() - started
        release.set()

        assert run.state == RunState.FAILED
        assert run.failed_stage == "transform"
        assert elapsed < 1.5
        assert _jobs(memory_store, run.run_id)["policies.transform"].status == "FAILED"

        with memory_store.lock("pipeline:policies", blocking=True):
            # The abandoned batch commits whole once it is let go
            assert memory_store.count("staging_record") == 3
            assert orchestrator.status("policies").watermark.value == 3

    def test_abandoned_stage_keeps_dataset_locked(self, memory_store, registry, landing_dir, monkeypatch):
        """Test no new run starts for a dataset until its abandoned stage has ended"""
        config = PipelineConfig(
            orchestrator=OrchestratorSettings(stage_timeout_seconds=0.2, retry_delay_seconds=0)
        )
        orchestrator = RunOrchestrator(memory_store, registry, LocalLandingStore(landing_dir), config)
        release = threading.Event()
        transform = orchestrator.engine.transform

        def slow(dataset):
            release.wait(5)
            return transform(dataset)

        monkeypatch.setattr(orchestrator.engine, "transform", slow)

        assert orchestrator.run("policies").state == RunState.FAILED
        with pytest.raises(RunInProgressError):
            orchestrator.run("policies")

        release.set()
        with memory_store.lock("pipeline:policies", blocking=True):
            pass

        rerun = orchestrator.run("policies")
        assert rerun.state == RunState.SUCCEEDED
        assert rerun.ingestion.skipped_files == 1
        assert memory_store.count("raw_record", where={"dataset": "policies"}) == 3
        assert memory_store.count("staging_record", where={"dataset": "policies"}) == 3

    def test_aggregation_failure_fails_run(self, orchestrator, memory_store):
        """Test a broken curated table fails the run while the others still refresh"""
        def broken(sources, settings):
            raise ValueError("unexpected null")

        orchestrator.aggregator.definitions["broken"] = CuratedDefinition(
            name="broken", sources=("policies",), compute=broken
        )

        run = orchestrator.run("policies")

        assert run.state == RunState.FAILED
        assert run.failed_stage == "aggregate"
        assert list(run.curated_failures) == ["broken"]
        assert len(orchestrator.aggregator.read("loss_ratio")) == 3
        assert memory_store.count("staging_record") == 3
        jobs = _jobs(memory_store, run.run_id)
        assert jobs["policies.aggregate"].error_samples


@pytest.mark.unit
class TestCancellation:
    """Tests for run cancellation"""

    def test_cancel_before_start(self, orchestrator, memory_store):
        """Test a run cancelled before it starts does no work"""
        event = threading.Event()
        event.set()

        run = orchestrator.run("policies", cancel_event=event)

        assert run.state == RunState.CANCELLED
        assert run.states == [RunState.PENDING, RunState.CANCELLED]
        assert memory_store.count("raw_record") == 0
        jobs = _jobs(memory_store, run.run_id)
        assert list(jobs) == ["policies.pipeline"]
        assert jobs["policies.pipeline"].status == "PARTIAL"

    def test_cancel_between_stages(self, orchestrator, memory_store, monkeypatch):
        """Test cancellation stops before the next stage and keeps committed work"""
        event = threading.Event()
        original = orchestrator.loader.ingest_new

        def ingest_then_cancel(dataset, landing):
            summary = original(dataset, landing)
            event.set()
            return summary

        monkeypatch.setattr(orchestrator.loader, "ingest_new", ingest_then_cancel)

        run = orchestrator.run("policies", cancel_event=event)

        assert run.state == RunState.CANCELLED
        assert run.states[-2:] == [RunState.INGESTING, RunState.CANCELLED]
        assert "cancelled before transform" in run.error_message
        assert memory_store.count("raw_record") == 3
        assert memory_store.count("staging_record") == 0
        assert _jobs(memory_store, run.run_id)["policies.pipeline"].stage == "ingest"

    def test_handle_cancel(self, orchestrator):
        """Test a submitted run can be waited on through its handle"""
        handle = orchestrator.submit("policies")

        run = handle.result(timeout=30)

        assert handle.done()
        assert run.state == RunState.SUCCEEDED
        handle.cancel()
        assert handle.cancel_requested


@pytest.mark.unit
class TestRunMany:
    """Tests for parallel runs"""

    def test_runs_each_dataset(self, orchestrator):
        """Test every listed dataset runs once"""
        outcomes = orchestrator.run_many(["policies", "claims", "policies"])

        assert set(outcomes) == {"policies", "claims"}
        assert all(run.state == RunState.SUCCEEDED for run in outcomes.values())

    def test_unknown_dataset_reported(self, orchestrator):
        """Test a dataset that cannot start is returned as its error"""
        outcomes = orchestrator.run_many(["policies", "vehicles"])

        assert outcomes["policies"].state == RunState.SUCCEEDED
        assert isinstance(outcomes["vehicles"], SchemaNotFoundError)


@pytest.mark.unit
class TestStatus:
    """Tests for RunOrchestrator.status"""

    def test_status_after_run(self, orchestrator):
        """Test status reports the last run, its stages, marks and counts"""
        run = orchestrator.run("claims")

        status = orchestrator.status("claims")

        assert status.last_run.run_id == run.run_id
        assert status.last_run.status == "SUCCESS"
        assert [job.stage for job in status.stages] == ["ingest", "transform", "aggregate"]
        assert status.watermark.value == 3
        assert status.landed_files == 1
        assert status.raw_valid == 3
        assert status.raw_rejected == 0
        assert status.staging_rows == 3
        assert set(status.curated) == {"geo_fraud_flags", "loss_ratio"}

    def test_status_before_any_run(self, orchestrator):
        """Test status of a dataset that never ran"""
        status = orchestrator.status("policies")

        assert status.last_run is None
        assert status.stages == []
        assert status.watermark.value == 0

    def test_status_unknown_dataset(self, orchestrator):
        """Test status rejects unknown datasets"""
        with pytest.raises(SchemaNotFoundError):
            orchestrator.status("vehicles")


@pytest.mark.unit
class TestFromConfig:
    """Tests for RunOrchestrator.from_config"""

    def test_loads_schemas_from_config(self, config_file, memory_store):
        """Test dataset schemas are read from schemas_path"""
        config = load_config(config_file)

        orchestrator = RunOrchestrator.from_config(config, memory_store)

        assert set(orchestrator.registry.datasets()) == {"policies", "claims"}
        assert orchestrator.settings.stage_retries == 1

    def test_defaults_without_schemas_path(self, memory_store):
        """Test the built-in schemas are used when no path is configured"""
        orchestrator = RunOrchestrator.from_config(PipelineConfig(), memory_store)

        assert orchestrator.registry.get("claims").dataset == "claims"
