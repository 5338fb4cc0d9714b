"""
Command-line interface for the policy warehouse pipeline.

Usage:
    policy-warehouse run <dataset> [--landing DIR]
    policy-warehouse run-all [--landing DIR]
    policy-warehouse status <dataset>
    policy-warehouse recompute <table>
    policy-warehouse show <table> [--limit N]
    policy-warehouse ingest <dataset> <file>
    policy-warehouse metrics

Exit codes:
    0  run SUCCEEDED (or command completed)
    1  run FAILED (the failing stage is printed) or a fatal store error
    2  usage error: bad arguments, unknown dataset or curated table
    3  run CANCELLED
"""

import argparse
import json
import sys
from datetime import datetime

import psycopg
import pydantic
import yaml

from policy_warehouse.config import DEFAULT_CONFIG_PATH, PipelineConfig, load_config
from policy_warehouse.core.errors import (
    AggregationError,
    PipelineError,
    SchemaDefinitionError,
    SchemaNotFoundError,
    StoreError,
    UnknownCuratedTableError,
)
from policy_warehouse.landing import LocalLandingStore
from policy_warehouse.observability.logger import get_logger
from policy_warehouse.observability.metrics import get_metrics
from policy_warehouse.orchestration import PipelineRun, RunOrchestrator, RunState
from policy_warehouse.utils.validation import (
    ValidationError,
    validate_file_path,
    validate_identifier,
    validate_limit,
)
from policy_warehouse.warehouse import InMemoryTableStore, TableStore
from policy_warehouse.warehouse.connection import DatabaseConnectionPool
from policy_warehouse.warehouse.postgres_store import PostgresTableStore

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 3

RUN_EXIT_CODES = {
    RunState.SUCCEEDED: EXIT_OK,
    RunState.FAILED: EXIT_FAILED,
    RunState.CANCELLED: EXIT_CANCELLED,
}


def format_timestamp(ts: datetime | str | None) -> str:
    """Format timestamp for display."""
    if isinstance(ts, str):
        return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def build_store(args, config: PipelineConfig) -> TableStore:
    """Create the table store selected with --store."""
    if args.store == "memory":
        return InMemoryTableStore()

    pool = DatabaseConnectionPool.from_settings(config.database)
    try:
        pool.open()
    except psycopg.OperationalError as e:
        raise StoreError(str(e)) from e
    return PostgresTableStore(pool)


def build_orchestrator(args, config: PipelineConfig, store: TableStore) -> RunOrchestrator:
    landing_dir = getattr(args, "landing", None)
    landing = LocalLandingStore(validate_file_path(landing_dir, "landing")) if landing_dir else None
    return RunOrchestrator.from_config(config, store, landing=landing)


def print_run(run: PipelineRun) -> None:
    """Print a run summary."""
    print(f"\n{'=' * 60}")
    print(f"PIPELINE RUN {run.run_id} ({run.dataset}): {run.state.value}")
    print(f"{'=' * 60}")
    print(f"States: {' -> '.join(state.value for state in run.states)}")

    if run.ingestion is not None:
        print(
            f"Ingest:    {len(run.ingestion.files)} file(s), {run.ingestion.skipped_files} skipped, "
            f"{run.ingestion.accepted} accepted, {run.ingestion.rejected} rejected"
        )
        for sample in run.ingestion.error_samples[:5]:
            print(f"    {sample}")
    if run.transform is not None:
        print(
            f"Transform: {run.transform.rows_in} in, {run.transform.rows_out} out, "
            f"{run.transform.rows_filtered} filtered, watermark "
            f"{run.transform.watermark_before} -> {run.transform.watermark_after}"
        )
    for result in run.curated:
        outcome = "current, skipped" if result.skipped else f"{result.row_count} rows"
        print(f"Curated:   {result.table_name}: {outcome}")
    for table_name, error in run.curated_failures.items():
        print(f"Curated:   {table_name}: FAILED ({error})")

    if run.state == RunState.FAILED:
        print(f"\nFAILED at {run.failed_stage}: {run.error_message}")
    elif run.state == RunState.CANCELLED:
        print(f"\nCANCELLED: {run.error_message}")
    print()


def wait_for_run(orchestrator: RunOrchestrator, dataset: str) -> PipelineRun:
    """Run a dataset in the background; Ctrl-C cancels it at the next stage boundary."""
    handle = orchestrator.submit(dataset)
    try:
        return handle.result()
    except KeyboardInterrupt:
        print("\nCancelling after the current stage...", file=sys.stderr)
        handle.cancel()
        return handle.result()


def run_command(args, config: PipelineConfig, store: TableStore) -> int:
    dataset = validate_identifier(args.dataset, "dataset")
    orchestrator = build_orchestrator(args, config, store)
    try:
        run = wait_for_run(orchestrator, dataset)
    finally:
        orchestrator.shutdown()

    print_run(run)
    if args.print_metrics:
        print(get_metrics().decode())
    return RUN_EXIT_CODES[run.state]


def run_all_command(args, config: PipelineConfig, store: TableStore) -> int:
    orchestrator = build_orchestrator(args, config, store)
    try:
        outcomes = orchestrator.run_many(orchestrator.registry.datasets())
    finally:
        orchestrator.shutdown()

    exit_code = EXIT_OK
    for dataset, outcome in outcomes.items():
        if isinstance(outcome, PipelineError):
            print(f"{dataset}: did not run: {outcome}")
            exit_code = max(exit_code, EXIT_FAILED)
            continue
        print_run(outcome)
        exit_code = max(exit_code, RUN_EXIT_CODES[outcome.state])

    if args.print_metrics:
        print(get_metrics().decode())
    return exit_code


def status_command(args, config: PipelineConfig, store: TableStore) -> int:
    dataset = validate_identifier(args.dataset, "dataset")
    orchestrator = build_orchestrator(args, config, store)
    status = orchestrator.status(dataset)

    print(f"\n{'=' * 60}")
    print(f"DATASET STATUS: {dataset}")
    print(f"{'=' * 60}")
    if status.last_run is None:
        print("Last run:        never")
    else:
        last = status.last_run
        print(f"Last run:        {last.run_id} {last.status} at stage {last.stage}")
        print(f"Started:         {format_timestamp(last.started_at)}")
        print(f"Ended:           {format_timestamp(last.ended_at)}")
        if last.error_message:
            print(f"Error:           {last.error_message}")
        for job in status.stages:
            print(
                f"  {job.stage:<10} {job.status:<8} processed={job.rows_processed} "
                f"rejected={job.rows_rejected} filtered={job.rows_filtered}"
            )
            for sample in job.error_samples:
                print(f"      {sample}")

    print(f"Watermark:       {status.watermark.value} (updated {format_timestamp(status.watermark.updated_at)})")
    print(f"Landed files:    {status.landed_files}")
    print(f"RAW rows:        {status.raw_valid} valid, {status.raw_rejected} rejected")
    print(f"STAGING rows:    {status.staging_rows}")
    for table_name, mark in status.curated.items():
        print(f"Curated {table_name}: mark {mark.value} (computed {format_timestamp(mark.updated_at)})")
    print()
    return EXIT_OK


def recompute_command(args, config: PipelineConfig, store: TableStore) -> int:
    table_name = validate_identifier(args.table, "table")
    orchestrator = build_orchestrator(args, config, store)
    try:
        result = orchestrator.aggregator.recompute(table_name)
    except UnknownCuratedTableError as e:
        print(f"Error: {e}", file=sys.stderr)
        print(f"Known curated tables: {', '.join(orchestrator.aggregator.table_names())}", file=sys.stderr)
        return EXIT_USAGE
    except AggregationError as e:
        print(f"FAILED at aggregate: {e}")
        return EXIT_FAILED

    print(f"Recomputed {table_name}: {result.row_count} rows at source mark {result.source_mark}")
    return EXIT_OK


def show_command(args, config: PipelineConfig, store: TableStore) -> int:
    table_name = validate_identifier(args.table, "table")
    limit = validate_limit(args.limit)
    orchestrator = build_orchestrator(args, config, store)
    try:
        rows = orchestrator.aggregator.read(table_name)
    except UnknownCuratedTableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    for row in rows[:limit]:
        print(json.dumps(row, default=str, sort_keys=True))
    if not rows:
        print(f"No rows in {table_name}; run `recompute {table_name}` first.")
    return EXIT_OK


def ingest_command(args, config: PipelineConfig, store: TableStore) -> int:
    dataset = validate_identifier(args.dataset, "dataset")
    file_path = validate_file_path(args.file)
    orchestrator = build_orchestrator(args, config, store)
    result = orchestrator.loader.ingest(dataset, file_path)

    print(f"Ingested {result.source_file}: {result.accepted} accepted, {result.rejected} rejected")
    for error in result.errors:
        print(f"    {error}")
    return EXIT_OK


def metrics_command(args, config: PipelineConfig, store: TableStore) -> int:
    print(get_metrics().decode())
    return EXIT_OK


COMMANDS = {
    "run": run_command,
    "run-all": run_all_command,
    "status": status_command,
    "recompute": recompute_command,
    "show": show_command,
    "ingest": ingest_command,
    "metrics": metrics_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="policy-warehouse",
        description="Policy and claims warehouse pipeline (RAW -> STAGING -> CURATED)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest new landed files for policies, transform and refresh curated tables
  policy-warehouse run policies --landing landing/

  # Check the last run, watermark and row counts
  policy-warehouse status claims

  # Rebuild a curated table from current STAGING
  policy-warehouse recompute loss_ratio
        """,
    )

    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Pipeline configuration YAML (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--store",
        default="postgres",
        choices=["memory", "postgres"],
        help="Table store backend (default: postgres, configured via PW_DB_* variables)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the pipeline for one dataset")
    run_parser.add_argument("dataset", help="Dataset name (policies, claims)")
    run_parser.add_argument("--landing", default="landing", help="Landing directory (default: landing)")
    run_parser.add_argument("--print-metrics", action="store_true", help="Print Prometheus metrics after the run")

    run_all_parser = subparsers.add_parser("run-all", help="Run every registered dataset in parallel")
    run_all_parser.add_argument("--landing", default="landing", help="Landing directory (default: landing)")
    run_all_parser.add_argument("--print-metrics", action="store_true", help="Print Prometheus metrics after the runs")

    status_parser = subparsers.add_parser("status", help="Show last run, watermark and row counts")
    status_parser.add_argument("dataset", help="Dataset name")

    recompute_parser = subparsers.add_parser("recompute", help="Rebuild a curated table from STAGING")
    recompute_parser.add_argument("table", help="Curated table name")

    show_parser = subparsers.add_parser("show", help="Print the rows of a curated table")
    show_parser.add_argument("table", help="Curated table name")
    show_parser.add_argument("--limit", type=int, default=100, help="Maximum rows to print (default: 100)")

    ingest_parser = subparsers.add_parser("ingest", help="Ingest one file into RAW")
    ingest_parser.add_argument("dataset", help="Dataset name")
    ingest_parser.add_argument("file", help="Delimited text file")

    subparsers.add_parser("metrics", help="Print Prometheus metrics for this process")

    return parser


def main(argv: list[str] | None = None, store: TableStore | None = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Arguments (default: sys.argv[1:])
        store: Table store to use instead of building one from --store

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_USAGE

    owns_store = store is None
    try:
        config = load_config(args.config)
        if owns_store:
            store = build_store(args, config)
        try:
            return COMMANDS[args.command](args, config, store)
        finally:
            if owns_store:
                store.close()

    except (ValidationError, SchemaNotFoundError, SchemaDefinitionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except (pydantic.ValidationError, yaml.YAMLError) as e:
        print(f"Error: invalid configuration {args.config}: {e}", file=sys.stderr)
        return EXIT_USAGE
    except (FileNotFoundError, IsADirectoryError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except PipelineError as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
