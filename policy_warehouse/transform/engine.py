"""
Transform engine: VALID RAW rows above the watermark -> STAGING.

Each batch runs in one unit of work under the (dataset, raw_to_staging)
lock: read rows past the watermark, write staging rows, advance the
watermark. A failure anywhere in the batch rolls all of it back, leaving
the watermark where it was so the batch can be retried in full.
"""

from typing import Any

from policy_warehouse.config import PipelineConfig
from policy_warehouse.core.models import StagingRecord, TransformResult, Transition
from policy_warehouse.core.schema import SchemaDefinition, SchemaRegistry
from policy_warehouse.observability import metrics
from policy_warehouse.observability.logger import get_logger
from policy_warehouse.tracking import WatermarkTracker, watermark_lock_name
from policy_warehouse.warehouse import TableStore

from .rules import RowFiltered, apply_rules, build_rules

logger = get_logger(__name__)


class TransformEngine:
    """
    Applies dataset rules to new RAW rows and writes StagingRecords.

    Supersede modes:
    - replace: one staging row per business key, newest RAW lineage wins
    - retain: one staging row per RAW lineage id
    """

    def __init__(
        self,
        store: TableStore,
        registry: SchemaRegistry,
        config: PipelineConfig | None = None,
        tracker: WatermarkTracker | None = None,
    ):
        self.store = store
        self.registry = registry
        self.config = config or PipelineConfig()
        self.settings = self.config.transform
        self.tracker = tracker or WatermarkTracker(store)
        self.sample_size = self.config.orchestrator.error_sample_size

    def transform(self, dataset_name: str) -> TransformResult:
        """
        Process every committed VALID RAW row past the watermark.

        Returns:
            TransformResult with rows_in, rows_out, rows_filtered summed over
            all batches and the watermark before/after

        Raises:
            SchemaNotFoundError: Unknown dataset
            StoreError: Store failure (the failed batch is rolled back)
        """
        schema = self.registry.get(dataset_name)
        rules = build_rules(schema, self.settings)
        before = self.tracker.get_watermark(dataset_name, Transition.RAW_TO_STAGING).value
        result = TransformResult(dataset=dataset_name, watermark_before=before, watermark_after=before)
        filtered_by_rule: dict[str, int] = {}

        while self._run_batch(schema, rules, result, filtered_by_rule):
            pass

        metrics.record_transform(dataset_name, result.rows_out, filtered_by_rule)
        logger.info(
            f"Transformed {dataset_name}: {result.rows_in} in, {result.rows_out} out, "
            f"{result.rows_filtered} filtered, watermark {result.watermark_before} -> {result.watermark_after}",
            extra={"dataset": dataset_name, "batches": result.batches},
        )
        return result

    def _run_batch(
        self,
        schema: SchemaDefinition,
        rules: list,
        result: TransformResult,
        filtered_by_rule: dict[str, int],
    ) -> bool:
        dataset = schema.dataset
        lock = watermark_lock_name(dataset, Transition.RAW_TO_STAGING)

        with self.store.transaction(lock=lock) as tx:
            mark = self.tracker.get_watermark(dataset, Transition.RAW_TO_STAGING, store=tx)
            raw_rows = tx.query(
                "raw_record",
                where={"dataset": dataset, "validation_status": "VALID"},
                after=("raw_id", mark.value),
                order_by="raw_id",
                limit=self.settings.batch_size,
            )
            if not raw_rows:
                return False

            staged: list[dict[str, Any]] = []
            batch_filtered: list[str] = []
            batch_rule_counts: dict[str, int] = {}
            for raw in raw_rows:
                try:
                    staged.append(self._stage_row(schema, rules, raw))
                except RowFiltered as e:
                    batch_rule_counts[e.rule] = batch_rule_counts.get(e.rule, 0) + 1
                    batch_filtered.append(f"raw_id {raw['raw_id']}: {e}")
                    logger.debug(f"Filtered {dataset} raw_id={raw['raw_id']}: {e}")

            chunk_size = self.settings.write_chunk_size
            for start in range(0, len(staged), chunk_size):
                tx.upsert("staging_record", staged[start:start + chunk_size], key=("dataset", "version_key"))

            new_mark = raw_rows[-1]["raw_id"]
            self.tracker.advance(dataset, Transition.RAW_TO_STAGING, new_mark, store=tx)

        # Only count what committed
        metrics.record_watermark(dataset, Transition.RAW_TO_STAGING.value, new_mark)
        result.batches += 1
        result.rows_in += len(raw_rows)
        result.rows_out += len(staged)
        result.rows_filtered += len(batch_filtered)
        result.watermark_after = new_mark
        room = self.sample_size - len(result.filter_samples)
        result.filter_samples.extend(batch_filtered[:max(room, 0)])
        for rule, count in batch_rule_counts.items():
            filtered_by_rule[rule] = filtered_by_rule.get(rule, 0) + count

        logger.debug(f"Committed {dataset} batch up to raw_id {new_mark}")
        return len(raw_rows) == self.settings.batch_size

    def _stage_row(self, schema: SchemaDefinition, rules: list, raw: dict[str, Any]) -> dict[str, Any]:
        outcome = self.registry.validate(schema.dataset, raw["payload"])
        if not outcome.ok:
            # Only reachable if the schema changed since ingestion
            raise RowFiltered("coercion", "; ".join(outcome.errors))

        values = apply_rules(outcome.values, rules)
        record_key = str(values[schema.key_field])
        version_key = record_key if self.settings.supersede == "replace" else str(raw["raw_id"])

        record = StagingRecord(
            dataset=schema.dataset,
            record_key=record_key,
            raw_id=raw["raw_id"],
            data=values,
        )
        return record.model_dump(exclude={"staging_id"}) | {"version_key": version_key}
