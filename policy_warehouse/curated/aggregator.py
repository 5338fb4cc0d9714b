"""
Curated aggregator.

A curated table is replaced wholesale on every recompute, in the same unit
of work that records the staging mark and settings fingerprint it was
computed from. It never reads RAW.
"""

import hashlib

from policy_warehouse.config import CuratedSettings, PipelineConfig
from policy_warehouse.core.errors import AggregationError, UnknownCuratedTableError
from policy_warehouse.core.models import CuratedResult, CuratedRow, Transition
from policy_warehouse.core.models._time import utcnow
from policy_warehouse.observability import metrics
from policy_warehouse.observability.logger import get_logger
from policy_warehouse.tracking import WatermarkTracker, watermark_lock_name
from policy_warehouse.warehouse import TableStore

from .definitions import CURATED_TABLES, CuratedDefinition, Sources, latest_by_key

logger = get_logger(__name__)


def settings_fingerprint(settings: CuratedSettings) -> str:
    """Short digest of the curated settings a table is computed with."""
    return hashlib.sha256(settings.model_dump_json().encode("utf-8")).hexdigest()[:16]


class CuratedAggregator:
    """
    Recomputes curated tables from STAGING.

    Each table's staging_to_curated watermark holds the sum of its source
    datasets' raw_to_staging watermarks at compute time, plus a fingerprint
    of the curated settings; refresh() skips tables whose inputs and
    settings have not changed.
    """

    def __init__(
        self,
        store: TableStore,
        config: PipelineConfig | None = None,
        definitions: dict[str, CuratedDefinition] | None = None,
        tracker: WatermarkTracker | None = None,
    ):
        self.store = store
        self.config = config or PipelineConfig()
        self.definitions = dict(CURATED_TABLES if definitions is None else definitions)
        self.tracker = tracker or WatermarkTracker(store)
        self.fingerprint = settings_fingerprint(self.config.curated)

    def table_names(self) -> list[str]:
        return sorted(self.definitions)

    def tables_for(self, dataset: str) -> list[str]:
        """Curated tables that read the given staging dataset."""
        return sorted(name for name, d in self.definitions.items() if dataset in d.sources)

    def recompute(self, table_name: str) -> CuratedResult:
        """
        Drop and rebuild one curated table from current STAGING.

        Raises:
            UnknownCuratedTableError: No definition with this name
            AggregationError: The definition failed; the table keeps its
                previous contents
            StoreError: Store failure
        """
        definition = self._definition(table_name)
        lock = watermark_lock_name(table_name, Transition.STAGING_TO_CURATED)

        with self.store.transaction(lock=lock) as tx:
            source_mark = self._source_mark(definition, tx)
            sources = self._load_sources(definition, tx)

            try:
                rows = definition.compute(sources, self.config.curated)
            except Exception as e:
                metrics.record_curated(table_name, "failure")
                logger.error(f"Curated table {table_name} failed to compute: {e}", exc_info=True)
                raise AggregationError(table_name, f"{type(e).__name__}: {e}") from e

            computed_at = utcnow()
            tx.replace(
                "curated_row",
                [
                    CuratedRow(table_name=table_name, row_data=row, computed_at=computed_at).model_dump()
                    for row in rows
                ],
                match={"table_name": table_name},
            )
            self.tracker.advance(
                table_name,
                Transition.STAGING_TO_CURATED,
                source_mark,
                store=tx,
                fingerprint=self.fingerprint,
            )

        metrics.record_curated(table_name, "success")
        metrics.record_watermark(table_name, Transition.STAGING_TO_CURATED.value, source_mark)
        logger.info(
            f"Recomputed curated table {table_name}: {len(rows)} rows",
            extra={"table_name": table_name, "rows": len(rows), "source_mark": source_mark},
        )
        return CuratedResult(table_name=table_name, rows=rows, computed_at=computed_at, source_mark=source_mark)

    def refresh(self, table_name: str) -> CuratedResult:
        """Recompute a table only if its source watermarks or settings changed since the last compute."""
        definition = self._definition(table_name)
        mark = self.tracker.get_watermark(table_name, Transition.STAGING_TO_CURATED)
        source_mark = self._source_mark(definition, self.store)

        if mark.updated_at is not None and source_mark <= mark.value and mark.fingerprint == self.fingerprint:
            metrics.record_curated(table_name, "skipped")
            logger.info(f"Curated table {table_name} is current at mark {mark.value}; skipping")
            return CuratedResult(table_name=table_name, source_mark=source_mark, skipped=True)

        return self.recompute(table_name)

    def refresh_many(self, table_names: list[str]) -> tuple[list[CuratedResult], dict[str, AggregationError]]:
        """
        Refresh several tables independently.

        An AggregationError fails only its own table; the others still refresh.

        Returns:
            (results, failures by table name)
        """
        results: list[CuratedResult] = []
        failures: dict[str, AggregationError] = {}
        for name in table_names:
            try:
                results.append(self.refresh(name))
            except AggregationError as e:
                failures[name] = e
        return results, failures

    def read(self, table_name: str) -> list[dict]:
        """Current rows of a curated table, in computed order."""
        self._definition(table_name)
        rows = self.store.query("curated_row", where={"table_name": table_name}, order_by="curated_id")
        return [row["row_data"] for row in rows]

    def _definition(self, table_name: str) -> CuratedDefinition:
        definition = self.definitions.get(table_name)
        if definition is None:
            raise UnknownCuratedTableError(table_name)
        return definition

    def _source_mark(self, definition: CuratedDefinition, store: TableStore) -> int:
        return sum(
            self.tracker.get_watermark(source, Transition.RAW_TO_STAGING, store=store).value
            for source in definition.sources
        )

    @staticmethod
    def _load_sources(definition: CuratedDefinition, store: TableStore) -> Sources:
        return {
            source: latest_by_key(store.query("staging_record", where={"dataset": source}))
            for source in definition.sources
        }

