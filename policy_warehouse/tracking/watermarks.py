"""
Watermark tracker.

A watermark is a monotonically non-decreasing pointer per (dataset,
transition). Advancing it must happen inside the same unit of work as the
write it describes, and under the per-(dataset, transition) lock, so a
crashed or retried batch can neither skip nor double-count rows.
"""

from policy_warehouse.core.errors import WatermarkRegressionError
from policy_warehouse.core.models import Transition, Watermark
from policy_warehouse.observability.logger import get_logger
from policy_warehouse.warehouse import TableStore

logger = get_logger(__name__)


def watermark_lock_name(dataset: str, transition: Transition) -> str:
    """Lock name serializing writers of one watermark."""
    return f"watermark:{dataset}:{Transition(transition).value}"


class WatermarkTracker:
    """Reads and advances watermarks held in the `watermark` table."""

    def __init__(self, store: TableStore):
        self.store = store

    def get_watermark(
        self,
        dataset: str,
        transition: Transition,
        store: TableStore | None = None,
    ) -> Watermark:
        """
        Current watermark, or an initial zero mark if none was committed.

        Args:
            dataset: Dataset (or curated table) name
            transition: Guarded stage transition
            store: Transaction view to read through (default: the tracker's store)
        """
        transition = Transition(transition)
        rows = (store or self.store).query(
            "watermark",
            where={"dataset": dataset, "transition": transition.value},
            limit=1,
        )
        if not rows:
            return Watermark.initial(dataset, transition)
        return Watermark.model_validate(rows[0])

    def advance(
        self,
        dataset: str,
        transition: Transition,
        new_value: int,
        store: TableStore | None = None,
        fingerprint: str | None = None,
    ) -> Watermark:
        """
        Move a watermark forward.

        Pass the open transaction as `store` so the advance commits with the
        consuming write. Advancing to the current value with the same
        fingerprint is a no-op.

        Raises:
            WatermarkRegressionError: If new_value is below the current value
        """
        transition = Transition(transition)
        target = store or self.store
        current = self.get_watermark(dataset, transition, store=target)

        if new_value < current.value:
            raise WatermarkRegressionError(dataset, transition.value, current.value, new_value)
        if new_value == current.value and fingerprint == current.fingerprint:
            return current

        advanced = current.advanced_to(new_value, fingerprint)
        target.upsert(
            "watermark",
            [advanced.model_dump(mode="python") | {"transition": transition.value}],
            key=("dataset", "transition"),
        )
        logger.debug(f"Watermark ({dataset}, {transition.value}) advanced {current.value} -> {new_value}")
        return advanced

    def list_watermarks(self, dataset: str | None = None) -> list[Watermark]:
        where = {"dataset": dataset} if dataset is not None else None
        rows = self.store.query("watermark", where=where, order_by="dataset")
        return [Watermark.model_validate(row) for row in rows]
