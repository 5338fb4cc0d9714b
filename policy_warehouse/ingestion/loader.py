"""
Ingestion loader: landed files -> RAW layer.

Every row of a file is written to RAW, VALID or REJECTED, together with the
landed-file manifest entry, in one unit of work. Row-level problems never
abort the file; unreadable files and unknown datasets do.
"""

import csv
import hashlib
import io
from pathlib import Path
from typing import BinaryIO

from pydantic import BaseModel, Field

from policy_warehouse.config import PipelineConfig
from policy_warehouse.core.errors import IngestionError
from policy_warehouse.core.models import IngestResult, LandedFile, RawRecord, Transition
from policy_warehouse.core.models._time import utcnow
from policy_warehouse.core.schema import SchemaRegistry
from policy_warehouse.landing import LandedObject, LandingStore
from policy_warehouse.observability import metrics
from policy_warehouse.observability.logger import get_logger
from policy_warehouse.tracking import watermark_lock_name
from policy_warehouse.warehouse import TableStore

from .reader import DelimitedReader

logger = get_logger(__name__)

WRITE_CHUNK_SIZE = 1000


class IngestionSummary(BaseModel):
    """Totals for one discovery pass over the landing store."""

    dataset: str
    files: list[IngestResult] = Field(default_factory=list)
    skipped_files: int = 0

    @property
    def accepted(self) -> int:
        return sum(result.accepted for result in self.files)

    @property
    def rejected(self) -> int:
        return sum(result.rejected for result in self.files)

    @property
    def total(self) -> int:
        return sum(result.total for result in self.files)

    @property
    def error_samples(self) -> list[str]:
        return [f"{result.source_file}: {error}" for result in self.files for error in result.errors]


class IngestionLoader:
    """
    Parses landed files against registered schemas and appends RawRecords.
    """

    def __init__(
        self,
        store: TableStore,
        registry: SchemaRegistry,
        config: PipelineConfig | None = None,
    ):
        self.store = store
        self.registry = registry
        self.config = config or PipelineConfig()
        self.reader = DelimitedReader(self.config.reader)
        self.sample_size = self.config.orchestrator.error_sample_size

    def ingest(
        self,
        dataset_name: str,
        file_handle: BinaryIO | str | Path,
        source_file: str | None = None,
        landed: LandedObject | None = None,
    ) -> IngestResult:
        """
        Ingest one file into RAW.

        Args:
            dataset_name: Registered dataset
            file_handle: Binary stream or filesystem path
            source_file: Provenance name (defaults to the path or stream name)
            landed: Landing handle, recorded in the landed-file manifest

        Returns:
            IngestResult with accepted/rejected counts and error samples

        Raises:
            SchemaNotFoundError: Unknown dataset
            IngestionError: File cannot be opened, read or decoded
            StoreError: Write failure, or the dataset watermark lock was not
                available within the store lock timeout
        """
        schema = self.registry.get(dataset_name)
        content = self._read_bytes(file_handle)
        source_file = source_file or (landed.path if landed else self._name_of(file_handle))

        ingested_at = utcnow()
        records: list[RawRecord] = []
        result = IngestResult(dataset=dataset_name, source_file=source_file)

        try:
            for parsed in self.reader.read_rows(io.BytesIO(content), schema.column_names):
                if parsed.error is not None:
                    errors = [parsed.error]
                else:
                    errors = self.registry.validate(dataset_name, parsed.values).errors

                if errors:
                    result.rejected += 1
                    reason = "; ".join(errors)
                    if len(result.errors) < self.sample_size:
                        result.errors.append(f"row {parsed.row_number}: {reason}")
                    logger.debug(f"Rejected {source_file} row {parsed.row_number}: {reason}")
                else:
                    result.accepted += 1
                    reason = None

                records.append(
                    RawRecord(
                        dataset=dataset_name,
                        source_file=source_file,
                        row_number=parsed.row_number,
                        ingested_at=ingested_at,
                        validation_status="REJECTED" if errors else "VALID",
                        rejection_reason=reason,
                        payload=parsed.values,
                    )
                )
        except (UnicodeDecodeError, csv.Error) as e:
            raise IngestionError(source_file, f"unreadable file: {e}") from e

        manifest = LandedFile(
            dataset=dataset_name,
            path=source_file,
            checksum=hashlib.sha256(content).hexdigest(),
            size_bytes=len(content),
            modified_at=landed.modified_at if landed else None,
            ingested_at=ingested_at,
            rows_accepted=result.accepted,
            rows_rejected=result.rejected,
        )

        # RAW ids are drawn on insert, so appends must not interleave with a
        # transform batch reading past the watermark
        lock = watermark_lock_name(dataset_name, Transition.RAW_TO_STAGING)
        with self.store.transaction(lock=lock) as tx:
            for start in range(0, len(records), WRITE_CHUNK_SIZE):
                chunk = records[start:start + WRITE_CHUNK_SIZE]
                tx.append("raw_record", [record.model_dump(exclude={"raw_id"}) for record in chunk])
            tx.append("landed_file", [manifest.model_dump(exclude={"file_id"})])

        metrics.record_ingest(dataset_name, result.accepted, result.rejected)
        logger.info(
            f"Ingested {source_file}: {result.accepted} accepted, {result.rejected} rejected",
            extra={"dataset": dataset_name, "accepted": result.accepted, "rejected": result.rejected},
        )
        return result

    def ingest_new(self, dataset_name: str, landing: LandingStore) -> IngestionSummary:
        """
        Ingest every landing object not yet in the manifest.

        Objects are listed from the newest manifest modification time
        onwards; an object whose content checksum is already registered for
        the dataset is skipped.
        """
        self.registry.get(dataset_name)
        summary = IngestionSummary(dataset=dataset_name)

        known = self.store.query("landed_file", where={"dataset": dataset_name})
        known_checksums = {row["checksum"] for row in known}
        since = max(
            (row["modified_at"] for row in known if row["modified_at"] is not None),
            default=None,
        )

        for landed in landing.list_new_objects(dataset_name, since):
            try:
                with landing.read(landed) as stream:
                    content = stream.read()
            except OSError as e:
                raise IngestionError(landed.path, f"cannot read landed object: {e}") from e

            checksum = hashlib.sha256(content).hexdigest()
            if checksum in known_checksums:
                summary.skipped_files += 1
                metrics.record_skipped_file(dataset_name)
                logger.info(f"Skipping already ingested object: {landed.path}")
                continue

            summary.files.append(
                self.ingest(dataset_name, io.BytesIO(content), source_file=landed.path, landed=landed)
            )
            known_checksums.add(checksum)

        return summary

    @staticmethod
    def _read_bytes(file_handle: BinaryIO | str | Path) -> bytes:
        name = IngestionLoader._name_of(file_handle)
        try:
            if isinstance(file_handle, (str, Path)):
                return Path(file_handle).read_bytes()
            return file_handle.read()
        except OSError as e:
            raise IngestionError(name, f"cannot read file: {e}") from e

    @staticmethod
    def _name_of(file_handle: BinaryIO | str | Path) -> str:
        if isinstance(file_handle, (str, Path)):
            return str(file_handle)
        return str(getattr(file_handle, "name", "<stream>"))
