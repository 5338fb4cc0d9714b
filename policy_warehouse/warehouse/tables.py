"""
Catalog of engine tables.

Both store implementations use this catalog; docker/init-db.sql carries the
matching PostgreSQL DDL.
"""

from dataclasses import dataclass

from policy_warehouse.core.errors import StoreError


@dataclass(frozen=True)
class TableSpec:
    name: str
    columns: tuple[str, ...]
    id_column: str | None = None
    json_columns: tuple[str, ...] = ()


TABLES: dict[str, TableSpec] = {
    spec.name: spec
    for spec in (
        TableSpec(
            name="landed_file",
            id_column="file_id",
            columns=(
                "file_id", "dataset", "path", "checksum", "size_bytes",
                "modified_at", "ingested_at", "rows_accepted", "rows_rejected",
            ),
        ),
        TableSpec(
            name="raw_record",
            id_column="raw_id",
            columns=(
                "raw_id", "dataset", "source_file", "row_number", "ingested_at",
                "validation_status", "rejection_reason", "payload",
            ),
            json_columns=("payload",),
        ),
        TableSpec(
            name="staging_record",
            id_column="staging_id",
            columns=(
                "staging_id", "dataset", "record_key", "version_key", "raw_id",
                "data", "transformed_at",
            ),
            json_columns=("data",),
        ),
        TableSpec(
            name="watermark",
            columns=("dataset", "transition", "value", "updated_at", "fingerprint"),
        ),
        TableSpec(
            name="curated_row",
            id_column="curated_id",
            columns=("curated_id", "table_name", "row_data", "computed_at"),
            json_columns=("row_data",),
        ),
        TableSpec(
            name="job_run",
            id_column="job_id",
            columns=(
                "job_id", "run_id", "job_name", "dataset", "stage", "started_at",
                "ended_at", "status", "rows_processed", "rows_rejected",
                "rows_filtered", "watermark_before", "watermark_after",
                "error_message", "error_samples",
            ),
            json_columns=("error_samples",),
        ),
    )
}


def get_table(name: str) -> TableSpec:
    spec = TABLES.get(name)
    if spec is None:
        raise StoreError(f"Unknown table: {name}")
    return spec
