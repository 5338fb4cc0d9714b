"""
Unit tests for transform rules and the transform engine.

Includes property-based testing with hypothesis for the row rules.
"""

import io
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from policy_warehouse.config import PipelineConfig, TransformSettings
from policy_warehouse.core.errors import StoreError
from policy_warehouse.core.models import Location, Transition
from policy_warehouse.core.schema import CLAIMS_SCHEMA, POLICIES_SCHEMA
from policy_warehouse.ingestion import IngestionLoader
from policy_warehouse.observability import metrics
from policy_warehouse.tracking import WatermarkTracker
from policy_warehouse.transform import (
    RowFiltered,
    TransformEngine,
    apply_rules,
    build_rules,
    pack_location,
    require_minimum,
    uppercase,
)
from policy_warehouse.warehouse import InMemoryTableStore

from conftest import (
    CLAIMS_CSV,
    CLAIMS_HEADER,
    POLICIES_CSV,
    POLICIES_HEADER,
    ingest_during_transform,
)


def _ingest(store, registry, dataset, text, config=None):
    loader = IngestionLoader(store, registry, config)
    return loader.ingest(dataset, io.BytesIO(text.encode()), source_file=f"{dataset}.csv")


def _policy_rows(count: int, start: int = 1) -> str:
    lines = [
        f"POL{i:05d},CUST{i:05d},life,2023-01-01,,100.00,5000.00,-26.2,28.0"
        for i in range(start, start + count)
    ]
    return POLICIES_HEADER + "\n" + "\n".join(lines) + "\n"


class FlakyStagingStore(InMemoryTableStore):
    """In-memory store whose Nth staging upsert fails while armed."""

    def __init__(self, fail_on_call: int):
        super().__init__(lock_timeout=5.0)
        self.fail_on_call = fail_on_call
        self.armed = True
        self.staging_calls = 0

    def upsert(self, table, rows, key):
        if table == "staging_record":
            self.staging_calls += 1
            if self.armed and self.staging_calls == self.fail_on_call:
                raise StoreError("connection reset during staging write")
        return super().upsert(table, rows, key)


@pytest.mark.unit
class TestRowRules:
    """Tests for the pure row rules"""

    def test_uppercase_strips_and_uppercases(self):
        """Test listed fields are normalized, others untouched"""
        row = {"product_type": " funeral ", "customer_id": "cust1"}

        result = uppercase(row, ["product_type"])

        assert result == {"product_type": "FUNERAL", "customer_id": "cust1"}
        assert row["product_type"] == " funeral "

    def test_uppercase_ignores_nulls(self):
        """Test None values pass through"""
        assert uppercase({"claim_status": None}, ["claim_status"]) == {"claim_status": None}

    def test_exclusive_floor_drops_equal_value(self):
        """Test premium == floor is dropped when the floor is exclusive"""
        with pytest.raises(RowFiltered) as exc_info:
            require_minimum({"monthly_premium": Decimal("0")}, "monthly_premium", Decimal("0"), inclusive=False)

        assert exc_info.value.rule == "numeric_floor"
        assert "monthly_premium" in exc_info.value.reason

    def test_inclusive_floor_keeps_equal_value(self):
        """Test claim amount == floor is kept when the floor is inclusive"""
        row = {"claim_amount": Decimal("0")}
        assert require_minimum(row, "claim_amount", Decimal("0"), inclusive=True) == row

    def test_inclusive_floor_drops_below(self):
        """Test a negative claim amount is dropped"""
        with pytest.raises(RowFiltered):
            require_minimum({"claim_amount": Decimal("-1")}, "claim_amount", Decimal("0"), inclusive=True)

    def test_floor_ignores_null(self):
        """Test null values are not filtered"""
        row = {"claim_amount": None}
        assert require_minimum(row, "claim_amount", Decimal("0"), inclusive=True) == row

    def test_pack_location_replaces_columns(self):
        """Test the coordinate columns become one Location"""
        point = CLAIMS_SCHEMA.geo_points[0]
        row = {"claim_id": "C1", "loss_latitude": -26.2, "loss_longitude": 28.0}

        result = pack_location(row, point)

        assert result == {"claim_id": "C1", "loss_location": Location(28.0, -26.2)}

    def test_pack_location_drops_bad_pair(self):
        """Test an out-of-range pair is filtered, not raised as an error"""
        point = CLAIMS_SCHEMA.geo_points[0]

        with pytest.raises(RowFiltered) as exc_info:
            pack_location({"loss_latitude": 100.0, "loss_longitude": 0.0}, point)

        assert exc_info.value.rule == "geo_pack"

    def test_build_rules_per_dataset(self):
        """Test the chain order: uppercase, numeric floor, geo packing"""
        settings = TransformSettings()

        policy_rules = [name for name, _ in build_rules(POLICIES_SCHEMA, settings)]
        claim_rules = [name for name, _ in build_rules(CLAIMS_SCHEMA, settings)]

        assert policy_rules == ["uppercase", "numeric_floor", "geo_pack"]
        assert claim_rules == ["uppercase", "numeric_floor", "geo_pack"]

    def test_configured_floor_is_used(self):
        """Test premium_floor from settings drives the filter"""
        rules = build_rules(POLICIES_SCHEMA, TransformSettings(premium_floor=Decimal("50")))
        row = {
            "product_type": "life",
            "monthly_premium": Decimal("50.00"),
            "insured_latitude": 0.0,
            "insured_longitude": 0.0,
        }

        with pytest.raises(RowFiltered):
            apply_rules(row, rules)

    @given(st.decimals(min_value=Decimal("0.01"), max_value=Decimal("100000"), places=2))
    def test_property_positive_premiums_survive(self, premium):
        """Property test: every positive premium passes the default chain"""
        rules = build_rules(POLICIES_SCHEMA, TransformSettings())
        row = {
            "policy_id": "P",
            "product_type": "life",
            "monthly_premium": premium,
            "insured_latitude": 1.0,
            "insured_longitude": 2.0,
        }

        result = apply_rules(row, rules)

        assert result["monthly_premium"] == premium
        assert result["product_type"] == "LIFE"
        assert result["insured_location"] == Location(2.0, 1.0)

    @given(st.decimals(max_value=Decimal("0"), places=2, allow_nan=False, allow_infinity=False))
    def test_property_non_positive_premiums_dropped(self, premium):
        """Property test: premiums <= 0 are always filtered"""
        with pytest.raises(RowFiltered):
            require_minimum({"monthly_premium": premium}, "monthly_premium", Decimal("0"), inclusive=False)


@pytest.mark.unit
class TestTransformEngine:
    """Tests for TransformEngine"""

    def test_transform_scenario_policies(self, memory_store, registry):
        """Test all three scenario policies become staging rows"""
        _ingest(memory_store, registry, "policies", POLICIES_CSV)

        result = TransformEngine(memory_store, registry).transform("policies")

        assert (result.rows_in, result.rows_out, result.rows_filtered) == (3, 3, 0)
        staging = {row["record_key"]: row for row in memory_store.query("staging_record")}
        assert set(staging) == {"POL001", "POL002", "POL003"}
        assert staging["POL001"]["data"]["product_type"] == "FUNERAL"
        assert staging["POL001"]["data"]["insured_location"] == Location(28.0473, -26.2041)
        assert "insured_latitude" not in staging["POL001"]["data"]
        assert staging["POL003"]["data"]["sum_assured"] == Decimal("0.00")

    def test_watermark_advances_to_last_raw_id(self, memory_store, registry):
        """Test the watermark ends on the highest processed RAW id"""
        _ingest(memory_store, registry, "claims", CLAIMS_CSV)
        last_raw_id = max(row["raw_id"] for row in memory_store.query("raw_record"))

        result = TransformEngine(memory_store, registry).transform("claims")

        assert result.watermark_before == 0
        assert result.watermark_after == last_raw_id
        mark = WatermarkTracker(memory_store).get_watermark("claims", Transition.RAW_TO_STAGING)
        assert mark.value == last_raw_id

    def test_filters_are_counted_not_rejected(self, memory_store, registry):
        """Test filter drops are counted separately from ingestion rejects"""
        text = CLAIMS_HEADER + "\n" + "\n".join(
            [
                "C1,POL001,death,2024-01-01,100.00,open,0,0",
                "C2,POL001,death,2024-01-01,-5.00,open,0,0",
                "C3,POL001,death,2024-01-01,0,open,0,0",
                "C4,POL001,death,2024-01-01,oops,open,0,0",
            ]
        ) + "\n"
        ingest = _ingest(memory_store, registry, "claims", text)

        result = TransformEngine(memory_store, registry).transform("claims")

        assert ingest.rejected == 1
        assert result.rows_in == 3
        assert result.rows_out == 2
        assert result.rows_filtered == 1
        assert "numeric_floor" in result.filter_samples[0]
        assert {row["record_key"] for row in memory_store.query("staging_record")} == {"C1", "C3"}

    def test_rejected_rows_never_reach_staging(self, memory_store, registry):
        """Test REJECTED RAW rows produce no staging rows"""
        text = POLICIES_HEADER + "\nPOL1,C,life,bad-date,,1,1,0,0\nPOL2,C,life,2023-01-01,,1,1,0,0\n"
        _ingest(memory_store, registry, "policies", text)

        TransformEngine(memory_store, registry).transform("policies")

        rejected_ids = {
            row["raw_id"] for row in memory_store.query("raw_record", where={"validation_status": "REJECTED"})
        }
        staged_ids = {row["raw_id"] for row in memory_store.query("staging_record")}
        assert rejected_ids
        assert not rejected_ids & staged_ids

    def test_unmoved_watermark_reprocesses_nothing(self, memory_store, registry):
        """Test a second transform with no new RAW rows writes nothing"""
        _ingest(memory_store, registry, "policies", POLICIES_CSV)
        engine = TransformEngine(memory_store, registry)
        engine.transform("policies")

        again = engine.transform("policies")

        assert (again.rows_in, again.rows_out, again.batches) == (0, 0, 0)
        assert again.watermark_before == again.watermark_after
        assert memory_store.count("staging_record") == 3

    def test_reingest_supersedes_in_replace_mode(self, memory_store, registry):
        """Test re-landed rows replace the staging row for the same key"""
        engine = TransformEngine(memory_store, registry)
        _ingest(memory_store, registry, "policies", POLICIES_CSV)
        engine.transform("policies")

        _ingest(memory_store, registry, "policies", POLICIES_CSV.replace("100.00", "120.00"))
        result = engine.transform("policies")

        assert result.rows_in == 3
        assert memory_store.count("staging_record") == 3
        pol1 = memory_store.query("staging_record", where={"record_key": "POL001"})[0]
        assert pol1["data"]["monthly_premium"] == Decimal("120.00")

    def test_retain_mode_keeps_every_version(self, memory_store, registry):
        """Test retain mode keeps one staging row per RAW lineage id"""
        config = PipelineConfig(transform=TransformSettings(supersede="retain"))
        engine = TransformEngine(memory_store, registry, config)
        _ingest(memory_store, registry, "policies", POLICIES_CSV)
        engine.transform("policies")
        _ingest(memory_store, registry, "policies", POLICIES_CSV)
        engine.transform("policies")

        assert memory_store.count("staging_record") == 6
        assert memory_store.count("staging_record", where={"record_key": "POL001"}) == 2

    def test_multiple_batches(self, memory_store, registry):
        """Test rows are committed batch by batch"""
        config = PipelineConfig(transform=TransformSettings(batch_size=4, write_chunk_size=3))
        _ingest(memory_store, registry, "policies", _policy_rows(10))

        result = TransformEngine(memory_store, registry, config).transform("policies")

        assert result.batches == 3
        assert result.rows_out == 10
        assert memory_store.count("staging_record") == 10

    def test_failed_batch_leaves_watermark_and_reruns_in_full(self, registry):
        """Test a failure after 500 of 1000 rows rolls back; the rerun writes exactly 1000"""
        store = FlakyStagingStore(fail_on_call=2)
        config = PipelineConfig(transform=TransformSettings(batch_size=1000, write_chunk_size=500))
        _ingest(store, registry, "policies", _policy_rows(1000))
        engine = TransformEngine(store, registry, config)

        with pytest.raises(StoreError):
            engine.transform("policies")

        tracker = WatermarkTracker(store)
        assert tracker.get_watermark("policies", Transition.RAW_TO_STAGING).value == 0
        assert store.count("staging_record") == 0

        store.armed = False
        result = engine.transform("policies")

        assert result.rows_in == 1000
        assert result.rows_out == 1000
        assert store.count("staging_record") == 1000
        assert len({row["record_key"] for row in store.query("staging_record")}) == 1000
        last_raw_id = max(row["raw_id"] for row in store.query("raw_record"))
        assert tracker.get_watermark("policies", Transition.RAW_TO_STAGING).value == last_raw_id

    def test_watermark_gauge_follows_commits_only(self, registry):
        """Test a rolled back batch leaves the watermark gauge where it was"""
        store = FlakyStagingStore(fail_on_call=1)
        _ingest(store, registry, "policies", _policy_rows(5))
        engine = TransformEngine(store, registry)
        labels = {"dataset": "policies", "transition": "raw_to_staging"}
        metrics.record_watermark("policies", "raw_to_staging", 0)

        with pytest.raises(StoreError):
            engine.transform("policies")
        assert metrics.REGISTRY.get_sample_value("pipeline_watermark_value", labels) == 0

        store.armed = False
        engine.transform("policies")
        assert metrics.REGISTRY.get_sample_value("pipeline_watermark_value", labels) == 5

    def test_failure_in_later_batch_keeps_earlier_commits(self, registry):
        """Test batches committed before a failure stay committed"""
        store = FlakyStagingStore(fail_on_call=3)
        config = PipelineConfig(transform=TransformSettings(batch_size=5, write_chunk_size=5))
        _ingest(store, registry, "policies", _policy_rows(15))
        engine = TransformEngine(store, registry, config)

        with pytest.raises(StoreError):
            engine.transform("policies")

        assert store.count("staging_record") == 10
        store.armed = False
        assert engine.transform("policies").rows_out == 5
        assert store.count("staging_record") == 15

    def test_late_committing_ingest_is_not_skipped(self, memory_store, registry):
        """Test RAW rows with low ids committed after a later ingest still reach staging"""
        ingest_during_transform(memory_store, registry)

        TransformEngine(memory_store, registry).transform("policies")

        assert memory_store.count("raw_record") == 6
        assert memory_store.count("staging_record") == 6
        last_raw_id = max(row["raw_id"] for row in memory_store.query("raw_record"))
        mark = WatermarkTracker(memory_store).get_watermark("policies", Transition.RAW_TO_STAGING)
        assert mark.value == last_raw_id
