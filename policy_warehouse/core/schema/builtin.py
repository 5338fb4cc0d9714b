"""
Built-in schemas for the policies and claims datasets.
"""

from .definition import FieldSpec, GeoPoint, SchemaDefinition

POLICIES_SCHEMA = SchemaDefinition(
    dataset="policies",
    key_field="policy_id",
    fields=(
        FieldSpec(name="policy_id", type="string"),
        FieldSpec(name="customer_id", type="string"),
        FieldSpec(name="product_type", type="string"),
        FieldSpec(name="policy_start_date", type="date"),
        FieldSpec(name="policy_end_date", type="date", nullable=True),
        FieldSpec(name="monthly_premium", type="decimal", precision=12, scale=2),
        FieldSpec(name="sum_assured", type="decimal", precision=14, scale=2),
        FieldSpec(name="insured_latitude", type="float"),
        FieldSpec(name="insured_longitude", type="float"),
    ),
    geo_points=(
        GeoPoint(name="insured_location", latitude="insured_latitude", longitude="insured_longitude"),
    ),
)

CLAIMS_SCHEMA = SchemaDefinition(
    dataset="claims",
    key_field="claim_id",
    fields=(
        FieldSpec(name="claim_id", type="string"),
        FieldSpec(name="policy_id", type="string"),
        FieldSpec(name="claim_type", type="string"),
        FieldSpec(name="claim_date", type="date"),
        FieldSpec(name="claim_amount", type="decimal", precision=14, scale=2),
        FieldSpec(name="claim_status", type="string"),
        FieldSpec(name="loss_latitude", type="float"),
        FieldSpec(name="loss_longitude", type="float"),
    ),
    geo_points=(
        GeoPoint(name="loss_location", latitude="loss_latitude", longitude="loss_longitude"),
    ),
)


def builtin_schemas() -> list[SchemaDefinition]:
    return [POLICIES_SCHEMA, CLAIMS_SCHEMA]
