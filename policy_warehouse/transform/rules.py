"""
Row transformation rules.

Each rule is a pure function from a dict of typed values to a new dict.
A rule that drops a row raises RowFiltered; dropped rows are counted, not
treated as errors.
"""

from decimal import Decimal
from functools import partial
from typing import Any, Callable

from policy_warehouse.config import TransformSettings
from policy_warehouse.core.schema import GeoPoint, SchemaDefinition
from policy_warehouse.core.validators import FieldValidationError, GeoPairValidator, RangeValidator

RowRule = Callable[[dict[str, Any]], dict[str, Any]]

# dataset -> (field, settings attribute holding the floor, floor inclusive)
NUMERIC_FLOORS = {
    "policies": ("monthly_premium", "premium_floor", False),
    "claims": ("claim_amount", "claim_amount_floor", True),
}


class RowFiltered(Exception):
    """Raised by a rule to drop the current row."""

    def __init__(self, rule: str, reason: str):
        self.rule = rule
        self.reason = reason
        super().__init__(f"[{rule}] {reason}")


def uppercase(values: dict[str, Any], fields: list[str]) -> dict[str, Any]:
    """Uppercase (and strip) the named text fields; other values pass through."""
    result = dict(values)
    for field in fields:
        value = result.get(field)
        if isinstance(value, str):
            result[field] = value.strip().upper()
    return result


def require_minimum(
    values: dict[str, Any],
    field: str,
    floor: Decimal,
    inclusive: bool,
) -> dict[str, Any]:
    """
    Drop rows whose numeric field is below the floor.

    inclusive=True keeps value == floor; inclusive=False requires value > floor.
    Null values pass (nullability is the schema's concern).
    """
    validator = RangeValidator(field, {"min": floor} if inclusive else {"min_exclusive": floor})
    try:
        validator.validate(values.get(field), values)
    except FieldValidationError as e:
        raise RowFiltered("numeric_floor", str(e)) from e
    return values


def pack_location(values: dict[str, Any], point: GeoPoint) -> dict[str, Any]:
    """
    Replace a latitude/longitude pair with one Location value.

    Out-of-range or incomplete pairs drop the row.
    """
    validator = GeoPairValidator(
        point.name,
        {"latitude": point.latitude, "longitude": point.longitude, "nullable": point.nullable},
    )
    try:
        location = validator.validate(None, values)
    except FieldValidationError as e:
        raise RowFiltered("geo_pack", f"{point.name}: {e.message}") from e

    result = {k: v for k, v in values.items() if k not in (point.latitude, point.longitude)}
    result[point.name] = location
    return result


def build_rules(schema: SchemaDefinition, settings: TransformSettings) -> list[tuple[str, RowRule]]:
    """
    Compose the rule chain for a dataset: uppercase, numeric floor, geo packing.
    """
    rules: list[tuple[str, RowRule]] = []

    upper_fields = settings.uppercase_fields.get(schema.dataset, [])
    if upper_fields:
        rules.append(("uppercase", partial(uppercase, fields=upper_fields)))

    floor = NUMERIC_FLOORS.get(schema.dataset)
    if floor is not None and floor[0] in schema.column_names:
        field, setting, inclusive = floor
        rules.append(
            (
                "numeric_floor",
                partial(require_minimum, field=field, floor=getattr(settings, setting), inclusive=inclusive),
            )
        )

    for point in schema.geo_points:
        rules.append(("geo_pack", partial(pack_location, point=point)))

    return rules


def apply_rules(values: dict[str, Any], rules: list[tuple[str, RowRule]]) -> dict[str, Any]:
    """Run a row through the chain; raises RowFiltered if any rule drops it."""
    for _, rule in rules:
        values = rule(values)
    return values
