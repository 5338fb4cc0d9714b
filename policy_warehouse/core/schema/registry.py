"""
Schema registry: holds dataset layouts and validates rows against them.
"""

from typing import Any, Iterable

from pydantic import ValidationError

from policy_warehouse.core.errors import SchemaDefinitionError, SchemaNotFoundError
from policy_warehouse.core.models import ValidationOutcome
from policy_warehouse.core.validators import (
    BaseValidator,
    FieldValidationError,
    GeoPairValidator,
    RequiredFieldValidator,
    TypeValidator,
)

from .builtin import builtin_schemas
from .definition import FieldSpec, GeoPoint, SchemaDefinition


class SchemaRegistry:
    """
    Registry of dataset schemas.

    Each registered schema is compiled into a chain of validators per field
    (required -> type) plus one GeoPairValidator per geo point. Validation
    runs every chain and collects all failures for the row.
    """

    def __init__(self, schemas: Iterable[SchemaDefinition] | None = None):
        self._schemas: dict[str, SchemaDefinition] = {}
        self._field_validators: dict[str, list[tuple[str, list[BaseValidator]]]] = {}
        self._geo_validators: dict[str, list[GeoPairValidator]] = {}
        for schema in schemas or []:
            self._add(schema)

    @classmethod
    def with_defaults(cls) -> "SchemaRegistry":
        """Registry preloaded with the policies and claims schemas."""
        return cls(builtin_schemas())

    def register(
        self,
        dataset_name: str,
        field_specs: Iterable[FieldSpec | dict[str, Any]],
        geo_points: Iterable[GeoPoint | dict[str, Any]] = (),
        key_field: str | None = None,
    ) -> SchemaDefinition:
        """
        Register (or replace) the schema for a dataset.

        Args:
            dataset_name: Dataset name
            field_specs: Ordered field specs (models or plain dicts)
            geo_points: Coordinate pairs to pack during transform
            key_field: Business key column (defaults to the first field)

        Returns:
            The registered SchemaDefinition

        Raises:
            SchemaDefinitionError: If any spec is malformed
        """
        try:
            fields = tuple(
                spec if isinstance(spec, FieldSpec) else FieldSpec(**spec)
                for spec in field_specs
            )
            points = tuple(
                point if isinstance(point, GeoPoint) else GeoPoint(**point)
                for point in geo_points
            )
            schema = SchemaDefinition(
                dataset=dataset_name,
                fields=fields,
                geo_points=points,
                key_field=key_field or (fields[0].name if fields else ""),
            )
        except ValidationError as e:
            raise SchemaDefinitionError(f"Invalid schema for '{dataset_name}': {e}") from e

        self._add(schema)
        return schema

    def get(self, dataset_name: str) -> SchemaDefinition:
        schema = self._schemas.get(dataset_name)
        if schema is None:
            raise SchemaNotFoundError(dataset_name)
        return schema

    def datasets(self) -> list[str]:
        return sorted(self._schemas)

    def __contains__(self, dataset_name: str) -> bool:
        return dataset_name in self._schemas

    def validate(self, dataset_name: str, row: dict[str, Any]) -> ValidationOutcome:
        """
        Validate a row against a dataset schema.

        Args:
            dataset_name: Registered dataset
            row: Field name to raw value (None for nulls)

        Returns:
            ValidationOutcome; unpacks as (ok, errors). values holds the
            coerced column values of a valid row (coordinates unpacked)

        Raises:
            SchemaNotFoundError: If the dataset is not registered
        """
        self.get(dataset_name)

        errors: list[str] = []
        failed_fields: set[str] = set()
        values: dict[str, Any] = {}

        for field_name, chain in self._field_validators[dataset_name]:
            value = row.get(field_name)
            try:
                for validator in chain:
                    value = validator.validate(value, row)
            except FieldValidationError as e:
                errors.append(str(e))
                failed_fields.add(field_name)
                continue
            values[field_name] = value

        for validator in self._geo_validators[dataset_name]:
            if {validator.latitude_field, validator.longitude_field} & failed_fields:
                continue
            try:
                validator.validate(None, values)
            except FieldValidationError as e:
                errors.append(str(e))

        return ValidationOutcome(ok=not errors, errors=errors, values=values if not errors else {})

    def _add(self, schema: SchemaDefinition) -> None:
        chains = []
        for spec in schema.fields:
            chain: list[BaseValidator] = []
            if not spec.nullable:
                chain.append(RequiredFieldValidator(spec.name))
            chain.append(
                TypeValidator(
                    spec.name,
                    {
                        "expected_type": spec.type,
                        "precision": spec.precision,
                        "scale": spec.scale,
                        "formats": spec.formats,
                    },
                )
            )
            chains.append((spec.name, chain))

        self._schemas[schema.dataset] = schema
        self._field_validators[schema.dataset] = chains
        self._geo_validators[schema.dataset] = [
            GeoPairValidator(
                point.name,
                {"latitude": point.latitude, "longitude": point.longitude, "nullable": point.nullable},
            )
            for point in schema.geo_points
        ]
