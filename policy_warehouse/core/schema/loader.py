"""
Schema configuration loading.

Loads dataset schemas from YAML files so operators can register datasets
without code changes.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from policy_warehouse.core.errors import SchemaDefinitionError

from .definition import SchemaDefinition


class SchemaConfigLoader:
    """
    Loads dataset schemas from a YAML configuration file.

    Expected YAML format:
    ```yaml
    datasets:
      policies:
        key_field: policy_id
        fields:
          - {name: policy_id, type: string}
          - {name: monthly_premium, type: decimal, precision: 12, scale: 2}
          - {name: policy_end_date, type: date, nullable: true}
        geo_points:
          - {name: insured_location, latitude: insured_latitude, longitude: insured_longitude}
    ```
    """

    def __init__(self, config_path: str | Path):
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Schema configuration file not found: {config_path}")

    def load(self) -> list[SchemaDefinition]:
        """
        Parse every dataset in the file.

        Raises:
            SchemaDefinitionError: If the file or any dataset is malformed
        """
        with open(self.config_path) as f:
            config = yaml.safe_load(f)

        if not config or "datasets" not in config:
            raise SchemaDefinitionError("Schema configuration must contain a 'datasets' section")

        return [
            self._parse_dataset(name, body)
            for name, body in config["datasets"].items()
        ]

    def _parse_dataset(self, name: str, body: dict[str, Any]) -> SchemaDefinition:
        if not isinstance(body, dict) or not isinstance(body.get("fields"), list):
            raise SchemaDefinitionError(f"Dataset '{name}' must define a 'fields' list")

        fields = body["fields"]
        key_field = body.get("key_field") or (fields[0].get("name") if fields else None)
        try:
            return SchemaDefinition(
                dataset=name,
                fields=tuple(fields),
                geo_points=tuple(body.get("geo_points") or ()),
                key_field=key_field or "",
            )
        except ValidationError as e:
            raise SchemaDefinitionError(f"Invalid schema for '{name}': {e}") from e
