"""
GeoPairValidator - checks a latitude/longitude pair and packs it.
"""

from typing import Any

from policy_warehouse.core.models import Location

from .base_validator import BaseValidator

LATITUDE_BOUNDS = (-90.0, 90.0)
LONGITUDE_BOUNDS = (-180.0, 180.0)


class GeoPairValidator(BaseValidator):
    """
    Validates a coordinate pair held in two record fields.

    field_name is the name of the packed location. Parameters:
    - latitude: record field holding the latitude
    - longitude: record field holding the longitude
    - nullable: whether a fully-null pair is allowed (default False)

    Returns a Location (longitude, latitude) or None for an allowed null pair.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.latitude_field = self.parameters.get("latitude")
        self.longitude_field = self.parameters.get("longitude")
        if not self.latitude_field or not self.longitude_field:
            raise ValueError("GeoPairValidator requires 'latitude' and 'longitude' parameters")
        self.nullable = self.parameters.get("nullable", False)

    def validate(self, value: Any, record: dict[str, Any]) -> Location | None:
        latitude = record.get(self.latitude_field)
        longitude = record.get(self.longitude_field)

        if latitude is None and longitude is None:
            if self.nullable:
                return None
            raise self.fail("Coordinates are null")

        if latitude is None or longitude is None:
            raise self.fail("Incomplete coordinate pair")

        problems = []
        latitude = float(latitude)
        longitude = float(longitude)
        if not LATITUDE_BOUNDS[0] <= latitude <= LATITUDE_BOUNDS[1]:
            problems.append(f"latitude {latitude} outside [-90, 90]")
        if not LONGITUDE_BOUNDS[0] <= longitude <= LONGITUDE_BOUNDS[1]:
            problems.append(f"longitude {longitude} outside [-180, 180]")
        if problems:
            raise self.fail("; ".join(problems))

        return Location(longitude=longitude, latitude=latitude)

    @property
    def rule_type(self) -> str:
        return "geo_pair"
