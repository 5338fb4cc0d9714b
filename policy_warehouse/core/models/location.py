"""
Packed geocoordinate value.
"""

from typing import NamedTuple


class Location(NamedTuple):
    """
    A single (longitude, latitude) point.

    Longitude comes first, matching the GeoJSON / WKT axis order.
    """

    longitude: float
    latitude: float

    def rounded(self, digits: int) -> "Location":
        return Location(round(self.longitude, digits), round(self.latitude, digits))
