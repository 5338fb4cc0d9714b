"""
Field validator implementations.

Provides validators for required fields, type coercion, numeric ranges and
geocoordinate pairs.
"""

from .base_validator import BaseValidator, FieldValidationError
from .geo_validator import GeoPairValidator
from .range_validator import RangeValidator
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator

__all__ = [
    "BaseValidator",
    "FieldValidationError",
    "GeoPairValidator",
    "RangeValidator",
    "RequiredFieldValidator",
    "TypeValidator",
]
