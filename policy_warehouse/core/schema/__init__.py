"""
Dataset schema definitions and registry.
"""

from .builtin import CLAIMS_SCHEMA, POLICIES_SCHEMA, builtin_schemas
from .definition import FieldSpec, GeoPoint, SchemaDefinition
from .loader import SchemaConfigLoader
from .registry import SchemaRegistry

__all__ = [
    "CLAIMS_SCHEMA",
    "FieldSpec",
    "GeoPoint",
    "POLICIES_SCHEMA",
    "SchemaConfigLoader",
    "SchemaDefinition",
    "SchemaRegistry",
    "builtin_schemas",
]
