"""
RAW -> STAGING transformation.
"""

from .engine import TransformEngine
from .rules import (
    RowFiltered,
    apply_rules,
    build_rules,
    pack_location,
    require_minimum,
    uppercase,
)

__all__ = [
    "RowFiltered",
    "TransformEngine",
    "apply_rules",
    "build_rules",
    "pack_location",
    "require_minimum",
    "uppercase",
]
