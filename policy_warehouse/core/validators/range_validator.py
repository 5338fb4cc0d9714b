"""
RangeValidator - numeric bounds on decimal, integer and float fields.
"""

import operator
from decimal import Decimal
from typing import Any

from .base_validator import BaseValidator

# parameter, comparison that breaks the bound, message
_BOUNDS = (
    ("min", operator.lt, "is less than minimum"),
    ("min_exclusive", operator.le, "must be greater than"),
    ("max", operator.gt, "exceeds maximum"),
    ("max_exclusive", operator.ge, "must be less than"),
)


class RangeValidator(BaseValidator):
    """
    Checks a number against any of min, min_exclusive, max and max_exclusive.

    Null values pass; nullability is the required-field rule's concern.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.bounds = [
            (self.parameters[name], breaks, message)
            for name, breaks, message in _BOUNDS
            if self.parameters.get(name) is not None
        ]
        if not self.bounds:
            raise ValueError(
                "RangeValidator requires at least one of: " + ", ".join(name for name, _, _ in _BOUNDS)
            )

    @property
    def rule_type(self) -> str:
        return "range"

    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            raise self.fail(f"Value must be numeric, got {type(value).__name__}")

        for bound, breaks, message in self.bounds:
            if breaks(value, bound):
                raise self.fail(f"Value {value} {message} {bound}")
        return value
