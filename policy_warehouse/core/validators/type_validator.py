"""
TypeValidator - validates and coerces text values to semantic field types.
"""

import math
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .base_validator import BaseValidator


class TypeValidator(BaseValidator):
    """
    Validates that a field can be coerced to its semantic type.

    Supported types:
    - string: stripped text
    - integer: base-10 integers ("12", not "12.0")
    - decimal: fixed point with `precision` and `scale` parameters,
      quantized to scale with ROUND_HALF_UP
    - date: ISO YYYY-MM-DD, plus any strptime `formats` given
    - float: finite floating point numbers
    """

    SUPPORTED_TYPES = ("string", "integer", "decimal", "date", "float")

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("TypeValidator requires 'expected_type' parameter")
        if expected_type not in self.SUPPORTED_TYPES:
            raise ValueError(f"Unsupported type: {expected_type}")
        self.expected_type = expected_type

        self.precision = self.parameters.get("precision")
        self.scale = self.parameters.get("scale")
        if expected_type == "decimal" and (self.precision is None or self.scale is None):
            raise ValueError("decimal fields require 'precision' and 'scale' parameters")

        self.formats = list(self.parameters.get("formats") or [])

    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        # None is handled by the required_field validator
        if value is None:
            return None

        try:
            return self._coerce(value)
        except (ValueError, TypeError, InvalidOperation) as e:
            raise self.fail(f"Cannot coerce {value!r} to {self.expected_type}: {e}") from e

    def _coerce(self, value: Any) -> Any:
        if self.expected_type == "string":
            return str(value).strip()

        text = str(value).strip()

        if self.expected_type == "integer":
            if isinstance(value, bool):
                raise TypeError("booleans are not integers")
            if isinstance(value, int):
                return value
            return int(text, 10)

        if self.expected_type == "float":
            result = float(text)
            if not math.isfinite(result):
                raise ValueError("value must be finite")
            return result

        if self.expected_type == "decimal":
            return self._coerce_decimal(text)

        return self._coerce_date(value, text)

    def _coerce_decimal(self, text: str) -> Decimal:
        number = Decimal(text)
        if not number.is_finite():
            raise ValueError("value must be finite")

        quantized = number.quantize(Decimal(1).scaleb(-self.scale), rounding=ROUND_HALF_UP)
        integer_digits = len(str(abs(int(quantized)))) if int(quantized) != 0 else 0
        if integer_digits > self.precision - self.scale:
            raise ValueError(
                f"exceeds precision {self.precision} with scale {self.scale}"
            )
        return quantized

    def _coerce_date(self, value: Any, text: str) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value

        try:
            return date.fromisoformat(text)
        except ValueError:
            pass

        for fmt in self.formats:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue

        accepted = ", ".join(["YYYY-MM-DD", *self.formats])
        raise ValueError(f"expected one of: {accepted}")

    @property
    def rule_type(self) -> str:
        return "type_check"
