"""
Field validator interface.

A validator checks one field of a parsed row. validate() returns the value
to keep (coerced where the validator coerces) or raises
FieldValidationError naming the rule and the field.
"""

from abc import ABC, abstractmethod
from typing import Any


class FieldValidationError(Exception):
    """A field failed one validation rule."""

    def __init__(self, rule_name: str, field_name: str, message: str):
        self.rule_name = rule_name
        self.field_name = field_name
        self.message = message
        super().__init__(f"[{rule_name}] {field_name}: {message}")


class BaseValidator(ABC):
    """
    One rule bound to one field.

    Args:
        field_name: Field (or packed field) the rule applies to
        parameters: Rule settings, e.g. {"min": 0} for a range
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        self.field_name = field_name
        self.parameters = parameters or {}

    @property
    @abstractmethod
    def rule_type(self) -> str:
        """Identifier used in rejection reasons and filter samples."""

    @abstractmethod
    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        """
        Check value, with the whole parsed row available as record.

        Raises:
            FieldValidationError: If the value breaks the rule
        """

    def fail(self, message: str) -> FieldValidationError:
        """Build the error for this rule and field."""
        return FieldValidationError(self.rule_type, self.field_name, message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.field_name!r}, {self.parameters!r})"
