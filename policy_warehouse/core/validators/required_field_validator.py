"""
RequiredFieldValidator - non-nullable columns must carry a value.
"""

from typing import Any

from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    """
    Rejects a column that is absent, null (a null token in the file) or blank.
    """

    @property
    def rule_type(self) -> str:
        return "required_field"

    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        if self.field_name not in record:
            raise self.fail("Field is missing from record")
        if value is None:
            raise self.fail("Field value is null")
        if isinstance(value, str) and not value.strip():
            raise self.fail("Field value is empty string")
        return value
