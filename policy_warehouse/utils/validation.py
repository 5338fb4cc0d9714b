"""
Input validation utilities for operator-supplied names and paths.

Dataset and curated table names end up in lock names, job names and SQL
filters, so the CLI checks them before touching the store.
"""

import re

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 63  # PostgreSQL identifier limit
MAX_PATH_LENGTH = 4096  # Linux PATH_MAX


class ValidationError(ValueError):
    """Raised when input validation fails."""


def _clean(value: str, field_name: str) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a non-empty string")
    value = value.strip()
    if not value:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")
    return value


def validate_identifier(identifier: str, field_name: str = "identifier") -> str:
    """
    Validate a dataset or curated table name.

    Names start with a letter and contain only letters, digits and
    underscores.

    Returns:
        The name, stripped of surrounding whitespace

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_identifier("loss_ratio")
        'loss_ratio'
        >>> validate_identifier("claims; DROP TABLE raw_record")  # doctest: +SKIP
        ValidationError: identifier contains invalid characters
    """
    identifier = _clean(identifier, field_name)

    if not IDENTIFIER_PATTERN.match(identifier):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "Names must start with a letter and contain only alphanumeric characters and underscores."
        )
    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(f"{field_name} exceeds maximum length of {MAX_IDENTIFIER_LENGTH} characters")
    return identifier


def validate_file_path(file_path: str, field_name: str = "file_path") -> str:
    """
    Validate a landing directory or file path.

    Parent-directory segments and null bytes are refused.

    Examples:
        >>> validate_file_path("landing/policies/policies.csv")
        'landing/policies/policies.csv'
        >>> validate_file_path("../../../etc/passwd")  # doctest: +SKIP
        ValidationError: file_path contains path traversal characters
    """
    file_path = _clean(file_path, field_name)

    if ".." in file_path.replace("\\", "/").split("/"):
        raise ValidationError(f"{field_name} contains path traversal characters (..)")
    if "\x00" in file_path:
        raise ValidationError(f"{field_name} contains null bytes")
    if len(file_path) > MAX_PATH_LENGTH:
        raise ValidationError(f"{field_name} exceeds maximum length of {MAX_PATH_LENGTH} characters")
    return file_path


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 10000) -> int:
    """Validate a row limit: a positive integer no larger than max_limit."""
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")
    if limit <= 0:
        raise ValidationError(f"{field_name} must be a positive integer, got {limit}")
    if limit > max_limit:
        raise ValidationError(f"{field_name} exceeds maximum of {max_limit}")
    return limit
