# app/utils/validators.py
"""Shared input validation."""
import re
from typing import Any
from uuid import UUID

from ..core.exceptions import ValidationError

ACADEMIC_YEAR_PATTERN = re.compile(r"^(\d{4})-(\d{4})$")


def validate_academic_year(value: Any, field: str = "academic_year") -> str:
    """Accept 'YYYY-YYYY' where the second year follows the first."""
    if not isinstance(value, str):
        raise ValidationError("Academic year is required", field=field)
    match = ACADEMIC_YEAR_PATTERN.match(value.strip())
    if not match or int(match.group(2)) != int(match.group(1)) + 1:
        raise ValidationError(f"Academic year must look like 2024-2025, got '{value}'", field=field)
    return value.strip()


def validate_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"'{value}' is not a valid identifier", field=field)


def validate_grade_level(value: Any, field: str = "grade_level") -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError("Grade level must be a positive integer", field=field)
    return value
