"""
Input Validators - Generic validation for user input at system boundaries.

Parse at the boundary: validate and type-check all external input
before it reaches the registry or the generation service. Never pass raw
dicts or unvalidated strings through multiple layers.

All helpers raise ValidationError (HTTP 400, code "validation_error") with a
message naming the offending field.
"""

import logging
import re
from collections.abc import Iterable

from ..errors import ValidationError

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")


def validate_not_empty(value: str, field_name: str = "input") -> str:
    """Validate that a string is not empty or whitespace-only."""
    if not value or not value.strip():
        raise ValidationError(
            f"{field_name} cannot be empty",
            details=[{"field": field_name, "message": "cannot be empty"}],
        )
    return value


def validate_identifier(value: str, field_name: str = "identifier") -> str:
    """Validate that a string is a safe identifier (alphanumeric, underscore, hyphen)."""
    if not IDENTIFIER_PATTERN.match(value):
        raise ValidationError(
            f"{field_name} must start with a letter and contain only "
            f"letters, numbers, underscores, and hyphens",
            details=[{"field": field_name, "message": "not a valid identifier"}],
        )
    return value


def validate_known_names(
    names: Iterable[str],
    known: Iterable[str],
    field_name: str = "names",
) -> list[str]:
    """Validate that every name is in the known set. Order is preserved."""
    known_set = set(known)
    names = list(names)
    unknown = [n for n in names if n not in known_set]
    if unknown:
        raise ValidationError(
            f"{field_name} references unknown entries: {', '.join(unknown)}",
            details=[{"field": field_name, "message": f"unknown: {n}"} for n in unknown],
        )
    return names
