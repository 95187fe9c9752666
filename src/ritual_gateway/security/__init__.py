"""Security utilities -- prompt injection defense and boundary validation."""
from .prompt_guard import wrap_user_content, detect_injection_attempt, sanitize_for_prompt
from .validators import (
    ValidationError,
    validate_not_empty,
    validate_identifier,
    validate_known_names,
)
