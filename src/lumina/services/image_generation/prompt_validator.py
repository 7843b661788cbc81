"""Prompt and aspect ratio validation for image generation.

Validates user input before any credits are charged or a job is created.
"""

import re

from lumina.services.exceptions import ValidationError

PROMPT_MIN_LENGTH = 3
PROMPT_MAX_LENGTH = 500

_WHITESPACE_RE = re.compile(r"\s+")
_ASPECT_RATIO_RE = re.compile(r"^[1-9]\d{0,2}:[1-9]\d{0,2}$")


def sanitize_prompt(prompt: str) -> str:
    """Trim, collapse whitespace runs and strip angle brackets."""
    return _WHITESPACE_RE.sub(" ", prompt.strip()).replace("<", "").replace(">", "")


def validate_prompt(
    prompt: str,
    min_length: int = PROMPT_MIN_LENGTH,
    max_length: int = PROMPT_MAX_LENGTH,
) -> str:
    """Validate prompt text for image generation.

    Args:
        prompt: Text prompt from the user
        min_length: Minimum length after sanitizing
        max_length: Maximum length after sanitizing

    Returns:
        Sanitized prompt

    Raises:
        ValidationError: If prompt is empty, not a string, too short or too long
    """
    if not isinstance(prompt, str):
        raise ValidationError(f"Prompt must be a string, got {type(prompt).__name__}")

    if not prompt.strip():
        raise ValidationError("Prompt cannot be empty")

    cleaned = sanitize_prompt(prompt)

    if len(cleaned) < min_length:
        raise ValidationError(f"Prompt must be at least {min_length} characters")

    if len(cleaned) > max_length:
        raise ValidationError(
            f"Prompt exceeds maximum length of {max_length} characters (got {len(cleaned)})"
        )

    return cleaned


def validate_aspect_ratio(aspect_ratio: str) -> str:
    """Check that aspect_ratio looks like "W:H".

    Unknown but well-formed ratios are accepted (they are charged the default cost).

    Raises:
        ValidationError: If aspect_ratio is malformed
    """
    if not isinstance(aspect_ratio, str) or not _ASPECT_RATIO_RE.match(aspect_ratio.strip()):
        raise ValidationError(f"Invalid aspect ratio: {aspect_ratio!r}")
    return aspect_ratio.strip()
