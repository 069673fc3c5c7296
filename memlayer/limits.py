from __future__ import annotations

import math
from typing import Final

from .errors import ValidationError

MAX_INPUT_LENGTH: Final[int] = 100_000
MAX_SEARCH_LIMIT: Final[int] = 10_000
MAX_CANDIDATE_POOL: Final[int] = 10_000
DEFAULT_CANDIDATE_MULTIPLIER: Final[int] = 10
DEFAULT_CANDIDATE_POOL_MIN: Final[int] = 50


def validate_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"Limit must be an integer, got {limit!r}")
    if limit <= 0:
        raise ValidationError("Limit must be greater than 0")
    if limit > MAX_SEARCH_LIMIT:
        raise ValidationError(f"Limit {limit} exceeds maximum allowed ({MAX_SEARCH_LIMIT})")
    return limit


def validate_text(text: str, *, what: str = "Input") -> str:
    """Check that text is non-blank and within MAX_INPUT_LENGTH; return it stripped."""

    if not isinstance(text, str):
        raise ValidationError(f"{what} must be a string")
    stripped = text.strip()
    if not stripped:
        raise ValidationError(f"{what} cannot be empty")
    if len(stripped) > MAX_INPUT_LENGTH:
        raise ValidationError(
            f"{what} too long: {len(stripped)} characters (max {MAX_INPUT_LENGTH})"
        )
    return stripped


def validate_memory_id(memory_id: str) -> str:
    if not isinstance(memory_id, str) or not memory_id.strip():
        raise ValidationError("Memory id cannot be empty")
    return memory_id.strip()


def validate_project(project_id: str) -> str:
    if not isinstance(project_id, str) or not project_id.strip():
        raise ValidationError("Project id cannot be empty")
    return project_id.strip()


def validate_recency_weight(weight: float) -> float:
    value = float(weight)
    if math.isnan(value) or value < 0.0 or value > 1.0:
        raise ValidationError(
            f"Invalid recency weight: {weight} (must be between 0.0 and 1.0)"
        )
    return value


def candidate_pool_size(
    limit: int,
    *,
    multiplier: int = DEFAULT_CANDIDATE_MULTIPLIER,
    minimum: int = DEFAULT_CANDIDATE_POOL_MIN,
) -> int:
    # pool = clamp(limit * multiplier, minimum, MAX_CANDIDATE_POOL)
    validate_limit(limit)
    return max(minimum, min(limit * multiplier, MAX_CANDIDATE_POOL))
