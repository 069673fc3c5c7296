from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from enum import Enum

from .errors import ValidationError

SECONDS_PER_DAY = 86_400.0

# math.exp underflows to 0.0 well before this anyway.
_MIN_EXPONENT = -700.0


class DecayFunction(str, Enum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


@dataclass(frozen=True)
class DecayConfig:
    """Recency decay settings.

    ``rate`` is per second for exponential decay and per day for linear decay.
    The defaults halve a memory's decay factor after roughly eight days.
    """

    function: DecayFunction = DecayFunction.EXPONENTIAL
    rate: float = 1e-6
    offset_days: float = 0.0

    def __post_init__(self) -> None:
        function = DecayFunction(self.function)
        object.__setattr__(self, "function", function)
        rate = float(self.rate)
        if not math.isfinite(rate) or rate <= 0.0:
            raise ValidationError(f"Invalid decay rate: {self.rate} (must be positive)")
        if function is DecayFunction.EXPONENTIAL:
            if rate > 1e-3:
                raise ValidationError(
                    f"Exponential decay rate {rate} is too large (max: 1e-3)"
                )
            if rate < 1e-10:
                raise ValidationError(
                    f"Exponential decay rate {rate} is too small (min: 1e-10)"
                )
        else:
            if rate > 100.0:
                raise ValidationError(f"Linear decay rate {rate} is too large (max: 100.0)")
            if rate < 1e-6:
                raise ValidationError(
                    f"Linear decay rate {rate} is too small to be useful (min: 1e-6)"
                )
        offset = float(self.offset_days)
        if not math.isfinite(offset) or offset < 0.0:
            raise ValidationError(f"Invalid offset_days: {self.offset_days} (must be >= 0)")
        object.__setattr__(self, "rate", rate)
        object.__setattr__(self, "offset_days", offset)

    def decay_for_age(self, age_seconds: float) -> float:
        """Decay factor in [0, 1] for an age in seconds; negative ages count as zero."""

        if math.isnan(age_seconds) or math.isinf(age_seconds):
            return 0.0
        effective_age = max(0.0, max(0.0, age_seconds) - self.offset_days * SECONDS_PER_DAY)
        if self.function is DecayFunction.EXPONENTIAL:
            exponent = -self.rate * effective_age
            if exponent < _MIN_EXPONENT:
                return 0.0
            return math.exp(exponent)
        linear = 1.0 - self.rate * effective_age / SECONDS_PER_DAY
        return min(1.0, max(0.0, linear))

    def calculate_decay(self, created_at: dt.datetime, now: dt.datetime | None = None) -> float:
        if now is None:
            now = dt.datetime.now(dt.UTC)
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=dt.UTC)
        return self.decay_for_age((now - created_at).total_seconds())


def apply_recency_weight(
    base_score: float,
    created_at: dt.datetime,
    weight: float,
    config: DecayConfig,
    now: dt.datetime | None = None,
) -> float:
    if weight <= 0.0:
        return base_score
    decay = config.calculate_decay(created_at, now)
    return (1.0 - weight) * base_score + weight * decay
