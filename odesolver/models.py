"""Configuration and payload types shared by the solver modules."""

import math
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from odesolver.errors import ConfigurationError, InvalidRangeError

# A solution point maps the independent variable and every base variable
# to its value, e.g. {"x": 0.5, "y": 0.479}.
SolutionPoint = Dict[str, float]

DEFAULT_MIN_STEP = 1e-10
DEFAULT_MAX_STEP_FRACTION = 0.1
ERROR_NORMS = ("rms", "max")


def _is_finite_number(value) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


@dataclass(frozen=True)
class Range:
    """Integration interval for the independent variable."""

    variable: str = "x"
    start: float = 0.0
    end: float = 1.0
    initial_step: float = 0.1

    @property
    def span(self) -> float:
        return self.end - self.start

    @property
    def is_runnable(self) -> bool:
        return self.start + self.initial_step < self.end

    def validate(self) -> None:
        for label in ("start", "end", "initial_step"):
            if not _is_finite_number(getattr(self, label)):
                raise InvalidRangeError(
                    f"Range {label} must be a finite number, got {getattr(self, label)!r}."
                )
        if self.end <= self.start:
            raise InvalidRangeError(
                f"End must be > start (got start={self.start}, end={self.end})."
            )
        if self.initial_step <= 0:
            raise InvalidRangeError(
                f"Initial step must be positive, got {self.initial_step}."
            )


@dataclass(frozen=True)
class ToleranceConfig:
    """Error tolerances and step-size adaptation limits.

    ``min_factor < 1 <= max_factor`` is expected but not enforced.
    ``error_norm`` selects how per-component errors are combined:
    ``"rms"`` (root-mean-square, the default) or ``"max"``.
    """

    atol: float = 1e-6
    rtol: float = 1e-6
    safety_factor: float = 0.9
    min_factor: float = 0.2
    max_factor: float = 5.0
    min_step: Optional[float] = None
    max_step: Optional[float] = None
    error_norm: str = "rms"

    def validate(self) -> None:
        for label in ("atol", "rtol", "safety_factor", "min_factor", "max_factor",
                      "min_step", "max_step"):
            value = getattr(self, label)
            if value is None and label in ("min_step", "max_step"):
                continue
            if not _is_finite_number(value) or value <= 0:
                raise ConfigurationError(
                    f"{label} must be a finite positive number, got {value!r}."
                )
        if self.error_norm not in ERROR_NORMS:
            raise ConfigurationError(
                f"error_norm must be one of {', '.join(ERROR_NORMS)}, "
                f"got {self.error_norm!r}."
            )
        if (self.min_step is not None and self.max_step is not None
                and self.min_step >= self.max_step):
            raise ConfigurationError(
                f"min_step ({self.min_step}) must be smaller than "
                f"max_step ({self.max_step})."
            )

    def resolved_min_step(self) -> float:
        return DEFAULT_MIN_STEP if self.min_step is None else self.min_step

    def resolved_max_step(self, span: float) -> float:
        if self.max_step is not None:
            return self.max_step
        return DEFAULT_MAX_STEP_FRACTION * span

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Progress:
    """Payload of the ``progress`` event, one per accepted step.

    ``error_norm`` is the tolerance-scaled norm the step was accepted on;
    ``local_error`` is the unscaled ``max|y5 - y4|`` of that step.
    """

    x: float
    step_size: float
    error_norm: float
    local_error: float = 0.0


@dataclass(frozen=True)
class RunStats:
    accepted: int = 0
    rejected: int = 0
    runtime_ms: float = 0.0
    canceled: bool = False
