"""Embedded Dormand-Prince 5(4) stepping and step-size control.

Seven stages give a 5th-order solution ``y5`` and an embedded 4th-order
solution ``y4``; their difference estimates the local error. The 5th-order
weights equal the last row of ``A`` (first-same-as-last), but every stage is
evaluated on every step.

References
----------
Dormand, J. R., & Prince, P. J. (1980). "A family of embedded Runge-Kutta
formulae". Journal of Computational and Applied Mathematics, 6(1), 19-26.
"""

import math
from typing import Callable, NamedTuple

import numpy as np

from odesolver.models import ToleranceConfig

# ── Butcher tableau ─────────────────────────────────────────────────────

C = np.array([0.0, 1 / 5, 3 / 10, 4 / 5, 8 / 9, 1.0, 1.0])

A = np.array([
    [0, 0, 0, 0, 0, 0, 0],
    [1 / 5, 0, 0, 0, 0, 0, 0],
    [3 / 40, 9 / 40, 0, 0, 0, 0, 0],
    [44 / 45, -56 / 15, 32 / 9, 0, 0, 0, 0],
    [19372 / 6561, -25360 / 2187, 64448 / 6561, -212 / 729, 0, 0, 0],
    [9017 / 3168, -355 / 33, 46732 / 5247, 49 / 176, -5103 / 18656, 0, 0],
    [35 / 384, 0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84, 0],
], dtype=float)

B5 = A[6].copy()
B4 = np.array([5179 / 57600, 0, 7571 / 16695, 393 / 640,
               -92097 / 339200, 187 / 2100, 1 / 40])

STAGES = len(C)
ORDER = 5

# Remaining interval shorter than this (relative to |end|) past a step
# is absorbed into that step.
_END_SNAP = 1e-12

Derivative = Callable[[float, np.ndarray], np.ndarray]


class StageResult(NamedTuple):
    y5: np.ndarray
    y4: np.ndarray
    k: np.ndarray


class StepResult(NamedTuple):
    accepted: bool
    y: np.ndarray
    step_size: float
    error_norm: float
    next_step: float
    local_error: float = 0.0


def dormand_prince_step(derivative: Derivative, x: float, y: np.ndarray,
                        h: float) -> StageResult:
    """Evaluate all seven stages from ``(x, y)`` with step *h*."""
    y = np.asarray(y, dtype=float)
    k = np.zeros((STAGES, y.size))
    for i in range(STAGES):
        yi = y + h * (A[i, :i] @ k[:i])
        k[i] = derivative(x + C[i] * h, yi)
    y5 = y + h * (B5 @ k)
    y4 = y + h * (B4 @ k)
    return StageResult(y5, y4, k)


def local_error(y5: np.ndarray, y4: np.ndarray) -> float:
    """Largest absolute difference between the embedded solutions."""
    return float(np.max(np.abs(y5 - y4))) if y5.size else 0.0


def error_norm(y: np.ndarray, y5: np.ndarray, y4: np.ndarray,
               atol: float, rtol: float, norm: str = "rms") -> float:
    """Scaled error of a step; the step is acceptable when this is <= 1."""
    tol = atol + rtol * np.maximum(np.abs(y), np.abs(y5))
    scaled = np.abs(y5 - y4) / tol
    if scaled.size == 0:
        return 0.0
    if norm == "max":
        return float(np.max(scaled))
    return float(np.sqrt(np.mean(scaled ** 2)))


def adaptation_factor(norm: float, safety: float, min_factor: float,
                      max_factor: float) -> float:
    """Multiplier for the next step size given the last error norm."""
    if norm == 0:
        return max_factor
    factor = safety * norm ** (-1 / ORDER)
    return min(max_factor, max(min_factor, factor))


class StepSizeController:
    """Attempts single steps and proposes the next step size.

    In adaptive mode a step is accepted iff its error norm is at most 1.
    In fixed mode every step is accepted and the reported error norm is
    the raw local error. Every result carries that raw local error, the
    largest absolute difference between the two embedded solutions.
    """

    def __init__(self, config: ToleranceConfig, span: float, adaptive: bool = True):
        self.config = config
        self.adaptive = adaptive
        self.min_step = config.resolved_min_step()
        self.max_step = config.resolved_max_step(span)

    def clamp_to_end(self, x: float, h: float, end: float):
        """Return ``(h, reaches_end)`` so that ``x + h`` never passes *end*."""
        remaining = end - x
        if h >= remaining - _END_SNAP * max(1.0, abs(end)):
            return remaining, True
        return h, False

    def next_step(self, h: float, norm: float) -> float:
        cfg = self.config
        factor = adaptation_factor(norm, cfg.safety_factor, cfg.min_factor,
                                   cfg.max_factor)
        return min(self.max_step, max(self.min_step, h * factor))

    def attempt(self, derivative: Derivative, x: float, y: np.ndarray,
                h: float) -> StepResult:
        stages = dormand_prince_step(derivative, x, y, h)
        raw = local_error(stages.y5, stages.y4)
        if not self.adaptive:
            return StepResult(True, stages.y5, h, raw, h, raw)

        cfg = self.config
        norm = error_norm(y, stages.y5, stages.y4, cfg.atol, cfg.rtol, cfg.error_norm)
        if math.isnan(norm):
            return StepResult(False, y, h, norm,
                              max(self.min_step, h * cfg.min_factor), raw)
        accepted = norm <= 1.0
        return StepResult(accepted, stages.y5 if accepted else y, h, norm,
                          self.next_step(h, norm), raw)
