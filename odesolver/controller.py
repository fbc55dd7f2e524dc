"""Solver orchestration: configuration, the step loop, and lifecycle events.

The loop is a generator whose ``yield`` is the one suspension point per
iteration. ``run`` drives it synchronously; ``run_async`` awaits
``asyncio.sleep(0)`` at each suspension point so other tasks can call
``cancel`` between steps. A cancellation request is only acted on there, so
a step in progress always finishes first.
"""

import asyncio
import logging
import math
import re
import time
from dataclasses import replace
from typing import Callable, Mapping, Optional, Sequence

import numpy as np

from odesolver.errors import (
    ConfigurationError, ConvergenceError, InvalidRangeError, SolverBusyError,
    UnknownVariableError,
)
from odesolver.events import EventBus, SolverEvent, make_solver_bus
from odesolver.models import Progress, Range, RunStats, SolutionPoint, ToleranceConfig
from odesolver.reducer import EquationReducer, System
from odesolver.stepper import StepSizeController

logger = logging.getLogger(__name__)

_INDEPENDENT = re.compile(r"^[A-Za-z]$")


def _drive(steps):
    try:
        while True:
            next(steps)
    except StopIteration as stop:
        return stop.value


class SolverController:
    """Adaptive Dormand-Prince solver for equations in derivative notation.

    Typical use::

        solver = SolverController()
        solver.set_equations(["y'' = -y"])
        solver.set_initial_conditions({"y": 0, "y_1": 1})
        solver.set_range("x", 0, 6.28, 0.1)
        points = solver.run()

    Only one run may be in flight at a time; configuration cannot change
    while it is.
    """

    def __init__(self, tolerance: Optional[ToleranceConfig] = None,
                 bus: Optional[EventBus] = None,
                 reducer: Optional[EquationReducer] = None):
        tolerance = tolerance or ToleranceConfig()
        tolerance.validate()
        self._tolerance = tolerance
        self._bus = make_solver_bus(bus)
        self._reducer = reducer or EquationReducer()
        self._system: Optional[System] = None
        self._initial_conditions: dict[str, float] = {}
        self._range = Range()
        self._running = False
        self._cancel_requested = False
        self._last_stats: Optional[RunStats] = None

    @classmethod
    def from_settings(cls, settings: Mapping, **kwargs) -> "SolverController":
        from odesolver.config import tolerance_from_settings
        return cls(tolerance=tolerance_from_settings(settings), **kwargs)

    # ── Read-only state ─────────────────────────────────────────────────

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def system(self) -> Optional[System]:
        return self._system

    @property
    def variables(self) -> list:
        return list(self._system.variables) if self._system else []

    @property
    def base_variables(self) -> list:
        return list(self._system.base_variables) if self._system else []

    @property
    def initial_conditions(self) -> dict:
        return dict(self._initial_conditions)

    @property
    def range(self) -> Range:
        return self._range

    @property
    def tolerance(self) -> ToleranceConfig:
        return self._tolerance

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_stats(self) -> Optional[RunStats]:
        return self._last_stats

    def subscribe(self, event, callback: Callable) -> Callable[[], None]:
        """Subscribe to a ``SolverEvent`` (or its wire name, e.g. ``"progress"``)."""
        return self._bus.subscribe(event, callback)

    # ── Configuration ───────────────────────────────────────────────────

    def _ensure_idle(self) -> None:
        if self._running:
            raise SolverBusyError("Cannot change configuration while a run is in progress.")

    def set_equations(self, equations: Sequence[str]) -> None:
        """Replace the system. Previously set initial conditions are dropped."""
        self._ensure_idle()
        system = self._reducer.reduce(equations)
        if self._range.variable in system.variables:
            raise ConfigurationError(
                f"'{self._range.variable}' is the independent variable and "
                f"cannot also be a dependent one."
            )
        self._system = system
        self._initial_conditions = {}
        logger.info("Equations set: %d variable(s) %s",
                    len(system.variables), ", ".join(system.variables))
        self._bus.publish(SolverEvent.EQUATIONS_UPDATED, list(system.variables))

    def set_initial_conditions(self, conditions: Mapping[str, float]) -> None:
        self._ensure_idle()
        known = self.variables
        values = {}
        for name, value in conditions.items():
            if name not in known:
                raise UnknownVariableError(name, known)
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f"Initial condition for '{name}' must be a number, got {value!r}."
                ) from None
            if not math.isfinite(number):
                raise ConfigurationError(
                    f"Initial condition for '{name}' must be finite, got {value!r}."
                )
            values[name] = number
        self._initial_conditions = values
        self._bus.publish(SolverEvent.INITIAL_CONDITIONS_CHANGED, dict(values))

    def set_range(self, variable: str, start: float, end: float,
                  initial_step: float) -> None:
        self._ensure_idle()
        if not isinstance(variable, str) or not _INDEPENDENT.match(variable):
            raise InvalidRangeError(
                f"Independent variable must be a single letter, got {variable!r}."
            )
        if variable == "e":
            raise InvalidRangeError("'e' is Euler's number and cannot be the "
                                    "independent variable.")
        if variable in self.variables:
            raise InvalidRangeError(
                f"'{variable}' is already a dependent variable of the system."
            )
        new_range = Range(variable, start, end, initial_step)
        new_range.validate()
        self._range = new_range
        self._bus.publish(SolverEvent.RANGE_CHANGED, new_range)

    def _update_tolerance(self, **changes) -> ToleranceConfig:
        self._ensure_idle()
        tolerance = replace(self._tolerance, **changes)
        tolerance.validate()
        self._tolerance = tolerance
        return tolerance

    def set_tolerance(self, atol: float, rtol: float) -> None:
        tol = self._update_tolerance(atol=atol, rtol=rtol)
        self._bus.publish(SolverEvent.TOLERANCE_CHANGED,
                          {"atol": tol.atol, "rtol": tol.rtol})

    def set_step_limits(self, min_step: Optional[float] = None,
                        max_step: Optional[float] = None) -> None:
        """Bound the adaptive step size; ``None`` restores the default."""
        tol = self._update_tolerance(min_step=min_step, max_step=max_step)
        self._bus.publish(SolverEvent.STEP_LIMITS_CHANGED,
                          {"min_step": tol.min_step, "max_step": tol.max_step})

    def _publish_adaptation(self, tol: ToleranceConfig) -> None:
        self._bus.publish(SolverEvent.ADAPTATION_CHANGED, {
            "safety_factor": tol.safety_factor,
            "min_factor": tol.min_factor,
            "max_factor": tol.max_factor,
            "error_norm": tol.error_norm,
        })

    def set_factor_limits(self, min_factor: float, max_factor: float) -> None:
        self._publish_adaptation(
            self._update_tolerance(min_factor=min_factor, max_factor=max_factor))

    def set_safety_factor(self, safety_factor: float) -> None:
        self._publish_adaptation(self._update_tolerance(safety_factor=safety_factor))

    def set_error_norm(self, norm: str) -> None:
        """Combine component errors by ``"rms"`` (default) or ``"max"``."""
        self._publish_adaptation(self._update_tolerance(error_norm=norm))

    # ── Running ─────────────────────────────────────────────────────────

    def cancel(self) -> None:
        """Ask the current run to stop at its next suspension point."""
        self._cancel_requested = True
        self._bus.publish(SolverEvent.CANCELED)

    def run(self, adaptive: bool = True) -> list:
        """Integrate over the configured range and return the solution points."""
        return _drive(self._integrate(adaptive))

    async def run_async(self, adaptive: bool = True) -> list:
        """Like ``run``, but gives other tasks a turn between steps."""
        steps = self._integrate(adaptive)
        try:
            while True:
                next(steps)
                await asyncio.sleep(0)
        except StopIteration as stop:
            return stop.value
        finally:
            steps.close()

    def _check_ready(self) -> None:
        if self._system is None:
            raise ConfigurationError("No equations set.")
        rng = self._range
        rng.validate()
        if not rng.is_runnable:
            raise ConfigurationError(
                f"Range incorrect: start + initial step ({rng.start} + "
                f"{rng.initial_step}) must be below end ({rng.end})."
            )
        missing = [v for v in self._system.variables if v not in self._initial_conditions]
        if missing:
            raise ConfigurationError(
                f"Missing initial condition for {', '.join(missing)}."
            )
        tol = self._tolerance
        if tol.resolved_min_step() >= tol.resolved_max_step(rng.span):
            raise ConfigurationError(
                f"min_step ({tol.resolved_min_step()}) must be smaller than the "
                f"maximum step ({tol.resolved_max_step(rng.span)}) for this range."
            )

    def _point(self, x: float, y: np.ndarray) -> SolutionPoint:
        point = {self._range.variable: float(x)}
        for base, i in zip(self._system.base_variables, self._system.base_indices):
            point[base] = float(y[i])
        return point

    def _integrate(self, adaptive: bool):
        if self._running:
            raise SolverBusyError()
        self._check_ready()

        self._running = True
        self._cancel_requested = False
        t_start = time.perf_counter()
        accepted = rejected = 0
        try:
            system, rng = self._system, self._range
            stepper = StepSizeController(self._tolerance, rng.span, adaptive=adaptive)
            derivative = system.derivative(rng.variable)
            x = rng.start
            y = np.array([self._initial_conditions[v] for v in system.variables],
                         dtype=float)
            h = rng.initial_step
            points = [self._point(x, y)]

            logger.info("Run started over [%g, %g] (%s, h0=%g)", rng.start, rng.end,
                        "adaptive" if adaptive else "fixed step", h)
            self._bus.publish(SolverEvent.RUN_STARTED, rng)

            while x < rng.end:
                yield
                if self._cancel_requested:
                    break
                h, last = stepper.clamp_to_end(x, h, rng.end)
                result = stepper.attempt(derivative, x, y, h)
                if not result.accepted:
                    rejected += 1
                    if h <= stepper.min_step:
                        raise ConvergenceError(x, h)
                    logger.debug("Rejected step h=%.3g at x=%.6g (error norm %.3g)",
                                 h, x, result.error_norm)
                    h = result.next_step
                    continue

                accepted += 1
                x = rng.end if last else x + h
                y = result.y
                points.append(self._point(x, y))
                self._bus.publish(SolverEvent.PROGRESS,
                                  Progress(x, result.step_size, result.error_norm,
                                           result.local_error))
                h = result.next_step if adaptive else rng.initial_step

            canceled = self._cancel_requested
            self._last_stats = RunStats(
                accepted=accepted,
                rejected=rejected,
                runtime_ms=round((time.perf_counter() - t_start) * 1000, 3),
                canceled=canceled,
            )
        finally:
            self._running = False

        if canceled:
            logger.info("Run canceled at x=%g after %d step(s)", x, accepted)
            self._bus.publish(SolverEvent.CANCELED)
        else:
            logger.info("Run completed: %d accepted, %d rejected step(s) in %.1f ms",
                        accepted, rejected, self._last_stats.runtime_ms)
            self._bus.publish(SolverEvent.COMPLETED, points)
        return points
