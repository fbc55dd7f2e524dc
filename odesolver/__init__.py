"""ODESolver — adaptive Dormand-Prince integration of equations in derivative notation."""

from odesolver.controller import SolverController
from odesolver.errors import (
    ConfigurationError, ConvergenceError, EquationSyntaxError, EvaluationError,
    InvalidRangeError, ODESolverError, SolverBusyError, UnknownVariableError,
)
from odesolver.events import EventBus, SolverEvent
from odesolver.expressions import create_scope, normalize_expression, parse_expression
from odesolver.models import Progress, Range, RunStats, ToleranceConfig
from odesolver.reducer import EquationReducer, System, reduce_equations

__all__ = [
    "SolverController",
    "EventBus",
    "SolverEvent",
    "EquationReducer",
    "System",
    "reduce_equations",
    "Range",
    "ToleranceConfig",
    "Progress",
    "RunStats",
    "create_scope",
    "normalize_expression",
    "parse_expression",
    "ODESolverError",
    "ConfigurationError",
    "EquationSyntaxError",
    "UnknownVariableError",
    "InvalidRangeError",
    "EvaluationError",
    "ConvergenceError",
    "SolverBusyError",
]
