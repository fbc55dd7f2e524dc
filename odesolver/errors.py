"""Exception hierarchy for ODESolver.

Configuration problems derive from ``ValueError`` so callers that already
treat ``ValueError`` as "bad input" (the HTTP layer, the CLI) keep working.
"""


class ODESolverError(Exception):
    """Base class for every error raised by the solver."""


# ── Configuration-time errors ──────────────────────────────────────────

class ConfigurationError(ODESolverError, ValueError):
    """The solver is not configured well enough to do what was asked."""


class EquationSyntaxError(ConfigurationError):
    """An equation could not be understood."""

    def __init__(self, text: str, reason: str = ""):
        self.text = text
        self.reason = reason
        message = f"Invalid equation '{text}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class UnknownVariableError(ConfigurationError):
    """An initial condition names a variable the current system lacks."""

    def __init__(self, name: str, known=()):
        self.name = name
        message = f"Unknown variable '{name}'."
        if known:
            message += f" Expected one of: {', '.join(known)}"
        super().__init__(message)


class InvalidRangeError(ConfigurationError):
    """The integration interval is empty, reversed, or not finite."""


# ── Run-time errors ────────────────────────────────────────────────────

class EvaluationError(ODESolverError):
    """A right-hand side could not be evaluated at some point of the run."""

    def __init__(self, message: str, name=None):
        self.name = name
        super().__init__(message)


class ConvergenceError(ODESolverError, ArithmeticError):
    """The step size hit its lower bound without meeting the tolerance."""

    def __init__(self, x: float, step: float):
        self.x = x
        self.step = step
        super().__init__(
            f"Step size {step:.3g} at x = {x:.6g} reached the minimum step "
            f"without satisfying the tolerance."
        )


class SolverBusyError(ODESolverError, RuntimeError):
    """A run is already in flight on this solver instance."""

    def __init__(self, message: str = "Solver is busy: a run is already in progress."):
        super().__init__(message)
