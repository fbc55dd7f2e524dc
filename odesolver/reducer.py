"""Reduction of derivative-notation equations to a first-order system.

An equation ``y'' = f(x, y, y')`` of order *n* becomes *n* first-order
equations over the variables ``y, y_1, ..., y_{n-1}``::

    d(y)/dx       = y_1
    d(y_1)/dx     = y_2
    ...
    d(y_{n-1})/dx = f

Variables are laid out equation by equation in the order the equations
were given. Right-hand sides may read any variable of any equation, so
coupled systems work. Inside a right-hand side the prime shorthand ``y'``,
``y''`` is accepted for ``y_1``, ``y_2``.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

import numpy as np

from odesolver.errors import EquationSyntaxError, EvaluationError
from odesolver.expressions import normalize_expression, parse_expression

logger = logging.getLogger(__name__)

_LHS = re.compile(r"^([A-Za-z])('*)$")
_RHS_PRIME = re.compile(r"(?<![A-Za-z_])([A-Za-z])('+)")


def variable_name(base: str, index: int) -> str:
    """Name of the *index*-th derivative slot of *base* (``y``, ``y_1``, …)."""
    return base if index == 0 else f"{base}_{index}"


class _SlotReader:
    """Derivative of an intermediate slot: the value of the next slot."""

    def __init__(self, name: str):
        self.name = name

    def __call__(self, scope: Mapping[str, float]) -> float:
        try:
            return scope[self.name]
        except KeyError:
            raise EvaluationError(f"Name '{self.name}' has no value.",
                                  name=self.name) from None

    def __repr__(self) -> str:
        return f"<slot {self.name}>"


@dataclass(frozen=True)
class System:
    """First-order system: ``d(variables[i])/dx = functions[i](scope)``."""

    variables: tuple
    functions: tuple
    base_variables: tuple
    orders: dict = field(default_factory=dict, hash=False)
    equations: tuple = ()
    base_indices: tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if len(self.variables) != len(self.functions):
            raise ValueError("System needs exactly one function per variable.")
        # Position of each base variable in the state vector.
        object.__setattr__(self, "base_indices", tuple(
            self.variables.index(base) for base in self.base_variables
        ))

    def __len__(self) -> int:
        return len(self.variables)

    def scope(self, independent: str, x: float, y) -> dict:
        scope = {independent: float(x)}
        scope.update(zip(self.variables, (float(v) for v in y)))
        return scope

    def evaluate(self, independent: str, x: float, y) -> np.ndarray:
        """Derivative vector at ``(x, y)``."""
        scope = self.scope(independent, x, y)
        return np.array([fn(scope) for fn in self.functions], dtype=float)

    def derivative(self, independent: str) -> Callable[[float, np.ndarray], np.ndarray]:
        """Bind the independent-variable name, giving ``f(x, y) -> dy/dx``."""
        return lambda x, y: self.evaluate(independent, x, y)


def _split(equation: str):
    text = normalize_expression(equation)
    parts = text.split('=')
    if len(parts) != 2:
        raise EquationSyntaxError(equation, "must contain exactly one '='")
    lhs, rhs = parts[0].strip(), parts[1].strip()
    if not rhs:
        raise EquationSyntaxError(equation, "right-hand side is empty")
    match = _LHS.match(lhs.replace(' ', ''))
    if not match:
        raise EquationSyntaxError(
            equation,
            f"left-hand side '{lhs}' must be a single letter followed by "
            f"derivative marks, e.g. y''",
        )
    base, marks = match.groups()
    return base, max(1, len(marks)), rhs


def _expand_primes(rhs: str) -> str:
    return _RHS_PRIME.sub(lambda m: variable_name(m.group(1), len(m.group(2))), rhs)


def reduce_equations(equations: Sequence[str]) -> System:
    """Reduce *equations* to a ``System``; raises ``EquationSyntaxError``."""
    if isinstance(equations, str):
        equations = [equations]
    equations = [eq for eq in equations if eq and eq.strip()]
    if not equations:
        raise EquationSyntaxError("", "no equations given")

    # Left-hand sides first: every right-hand side may read every variable.
    parsed = []
    seen = {}
    for eq in equations:
        base, order, rhs = _split(eq)
        if base in seen:
            raise EquationSyntaxError(
                eq, f"'{base}' is already defined by '{seen[base]}'"
            )
        seen[base] = eq
        parsed.append((eq, base, order, rhs))

    variables = []
    for _, base, order, _ in parsed:
        variables.extend(variable_name(base, k) for k in range(order))

    functions = []
    for eq, base, order, rhs in parsed:
        for k in range(order - 1):
            functions.append(_SlotReader(variable_name(base, k + 1)))
        try:
            compiled = parse_expression(_expand_primes(rhs), names=variables)
        except EquationSyntaxError as exc:
            raise EquationSyntaxError(eq, exc.reason) from exc
        logger.debug("d(%s)/dx = %s reads %s",
                     variable_name(base, order - 1), compiled.expr, compiled.names)
        functions.append(compiled.evaluate)

    return System(
        variables=tuple(variables),
        functions=tuple(functions),
        base_variables=tuple(base for _, base, _, _ in parsed),
        orders={base: order for _, base, order, _ in parsed},
        equations=tuple(equations),
    )


class EquationReducer:
    """Object form of ``reduce_equations`` for callers that inject a reducer."""

    def reduce(self, equations: Sequence[str]) -> System:
        return reduce_equations(equations)
