"""Expression handling: text normalisation, parsing and scalar evaluation.

Right-hand sides are parsed with SymPy and compiled with ``lambdify`` into
plain ``math``-module callables, so a single evaluation is cheap enough to
run seven times per integration step.
"""

import math
import re
from typing import Iterable, Mapping

from sympy import E, Expr, Symbol, lambdify
from sympy.parsing.sympy_parser import (
    parse_expr, standard_transformations, implicit_multiplication_application,
    convert_xor,
)

from odesolver.errors import EquationSyntaxError, EvaluationError

TRANSFORMATIONS = standard_transformations + (
    implicit_multiplication_application,
    convert_xor,
)

# LaTeX commands that map onto a SymPy function or constant of the same name.
_LATEX_NAMES = (
    "arcsin", "arccos", "arctan", "sinh", "cosh", "tanh",
    "sin", "cos", "tan", "exp", "log", "ln", "sqrt", "pi",
)
# Operand of a bare radical: a number or a name with optional primes.
_RADICAND = re.compile(r"\u221a\s*(\d+(?:\.\d+)?|[A-Za-z]\w*'*)")
_LATEX_FRAC = re.compile(r'\\[dt]?frac\s*\{([^{}]*)\}\s*\{([^{}]*)\}')


def normalize_expression(text: str) -> str:
    """Turn light LaTeX / Unicode math into ASCII math SymPy can parse.

    ``\\frac{a}{b}`` → ``(a)/(b)``, ``\\cdot`` → ``*``, ``\\sin`` → ``sin``,
    ``√x`` → ``sqrt(x)``, ``π`` → ``pi``; braces and square brackets become
    parentheses and ``\\left`` / ``\\right`` are dropped.
    """
    s = text.strip()
    s = s.replace('\u03c0', '(pi)')
    s = s.replace('\u2212', '-')
    s = s.replace('\u00b7', '*').replace('\u00d7', '*')
    s = s.replace('\u2032', "'").replace('\u2033', "''")
    s = _RADICAND.sub(r'sqrt(\1)', s)
    s = s.replace('\u221a', 'sqrt')

    # Innermost fractions first, until none are left.
    while True:
        replaced = _LATEX_FRAC.sub(r'((\1)/(\2))', s)
        if replaced == s:
            break
        s = replaced

    s = re.sub(r'\\left\b|\\right\b', '', s)
    s = re.sub(r'\\(?:cdot|times)\b', '*', s)
    s = re.sub(r'\\sqrt\s*\{', 'sqrt{', s)
    names = '|'.join(_LATEX_NAMES)
    s = re.sub(r'\\(' + names + r')\b', r'\1', s)
    s = re.sub(r'\\[,;:! ]', ' ', s)
    s = s.replace('[', '(').replace(']', ')')
    s = s.replace('{', '(').replace('}', ')')
    return re.sub(r'\s+', ' ', s).strip()


class CompiledExpr:
    """A parsed expression bound to the names it reads."""

    def __init__(self, text: str, expr):
        self.text = text
        self.expr = expr
        symbols_ = sorted(expr.free_symbols, key=lambda sym: sym.name)
        self.names = tuple(sym.name for sym in symbols_)
        self._fn = lambdify(symbols_, expr, modules="math")

    def __repr__(self) -> str:
        return f"CompiledExpr({self.text!r})"

    def evaluate(self, scope: Mapping[str, float]) -> float:
        """Evaluate against *scope*, a mapping of name → value."""
        try:
            args = [scope[name] for name in self.names]
        except KeyError as exc:
            name = exc.args[0]
            raise EvaluationError(
                f"Name '{name}' in '{self.text}' has no value.", name=name
            ) from None
        try:
            value = float(self._fn(*args))
        except (ArithmeticError, ValueError, TypeError, NameError) as exc:
            raise EvaluationError(
                f"Could not evaluate '{self.text}': {exc}"
            ) from exc
        if not math.isfinite(value):
            raise EvaluationError(
                f"'{self.text}' evaluated to {value} at {dict(zip(self.names, args))}."
            )
        return value

    __call__ = evaluate


def parse_expression(text: str, names: Iterable[str] = ()) -> CompiledExpr:
    """Parse *text* into a ``CompiledExpr``.

    Every single letter in the text, plus every name in *names*, is bound to
    a plain ``Symbol`` so that letters like ``E``, ``I`` or ``S`` mean
    variables rather than SymPy constants. Lower-case ``e`` is Euler's
    number unless it is one of *names*.
    """
    s = text.strip()
    if not s:
        raise EquationSyntaxError(text, "expression is empty")
    names = tuple(names)
    letters = set(re.findall(r'[A-Za-z]', s))
    local = {name: Symbol(name) for name in letters}
    local.update({name: Symbol(name) for name in names})
    if "e" in local and "e" not in names:
        local["e"] = E
    try:
        expr = parse_expr(s, local_dict=local, transformations=TRANSFORMATIONS)
    except Exception as e:
        raise EquationSyntaxError(text, f"could not parse expression ({e})") from e
    if not isinstance(expr, Expr):
        raise EquationSyntaxError(text, "not an arithmetic expression")
    return CompiledExpr(s, expr)


def create_scope(text: str) -> dict[str, float]:
    """Map every name an expression reads to ``0.0``."""
    compiled = parse_expression(normalize_expression(text))
    return {name: 0.0 for name in compiled.names}
