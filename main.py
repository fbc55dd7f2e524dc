"""
ODESolver — Entry point.

Solve one or more equations from the command line and print the solution
as CSV, e.g.::

    python main.py "y'' = -y" --ic "y = 0, y_1 = 1" --end 6.283
"""

import argparse
import logging
import re
import sys

from odesolver import ConfigurationError, ODESolverError, SolverController
from odesolver.config import load_settings
from odesolver.export import to_csv
from odesolver.logging_config import setup_logging

logger = logging.getLogger("odesolver.cli")


def _parse_values(values: list) -> dict:
    """Parse ``name = value`` assignments (comma / semicolon separated)."""
    result = {}
    for chunk in values:
        for assignment in re.split(r'\s*[,;]\s*', chunk.strip()):
            if not assignment:
                continue
            if '=' not in assignment:
                raise ConfigurationError(
                    f"Invalid initial condition '{assignment}'. "
                    f"Expected format: variable = value (e.g. y = 1)"
                )
            name, _, raw = assignment.partition('=')
            name, raw = name.strip(), raw.strip()
            try:
                result[name] = float(raw)
            except ValueError:
                raise ConfigurationError(
                    f"Initial condition for '{name}' must be a number, got '{raw}'."
                ) from None
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="odesolver",
        description="Integrate ODEs written in derivative notation (Dormand-Prince 5(4)).",
    )
    parser.add_argument("equations", nargs="+", help="equations such as \"y'' = -y\"")
    parser.add_argument("--ic", action="append", default=[], metavar="NAME=VALUE",
                        help="initial condition(s), e.g. \"y=0, y_1=1\"")
    parser.add_argument("--var", default="x", help="independent variable (default: x)")
    parser.add_argument("--start", type=float, default=0.0)
    parser.add_argument("--end", type=float, default=1.0)
    parser.add_argument("--step", type=float, default=0.1, help="initial step size")
    parser.add_argument("--atol", type=float, help="absolute tolerance")
    parser.add_argument("--rtol", type=float, help="relative tolerance")
    parser.add_argument("--fixed", action="store_true",
                        help="accept every step (no step-size adaptation)")
    parser.add_argument("--csv", metavar="PATH", help="write the solution to PATH")
    parser.add_argument("--plot", metavar="PATH", help="save a plot of the solution")
    parser.add_argument("--settings", metavar="PATH", help="JSON settings file")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.settings)
    if args.atol is not None:
        settings["atol"] = args.atol
    if args.rtol is not None:
        settings["rtol"] = args.rtol
    setup_logging("DEBUG" if args.verbose else settings["log_level"])

    try:
        solver = SolverController.from_settings(settings)
        solver.set_range(args.var, args.start, args.end, args.step)
        solver.set_equations(args.equations)
        solver.set_initial_conditions(_parse_values(args.ic))
        points = solver.run(adaptive=not args.fixed)
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except ODESolverError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    text = to_csv(points, args.csv)
    if args.csv:
        logger.info("Wrote %d points to %s", len(points), args.csv)
    else:
        print(text)

    if args.plot:
        from odesolver.graph import build_figure
        fig = build_figure(points, independent=args.var)
        if fig is not None:
            fig.savefig(args.plot)
            logger.info("Saved plot to %s", args.plot)
    return 0


if __name__ == "__main__":
    sys.exit(main())
