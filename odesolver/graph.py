"""
Graph builder for ODESolver.

Produces a dark-themed matplotlib Figure of a solved trajectory: one line
per base variable against the independent variable.
"""

from typing import Optional, Sequence

import numpy as np

from odesolver.models import SolutionPoint

# ── palette ────────────────────────────────────────────────────────────────
C_BG       = "#0f0f0f"
C_AX       = "#181818"
C_GRID     = "#252525"
C_TICK     = "#666666"
C_SPINE    = "#333333"
C_TEXT     = "#cccccc"
C_LINES    = ("#1a8cff", "#ff8c42", "#4caf50", "#e040fb", "#ffd740", "#26c6da")


def _style_axes(ax, fig):
    fig.patch.set_facecolor(C_BG)
    ax.set_facecolor(C_AX)
    ax.tick_params(colors=C_TICK, labelsize=9)
    ax.xaxis.label.set_color(C_TEXT)
    ax.yaxis.label.set_color(C_TEXT)
    ax.title.set_color(C_TEXT)
    for spine in ax.spines.values():
        spine.set_edgecolor(C_SPINE)
    ax.grid(True, color=C_GRID, linewidth=0.8, linestyle="--", alpha=0.7)
    ax.axhline(0, color=C_SPINE, linewidth=0.8)


def build_figure(points: Sequence[SolutionPoint], independent: Optional[str] = None,
                 variables: Optional[Sequence[str]] = None):
    """
    Build and return a Figure for *points*.

    *independent* defaults to the first key of the first point, *variables*
    to the remaining keys. Returns None when there are fewer than two points
    or nothing to plot.
    """
    from matplotlib.figure import Figure

    if len(points) < 2:
        return None
    keys = list(points[0].keys())
    if independent is None:
        independent = keys[0]
    if variables is None:
        variables = [k for k in keys if k != independent]
    if not variables:
        return None

    xs = np.array([p[independent] for p in points], dtype=float)

    fig = Figure(figsize=(7, 3.6), dpi=100)
    ax  = fig.add_subplot(111)
    _style_axes(ax, fig)

    for i, name in enumerate(variables):
        ys = np.array([p[name] for p in points], dtype=float)
        ax.plot(xs, ys, color=C_LINES[i % len(C_LINES)], linewidth=2,
                label=f"{name}({independent})")

    ax.set_xlim(xs[0], xs[-1])
    ax.set_title(f"Solution on [{xs[0]:g}, {xs[-1]:g}]  ({len(points)} points)",
                 color=C_TEXT, fontsize=10)
    ax.set_xlabel(independent, color=C_TEXT)
    ax.set_ylabel("value", color=C_TEXT)
    ax.legend(fontsize=8, facecolor="#1e1e1e", edgecolor=C_SPINE,
              labelcolor=C_TEXT)
    fig.tight_layout(pad=1.2)
    return fig
