"""
ODESolver — solver settings stored as local JSON.

Settings live in ``<project>/data/odesolver.json`` unless a path is given.
Missing keys fall back to ``DEFAULT_SETTINGS``.
"""

import json
import logging
import os
from typing import Optional

from odesolver.models import ToleranceConfig

logger = logging.getLogger(__name__)

_DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "data")
_SETTINGS_FILE = os.path.join(_DATA_DIR, "odesolver.json")

# ── Default settings ────────────────────────────────────────────────────
DEFAULT_SETTINGS = {
    "atol": 1e-6,
    "rtol": 1e-6,
    "safety_factor": 0.9,
    "min_factor": 0.2,
    "max_factor": 5.0,
    "min_step": None,       # None → 1e-10
    "max_step": None,       # None → 0.1 * (end - start)
    "error_norm": "rms",    # "rms" or "max"
    "log_level": "INFO",
}


def _settings_path(path: Optional[str]) -> str:
    return path if path is not None else _SETTINGS_FILE


def load_settings(path: Optional[str] = None) -> dict:
    """Return the settings dict, merged over the defaults."""
    settings = dict(DEFAULT_SETTINGS)
    target = _settings_path(path)
    if not os.path.exists(target):
        return settings
    try:
        with open(target, "r", encoding="utf-8") as f:
            stored = json.load(f)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", target, exc)
        return settings
    if not isinstance(stored, dict):
        logger.warning("Ignoring settings file %s: expected a JSON object", target)
        return settings
    for key, value in stored.items():
        if key in DEFAULT_SETTINGS:
            settings[key] = value
        else:
            logger.warning("Unknown setting '%s' in %s", key, target)
    return settings


def save_settings(settings: dict, path: Optional[str] = None) -> None:
    """Persist *settings* (only known keys are written)."""
    target = _settings_path(path)
    os.makedirs(os.path.dirname(os.path.abspath(target)), exist_ok=True)
    known = {k: v for k, v in settings.items() if k in DEFAULT_SETTINGS}
    with open(target, "w", encoding="utf-8") as f:
        json.dump(known, f, indent=2, ensure_ascii=False)


def tolerance_from_settings(settings: dict) -> ToleranceConfig:
    """Build and validate a ``ToleranceConfig`` from a settings dict."""
    merged = dict(DEFAULT_SETTINGS)
    merged.update(settings)
    tolerance = ToleranceConfig(
        atol=merged["atol"],
        rtol=merged["rtol"],
        safety_factor=merged["safety_factor"],
        min_factor=merged["min_factor"],
        max_factor=merged["max_factor"],
        min_step=merged["min_step"],
        max_step=merged["max_step"],
        error_norm=merged["error_norm"],
    )
    tolerance.validate()
    return tolerance
