# functions/utils/common.py
"""
common utility helpers used across the evaluation drafting pipeline.

This includes:
- YAML loading and the cached parameters.yaml view
- Dotted-path parameter lookup with typed fallbacks
- Numeric helpers shared by the aggregator and the sanitizer
  (half-up rounding, percentage clamping)
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Dict

import structlog
import yaml

logger = structlog.get_logger(__name__).bind(module="utils.common")

# Root of project (two dirs up from utils/)
ROOT = Path(__file__).resolve().parents[2]
PARAMETERS_PATH = ROOT / "parameters" / "parameters.yaml"
CREDENTIALS_PATH = ROOT / "parameters" / "credentials.yaml"

# ---------------------------------------------------------------------------
# yaml reader
# ---------------------------------------------------------------------------


def load_yaml_dict(path: str | Path) -> dict[str, Any]:
    """
    Load a YAML file into a dict. Accepts either a string path or a Path object.
    Returns {} when the file is missing, unreadable or not a mapping, and logs
    via structlog.
    """
    p = Path(path)
    if not p.exists():
        logger.info("yaml_file_not_found", path=str(p))
        return {}

    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.error("yaml_file_load_error", path=str(p), error=str(exc))
        return {}

    if not isinstance(data, dict):
        logger.warning(
            "yaml_root_not_mapping",
            path=str(p),
            root_type=type(data).__name__,
        )
        return {}

    return data


# ---------------------------------------------------------------------------
# Full parameters.yaml loader (cached)
# ---------------------------------------------------------------------------

_PARAMETERS_CACHE: Dict[str, Any] | None = None


def load_all_parameters() -> Dict[str, Any]:
    """Load and cache the entire parameters/parameters.yaml file."""
    global _PARAMETERS_CACHE
    if _PARAMETERS_CACHE is not None:
        return _PARAMETERS_CACHE

    _PARAMETERS_CACHE = load_yaml_dict(PARAMETERS_PATH)
    if not _PARAMETERS_CACHE:
        logger.warning("parameters_yaml_missing_or_empty", path=str(PARAMETERS_PATH))
    return _PARAMETERS_CACHE


def get_param(dotted_key: str, default: Any = None) -> Any:
    """
    Look up ``"section.sub.key"`` in parameters.yaml.

    Returns ``default`` when any segment is missing or a non-mapping is hit
    along the way.
    """
    node: Any = load_all_parameters()
    for part in dotted_key.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return default if node is None else node


def get_int_param(dotted_key: str, default: int) -> int:
    raw = get_param(dotted_key, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("parameter_not_int", key=dotted_key, raw=raw)
        return default


def get_float_param(dotted_key: str, default: float) -> float:
    raw = get_param(dotted_key, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("parameter_not_float", key=dotted_key, raw=raw)
        return default


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity.

    ``round()`` uses banker's rounding (``round(2.5) == 2``); weights and
    scores coming from the UI expect 2.5 -> 3.
    """
    return int(math.floor(value + 0.5))


def to_finite_number(value: Any) -> float | None:
    """Return ``value`` as a finite float, or None (bools are not numbers)."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def clamp_percent(value: Any) -> int | None:
    """Clamp a numeric value into [0, 100] and round it; None if not numeric."""
    number = to_finite_number(value)
    if number is None:
        return None
    return max(0, min(100, round_half_up(number)))


__all__ = [
    "ROOT",
    "PARAMETERS_PATH",
    "CREDENTIALS_PATH",
    "load_yaml_dict",
    "load_all_parameters",
    "get_param",
    "get_int_param",
    "get_float_param",
    "round_half_up",
    "to_finite_number",
    "clamp_percent",
]
