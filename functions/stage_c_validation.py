"""Stage C: quality checks on generated text.

Each AI-assist feature has its own acceptance criteria. A failed check is
not an error: it only tells the repair loop (Stage B) to issue one stricter
retry. Thresholds come from the ``quality`` section of parameters.yaml.

- refine:   incomplete (floor 110) OR meta leakage OR outside 150-200 chars
- organize: incomplete (floor 200) OR English meta words OR outside 300-4000 chars
- coach:    only the parsed ``reply`` field's incompleteness (floor 24)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

import structlog

from functions.utils.common import get_param
from functions.utils.text_quality import (
    COACH_REPLY_RULE,
    REFINE_RULE,
    has_meta_words,
    is_length_out_of_range,
    is_likely_incomplete,
    is_meta_like_output,
    with_min_chars,
)

logger = structlog.get_logger(__name__).bind(module="stage_c_validation")

INCOMPLETE = "incomplete"
META_LEAKAGE = "meta_leakage"
LENGTH_OUT_OF_RANGE = "length_out_of_range"


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------

_QUALITY_DEFAULTS: Dict[str, Dict[str, int]] = {
    "refine": {"min_chars": 150, "max_chars": 200, "incomplete_min_chars": 110, "output_max_chars": 2000},
    "organize": {"min_chars": 300, "max_chars": 4000, "incomplete_min_chars": 200},
    "coach": {"reply_min_chars": 24},
}


def load_quality_params(feature: str) -> Dict[str, int]:
    """
    Quality thresholds for ``feature``, parameters.yaml over built-in defaults.

    Expected structure in parameters.yaml (optional):

    quality:
      refine:
        min_chars: 150
        max_chars: 200
        incomplete_min_chars: 110
        output_max_chars: 2000
    """
    cfg: Dict[str, int] = dict(_QUALITY_DEFAULTS.get(feature, {}))
    raw: Any = get_param(f"quality.{feature}", {})
    if isinstance(raw, dict):
        for key, value in raw.items():
            try:
                cfg[str(key)] = int(value)
            except (TypeError, ValueError):
                logger.warning("quality_param_invalid", feature=feature, key=key, value=value)
    return cfg


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@dataclass
class QualityReport:
    feature: str
    length: int
    issues: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.issues


def _report(feature: str, text: str, issues: List[str]) -> QualityReport:
    report = QualityReport(feature=feature, length=len(text.strip()), issues=issues)
    if issues:
        logger.info("quality_check_failed", feature=feature, issues=issues, length=report.length)
    return report


def check_refined_text(text: str | None) -> QualityReport:
    cfg = load_quality_params("refine")
    normalized = text or ""
    issues: List[str] = []
    if is_likely_incomplete(normalized, with_min_chars(REFINE_RULE, cfg["incomplete_min_chars"])):
        issues.append(INCOMPLETE)
    if is_meta_like_output(normalized):
        issues.append(META_LEAKAGE)
    if is_length_out_of_range(normalized, cfg["min_chars"], cfg["max_chars"]):
        issues.append(LENGTH_OUT_OF_RANGE)
    return _report("refine", normalized, issues)


def check_organize_draft(text: str | None) -> QualityReport:
    """The draft is numbered markdown by format, so only English chatter counts as leakage."""
    cfg = load_quality_params("organize")
    normalized = text or ""
    issues: List[str] = []
    if is_likely_incomplete(normalized, with_min_chars(REFINE_RULE, cfg["incomplete_min_chars"])):
        issues.append(INCOMPLETE)
    if has_meta_words(normalized):
        issues.append(META_LEAKAGE)
    if is_length_out_of_range(normalized, cfg["min_chars"], cfg["max_chars"]):
        issues.append(LENGTH_OUT_OF_RANGE)
    return _report("organize", normalized, issues)


def check_coach_reply(reply: str | None) -> QualityReport:
    cfg = load_quality_params("coach")
    normalized = reply or ""
    issues: List[str] = []
    if is_likely_incomplete(normalized, with_min_chars(COACH_REPLY_RULE, cfg["reply_min_chars"])):
        issues.append(INCOMPLETE)
    return _report("coach", normalized, issues)


__all__ = [
    "INCOMPLETE",
    "META_LEAKAGE",
    "LENGTH_OUT_OF_RANGE",
    "load_quality_params",
    "QualityReport",
    "check_refined_text",
    "check_organize_draft",
    "check_coach_reply",
]
