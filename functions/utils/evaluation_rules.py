"""
Evaluation rules shared by prompts, the work-log aggregator and the
coaching state machine.

These helpers are used across multiple stages:
- Stage A: grade / season validation
- Stage B: prompt construction (tone guides, season labels, grade scale)
- Aggregator and coaching: grade scores, tier keywords, default formulas

Centralizing them keeps the five-tier scale identical everywhere it is
enumerated (formulas, prompts, readiness checks).
"""

from __future__ import annotations

from schemas.input_schema import PerformanceGrade, WorkLogSeason, WorkLogType


# ---------------------------------------------------------------------------
# Grade scale
# ---------------------------------------------------------------------------

GRADE_ORDER: tuple[PerformanceGrade, ...] = (
    PerformanceGrade.OUTSTANDING,
    PerformanceGrade.EXCELLENT,
    PerformanceGrade.ACHIEVED,
    PerformanceGrade.NEEDS_IMPROVEMENT,
    PerformanceGrade.UNSATISFACTORY,
)

GRADE_TIER_KEYWORDS: tuple[str, ...] = tuple(g.value for g in GRADE_ORDER)

GRADE_SCORES: dict[PerformanceGrade, int] = {
    PerformanceGrade.OUTSTANDING: 100,
    PerformanceGrade.EXCELLENT: 90,
    PerformanceGrade.ACHIEVED: 70,
    PerformanceGrade.NEEDS_IMPROVEMENT: 50,
    PerformanceGrade.UNSATISFACTORY: 40,
}

DEFAULT_GRADE = PerformanceGrade.ACHIEVED
DEFAULT_SCORE = GRADE_SCORES[DEFAULT_GRADE]

GRADE_SCALE_BLOCK = "\n".join(
    [
        "탁월: 120% 이상",
        "우수: 110% 이상",
        "달성: 100% 이상",
        "노력: 80% 이상",
        "미흡: 80% 미만",
    ]
)

# Competency evaluation uses its own four-level scale.
COMPETENCY_GRADE_SCALE: tuple[str, ...] = ("탁월", "우수", "보통", "노력")
# Short forms the organize draft keys its behavior sentences to.
COMPETENCY_PROMPT_KEYWORDS: tuple[str, ...] = ("도전", "협업", "성장", "규정준수")

_GRADE_TONE_GUIDES: dict[PerformanceGrade, str] = {
    PerformanceGrade.OUTSTANDING: (
        "탁월 등급: 성과의 파급효과, 난이도 높은 과제 완수, 조직 기여를 "
        "자신감 있게 강조하되 과장하지 않는다."
    ),
    PerformanceGrade.EXCELLENT: (
        "우수 등급: 목표를 안정적으로 상회 달성한 점과 실행력, 협업 기여를 분명히 강조한다."
    ),
    PerformanceGrade.ACHIEVED: (
        "달성 등급: 목표를 충실히 달성한 사실 중심으로 작성하고, 과도한 수사는 피한다."
    ),
    PerformanceGrade.NEEDS_IMPROVEMENT: (
        "노력 등급: 성과와 한계를 함께 서술하고, 개선 시도와 향후 보완 계획을 균형 있게 담는다."
    ),
    PerformanceGrade.UNSATISFACTORY: (
        "미흡 등급: 미달 원인, 반성 포인트, 재발 방지 및 개선 계획을 명확하고 책임감 있게 작성한다."
    ),
}


def parse_grade(value: object) -> PerformanceGrade | None:
    """Return the grade for an exact label match, None for anything else."""
    if isinstance(value, PerformanceGrade):
        return value
    if not isinstance(value, str):
        return None
    try:
        return PerformanceGrade(value)
    except ValueError:
        return None


def grade_score(grade: PerformanceGrade) -> int:
    return GRADE_SCORES.get(grade, DEFAULT_SCORE)


def grade_tone_guide(grade: PerformanceGrade) -> str:
    """Writing-style instruction injected into refine prompts for ``grade``."""
    return _GRADE_TONE_GUIDES.get(grade, _GRADE_TONE_GUIDES[DEFAULT_GRADE])


def contains_all_grade_tiers(text: str) -> bool:
    return bool(text) and all(keyword in text for keyword in GRADE_TIER_KEYWORDS)


# ---------------------------------------------------------------------------
# Work-log types and seasons
# ---------------------------------------------------------------------------

_DEFAULT_FORMULAS: dict[WorkLogType, str] = {
    WorkLogType.EVENT: "(기한 내 완료 건수 / 계획 건수) * 100",
    WorkLogType.PROJECT: "(완료 마일스톤 수 / 계획 마일스톤 수) * 100",
    WorkLogType.TASK: "(주간 완료 건수 / 주간 목표 건수) * 100",
}
_GENERIC_FORMULA = "(완료 업무 수 / 계획 업무 수) * 100"


def default_formula_for_type(entry_type: WorkLogType | str | None) -> str:
    """Type-specific ratio formula used when no metric text exists."""
    try:
        key = WorkLogType(entry_type)
    except ValueError:
        return _GENERIC_FORMULA
    return _DEFAULT_FORMULAS.get(key, _GENERIC_FORMULA)


def with_grade_scale(formula: str) -> str:
    """Append the five-tier scale unless every tier keyword is already present."""
    if contains_all_grade_tiers(formula):
        return formula
    return f"{formula}\n{GRADE_SCALE_BLOCK}"


def season_label(season: WorkLogSeason | str | None) -> str:
    if season == WorkLogSeason.H1:
        return "상반기"
    if season == WorkLogSeason.H2:
        return "하반기"
    return "연간"
