# functions/utils/prompts_builder.py
"""
Prompt builders for the three AI-assist features.

Each feature has a first-attempt prompt and a strict retry prompt used by
the repair loop when the first answer fails a quality check:

- refine:   ``build_refine_prompt`` / ``build_refine_retry_prompt``
- organize: ``build_organize_prompt`` / ``build_organize_retry_prompt``
- coach:    ``build_coach_prompt`` / ``build_coach_retry_prompt``

Prompts are plain Korean text assembled from a list of lines. Length
windows and caps come from parameters.yaml so that the prompt text and the
quality checks always agree.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence

import structlog

from schemas.input_schema import (
    CandidatePayload,
    ChatMessage,
    ChatRole,
    CoachMode,
    Track1Form,
    WorkLogEntry,
    WorkLogSeason,
)
from functions.utils.common import get_int_param
from functions.utils.evaluation_rules import (
    COMPETENCY_GRADE_SCALE,
    COMPETENCY_PROMPT_KEYWORDS,
    grade_tone_guide,
    season_label,
)
from functions.utils.work_log import period_label

logger = structlog.get_logger(__name__).bind(module="prompts_builder")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _or_dash(value: str | None) -> str:
    return value if value else "-"


def _percent(value: float | None) -> str:
    return "-" if value is None else f"{value:g}%"


def refine_length_window() -> tuple[int, int]:
    return (
        get_int_param("quality.refine.min_chars", 150),
        get_int_param("quality.refine.max_chars", 200),
    )


def _mode_label(mode: CoachMode | str) -> str:
    return mode.value if isinstance(mode, CoachMode) else str(mode)


# ---------------------------------------------------------------------------
# Sentence refinement
# ---------------------------------------------------------------------------


def build_refine_prompt(item: Track1Form) -> str:
    """Prompt that polishes the free-text achievement result of one form row."""
    min_chars, max_chars = refine_length_window()
    lines: List[str] = [
        "당신은 사내 성과평가 문장 교정 전문가입니다.",
        "아래 입력을 바탕으로 ERP 붙여넣기용 '달성실적' 문장을 한국어로 다듬어 주세요.",
        "규칙:",
        "1) 사실 범위를 벗어난 과장 금지",
        "2) 한 단락으로 작성",
        f"3) {min_chars}~{max_chars}자 내외",
        "4) 한국어만 사용 (영문 체크리스트/평가 코멘트 금지)",
        "5) 출력은 본문만, 제목/머리말/불릿/번호/메타설명 금지",
        f"6) 등급별 문체 가이드: {grade_tone_guide(item.grade)}",
        "",
        f"목표구분: {_or_dash(item.goal_category)}",
        f"R&R: {_or_dash(item.role_and_responsibilities)}",
        f"목표과업 비중: {_percent(item.goal_task_weight)}",
        f"KPI명: {_or_dash(item.kpi_name)}",
        f"KPI과제: {_or_dash(item.kpi_task)}",
        f"달성계획: {_or_dash(item.achievement_plan)}",
        f"KPI산식: {_or_dash(item.kpi_formula)}",
        f"하위과업 비중: {_percent(item.sub_task_weight)}",
        f"자가 평가: {item.grade.value} ({item.score:g}점)",
        "",
        "원문 달성실적:",
        item.achievement_result or "(원문 없음)",
    ]
    return "\n".join(lines)


def build_refine_retry_prompt(item: Track1Form, draft: str) -> str:
    """Stricter rewrite of ``draft``: exact window, one paragraph, closed ending."""
    min_chars, max_chars = refine_length_window()
    lines: List[str] = [
        "아래 초안을 ERP용 달성실적으로 다시 작성하세요.",
        "절대 규칙:",
        f"1) 정확히 {min_chars}~{max_chars}자",
        "2) 한국어 본문 한 단락만 출력",
        "3) 불릿, 번호, 체크리스트, 'Good', 'Final', 'Review' 같은 메타 문구 금지",
        "4) 문장 중간 끊김 없이 완결형 종결어미로 마무리",
        f"5) 등급별 문체 가이드: {grade_tone_guide(item.grade)}",
        "",
        "초안:",
        draft,
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Season organize
# ---------------------------------------------------------------------------


def serialize_organize_entries(entries: Sequence[WorkLogEntry]) -> str:
    blocks: List[str] = []
    for index, entry in enumerate(entries, start=1):
        blocks.append(
            "\n".join(
                [
                    f"[기록 {index}]",
                    f"- 폴더ID: {_or_dash(entry.folder_id)}",
                    f"- 완료일: {entry.date}",
                    f"- 기간: {period_label(entry)}",
                    f"- 유형: {entry.type.value}",
                    f"- 제목: {_or_dash(entry.title)}",
                    f"- 맥락: {_or_dash(entry.context)}",
                    f"- 결과: {_or_dash(entry.result)}",
                    f"- 지표: {_or_dash(entry.metrics)}",
                    f"- 태그: {_or_dash(entry.tags)}",
                ]
            )
        )
    return "\n\n".join(blocks)


def _organize_output_format() -> List[str]:
    return [
        "[출력 형식]",
        "1) 시즌 핵심 요약 (2~3문장)",
        "2) 업적평가 후보 (3개 문장, 각 문장 120~180자)",
        f"3) 역량평가 행동사례 후보 (4개 문장, 키워드: {'/'.join(COMPETENCY_PROMPT_KEYWORDS)})",
        "4) 작성자 종합 의견 초안 (1개 문단, 300~500자)",
    ]


def build_organize_prompt(year: int, season: WorkLogSeason, entries: Sequence[WorkLogEntry]) -> str:
    """Season summary draft in a fixed four-part structure."""
    lines: List[str] = [
        "당신은 인사평가 시즌 정리 코치입니다.",
        "아래 상시 업무 기록을 바탕으로 시즌 평가 작성을 위한 초안을 작성하세요.",
        "규칙:",
        "1) 입력 기록에 없는 사실을 추가하지 말 것",
        "2) 한국어만 사용",
        "3) 지나친 수사 없이 ERP 복붙 가능한 문체",
        "4) 반드시 아래 출력 형식을 그대로 유지",
        f"5) 역량평가 문장은 {'/'.join(COMPETENCY_GRADE_SCALE)} 판단 근거가 되는 행동 중심으로 작성",
        "",
        *_organize_output_format(),
        "",
        f"대상 시즌: {year}년 {season_label(season)}",
        f"기록 개수: {len(entries)}",
        "",
        "[기록 원문]",
        serialize_organize_entries(entries),
    ]
    return "\n".join(lines)


def build_organize_retry_prompt(
    year: int,
    season: WorkLogSeason,
    entries: Sequence[WorkLogEntry],
    draft: str,
) -> str:
    """Rewrite a cut-off or malformed season draft, repeating every hard rule."""
    lines: List[str] = [
        "아래 시즌 정리 초안을 같은 기록 원문 기준으로 다시 작성하세요.",
        "직전 초안이 형식을 벗어났거나 중간에 끊겼습니다.",
        "절대 규칙:",
        "1) 입력 기록에 없는 사실 추가 금지",
        "2) 한국어만 사용, 'Final', 'Review' 같은 영문 메타 문구 금지",
        "3) 아래 4개 항목을 모두 포함하고 순서를 유지",
        "4) 모든 문장은 완결형 종결어미로 마무리",
        "",
        *_organize_output_format(),
        "",
        f"대상 시즌: {year}년 {season_label(season)}",
        f"기록 개수: {len(entries)}",
        "",
        "[기록 원문]",
        serialize_organize_entries(entries),
        "",
        "[직전 초안]",
        draft,
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Candidate coaching
# ---------------------------------------------------------------------------

_PROGRESS_JSON_LINES = [
    '  "progress": {',
    '    "baselineConfirmed": boolean,',
    '    "formulaConfirmed": boolean,',
    '    "targetConfirmed": boolean,',
    '    "readyToApply": boolean',
    "  },",
]


def summarize_related_entries(entries: Iterable[WorkLogEntry], limit: int | None = None) -> str:
    if limit is None:
        limit = get_int_param("coaching.related_entries_limit", 15)
    blocks: List[str] = []
    for index, entry in enumerate(list(entries)[: max(0, limit)], start=1):
        blocks.append(
            "\n".join(
                [
                    f"[기록 {index}]",
                    f"- 완료일: {_or_dash(entry.date)}",
                    f"- 유형: {entry.type.value}",
                    f"- 제목: {_or_dash(entry.title)}",
                    f"- 맥락: {_or_dash(entry.context)}",
                    f"- 결과: {_or_dash(entry.result)}",
                    f"- 지표: {_or_dash(entry.metrics)}",
                    f"- 태그: {_or_dash(entry.tags)}",
                ]
            )
        )
    return "\n\n".join(blocks)


def format_conversation(messages: Sequence[ChatMessage], window: int | None = None) -> str:
    """Numbered recent transcript; only the last ``window`` turns are kept."""
    if window is None:
        window = get_int_param("coaching.transcript_window", 10)
    recent = list(messages)[-window:] if window > 0 else []
    return "\n".join(
        f"{index}. {'AI' if message.role == ChatRole.ASSISTANT else 'USER'}: {message.content}"
        for index, message in enumerate(recent, start=1)
    )


def build_coach_prompt(
    mode: CoachMode,
    user_message: str,
    candidate: CandidatePayload,
    entries: Sequence[WorkLogEntry],
    messages: Sequence[ChatMessage],
    current_card_count: int,
) -> str:
    """JSON-only coaching prompt for one candidate (or its active sub-task card)."""
    conversation = format_conversation(messages)

    lines: List[str] = [
        "당신은 사내 평가작성 KPI 코치입니다.",
        "목표: 사용자의 실적을 과장 없이 잘 드러내면서, 실무적으로 유리한 KPI 기준(달성 가능 + 도전성)을 함께 설계한다.",
        "중요 원칙:",
        "1) 사실 기반만 사용, 허위/과장 금지",
        "2) 모호하면 먼저 질문하고, 질문은 1~2개만 핵심적으로",
        "3) KPI 산식/목표치 확정이 우선",
        "4) 사용자 편의: 바로 Track1에 반영 가능한 수정안을 함께 제시",
        "5) 달성계획은 반드시 3~4개의 마일스톤 번호형 목록으로 작성 (1., 2., 3.)",
        "6) KPI산식은 반드시 탁월/우수/달성/노력/미흡 5단계 기준값이 모두 포함되어야 함",
        "7) 달성계획에는 날짜/기간 표기(YYYY-MM-DD, n월 n일, n주, n일)를 넣지 말 것",
        (
            "8) 사용자가 하위과업 분리/나누기/구분을 요청하면 반드시 suggestedCards 배열에 2~3개의 "
            "완전한 카드를 포함하여 반환해야 한다. reply에 분리안을 텍스트로 설명하는 것만으로는 "
            "부족하다. 반드시 suggestedCards JSON 배열에 각 카드의 kpiName, kpiTask, achievementPlan, "
            "kpiFormula, subTaskWeight를 모두 채워서 반환한다. subTaskWeight 합계는 100이 되도록 한다. "
            "suggestedCards를 반환하면 UI에서 자동으로 카드가 생성된다."
        ),
        "",
        f"모드: {_mode_label(mode)}",
        f"사용자 최근 입력: {_or_dash(user_message)}",
        "",
        "[현재 후보 카드]",
        f"- 목표구분: {_or_dash(candidate.goal_category)}",
        f"- R&R: {_or_dash(candidate.role_and_responsibilities)}",
        f"- 목표과업 비중: {_percent(candidate.goal_task_weight)}",
        f"- KPI명: {_or_dash(candidate.kpi_name)}",
        f"- KPI과제: {_or_dash(candidate.kpi_task)}",
        f"- 달성계획: {_or_dash(candidate.achievement_plan)}",
        f"- KPI산식: {_or_dash(candidate.kpi_formula)}",
        f"- 하위과업 비중: {_percent(candidate.sub_task_weight)}",
        f"- 등급/점수: {candidate.grade.value} {candidate.score:g}점",
        f"- 달성실적: {_or_dash(candidate.achievement_result)}",
        (
            f"- 소스: {candidate.source_entry_count or 0}건 / "
            f"{_or_dash(candidate.source_period)} / {_or_dash(candidate.source_folder_label)}"
        ),
        f"- 현재 하위과업 카드 수: {current_card_count}개",
        "",
        "[관련 기록]",
        summarize_related_entries(entries),
        "",
        "[대화 히스토리]",
        conversation or "-",
        "",
        "출력은 반드시 JSON 하나만 반환:",
        "{",
        (
            '  "reply": "사용자에게 보일 상담 답변. 4~8문장, 중간에 끊기지 않게 완결형으로 작성. '
            '모드 kick-off면 먼저 핵심 질문 1~2개를 제시",'
        ),
        *_PROGRESS_JSON_LINES,
        '  "suggestedUpdates": {',
        '    "goalCategory": "string",',
        '    "roleAndResponsibilities": "string optional",',
        '    "kpiName": "string optional",',
        '    "goalTaskWeight": 0,',
        '    "kpiTask": "string optional",',
        '    "achievementPlan": "string optional",',
        '    "kpiFormula": "string optional",',
        '    "achievementResult": "string optional"',
        "  },",
        '  "suggestedCards": [',
        "    {",
        '      "kpiName": "string",',
        '      "kpiTask": "string",',
        '      "achievementPlan": "string",',
        '      "kpiFormula": "string",',
        '      "subTaskWeight": 50',
        "    }",
        "  ]",
        "}",
        "규칙: JSON 외 텍스트 금지, 코드블록 금지, reply 키 이름 노출 금지.",
        (
            "추가 규칙: suggestedUpdates는 goalCategory, kpiName, roleAndResponsibilities, kpiTask, "
            "achievementPlan, kpiFormula, achievementResult를 반드시 채운다."
        ),
        "achievementPlan은 줄바꿈 포함 번호형 3~4개 마일스톤으로 채운다.",
        "achievementPlan에는 날짜/기간 수치를 쓰지 않는다.",
        "kpiFormula는 산식 본문 + 탁월/우수/달성/노력/미흡 기준값 5줄을 함께 채운다.",
        (
            "중요: 사용자가 '나눠', '분리', '하위과업', '구분' 등 분리를 요청하면 suggestedCards 배열에 "
            "2~3개 카드를 반드시 포함한다. reply에서 분리를 설명만 하고 suggestedCards를 비우면 안 된다. "
            "분리 요청이 없으면 suggestedCards는 빈 배열로 둔다."
        ),
    ]
    prompt = "\n".join(lines)
    logger.debug(
        "coach_prompt_built",
        mode=_mode_label(mode),
        entries=len(entries),
        transcript_len=len(messages),
        prompt_chars=len(prompt),
    )
    return prompt


def build_coach_retry_prompt(mode: CoachMode, user_message: str, candidate: CandidatePayload) -> str:
    """Shorter JSON prompt used when the first reply was cut off."""
    lines: List[str] = [
        "아래 정보로 KPI 코칭 답변을 다시 작성하세요.",
        "직전 답변이 중간에 끊겼으므로 반드시 완결형 문장으로 마무리해야 합니다.",
        "달성계획은 반드시 3~4개의 번호형 마일스톤(1., 2., 3.)으로 작성하세요.",
        "달성계획에는 날짜/기간 표기(YYYY-MM-DD, n월 n일, n주, n일)를 넣지 마세요.",
        "KPI산식은 반드시 탁월/우수/달성/노력/미흡의 5단계 기준값이 모두 포함되게 작성하세요.",
        "출력은 반드시 JSON 하나:",
        "{",
        '  "reply": "한국어 3~5문장, 마크다운/불릿 없이 완결형",',
        *_PROGRESS_JSON_LINES,
        '  "suggestedUpdates": {',
        '    "goalCategory": "string",',
        '    "kpiName": "string",',
        '    "roleAndResponsibilities": "string",',
        '    "kpiTask": "string",',
        '    "achievementPlan": "string",',
        '    "kpiFormula": "string",',
        '    "achievementResult": "string"',
        "  }",
        "}",
        "",
        f"모드: {_mode_label(mode)}",
        f"사용자 최근 입력: {_or_dash(user_message)}",
        f"목표구분: {_or_dash(candidate.goal_category)}",
        f"KPI명: {_or_dash(candidate.kpi_name)}",
        f"KPI과제: {_or_dash(candidate.kpi_task)}",
        f"달성계획: {_or_dash(candidate.achievement_plan)}",
        f"KPI산식: {_or_dash(candidate.kpi_formula)}",
        f"달성실적: {_or_dash(candidate.achievement_result)}",
    ]
    return "\n".join(lines)


__all__ = [
    "refine_length_window",
    "build_refine_prompt",
    "build_refine_retry_prompt",
    "serialize_organize_entries",
    "build_organize_prompt",
    "build_organize_retry_prompt",
    "summarize_related_entries",
    "format_conversation",
    "build_coach_prompt",
    "build_coach_retry_prompt",
]
