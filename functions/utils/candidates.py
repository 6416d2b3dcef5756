# functions/utils/candidates.py
"""
Work-Log Aggregator: season-filtered entries -> achievement candidates.

``build_candidates`` is a pure projection. It reads only the entries, the
folder set and nothing else (no clock, no randomness), so calling it twice
with the same inputs yields identical candidates. Candidate ids are derived
from the folder key (``candidate-<folderId>``), which is what lets sub-task
cards, coaching sessions and user edits survive a recomputation.

User and AI edits never touch the projection. They are kept in a sparse
``CandidateOverrideStore`` keyed by candidate id and folded in at read time
by ``resolve_candidates``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import structlog

from schemas.input_schema import (
    PerformanceGrade,
    Track1Form,
    WorkLogEntry,
    WorkLogFolder,
    WorkLogType,
)
from schemas.internal_schema import AchievementCandidate
from schemas.output_schema import SuggestedUpdates
from functions.utils.common import clamp_percent, round_half_up, to_finite_number
from functions.utils.evaluation_rules import (
    DEFAULT_GRADE,
    default_formula_for_type,
    grade_score,
    parse_grade,
    with_grade_scale,
)
from functions.utils.text_quality import strip_date_like_text
from functions.utils.work_log import (
    DEFAULT_FOLDER_NAME,
    UNCATEGORIZED_KEY,
    entry_period,
    entry_title,
    normalize_spaces,
    normalize_text,
    split_tags,
    unique_list,
)

logger = structlog.get_logger(__name__).bind(module="candidates")

WEIGHT_STEP = 5
MIN_GOAL_WEIGHT = 5
MAX_GOAL_WEIGHT = 100


# ---------------------------------------------------------------------------
# Field inference
# ---------------------------------------------------------------------------


def infer_role_and_responsibilities(tags: list[str], titles: list[str], folder_name: str) -> str:
    """Top three distinct tags/titles, or a generic phrase naming the folder."""
    top = unique_list([*tags, *(normalize_spaces(t) for t in titles)])[:3]
    if top:
        return ", ".join(top)
    return f"{folder_name} 관련 운영 및 실행"


def infer_kpi_task(titles: list[str], contexts: list[str]) -> str:
    sub_tasks = unique_list(titles)[:4]
    context_summary = " / ".join(unique_list(contexts)[:2])
    if sub_tasks:
        suffix = f" | 실행포인트: {context_summary}" if context_summary else ""
        return f"하위과업: {', '.join(sub_tasks)}{suffix}"
    return context_summary or "핵심 과업 실행 및 품질 유지"


def infer_kpi_formula(metrics: list[str], entry_type: WorkLogType | str) -> str:
    """First metric (plus the five-tier scale when missing), else a type default."""
    distinct = unique_list(metrics)
    if distinct:
        return with_grade_scale(distinct[0])
    return with_grade_scale(default_formula_for_type(entry_type))


def infer_achievement_plan(titles: list[str], contexts: list[str]) -> str:
    """Exactly four numbered milestones; date and duration tokens are removed."""
    top_titles = unique_list(titles)[:2]
    top_contexts = unique_list(contexts)[:2]

    def slot(values: list[str], index: int, filler: str) -> str:
        if index < len(values):
            return strip_date_like_text(values[index]) or filler
        return filler

    lines = [
        f"1. {slot(top_titles, 0, '핵심 과업 착수')} 수행 및 1차 산출물 확보",
        f"2. {slot(top_titles, 1, '중간 산출물 제작')} 실행으로 일정/품질 리스크를 선제적으로 보완",
        f"3. {slot(top_contexts, 0, '품질 검수 및 피드백 반영')}를 통해 완성도와 재작업률을 관리",
        f"4. {slot(top_contexts, 1, '성과 지표 점검 및 운영 안정화')} 기반으로 KPI 결과값을 주기적으로 점검",
    ]
    # slot text can still be multi-line; the plan stays four lines
    return "\n".join(normalize_spaces(line) for line in lines)


def goal_task_weight(entry_count: int, total_entries: int) -> int:
    """Share of entries in percent, rounded to a multiple of 5, within [5, 100]."""
    share = entry_count / max(1, total_entries) * 100
    rounded = round_half_up(share / WEIGHT_STEP) * WEIGHT_STEP
    return min(MAX_GOAL_WEIGHT, max(MIN_GOAL_WEIGHT, rounded or MIN_GOAL_WEIGHT))


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


@dataclass
class _FolderGroup:
    folder_id: str | None
    name: str
    titles: list[str] = field(default_factory=list)
    contexts: list[str] = field(default_factory=list)
    results: list[str] = field(default_factory=list)
    metrics: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    types: list[WorkLogType] = field(default_factory=list)
    entry_ids: list[str] = field(default_factory=list)
    min_start: str | None = None
    max_end: str | None = None

    def extend_range(self, start: str, end: str) -> None:
        if self.min_start is None or start < self.min_start:
            self.min_start = start
        if self.max_end is None or end > self.max_end:
            self.max_end = end

    @property
    def period_label(self) -> str:
        if self.min_start and self.max_end:
            return f"{self.min_start} ~ {self.max_end}"
        return self.max_end or self.min_start or "-"


def _candidate_sort_key(candidate: AchievementCandidate) -> tuple[str, str, int]:
    return (candidate.goal_category.casefold(), candidate.goal_category, -candidate.source_entry_count)


def build_candidates(
    entries: Iterable[WorkLogEntry],
    folders: Iterable[WorkLogFolder],
) -> list[AchievementCandidate]:
    """
    Group ``entries`` (already season-filtered) by folder and synthesize one
    candidate per non-empty group.

    Entries without a folder go to an "uncategorized" bucket; entries whose
    folder is unknown get their own group labelled with the default folder
    name.
    """
    entry_list = list(entries)
    folder_list = list(folders)
    total = max(1, len(entry_list))

    groups: dict[str, _FolderGroup] = {
        folder.id: _FolderGroup(folder_id=folder.id, name=folder.name) for folder in folder_list
    }
    names = {folder.id: folder.name for folder in folder_list}

    for entry in entry_list:
        key = entry.folder_id or UNCATEGORIZED_KEY
        group = groups.get(key)
        if group is None:
            name = names.get(entry.folder_id, DEFAULT_FOLDER_NAME) if entry.folder_id else DEFAULT_FOLDER_NAME
            group = groups[key] = _FolderGroup(folder_id=entry.folder_id, name=name)

        group.entry_ids.append(entry.id)
        group.titles.append(entry_title(entry))
        group.types.append(entry.type)
        for bucket, raw in (
            (group.contexts, entry.context),
            (group.results, entry.result),
            (group.metrics, entry.metrics),
        ):
            text = normalize_text(raw)
            if text:
                bucket.append(text)
        group.tags.extend(split_tags(normalize_text(entry.tags)))

        period = entry_period(entry)
        if period is not None:
            group.extend_range(period.start_date, period.end_date)
        elif normalize_text(entry.date):
            group.extend_range(entry.date, entry.date)

    candidates: list[AchievementCandidate] = []
    for key, group in groups.items():
        if not group.entry_ids:
            continue
        titles = unique_list(group.titles)
        contexts = unique_list(group.contexts)
        source_type = group.types[0] if group.types else WorkLogType.TASK
        kpi_name = titles[0] if titles else f"{group.name} 핵심 KPI"

        candidates.append(
            AchievementCandidate(
                id=f"candidate-{key}",
                goal_category=group.name,
                role_and_responsibilities=infer_role_and_responsibilities(
                    unique_list(group.tags), titles, group.name
                ),
                goal_task_weight=goal_task_weight(len(group.entry_ids), total),
                kpi_name=kpi_name,
                kpi_task=infer_kpi_task(titles, contexts) or kpi_name,
                achievement_plan=infer_achievement_plan(titles, contexts),
                kpi_formula=infer_kpi_formula(group.metrics, source_type),
                sub_task_weight=None,
                grade=DEFAULT_GRADE,
                score=grade_score(DEFAULT_GRADE),
                achievement_result="",
                source_entry_count=len(group.entry_ids),
                source_period=group.period_label,
                source_folder_label=group.name,
                source_folder_id=group.folder_id,
                source_entry_ids=unique_list(group.entry_ids),
                source_type=source_type,
            )
        )

    candidates.sort(key=_candidate_sort_key)
    logger.info(
        "candidates_built",
        entries=len(entry_list),
        folders=len(folder_list),
        candidates=len(candidates),
    )
    return candidates


# ---------------------------------------------------------------------------
# Override layer
# ---------------------------------------------------------------------------

_TEXT_FIELDS = (
    "goal_category",
    "role_and_responsibilities",
    "kpi_name",
    "kpi_task",
    "achievement_plan",
    "kpi_formula",
    "achievement_result",
)
_WEIGHT_FIELDS = ("goal_task_weight", "sub_task_weight")

_FIELD_BY_ALIAS: dict[str, str] = {}
for _name, _info in Track1Form.model_fields.items():
    _FIELD_BY_ALIAS[_name] = _name
    if _info.alias:
        _FIELD_BY_ALIAS[_info.alias] = _name


def _sanitize_override(field_name: str, value: Any) -> tuple[bool, Any]:
    """Return ``(accepted, value)`` for one override field."""
    if field_name in _TEXT_FIELDS:
        return (True, value) if isinstance(value, str) else (False, None)
    if field_name in _WEIGHT_FIELDS:
        if value is None or value == "":
            return True, None
        number = to_finite_number(value)
        return (True, max(0.0, min(100.0, number))) if number is not None else (False, None)
    if field_name == "grade":
        grade = parse_grade(value)
        return (True, grade) if grade is not None else (False, None)
    if field_name == "score":
        number = clamp_percent(value)
        return (True, number) if number is not None else (False, None)
    return False, None


class CandidateOverrideStore:
    """Sparse per-candidate edits (form fields only), merged at read time."""

    def __init__(self, initial: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._overrides: dict[str, dict[str, Any]] = {}
        for candidate_id, patch in (initial or {}).items():
            if isinstance(patch, Mapping):
                self.merge(candidate_id, patch)

    def get(self, candidate_id: str) -> dict[str, Any]:
        return dict(self._overrides.get(candidate_id, {}))

    def set_field(self, candidate_id: str, key: str, value: Any) -> bool:
        field_name = _FIELD_BY_ALIAS.get(key)
        if field_name is None:
            logger.info("override_field_ignored", candidate_id=candidate_id, field=key)
            return False
        accepted, clean = _sanitize_override(field_name, value)
        if not accepted:
            logger.info("override_value_rejected", candidate_id=candidate_id, field=field_name)
            return False
        self._overrides.setdefault(candidate_id, {})[field_name] = clean
        return True

    def merge(self, candidate_id: str, patch: Mapping[str, Any]) -> None:
        for key, value in patch.items():
            self.set_field(candidate_id, key, value)

    def clear(self, candidate_id: str | None = None) -> None:
        if candidate_id is None:
            self._overrides.clear()
        else:
            self._overrides.pop(candidate_id, None)

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return {cid: dict(patch) for cid, patch in self._overrides.items()}

    def __contains__(self, candidate_id: object) -> bool:
        return candidate_id in self._overrides


def resolve_candidate(candidate: AchievementCandidate, override: Mapping[str, Any]) -> AchievementCandidate:
    """Projection + override. A grade override recomputes the score unless
    a score override exists."""
    grade: PerformanceGrade = override.get("grade") or candidate.grade
    score = override.get("score")
    if score is None:
        score = grade_score(grade)
    merged = {**candidate.model_dump(), **override, "grade": grade, "score": score}
    return AchievementCandidate.model_validate(merged)


def resolve_candidates(
    candidates: Iterable[AchievementCandidate],
    store: CandidateOverrideStore,
) -> list[AchievementCandidate]:
    return [resolve_candidate(c, store.get(c.id)) for c in candidates]


def apply_suggested_updates(
    store: CandidateOverrideStore,
    candidate_id: str,
    updates: SuggestedUpdates | None,
) -> None:
    """
    Fold sanitized AI suggestions into the override store.

    Text fields only when non-blank, weights clamped, and a suggested grade
    also sets the score (suggested score, else the grade's table score).
    """
    if updates is None:
        return
    for name in _TEXT_FIELDS:
        value = getattr(updates, name)
        if isinstance(value, str) and value.strip():
            store.set_field(candidate_id, name, value)
    for name in _WEIGHT_FIELDS:
        value = getattr(updates, name)
        if value is not None:
            store.set_field(candidate_id, name, value)

    if updates.grade is not None:
        store.set_field(candidate_id, "grade", updates.grade)
        store.set_field(
            candidate_id,
            "score",
            updates.score if updates.score is not None else grade_score(updates.grade),
        )
    elif updates.score is not None:
        store.set_field(candidate_id, "score", updates.score)


__all__ = [
    "infer_role_and_responsibilities",
    "infer_kpi_task",
    "infer_kpi_formula",
    "infer_achievement_plan",
    "goal_task_weight",
    "build_candidates",
    "CandidateOverrideStore",
    "resolve_candidate",
    "resolve_candidates",
    "apply_suggested_updates",
]
