"""Unit tests for the Work-Log Aggregator and the candidate override layer.

Covers:
- build_candidates(): folder grouping, inferred fields, weights, ordering,
  determinism, date-free achievement plans
- goal_task_weight() bounds and rounding
- CandidateOverrideStore / resolve_candidates / apply_suggested_updates
"""

from __future__ import annotations

import re
import unittest

from schemas.input_schema import PerformanceGrade, WorkLogEntry, WorkLogFolder, WorkLogType
from schemas.output_schema import SuggestedUpdates
from functions.utils.candidates import (
    CandidateOverrideStore,
    apply_suggested_updates,
    build_candidates,
    goal_task_weight,
    infer_achievement_plan,
    infer_kpi_formula,
    infer_kpi_task,
    infer_role_and_responsibilities,
    resolve_candidates,
)
from functions.utils.evaluation_rules import contains_all_grade_tiers
from functions.utils.text_quality import contains_date_token
from functions.utils.work_log import DEFAULT_FOLDER_NAME, UNCATEGORIZED_KEY

NUMBERED_LINE = re.compile(r"^\d+\.\s")


def _entry(entry_id: str, folder_id: str | None, **fields) -> WorkLogEntry:
    return WorkLogEntry(id=entry_id, folder_id=folder_id, date=fields.pop("date", "2025-03-10"), **fields)


class TestEndToEndScenario(unittest.TestCase):
    """Single entry in the "시스템 개선" folder."""

    def setUp(self) -> None:
        self.folders = [WorkLogFolder(id="sys", name="시스템 개선")]
        self.entries = [
            _entry(
                "e1",
                "sys",
                title="API 마이그레이션",
                context="v1→v2 전환",
                result="응답속도 40% 개선",
                metrics="",
                tags="API,백엔드",
            )
        ]

    def test_single_candidate_fields(self) -> None:
        candidates = build_candidates(self.entries, self.folders)
        self.assertEqual(len(candidates), 1)
        candidate = candidates[0]
        self.assertEqual(candidate.id, "candidate-sys")
        self.assertEqual(candidate.goal_category, "시스템 개선")
        self.assertEqual(candidate.goal_task_weight, 100)
        self.assertTrue(contains_all_grade_tiers(candidate.kpi_formula))
        self.assertEqual(candidate.role_and_responsibilities, "API, 백엔드, API 마이그레이션")
        self.assertEqual(candidate.kpi_task, "하위과업: API 마이그레이션 | 실행포인트: v1→v2 전환")
        self.assertEqual(candidate.grade, PerformanceGrade.ACHIEVED)
        self.assertEqual(candidate.score, 70)
        self.assertEqual(candidate.source_entry_ids, ["e1"])
        self.assertEqual(candidate.source_period, "2025-03-10 ~ 2025-03-10")

    def test_plan_has_four_numbered_lines_without_dates(self) -> None:
        plan = build_candidates(self.entries, self.folders)[0].achievement_plan
        lines = plan.split("\n")
        self.assertEqual(len(lines), 4)
        self.assertTrue(all(NUMBERED_LINE.match(line) for line in lines))
        self.assertFalse(contains_date_token(plan))


class TestAggregation(unittest.TestCase):
    def setUp(self) -> None:
        self.folders = [
            WorkLogFolder(id="b", name="b팀 과제"),
            WorkLogFolder(id="a", name="A팀 과제"),
            WorkLogFolder(id="empty", name="빈 폴더"),
        ]
        self.entries = [
            _entry("a1", "a", title="정산 자동화", metrics="오류율 2% 이하", type="프로젝트"),
            _entry("a2", "a", title="정산 자동화"),
            _entry("b1", "b", title="신규 입사자 교육", date="2025-05-02", durationWeeks=2, durationDays=0),
            _entry("loose", None, title="회의록 정리"),
            _entry("ghost", "deleted-folder", title="이전 업무"),
        ]

    def test_groups_sorted_by_case_insensitive_name(self) -> None:
        candidates = build_candidates(self.entries, self.folders)
        names = [c.goal_category for c in candidates]
        self.assertNotIn("빈 폴더", names)
        self.assertEqual(names[:2], ["A팀 과제", "b팀 과제"])
        self.assertEqual(len(candidates), 4)

    def test_uncategorized_and_unknown_folder_groups(self) -> None:
        by_id = {c.id: c for c in build_candidates(self.entries, self.folders)}
        self.assertIn(f"candidate-{UNCATEGORIZED_KEY}", by_id)
        self.assertIn("candidate-deleted-folder", by_id)
        self.assertEqual(by_id["candidate-deleted-folder"].goal_category, DEFAULT_FOLDER_NAME)
        self.assertIsNone(by_id[f"candidate-{UNCATEGORIZED_KEY}"].source_folder_id)

    def test_metric_formula_and_source_type(self) -> None:
        by_id = {c.id: c for c in build_candidates(self.entries, self.folders)}
        candidate = by_id["candidate-a"]
        self.assertTrue(candidate.kpi_formula.startswith("오류율 2% 이하\n"))
        self.assertEqual(candidate.source_type, WorkLogType.PROJECT)
        self.assertEqual(candidate.source_entry_count, 2)
        self.assertEqual(candidate.kpi_name, "정산 자동화")

    def test_period_spans_entry_durations(self) -> None:
        by_id = {c.id: c for c in build_candidates(self.entries, self.folders)}
        self.assertEqual(by_id["candidate-b"].source_period, "2025-04-19 ~ 2025-05-02")

    def test_weight_invariant(self) -> None:
        for candidate in build_candidates(self.entries, self.folders):
            self.assertGreaterEqual(candidate.goal_task_weight, 5)
            self.assertLessEqual(candidate.goal_task_weight, 100)
            self.assertEqual(candidate.goal_task_weight % 5, 0)

    def test_deterministic(self) -> None:
        first = [c.model_dump() for c in build_candidates(self.entries, self.folders)]
        second = [c.model_dump() for c in build_candidates(self.entries, self.folders)]
        self.assertEqual(first, second)

    def test_no_entries_no_candidates(self) -> None:
        self.assertEqual(build_candidates([], self.folders), [])


class TestInference(unittest.TestCase):
    def test_goal_task_weight_rounding(self) -> None:
        self.assertEqual(goal_task_weight(1, 1), 100)
        self.assertEqual(goal_task_weight(1, 3), 35)
        self.assertEqual(goal_task_weight(1, 30), 5)
        self.assertEqual(goal_task_weight(0, 10), 5)
        self.assertEqual(goal_task_weight(1, 8), 15)

    def test_role_fallback_names_folder(self) -> None:
        self.assertEqual(infer_role_and_responsibilities([], [], "운영"), "운영 관련 운영 및 실행")

    def test_kpi_task_fallbacks(self) -> None:
        self.assertEqual(infer_kpi_task([], ["배경 A", "배경 B", "배경 C"]), "배경 A / 배경 B")
        self.assertEqual(infer_kpi_task([], []), "핵심 과업 실행 및 품질 유지")

    def test_formula_default_by_type(self) -> None:
        formula = infer_kpi_formula([], WorkLogType.EVENT)
        self.assertTrue(formula.startswith("(기한 내 완료 건수 / 계획 건수) * 100"))
        self.assertTrue(contains_all_grade_tiers(formula))

    def test_plan_strips_dates_from_titles(self) -> None:
        plan = infer_achievement_plan(["2025-03-01 배포 2주"], ["3월 5일 점검"])
        self.assertFalse(contains_date_token(plan))
        self.assertTrue(plan.startswith("1. 배포 수행"))
        self.assertIn("2. 중간 산출물 제작", plan)

    def test_plan_strips_decimal_durations(self) -> None:
        entry = _entry("e1", "sys", title="1.5주 스프린트 운영", context="2.5일 장애 대응")
        plan = build_candidates([entry], [WorkLogFolder(id="sys", name="운영")])[0].achievement_plan
        self.assertFalse(contains_date_token(plan))
        self.assertNotIn("1.5", plan)
        self.assertNotIn("2.5", plan)
        self.assertIn("스프린트 운영", plan)

    def test_plan_fillers_when_empty(self) -> None:
        plan = infer_achievement_plan([], [])
        self.assertEqual(len(plan.split("\n")), 4)
        self.assertIn("핵심 과업 착수", plan)
        self.assertIn("성과 지표 점검 및 운영 안정화", plan)


class TestOverrides(unittest.TestCase):
    def setUp(self) -> None:
        folders = [WorkLogFolder(id="sys", name="시스템 개선")]
        self.candidates = build_candidates([_entry("e1", "sys", title="API 마이그레이션")], folders)
        self.cid = self.candidates[0].id

    def test_initial_overrides_accept_camel_case_and_drop_unknown(self) -> None:
        store = CandidateOverrideStore({self.cid: {"kpiName": "수정 KPI", "grade": "탁월", "bogus": 1}})
        resolved = resolve_candidates(self.candidates, store)[0]
        self.assertEqual(resolved.kpi_name, "수정 KPI")
        self.assertEqual(resolved.grade, PerformanceGrade.OUTSTANDING)
        self.assertEqual(resolved.score, 100)
        self.assertNotIn("bogus", store.get(self.cid))
        # projection itself is untouched
        self.assertEqual(self.candidates[0].kpi_name, "API 마이그레이션")

    def test_score_override_wins_over_grade_table(self) -> None:
        store = CandidateOverrideStore({self.cid: {"grade": "우수", "score": 95}})
        self.assertEqual(resolve_candidates(self.candidates, store)[0].score, 95)

    def test_set_field_sanitizes(self) -> None:
        store = CandidateOverrideStore()
        self.assertTrue(store.set_field(self.cid, "goalTaskWeight", 150))
        self.assertEqual(store.get(self.cid)["goal_task_weight"], 100.0)
        self.assertTrue(store.set_field(self.cid, "sub_task_weight", ""))
        self.assertIsNone(store.get(self.cid)["sub_task_weight"])
        self.assertFalse(store.set_field(self.cid, "grade", "최고"))
        self.assertFalse(store.set_field(self.cid, "kpiName", 42))
        self.assertFalse(store.set_field(self.cid, "id", "hijack"))

    def test_clear(self) -> None:
        store = CandidateOverrideStore({self.cid: {"kpiName": "x"}, "other": {"kpiName": "y"}})
        store.clear(self.cid)
        self.assertNotIn(self.cid, store)
        self.assertIn("other", store)
        store.clear()
        self.assertEqual(store.as_dict(), {})

    def test_apply_suggested_updates(self) -> None:
        store = CandidateOverrideStore()
        apply_suggested_updates(
            store,
            self.cid,
            SuggestedUpdates(
                kpi_name="   ",
                kpi_task="새 과제",
                sub_task_weight=40,
                grade=PerformanceGrade.NEEDS_IMPROVEMENT,
            ),
        )
        patch = store.get(self.cid)
        self.assertNotIn("kpi_name", patch)
        self.assertEqual(patch["kpi_task"], "새 과제")
        self.assertEqual(patch["sub_task_weight"], 40)
        self.assertEqual(patch["grade"], PerformanceGrade.NEEDS_IMPROVEMENT)
        self.assertEqual(patch["score"], 50)

    def test_apply_suggested_grade_with_explicit_score(self) -> None:
        store = CandidateOverrideStore()
        apply_suggested_updates(
            store, self.cid, SuggestedUpdates(grade=PerformanceGrade.EXCELLENT, score=88)
        )
        self.assertEqual(store.get(self.cid)["score"], 88)

    def test_apply_none_is_noop(self) -> None:
        store = CandidateOverrideStore()
        apply_suggested_updates(store, self.cid, None)
        self.assertNotIn(self.cid, store)


if __name__ == "__main__":
    unittest.main()
