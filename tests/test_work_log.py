"""Unit tests for work-log helpers: periods, season filter and folder tree."""

from __future__ import annotations

import unittest

from schemas.input_schema import WorkLogEntry, WorkLogFolder, WorkLogSeason
from schemas.internal_schema import WorkLogState
from functions.utils.work_log import (
    DEFAULT_FOLDER_NAME,
    calculate_work_period,
    collect_descendant_folder_ids,
    delete_entry,
    delete_folder,
    filter_entries_by_folder,
    filter_entries_by_season,
    folder_options,
    move_entry,
    normalize_work_log_state,
    period_label,
    split_tags,
    unique_list,
    year_options,
)


def _folder(folder_id: str, parent_id: str | None = None) -> WorkLogFolder:
    return WorkLogFolder(id=folder_id, name=folder_id, parent_id=parent_id)


def _entry(entry_id: str, folder_id: str | None = "A", sort_order: float = 0, date: str = "2025-03-01") -> WorkLogEntry:
    return WorkLogEntry(id=entry_id, folder_id=folder_id, sort_order=sort_order, date=date)


class TestWorkPeriod(unittest.TestCase):
    def test_weeks_and_days_form_inclusive_range(self) -> None:
        period = calculate_work_period("2025-03-14", 2, 0)
        self.assertEqual(period.start_date, "2025-03-01")
        self.assertEqual(period.end_date, "2025-03-14")
        self.assertEqual(period.total_days, 14)
        self.assertEqual(period.label, "2025-03-01 ~ 2025-03-14 (14일)")

    def test_invalid_durations_collapse_to_one_day(self) -> None:
        period = calculate_work_period("2025-03-14", -3, "abc")
        self.assertEqual(period.total_days, 1)
        self.assertEqual(period.start_date, period.end_date)

    def test_invalid_dates(self) -> None:
        self.assertIsNone(calculate_work_period("2025-13-01", 1, 1))
        self.assertIsNone(calculate_work_period("", 0, 1))
        self.assertIsNone(calculate_work_period("not-a-date", 0, 1))

    def test_day_overflow_rolls_into_next_month(self) -> None:
        self.assertEqual(calculate_work_period("2025-02-30", 0, 1).end_date, "2025-03-02")

    def test_period_label_for_undated_entry(self) -> None:
        self.assertEqual(period_label(_entry("x", date="")), "-")


class TestSeasonFilter(unittest.TestCase):
    def setUp(self) -> None:
        self.entries = [
            _entry("mar", date="2025-03-01"),
            _entry("jul", date="2025-07-15"),
            _entry("old", date="2024-05-01"),
            _entry("garbled", date="2025-ab-01"),
        ]

    def _ids(self, season: WorkLogSeason) -> list[str]:
        return [e.id for e in filter_entries_by_season(self.entries, 2025, season)]

    def test_first_half_includes_unparseable_month(self) -> None:
        self.assertEqual(self._ids(WorkLogSeason.H1), ["mar", "garbled"])

    def test_second_half(self) -> None:
        self.assertEqual(self._ids(WorkLogSeason.H2), ["jul"])

    def test_whole_year(self) -> None:
        self.assertEqual(self._ids(WorkLogSeason.ALL), ["mar", "jul", "garbled"])

    def test_year_options_newest_first(self) -> None:
        self.assertEqual(year_options(self.entries, 2026), [2026, 2025, 2024])


class TestTextHelpers(unittest.TestCase):
    def test_split_tags(self) -> None:
        self.assertEqual(split_tags("API, 백엔드/운영|QA\n"), ["API", "백엔드", "운영", "QA"])
        self.assertEqual(split_tags(None), [])

    def test_unique_list_keeps_first_seen(self) -> None:
        self.assertEqual(unique_list([" a", "a", "", "b", "A"]), ["a", "b", "A"])


class TestFolderTree(unittest.TestCase):
    def setUp(self) -> None:
        self.folders = [_folder("r"), _folder("c1", "r"), _folder("g", "c1"), _folder("o")]
        self.state = WorkLogState(
            folders=self.folders,
            entries=[_entry("e-r", "r"), _entry("e-g", "g"), _entry("e-o", "o")],
        )

    def test_collect_descendants(self) -> None:
        self.assertEqual(collect_descendant_folder_ids("r", self.folders), {"r", "c1", "g"})
        self.assertEqual(collect_descendant_folder_ids("o", self.folders), {"o"})

    def test_collect_descendants_is_cycle_safe(self) -> None:
        cyclic = [_folder("a", "b"), _folder("b", "a")]
        self.assertEqual(collect_descendant_folder_ids("a", cyclic), {"a", "b"})

    def test_filter_by_folder_includes_nested_subfolders(self) -> None:
        entries = self.state.entries + [_entry("loose", None), _entry("e-c1-h2", "c1", date="2025-09-01")]
        scoped = filter_entries_by_folder(entries, "r", self.folders)
        self.assertEqual([e.id for e in scoped], ["e-r", "e-g", "e-c1-h2"])
        self.assertEqual([e.id for e in filter_entries_by_folder(entries, "g", self.folders)], ["e-g"])

    def test_filter_by_folder_composes_with_season(self) -> None:
        entries = self.state.entries + [_entry("e-c1-h2", "c1", date="2025-09-01")]
        in_h1 = filter_entries_by_season(entries, 2025, WorkLogSeason.H1)
        self.assertEqual([e.id for e in filter_entries_by_folder(in_h1, "c1", self.folders)], ["e-g"])

    def test_folder_options_depth_labels(self) -> None:
        self.assertEqual(
            folder_options(self.folders),
            [("r", "r"), ("c1", "— c1"), ("g", "— — g"), ("o", "o")],
        )

    def test_delete_folder_reparents_subtree_entries(self) -> None:
        result = delete_folder(self.state, "r")
        self.assertEqual([f.id for f in result.folders], ["o"])
        self.assertEqual({e.folder_id for e in result.entries}, {"o"})
        self.assertEqual(len(result.entries), 3)
        # input state untouched
        self.assertEqual(len(self.state.folders), 4)

    def test_delete_last_folder_recreates_default(self) -> None:
        state = WorkLogState(folders=[_folder("only")], entries=[_entry("e1", "only")])
        result = delete_folder(state, "only")
        self.assertEqual(len(result.folders), 1)
        self.assertEqual(result.folders[0].name, DEFAULT_FOLDER_NAME)
        self.assertEqual(result.entries[0].folder_id, result.folders[0].id)

    def test_delete_last_entry_creates_blank_one(self) -> None:
        state = WorkLogState(folders=[_folder("A")], entries=[_entry("e1", "A")])
        result = delete_entry(state, "e1")
        self.assertEqual(len(result.entries), 1)
        self.assertNotEqual(result.entries[0].id, "e1")
        self.assertEqual(result.entries[0].folder_id, "A")
        self.assertEqual(result.selection.id, result.entries[0].id)


class TestMoveEntry(unittest.TestCase):
    def setUp(self) -> None:
        self.state = WorkLogState(
            folders=[_folder("A"), _folder("B")],
            entries=[
                _entry("a1", "A", 1),
                _entry("a2", "A", 2),
                _entry("a3", "A", 3),
                _entry("b1", "B", 1),
            ],
        )

    def _orders(self, state: WorkLogState) -> dict[str, tuple[str, float]]:
        return {e.id: (e.folder_id, e.sort_order) for e in state.entries}

    def test_move_between_folders_renumbers_both(self) -> None:
        result = move_entry(self.state, "a3", "B", 0)
        orders = self._orders(result)
        self.assertEqual(orders["a3"], ("B", 1))
        self.assertEqual(orders["b1"], ("B", 2))
        self.assertEqual(orders["a1"], ("A", 1))
        self.assertEqual(orders["a2"], ("A", 2))
        self.assertEqual(result.selection.id, "a3")

    def test_move_within_folder_to_end(self) -> None:
        orders = self._orders(move_entry(self.state, "a1", "A"))
        self.assertEqual([orders[i][1] for i in ("a2", "a3", "a1")], [1, 2, 3])

    def test_unknown_target_is_noop(self) -> None:
        self.assertIs(move_entry(self.state, "a1", "missing"), self.state)


class TestNormalizeState(unittest.TestCase):
    def test_repairs_orphans_durations_and_selection(self) -> None:
        state = normalize_work_log_state(
            {
                "folders": [{"id": "f1", "name": "업무"}, {"bad": 1}],
                "entries": [
                    {"id": "e1", "folderId": "ghost", "durationWeeks": -2, "durationDays": "x"},
                ],
                "selection": {"kind": "entry", "id": "missing"},
                "collapsedFolderIds": ["f1", 3],
            }
        )
        self.assertEqual([f.id for f in state.folders], ["f1"])
        entry = state.entries[0]
        self.assertEqual(entry.folder_id, "f1")
        self.assertEqual(entry.duration_weeks, 0)
        self.assertEqual(entry.duration_days, 1)
        self.assertEqual(state.selection.id, "e1")
        self.assertEqual(state.collapsed_folder_ids, ["f1"])

    def test_empty_input_gets_default_folder_and_entry(self) -> None:
        state = normalize_work_log_state(None)
        self.assertEqual(state.folders[0].name, DEFAULT_FOLDER_NAME)
        self.assertEqual(len(state.entries), 1)
        self.assertEqual(state.entries[0].folder_id, state.folders[0].id)


if __name__ == "__main__":
    unittest.main()
