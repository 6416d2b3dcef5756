# functions/utils/work_log.py
"""
Work-log helpers: date periods, season filtering and folder-tree operations.

Every operation is a pure function over schema objects. State-changing
operations (``delete_folder``, ``delete_entry``, ``move_entry``,
``normalize_work_log_state``) return a new ``WorkLogState`` and never mutate
their input.

Tree invariants kept here:
- at least one folder always exists ("기본 폴더" is recreated if needed);
- deleting a folder removes its whole subtree but re-parents the entries;
- at least one entry always exists (a blank one is created if needed).
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Mapping
from uuid import uuid4

import structlog
from pydantic import ValidationError

from schemas.input_schema import (
    WorkLogEntry,
    WorkLogFolder,
    WorkLogSeason,
    WorkLogType,
    normalize_duration,
)
from schemas.internal_schema import WorkLogSelection, WorkLogState, WorkPeriod

logger = structlog.get_logger(__name__).bind(module="work_log")

DEFAULT_FOLDER_NAME = "기본 폴더"
UNCATEGORIZED_KEY = "__uncategorized__"

_TAG_SEPARATORS = re.compile(r"[,\n/|]+")
_WHITESPACE_RUN = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


def normalize_text(value: str | None) -> str:
    return (value or "").strip()


def normalize_spaces(value: str) -> str:
    return _WHITESPACE_RUN.sub(" ", value).strip()


def split_tags(value: str | None) -> list[str]:
    """``"API, 백엔드/운영|QA"`` -> ``["API", "백엔드", "운영", "QA"]``."""
    return [token.strip() for token in _TAG_SEPARATORS.split(value or "") if token.strip()]


def unique_list(values: Iterable[str]) -> list[str]:
    """Trim, drop blanks and duplicates (case-sensitive), keep first-seen order."""
    output: list[str] = []
    seen: set[str] = set()
    for value in values:
        normalized = value.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        output.append(normalized)
    return output


def entry_title(entry: WorkLogEntry) -> str:
    """Entry title, or ``"{type} 업무"`` for an untitled entry."""
    return normalize_text(entry.title) or f"{entry.type.value} 업무"


# ---------------------------------------------------------------------------
# Dates and periods
# ---------------------------------------------------------------------------


def _integer_part(raw: str) -> int | None:
    try:
        number = float(raw.strip())
    except ValueError:
        return None
    return int(number) if number.is_integer() else None


def parse_ymd(value: str | None) -> date | None:
    """
    Parse ``YYYY-MM-DD``. Month must be 1-12 and day 1-31; a day past the end
    of the month rolls over into the next month (``2025-02-30`` -> 2025-03-02).
    """
    parts = (value or "").split("-")
    if len(parts) < 3:
        return None
    year, month, day = (_integer_part(p) for p in parts[:3])
    if year is None or month is None or day is None:
        return None
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    try:
        return date(year, month, 1) + timedelta(days=day - 1)
    except (ValueError, OverflowError):
        return None


def calculate_work_period(date_iso: str | None, weeks: Any, days: Any) -> WorkPeriod | None:
    """Inclusive range ending on ``date_iso``; None when the date is unusable."""
    end = parse_ymd(date_iso)
    if end is None:
        return None
    total_days = max(1, normalize_duration(weeks, 0) * 7 + normalize_duration(days, 0))
    try:
        start = end - timedelta(days=total_days - 1)
    except OverflowError:
        return None
    return WorkPeriod(
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        total_days=total_days,
    )


def entry_period(entry: WorkLogEntry) -> WorkPeriod | None:
    return calculate_work_period(entry.date, entry.duration_weeks, entry.duration_days)


def period_label(entry: WorkLogEntry) -> str:
    """``"2025-03-01 ~ 2025-03-14 (14일)"`` or ``"-"``."""
    period = entry_period(entry)
    return period.label if period else "-"


# ---------------------------------------------------------------------------
# Season filter
# ---------------------------------------------------------------------------


def _year_of(date_iso: str) -> int | None:
    return _integer_part(date_iso[:4]) if date_iso[:4].strip() else None


def _month_of(date_iso: str) -> int:
    """Month number; blank counts as 0 (no season) and garbage as January."""
    raw = date_iso[5:7]
    if not raw.strip():
        return 0
    month = _integer_part(raw)
    return 1 if month is None else month


def in_season(entry: WorkLogEntry, season: WorkLogSeason) -> bool:
    if season == WorkLogSeason.ALL:
        return True
    month = _month_of(entry.date)
    if season == WorkLogSeason.H1:
        return 1 <= month <= 6
    return 7 <= month <= 12


def filter_entries_by_season(
    entries: Iterable[WorkLogEntry],
    year: int,
    season: WorkLogSeason = WorkLogSeason.ALL,
) -> list[WorkLogEntry]:
    return [
        entry
        for entry in entries
        if _year_of(entry.date) == year and in_season(entry, season)
    ]


def year_options(entries: Iterable[WorkLogEntry], current_year: int) -> list[int]:
    """Distinct entry years plus the current year, newest first."""
    years = {current_year}
    for entry in entries:
        year = _year_of(entry.date)
        if year is not None:
            years.add(year)
    return sorted(years, reverse=True)


# ---------------------------------------------------------------------------
# Folder tree
# ---------------------------------------------------------------------------


def create_folder(name: str = DEFAULT_FOLDER_NAME, parent_id: str | None = None) -> WorkLogFolder:
    now = now_iso()
    return WorkLogFolder(
        id=new_id("folder"),
        name=name,
        parent_id=parent_id,
        created_at=now,
        updated_at=now,
    )


def create_entry(folder_id: str, *, entry_date: str | None = None, sort_order: float = 0) -> WorkLogEntry:
    now = now_iso()
    return WorkLogEntry(
        id=new_id("work"),
        folder_id=folder_id,
        sort_order=sort_order,
        type=WorkLogType.TASK,
        date=entry_date if entry_date is not None else date.today().isoformat(),
        duration_weeks=0,
        duration_days=1,
        created_at=now,
        updated_at=now,
    )


def collect_descendant_folder_ids(folder_id: str, folders: Iterable[WorkLogFolder]) -> set[str]:
    """``folder_id`` plus every folder below it (cycle-safe)."""
    by_parent: dict[str, list[str]] = {}
    for folder in folders:
        if folder.parent_id:
            by_parent.setdefault(folder.parent_id, []).append(folder.id)

    ids = {folder_id}
    stack = [folder_id]
    while stack:
        current = stack.pop()
        for child_id in by_parent.get(current, []):
            if child_id not in ids:
                ids.add(child_id)
                stack.append(child_id)
    return ids


def filter_entries_by_folder(
    entries: Iterable[WorkLogEntry],
    folder_id: str,
    folders: Iterable[WorkLogFolder],
) -> list[WorkLogEntry]:
    """Entries filed under ``folder_id`` or any of its sub-folders; orphans are excluded."""
    folder_ids = collect_descendant_folder_ids(folder_id, folders)
    return [entry for entry in entries if entry.folder_id and entry.folder_id in folder_ids]


def folder_options(folders: list[WorkLogFolder]) -> list[tuple[str, str]]:
    """Depth-first ``(id, label)`` pairs, label prefixed with ``"— "`` per level."""
    by_parent: dict[str | None, list[WorkLogFolder]] = {}
    for folder in folders:
        by_parent.setdefault(folder.parent_id, []).append(folder)

    output: list[tuple[str, str]] = []
    visited: set[str] = set()

    def walk(parent_id: str | None, depth: int) -> None:
        for folder in by_parent.get(parent_id, []):
            if folder.id in visited:
                continue
            visited.add(folder.id)
            output.append((folder.id, f"{'— ' * depth}{folder.name}"))
            walk(folder.id, depth + 1)

    walk(None, 0)
    return output


def delete_folder(state: WorkLogState, folder_id: str) -> WorkLogState:
    """Remove ``folder_id`` and its subtree; entries move to a fallback folder."""
    removing = collect_descendant_folder_ids(folder_id, state.folders)
    folders = [f for f in state.folders if f.id not in removing]
    if not folders:
        folders = [create_folder(DEFAULT_FOLDER_NAME, None)]
    fallback_id = folders[0].id

    now = now_iso()
    entries = [
        entry.model_copy(update={"folder_id": fallback_id, "updated_at": now})
        if entry.folder_id and entry.folder_id in removing
        else entry
        for entry in state.entries
    ]

    logger.info(
        "work_log_folder_deleted",
        folder_id=folder_id,
        removed_folders=len(removing & {f.id for f in state.folders}),
        fallback_folder_id=fallback_id,
    )
    return state.model_copy(
        update={
            "folders": folders,
            "entries": entries,
            "collapsed_folder_ids": [i for i in state.collapsed_folder_ids if i not in removing],
            "selection": WorkLogSelection(kind="entry", id=entries[0].id if entries else None),
        }
    )


def delete_entry(state: WorkLogState, entry_id: str) -> WorkLogState:
    """Remove one entry; the log never ends up empty."""
    entries = [e for e in state.entries if e.id != entry_id]
    if not entries:
        if not state.folders:
            return state
        entries = [create_entry(state.folders[0].id)]
    return state.model_copy(
        update={
            "entries": entries,
            "selection": WorkLogSelection(kind="entry", id=entries[0].id),
        }
    )


def _timestamp(value: str) -> float:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def _sorted_ids(entries: list[WorkLogEntry], folder_id: str, excluding_id: str) -> list[str]:
    members = [e for e in entries if e.folder_id == folder_id and e.id != excluding_id]
    members.sort(key=lambda e: (e.sort_order, _timestamp(e.updated_at)))
    return [e.id for e in members]


def move_entry(
    state: WorkLogState,
    entry_id: str,
    target_folder_id: str,
    insert_index: int | None = None,
) -> WorkLogState:
    """
    Move an entry to ``insert_index`` within ``target_folder_id`` (end of the
    folder when None). Sort orders of touched folders are renumbered 1..N.
    """
    if not any(f.id == target_folder_id for f in state.folders):
        return state
    moving = next((e for e in state.entries if e.id == entry_id), None)
    if moving is None or not moving.folder_id:
        return state
    source_folder_id = moving.folder_id

    source_ids = _sorted_ids(state.entries, source_folder_id, entry_id)
    target_ids = list(
        source_ids
        if source_folder_id == target_folder_id
        else _sorted_ids(state.entries, target_folder_id, entry_id)
    )
    index = len(target_ids) if insert_index is None else max(0, min(insert_index, len(target_ids)))
    target_ids.insert(index, entry_id)

    order: dict[str, int] = {}
    if source_folder_id != target_folder_id:
        order.update({eid: i + 1 for i, eid in enumerate(source_ids)})
    order.update({eid: i + 1 for i, eid in enumerate(target_ids)})

    now = now_iso()
    entries = [
        entry.model_copy(
            update={
                "folder_id": target_folder_id if entry.id == entry_id else entry.folder_id,
                "sort_order": order[entry.id],
                "updated_at": now,
            }
        )
        if entry.id in order
        else entry
        for entry in state.entries
    ]
    return state.model_copy(
        update={"entries": entries, "selection": WorkLogSelection(kind="entry", id=entry_id)}
    )


def _validated(model_cls: Any, items: Any, kind: str) -> list[Any]:
    """Validate list items one by one; malformed items are dropped and logged."""
    if not isinstance(items, list):
        return []
    output = []
    for item in items:
        try:
            output.append(model_cls.model_validate(item))
        except ValidationError as exc:
            logger.warning("work_log_item_dropped", kind=kind, errors=exc.error_count())
    return output


def normalize_work_log_state(raw: Mapping[str, Any] | WorkLogState | None) -> WorkLogState:
    """
    Repair persisted state: drop malformed records, recreate a default folder
    and entry if missing, re-parent orphan entries to the first folder and
    fix an invalid selection.
    """
    if isinstance(raw, WorkLogState):
        raw = raw.model_dump(by_alias=True)
    data: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}

    folders: list[WorkLogFolder] = _validated(WorkLogFolder, data.get("folders"), "folder")
    entries: list[WorkLogEntry] = _validated(WorkLogEntry, data.get("entries"), "entry")

    if not folders:
        folders = [create_folder(DEFAULT_FOLDER_NAME, None)]
    valid_ids = {f.id for f in folders}
    fallback_id = folders[0].id

    now = now_iso()
    repaired = 0
    fixed_entries = []
    for entry in entries:
        if not entry.folder_id or entry.folder_id not in valid_ids:
            repaired += 1
            entry = entry.model_copy(update={"folder_id": fallback_id, "updated_at": now})
        fixed_entries.append(entry)
    if not fixed_entries:
        fixed_entries = [create_entry(fallback_id)]

    selection_raw = data.get("selection")
    try:
        selection = WorkLogSelection.model_validate(selection_raw or {})
    except ValidationError:
        selection = WorkLogSelection()
    if selection.kind == "folder":
        if selection.id not in valid_ids:
            selection = WorkLogSelection(kind="entry", id=fixed_entries[0].id)
    elif not any(e.id == selection.id for e in fixed_entries):
        selection = WorkLogSelection(kind="entry", id=fixed_entries[0].id)

    collapsed = data.get("collapsedFolderIds", data.get("collapsed_folder_ids"))
    organized = data.get("organizedDraft", data.get("organized_draft"))
    folder_organized = data.get("folderOrganizedDraft", data.get("folder_organized_draft"))

    if repaired:
        logger.info("work_log_orphans_reparented", count=repaired, fallback_folder_id=fallback_id)

    return WorkLogState(
        folders=folders,
        entries=fixed_entries,
        selection=selection,
        collapsed_folder_ids=[c for c in collapsed if isinstance(c, str)] if isinstance(collapsed, list) else [],
        organized_draft=organized if isinstance(organized, str) else "",
        folder_organized_draft=folder_organized if isinstance(folder_organized, str) else "",
    )


__all__ = [
    "DEFAULT_FOLDER_NAME",
    "UNCATEGORIZED_KEY",
    "now_iso",
    "new_id",
    "normalize_text",
    "normalize_spaces",
    "split_tags",
    "unique_list",
    "entry_title",
    "parse_ymd",
    "calculate_work_period",
    "entry_period",
    "period_label",
    "in_season",
    "filter_entries_by_season",
    "filter_entries_by_folder",
    "year_options",
    "create_folder",
    "create_entry",
    "collect_descendant_folder_ids",
    "folder_options",
    "delete_folder",
    "delete_entry",
    "move_entry",
    "normalize_work_log_state",
]
