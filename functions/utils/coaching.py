# functions/utils/coaching.py
"""
Coaching Session State Machine.

Per candidate we keep a transcript, the latest LLM-asserted progress patch
and the sub-task cards. Displayed readiness is never stored: it is the
auto-computed snapshot (derived from the candidate's current fields)
overlaid field-by-field by the stored patch.

The provider call itself is injected as a ``coach`` callable so that the
session logic can run against the in-process pipeline, an HTTP client or a
test fake alike.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Iterable, Mapping

import structlog

from schemas.input_schema import (
    CandidateCoachRequest,
    CandidatePayload,
    ChatMessage,
    ChatRole,
    CoachMode,
    WorkLogEntry,
    WorkLogType,
)
from schemas.internal_schema import (
    AchievementCandidate,
    ChatTurn,
    CoachingSession,
    SubTaskCard,
    Track1Item,
)
from schemas.output_schema import (
    CandidateCoachResult,
    CandidateProgress,
    CandidateProgressPatch,
    SuggestedCard,
    SuggestedUpdates,
)
from functions.utils.candidates import CandidateOverrideStore, apply_suggested_updates
from functions.utils.evaluation_rules import contains_all_grade_tiers, default_formula_for_type, with_grade_scale
from functions.utils.work_log import entry_title, new_id, normalize_text, now_iso

logger = structlog.get_logger(__name__).bind(module="coaching")

CoachFn = Callable[[CandidateCoachRequest], CandidateCoachResult]

BASELINE_MIN_TASK_CHARS = 8
_DIGIT = re.compile(r"\d")
_CARD_TEXT_FIELDS = ("kpi_name", "kpi_task", "achievement_plan", "kpi_formula")
_CARD_EDITABLE_FIELDS = (*_CARD_TEXT_FIELDS, "sub_task_weight")


# ---------------------------------------------------------------------------
# Readiness progress
# ---------------------------------------------------------------------------


def compute_auto_progress(candidate: AchievementCandidate | None) -> CandidateProgress:
    """Deterministic readiness snapshot from the candidate's current fields."""
    if candidate is None:
        return CandidateProgress()

    baseline = candidate.source_entry_count > 0 and len(normalize_text(candidate.kpi_task)) >= BASELINE_MIN_TASK_CHARS
    formula_text = normalize_text(candidate.kpi_formula)
    formula = bool(formula_text) and contains_all_grade_tiers(formula_text)
    weight = "" if candidate.goal_task_weight is None else f"{candidate.goal_task_weight:g}"
    target = bool(_DIGIT.search(f"{candidate.kpi_formula} {candidate.achievement_plan} {weight}"))

    return CandidateProgress(
        baseline_confirmed=baseline,
        formula_confirmed=formula,
        target_confirmed=target,
        ready_to_apply=baseline and formula and target,
    )


def _patch_dict(patch: CandidateProgressPatch | CandidateProgress | Mapping[str, Any] | None) -> dict[str, bool]:
    """Normalize any progress-like value to camelCase keys with bool values."""
    if patch is None:
        return {}
    if isinstance(patch, (CandidateProgressPatch, CandidateProgress)):
        raw = patch.model_dump(by_alias=True, exclude_none=True)
    else:
        raw = CandidateProgressPatch.model_validate(dict(patch)).model_dump(by_alias=True, exclude_none=True)
    return {key: bool(value) for key, value in raw.items()}


def merge_progress(
    base: CandidateProgress,
    patch: CandidateProgressPatch | CandidateProgress | Mapping[str, Any] | None,
) -> CandidateProgress:
    """Field-by-field overlay: a present patch value always wins."""
    merged = base.model_dump(by_alias=True)
    merged.update(_patch_dict(patch))
    return CandidateProgress.model_validate(merged)


# ---------------------------------------------------------------------------
# Sub-task cards
# ---------------------------------------------------------------------------


def blank_card() -> SubTaskCard:
    return SubTaskCard(
        id=new_id("subtask"),
        kpi_formula=with_grade_scale(default_formula_for_type(WorkLogType.TASK)),
    )


def card_from_entry(entry: WorkLogEntry) -> SubTaskCard:
    metric = normalize_text(entry.metrics)
    formula = with_grade_scale(metric) if metric else with_grade_scale(default_formula_for_type(entry.type))
    return SubTaskCard(
        id=new_id("subtask"),
        kpi_name=entry_title(entry),
        kpi_task=normalize_text(entry.context) or normalize_text(entry.title) or "핵심 과업 실행",
        achievement_plan=normalize_text(entry.result),
        kpi_formula=formula,
    )


def initial_sub_task_cards(entries: Iterable[WorkLogEntry]) -> list[SubTaskCard]:
    """One card per source entry, or a single blank card."""
    cards = [card_from_entry(entry) for entry in entries]
    return cards or [blank_card()]


def add_card(cards: list[SubTaskCard]) -> tuple[list[SubTaskCard], SubTaskCard]:
    card = blank_card()
    return [*cards, card], card


def remove_card(cards: list[SubTaskCard], card_id: str) -> list[SubTaskCard]:
    """Remove ``card_id`` unless it is the last remaining card."""
    if len(cards) <= 1:
        return list(cards)
    return [card for card in cards if card.id != card_id]


def toggle_lock(cards: list[SubTaskCard], card_id: str) -> list[SubTaskCard]:
    return [
        card.model_copy(update={"locked": not card.locked}) if card.id == card_id else card
        for card in cards
    ]


def set_card_field(cards: list[SubTaskCard], card_id: str, field_name: str, value: Any) -> list[SubTaskCard]:
    """User edit of one card field. User edits apply even to locked cards."""
    if field_name not in _CARD_EDITABLE_FIELDS:
        raise ValueError(f"Unknown sub-task card field: {field_name}")
    output: list[SubTaskCard] = []
    for card in cards:
        if card.id == card_id:
            data = card.model_dump()
            data[field_name] = value
            card = SubTaskCard.model_validate(data)
        output.append(card)
    return output


def patch_active_card(
    cards: list[SubTaskCard],
    active_card_id: str | None,
    updates: SuggestedUpdates | None,
) -> list[SubTaskCard]:
    """Project AI field suggestions onto the active card; locked cards are skipped."""
    if updates is None or active_card_id is None:
        return list(cards)

    output: list[SubTaskCard] = []
    for card in cards:
        if card.id != active_card_id or card.locked:
            output.append(card)
            continue
        patch: dict[str, Any] = {}
        for name in _CARD_TEXT_FIELDS:
            value = getattr(updates, name)
            if isinstance(value, str) and value.strip():
                patch[name] = value
        if updates.sub_task_weight is not None:
            patch["sub_task_weight"] = max(0, min(100, updates.sub_task_weight))
        output.append(card.model_copy(update=patch) if patch else card)
    return output


def apply_suggested_cards(
    cards: list[SubTaskCard],
    suggested: list[SuggestedCard] | None,
) -> list[SubTaskCard]:
    """Replace unlocked cards with the AI split; locked cards stay in place first."""
    if not suggested:
        return list(cards)
    locked = [card for card in cards if card.locked]
    created = [
        SubTaskCard(
            id=new_id("subtask"),
            kpi_name=item.kpi_name,
            kpi_task=item.kpi_task,
            achievement_plan=item.achievement_plan,
            kpi_formula=item.kpi_formula,
            sub_task_weight=item.sub_task_weight,
        )
        for item in suggested
    ]
    return [*locked, *created]


def candidate_payload_for_card(
    candidate: AchievementCandidate,
    card: SubTaskCard | None,
) -> CandidatePayload:
    """Candidate as sent to the coach, scoped to ``card`` when one is active."""
    data = candidate.model_dump(
        include=set(CandidatePayload.model_fields) - {"source_type"},
    )
    data["source_type"] = candidate.source_type.value
    if card is not None:
        for name in _CARD_TEXT_FIELDS:
            data[name] = getattr(card, name) or data[name]
        data["sub_task_weight"] = card.sub_task_weight
    return CandidatePayload.model_validate(data)


def build_track1_items(
    candidates: Iterable[AchievementCandidate],
    cards_by_candidate: Mapping[str, list[SubTaskCard]],
) -> list[Track1Item]:
    """One evaluation-form row per card (card fields fall back to the candidate)."""
    items: list[Track1Item] = []
    for candidate in candidates:
        common = dict(
            goal_category=candidate.goal_category,
            role_and_responsibilities=candidate.role_and_responsibilities,
            goal_task_weight=candidate.goal_task_weight,
            grade=candidate.grade,
            score=candidate.score,
            achievement_result="",
        )
        cards = cards_by_candidate.get(candidate.id) or []
        if not cards:
            items.append(
                Track1Item(
                    id=new_id("track1"),
                    kpi_name=candidate.kpi_name,
                    kpi_task=candidate.kpi_task,
                    achievement_plan=candidate.achievement_plan,
                    kpi_formula=candidate.kpi_formula,
                    sub_task_weight=candidate.sub_task_weight,
                    **common,
                )
            )
            continue
        for card in cards:
            items.append(
                Track1Item(
                    id=new_id("track1"),
                    kpi_name=card.kpi_name or candidate.kpi_name,
                    kpi_task=card.kpi_task or candidate.kpi_task,
                    achievement_plan=card.achievement_plan or candidate.achievement_plan,
                    kpi_formula=card.kpi_formula or candidate.kpi_formula,
                    sub_task_weight=card.sub_task_weight,
                    **common,
                )
            )
    return items


# ---------------------------------------------------------------------------
# Session workspace
# ---------------------------------------------------------------------------


def make_turn(role: ChatRole, content: str) -> ChatTurn:
    return ChatTurn(id=new_id("msg"), role=role, content=content.strip(), created_at=now_iso())


class CoachingWorkspace:
    """
    All coaching sessions of one user, plus the shared override store that
    AI suggestions are folded into.

    Each ``kickoff`` / ``chat`` call appends at most one user turn and one
    assistant turn. The full transcript is kept; trimming to the recent
    window happens only when the prompt is built.
    """

    def __init__(self, overrides: CandidateOverrideStore | None = None) -> None:
        self.overrides = overrides or CandidateOverrideStore()
        self.sessions: dict[str, CoachingSession] = {}

    # -- session / card access ---------------------------------------------

    def session(self, candidate_id: str) -> CoachingSession:
        if candidate_id not in self.sessions:
            self.sessions[candidate_id] = CoachingSession(candidate_id=candidate_id)
        return self.sessions[candidate_id]

    def ensure_cards(
        self,
        candidate: AchievementCandidate,
        entries: Iterable[WorkLogEntry],
    ) -> list[SubTaskCard]:
        """Initialize cards on first selection; later calls only re-focus the first card."""
        session = self.session(candidate.id)
        if not session.cards:
            wanted = set(candidate.source_entry_ids)
            session.cards = initial_sub_task_cards(e for e in entries if e.id in wanted)
        if session.active_card_id not in {card.id for card in session.cards}:
            session.active_card_id = session.cards[0].id
        return session.cards

    def active_card(self, candidate_id: str) -> SubTaskCard | None:
        session = self.session(candidate_id)
        return next((c for c in session.cards if c.id == session.active_card_id), None)

    def select_card(self, candidate_id: str, card_id: str | None) -> None:
        self.session(candidate_id).active_card_id = card_id

    def add_card(self, candidate_id: str) -> SubTaskCard:
        session = self.session(candidate_id)
        session.cards, card = add_card(session.cards)
        session.active_card_id = card.id
        return card

    def remove_card(self, candidate_id: str, card_id: str) -> None:
        session = self.session(candidate_id)
        session.cards = remove_card(session.cards, card_id)
        if session.active_card_id not in {c.id for c in session.cards}:
            session.active_card_id = None

    def toggle_lock(self, candidate_id: str, card_id: str) -> None:
        session = self.session(candidate_id)
        session.cards = toggle_lock(session.cards, card_id)

    def set_card_field(self, candidate_id: str, card_id: str, field_name: str, value: Any) -> None:
        session = self.session(candidate_id)
        session.cards = set_card_field(session.cards, card_id, field_name, value)

    def progress(self, candidate: AchievementCandidate) -> CandidateProgress:
        return merge_progress(compute_auto_progress(candidate), self.session(candidate.id).progress_patch)

    def reset(self) -> None:
        """Drop every session and override (used after candidates are refreshed)."""
        self.sessions.clear()
        self.overrides.clear()

    # -- turns ---------------------------------------------------------------

    def kickoff(
        self,
        candidate: AchievementCandidate,
        entries: Iterable[WorkLogEntry],
        coach: CoachFn,
    ) -> CandidateCoachResult:
        return self._turn(candidate, list(entries), coach, CoachMode.KICKOFF, "")

    def chat(
        self,
        candidate: AchievementCandidate,
        entries: Iterable[WorkLogEntry],
        message: str,
        coach: CoachFn,
    ) -> CandidateCoachResult:
        text = (message or "").strip()
        if not text:
            raise ValueError("chat requires a non-empty user message")
        return self._turn(candidate, list(entries), coach, CoachMode.CHAT, text)

    def _turn(
        self,
        candidate: AchievementCandidate,
        entries: list[WorkLogEntry],
        coach: CoachFn,
        mode: CoachMode,
        message: str,
    ) -> CandidateCoachResult:
        session = self.session(candidate.id)
        card = self.active_card(candidate.id)
        by_id = {entry.id: entry for entry in entries}
        related = [by_id[eid] for eid in candidate.source_entry_ids if eid in by_id]

        if mode == CoachMode.CHAT:
            session.messages.append(make_turn(ChatRole.USER, message))

        request = CandidateCoachRequest(
            mode=mode,
            user_message=message,
            candidate=candidate_payload_for_card(candidate, card),
            entries=related,
            messages=[ChatMessage(role=m.role, content=m.content) for m in session.messages],
            current_card_count=max(1, len(session.cards)),
        )

        logger.info(
            "coach_turn_start",
            candidate_id=candidate.id,
            mode=mode.value,
            transcript_len=len(session.messages),
            active_card_id=card.id if card else None,
        )
        # A failed call keeps the appended user turn; the caller sees the error.
        result = coach(request)

        session.messages.append(make_turn(ChatRole.ASSISTANT, result.reply))
        session.progress_patch = {**session.progress_patch, **_patch_dict(result.progress)}

        if result.suggested_updates is not None:
            apply_suggested_updates(self.overrides, candidate.id, result.suggested_updates)
            session.cards = patch_active_card(session.cards, session.active_card_id, result.suggested_updates)
        if result.suggested_cards:
            session.cards = apply_suggested_cards(session.cards, result.suggested_cards)
            if session.active_card_id not in {c.id for c in session.cards}:
                session.active_card_id = session.cards[0].id if session.cards else None

        logger.info(
            "coach_turn_done",
            candidate_id=candidate.id,
            transcript_len=len(session.messages),
            cards=len(session.cards),
            has_updates=result.suggested_updates is not None,
        )
        return result


__all__ = [
    "CoachFn",
    "compute_auto_progress",
    "merge_progress",
    "blank_card",
    "card_from_entry",
    "initial_sub_task_cards",
    "add_card",
    "remove_card",
    "toggle_lock",
    "set_card_field",
    "patch_active_card",
    "apply_suggested_cards",
    "candidate_payload_for_card",
    "build_track1_items",
    "make_turn",
    "CoachingWorkspace",
]
