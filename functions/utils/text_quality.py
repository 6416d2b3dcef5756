# functions/utils/text_quality.py
"""
Heuristic quality checks for generated Korean text.

All predicates here are deliberately cheap regex checks. They are tuned to
Korean sentence-final grammar (``~다``, ``~니다``, ``~요``) and must be
redefined, not reused, for other target languages.

Used by:
- Provider Gateway (Gemini continuation trigger)
- Response Repair Loop (refine / organize / coach acceptance criteria)
- Structured Output Sanitizer (date stripping of plan text)
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Incompleteness
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IncompletenessRule:
    """Parameters of the "looks cut off" heuristic.

    Attributes
    ----------
    min_chars:
        Texts shorter than this are incomplete.
    dangling_tail:
        Pattern matching a trailing punctuation/connective character.
    conjunction_tail:
        Pattern matching a trailing bare conjunction (None disables it).
    final_endings:
        Pattern matching an accepted sentence-final verb ending.
    check_bold_balance:
        Treat an odd number of ``**`` markers as a truncated reply.
    """

    min_chars: int
    dangling_tail: re.Pattern[str]
    final_endings: re.Pattern[str]
    conjunction_tail: re.Pattern[str] | None = None
    check_bold_balance: bool = False


_TERMINAL_PUNCTUATION = re.compile(r"[.?!]$")

REFINE_RULE = IncompletenessRule(
    min_chars=110,
    dangling_tail=re.compile(r"[,\-/:;(\"'`]\s*$"),
    conjunction_tail=re.compile(r"(및|또는|그리고)\s*$"),
    final_endings=re.compile(r"(다|니다|합니다|였습니다)$"),
)

COACH_REPLY_RULE = IncompletenessRule(
    min_chars=24,
    dangling_tail=re.compile(r"[,\-/:;(\"'`*]\s*$"),
    final_endings=re.compile(r"(다|요|니다|합니다|됩니다|였습니다)$"),
    check_bold_balance=True,
)


def with_min_chars(rule: IncompletenessRule, min_chars: int) -> IncompletenessRule:
    """Copy ``rule`` with a different character floor (from parameters.yaml)."""
    return IncompletenessRule(
        min_chars=min_chars,
        dangling_tail=rule.dangling_tail,
        final_endings=rule.final_endings,
        conjunction_tail=rule.conjunction_tail,
        check_bold_balance=rule.check_bold_balance,
    )


def is_likely_incomplete(text: str | None, rule: IncompletenessRule = REFINE_RULE) -> bool:
    """
    Return True when ``text`` looks truncated.

    Any single check marks the text incomplete: empty, shorter than the floor,
    dangling punctuation, trailing conjunction, unbalanced bold markers, or
    no terminal punctuation AND no accepted sentence-final ending.
    """
    normalized = (text or "").strip()
    if not normalized:
        return True
    if len(normalized) < rule.min_chars:
        return True
    if rule.dangling_tail.search(normalized):
        return True
    if rule.conjunction_tail is not None and rule.conjunction_tail.search(normalized):
        return True
    if rule.check_bold_balance and normalized.count("**") % 2 == 1:
        return True
    if not _TERMINAL_PUNCTUATION.search(normalized) and not rule.final_endings.search(normalized):
        return True
    return False


# ---------------------------------------------------------------------------
# Meta leakage / length
# ---------------------------------------------------------------------------

_MARKDOWN_MARKERS = re.compile(r"(\*{1,2}|^\d+\.)", re.MULTILINE)
_META_WORDS = re.compile(
    r"(Final Polish|Enhancement|Good\.|No bullets|guide followed|characters)",
    re.IGNORECASE,
)


def has_meta_words(text: str | None) -> bool:
    """English process chatter ("Final Polish", "guide followed", ...)."""
    return bool(_META_WORDS.search(text or ""))


def is_meta_like_output(text: str | None) -> bool:
    """Markdown bullets/numbering or English process words leaked into prose."""
    normalized = (text or "").strip()
    if not normalized:
        return True
    if _MARKDOWN_MARKERS.search(normalized):
        return True
    return has_meta_words(normalized)


def is_length_out_of_range(text: str | None, min_chars: int, max_chars: int) -> bool:
    length = len((text or "").strip())
    return length < min_chars or length > max_chars


# ---------------------------------------------------------------------------
# Cleanup / date stripping
# ---------------------------------------------------------------------------

_WRAPPING_QUOTES = re.compile(r"^[\"'`]+|[\"'`]+$")
_WHITESPACE_RUN = re.compile(r"\s+")


def cleanup_text(text: str | None) -> str:
    """Strip surrounding whitespace and wrapping quote/backtick characters."""
    return _WRAPPING_QUOTES.sub("", (text or "").strip()).strip()


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RUN.sub(" ", text).strip()


# Order matters: full dates before month/day, month/day before bare "N일".
_DATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\d{4}\s*[-./]\s*\d{1,2}\s*[-./]\s*\d{1,2}"),
    re.compile(r"\d{4}\s*년\s*\d{1,2}\s*월(?:\s*\d{1,2}\s*일)?"),
    re.compile(r"\d{1,2}\s*월\s*\d{1,2}\s*일"),
    re.compile(r"(?<![\d.])\d{1,2}/\d{1,2}(?![\d/])"),
    re.compile(r"(?<!\d)\d+(?:\.\d+)?\s*(?:주|일)"),
)
_SPACE_RUN = re.compile(r"[ \t]{2,}")
_SPACE_BEFORE_NEWLINE = re.compile(r"[ \t]+\n")
_SPACE_BEFORE_PUNCT = re.compile(r"[ \t]+([,.)])")


def strip_date_like_text(text: str | None) -> str:
    """
    Remove date and duration tokens (``2025-03-01``, ``3월 5일``, ``3/5``,
    ``2025년 3월``, ``2주``, ``1.5주``, ``10일``) while keeping line structure.

    Patterns are re-applied until the text is stable so that removing one
    token cannot expose another.
    """
    result = text or ""
    while True:
        previous = result
        for pattern in _DATE_PATTERNS:
            result = pattern.sub("", result)
        if result == previous:
            break

    result = _SPACE_RUN.sub(" ", result)
    result = _SPACE_BEFORE_NEWLINE.sub("\n", result)
    result = _SPACE_BEFORE_PUNCT.sub(r"\1", result)
    return result.strip()


DATE_TOKEN_PATTERN = re.compile(
    r"\d{4}-\d{1,2}-\d{1,2}|\d{1,2}\s*월\s*\d{1,2}\s*일|\d+\s*주|\d+\s*일"
)


def contains_date_token(text: str | None) -> bool:
    return bool(DATE_TOKEN_PATTERN.search(text or ""))


__all__ = [
    "IncompletenessRule",
    "REFINE_RULE",
    "COACH_REPLY_RULE",
    "with_min_chars",
    "is_likely_incomplete",
    "has_meta_words",
    "is_meta_like_output",
    "is_length_out_of_range",
    "cleanup_text",
    "collapse_whitespace",
    "strip_date_like_text",
    "contains_date_token",
]
