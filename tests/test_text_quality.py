"""Unit tests for the Korean text-quality heuristics.

Covers:
- is_likely_incomplete(): floor, dangling punctuation, trailing conjunction,
  sentence-final endings, bold-marker balance (coach rule)
- is_meta_like_output() / has_meta_words()
- strip_date_like_text() / contains_date_token()
- cleanup_text()
"""

from __future__ import annotations

import unittest

from functions.utils.text_quality import (
    COACH_REPLY_RULE,
    REFINE_RULE,
    cleanup_text,
    contains_date_token,
    has_meta_words,
    is_length_out_of_range,
    is_likely_incomplete,
    is_meta_like_output,
    strip_date_like_text,
    with_min_chars,
)

BODY = "고객 문의 대응 프로세스를 재정비하여 처리 시간을 단축하고 " * 4


class TestIncompleteness(unittest.TestCase):
    def test_empty_and_short_text_is_incomplete(self) -> None:
        self.assertTrue(is_likely_incomplete(None))
        self.assertTrue(is_likely_incomplete("   "))
        self.assertTrue(is_likely_incomplete("짧은 문장입니다."))

    def test_complete_sentence_with_period(self) -> None:
        self.assertFalse(is_likely_incomplete(BODY + "안정화했습니다."))

    def test_sentence_final_ending_without_punctuation(self) -> None:
        self.assertFalse(is_likely_incomplete(BODY + "안정화했다"))

    def test_dangling_punctuation(self) -> None:
        self.assertTrue(is_likely_incomplete(BODY + "안정화했으며,"))
        self.assertTrue(is_likely_incomplete(BODY + "다음 항목:"))

    def test_trailing_conjunction(self) -> None:
        self.assertTrue(is_likely_incomplete(BODY + "품질 개선 및"))

    def test_no_ending_and_no_punctuation(self) -> None:
        self.assertTrue(is_likely_incomplete(BODY + "안정화 작업 진행"))

    def test_floor_can_be_lowered(self) -> None:
        rule = with_min_chars(REFINE_RULE, 5)
        self.assertFalse(is_likely_incomplete("짧은 문장입니다.", rule))

    def test_coach_rule_accepts_polite_ending(self) -> None:
        self.assertFalse(is_likely_incomplete("기준선을 먼저 확인해 보고 목표치를 함께 정해 보면 좋겠어요", COACH_REPLY_RULE))

    def test_coach_rule_flags_unbalanced_bold(self) -> None:
        self.assertTrue(
            is_likely_incomplete("이번 분기의 **핵심 지표는 처리 시간입니다.", COACH_REPLY_RULE)
        )
        self.assertFalse(
            is_likely_incomplete("이번 분기의 **핵심 지표**는 처리 시간입니다.", COACH_REPLY_RULE)
        )


class TestMetaAndLength(unittest.TestCase):
    def test_markdown_and_english_chatter_detected(self) -> None:
        self.assertTrue(is_meta_like_output("**요약** 문장입니다."))
        self.assertTrue(is_meta_like_output("1. 첫 번째 성과입니다."))
        self.assertTrue(is_meta_like_output("Final Polish: 문장을 다듬었습니다."))
        self.assertTrue(is_meta_like_output(""))

    def test_plain_prose_is_not_meta(self) -> None:
        self.assertFalse(is_meta_like_output("처리 시간을 20% 단축했습니다."))

    def test_has_meta_words_is_case_insensitive(self) -> None:
        self.assertTrue(has_meta_words("guide FOLLOWED"))
        self.assertFalse(has_meta_words("가이드를 따랐습니다"))

    def test_length_window(self) -> None:
        self.assertTrue(is_length_out_of_range("가" * 10, 150, 200))
        self.assertFalse(is_length_out_of_range("가" * 160, 150, 200))
        self.assertTrue(is_length_out_of_range("가" * 201, 150, 200))


class TestDatesAndCleanup(unittest.TestCase):
    def test_strip_mixed_date_tokens(self) -> None:
        self.assertEqual(
            strip_date_like_text("2025-03-01 착수, 3월 5일 점검, 2주 운영"),
            "착수, 점검, 운영",
        )

    def test_strip_decimal_durations(self) -> None:
        stripped = strip_date_like_text("1.5주 운영, 2.5 일 점검")
        self.assertEqual(stripped, "운영, 점검")
        self.assertFalse(contains_date_token(stripped))

    def test_strip_keeps_line_structure(self) -> None:
        stripped = strip_date_like_text("1. 10/3 착수\n2. 2025년 4월 검수")
        self.assertEqual(stripped.split("\n"), ["1. 착수", "2. 검수"])

    def test_contains_date_token(self) -> None:
        self.assertTrue(contains_date_token("3주 운영"))
        self.assertTrue(contains_date_token("2025-01-02 완료"))
        self.assertFalse(contains_date_token("핵심 과업 착수"))
        self.assertFalse(contains_date_token(None))

    def test_cleanup_text_strips_wrapping_quotes(self) -> None:
        self.assertEqual(cleanup_text('  "다듬은 문장입니다."  '), "다듬은 문장입니다.")
        self.assertEqual(cleanup_text("`코드`"), "코드")
        self.assertEqual(cleanup_text(None), "")


if __name__ == "__main__":
    unittest.main()
