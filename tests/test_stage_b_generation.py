"""Unit tests for Stage B (orchestrator, repair loop, feature engine).

Providers are in-memory fakes or a GeminiProvider with ``requests.post`` patched,
so no network call is made.
"""

from __future__ import annotations

import json
import unittest
from typing import Any, List, Optional
from unittest.mock import MagicMock, patch

import requests

from schemas.input_schema import CandidateCoachRequest, RefineItem, WorkLogEntry, WorkLogSeason
from functions.stage_b_generation import (
    CompletionOrchestrator,
    EmptyResponseError,
    EvaluationDraftEngine,
    ResponseRepairLoop,
)
from functions.utils.llm_client import (
    GEMINI,
    OPENAI,
    ConfigurationError,
    GeminiProvider,
    GenerationOptions,
    LLMProviderError,
    ProviderSettings,
    TextGenerator,
)

BODY = "고객 문의 대응 프로세스를 재정비하여 처리 시간을 단축하고 "
REFINED = BODY * 5 + "안정화했습니다."
COACH_REPLY = "기준선을 먼저 확인해 보고 목표치를 함께 정해 보면 좋겠어요"
POST = "functions.utils.llm_client.requests.post"


class FakeProvider(TextGenerator):
    """Replays scripted answers; an exception instance is raised instead of returned."""

    def __init__(self, name: str, *answers: Any) -> None:
        self.name = name
        self.answers = list(answers)
        self.prompts: List[str] = []
        self.options: List[GenerationOptions] = []

    def generate(self, prompt: str, options: GenerationOptions) -> Optional[str]:
        self.prompts.append(prompt)
        self.options.append(options)
        answer = self.answers.pop(0) if self.answers else None
        if isinstance(answer, Exception):
            raise answer
        return answer


def _orchestrator(*providers: FakeProvider) -> CompletionOrchestrator:
    return CompletionOrchestrator({p.name: p for p in providers}, [p.name for p in providers])


class TestCompletionOrchestrator(unittest.TestCase):
    def test_missing_credential_falls_through(self) -> None:
        a = FakeProvider(GEMINI, None)
        b = FakeProvider(OPENAI, '  "정리된 답변"  ')
        result = _orchestrator(a, b).run("p", GenerationOptions())
        self.assertEqual(result.provider, OPENAI)
        self.assertEqual(result.text, "정리된 답변")

    def test_failure_then_success(self) -> None:
        a = FakeProvider(GEMINI, LLMProviderError("503"))
        b = FakeProvider(OPENAI, "답변")
        self.assertEqual(_orchestrator(a, b).run("p", GenerationOptions()).provider, OPENAI)

    def test_all_failures_raise_last_error(self) -> None:
        a = FakeProvider(GEMINI, LLMProviderError("first"))
        b = FakeProvider(OPENAI, TimeoutError("second"))
        with self.assertRaises(TimeoutError) as ctx:
            _orchestrator(a, b).run("p", GenerationOptions())
        self.assertEqual(str(ctx.exception), "second")

    def test_failure_then_empty_still_raises(self) -> None:
        a = FakeProvider(GEMINI, LLMProviderError("first"))
        b = FakeProvider(OPENAI, "   ")
        with self.assertRaises(LLMProviderError):
            _orchestrator(a, b).run("p", GenerationOptions())

    def test_nothing_configured_returns_none(self) -> None:
        self.assertIsNone(_orchestrator(FakeProvider(GEMINI), FakeProvider(OPENAI)).run("p", GenerationOptions()))

    def test_provider_order(self) -> None:
        orchestrator = CompletionOrchestrator(
            {GEMINI: FakeProvider(GEMINI), OPENAI: FakeProvider(OPENAI)}, [OPENAI, "unknown"]
        )
        self.assertEqual(orchestrator.default_order, [OPENAI, GEMINI])
        self.assertEqual(orchestrator.provider_order(GEMINI), [GEMINI, OPENAI])
        self.assertEqual(orchestrator.provider_order("nope"), [OPENAI, GEMINI])


class TestResponseRepairLoop(unittest.TestCase):
    def _run(self, orchestrator: CompletionOrchestrator, **kwargs):
        kwargs.setdefault("needs_repair", lambda text: text == "bad")
        kwargs.setdefault("build_retry_prompt", lambda draft: f"retry:{draft}")
        return ResponseRepairLoop(orchestrator).run("p", GenerationOptions(), feature="test", **kwargs)

    def test_good_first_answer_is_not_retried(self) -> None:
        provider = FakeProvider(GEMINI, "good")
        outcome = self._run(_orchestrator(provider))
        self.assertEqual(outcome.result.text, "good")
        self.assertFalse(outcome.retried)
        self.assertEqual(len(provider.prompts), 1)

    def test_retry_replaces_bad_answer(self) -> None:
        provider = FakeProvider(GEMINI, "bad", "better")
        outcome = self._run(_orchestrator(provider))
        self.assertEqual(outcome.result.text, "better")
        self.assertTrue(outcome.retry_used)
        self.assertEqual(provider.prompts, ["p", "retry:bad"])

    def test_at_most_two_rounds(self) -> None:
        provider = FakeProvider(GEMINI, "bad", "bad", "never")
        outcome = self._run(_orchestrator(provider))
        self.assertEqual(outcome.result.text, "bad")
        self.assertEqual(len(provider.prompts), 2)

    def test_failed_retry_keeps_first_result(self) -> None:
        provider = FakeProvider(GEMINI, "bad", LLMProviderError("down"))
        outcome = self._run(_orchestrator(provider))
        self.assertEqual(outcome.result.text, "bad")
        self.assertTrue(outcome.retried)
        self.assertFalse(outcome.retry_used)

    def test_empty_retry_keeps_first_result(self) -> None:
        outcome = self._run(_orchestrator(FakeProvider(GEMINI, "bad", None)))
        self.assertEqual(outcome.result.text, "bad")

    def test_rejected_retry_keeps_first_result(self) -> None:
        provider = FakeProvider(GEMINI, "bad", "worse")
        outcome = self._run(_orchestrator(provider), accept_retry=lambda text: text != "worse")
        self.assertEqual(outcome.result.text, "bad")
        self.assertFalse(outcome.retry_used)

    def test_retry_prefers_first_responder(self) -> None:
        a = FakeProvider(GEMINI, None, "from-a")
        b = FakeProvider(OPENAI, "bad", "from-b")
        outcome = self._run(_orchestrator(a, b))
        self.assertEqual(outcome.result.provider, OPENAI)
        self.assertEqual(outcome.result.text, "from-b")
        self.assertEqual(len(a.prompts), 1)

    def test_empty_first_round_raises(self) -> None:
        with self.assertRaises(EmptyResponseError):
            self._run(_orchestrator(FakeProvider(GEMINI)))


def _gemini_response(text: str) -> MagicMock:
    resp = MagicMock()
    resp.status_code = 200
    resp.ok = True
    resp.json.return_value = {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]}
    return resp


class TestTransportFailuresFromGemini(unittest.TestCase):
    """Real GeminiProvider with ``requests.post`` patched, so transport errors take the wrapped path."""

    def _gemini(self) -> GeminiProvider:
        return GeminiProvider("test-key", "gemini-x", fallback_models=(), api_versions=("v1",))

    def test_orchestrator_falls_back_after_reset_connection(self) -> None:
        fallback = FakeProvider(OPENAI, "정리된 답변")
        orchestrator = CompletionOrchestrator({GEMINI: self._gemini(), OPENAI: fallback}, [GEMINI, OPENAI])
        with patch(POST, side_effect=requests.exceptions.ChunkedEncodingError("reset")):
            result = orchestrator.run("p", GenerationOptions())
        self.assertEqual(result.provider, OPENAI)
        self.assertEqual(result.text, "정리된 답변")

    def test_retry_transport_error_keeps_first_result(self) -> None:
        orchestrator = CompletionOrchestrator({GEMINI: self._gemini()}, [GEMINI])
        with patch(POST, side_effect=[_gemini_response("bad"), requests.TooManyRedirects("loop")]):
            outcome = ResponseRepairLoop(orchestrator).run(
                "p",
                GenerationOptions(),
                feature="test",
                needs_repair=lambda text: text == "bad",
                build_retry_prompt=lambda draft: f"retry:{draft}",
            )
        self.assertEqual(outcome.result.text, "bad")
        self.assertTrue(outcome.retried)
        self.assertFalse(outcome.retry_used)


class TestEvaluationDraftEngine(unittest.TestCase):
    def test_refine_retries_short_draft(self) -> None:
        provider = FakeProvider(GEMINI, "짧은 초안", REFINED)
        engine = EvaluationDraftEngine(_orchestrator(provider))
        item = RefineItem(kpi_name="처리 시간 단축", achievement_result="처리 시간을 줄였음")

        self.assertEqual(engine.refine(item), REFINED)
        self.assertIn("정확히 150~200자", provider.prompts[1])
        self.assertTrue(provider.options[0].allow_continuation)
        self.assertEqual(provider.options[0].completeness_rule.min_chars, 110)

    def test_organize_accepts_valid_draft(self) -> None:
        draft = "1. 핵심 성과 요약\n" + BODY * 10 + "마무리했습니다."
        provider = FakeProvider(GEMINI, draft)
        engine = EvaluationDraftEngine(_orchestrator(provider))
        entries = [WorkLogEntry(id="e1", title="배포", date="2025-03-10")]

        self.assertEqual(engine.organize(2025, WorkLogSeason.H1, entries), draft)
        self.assertEqual(len(provider.prompts), 1)
        self.assertIn("2025년 상반기", provider.prompts[0])

    def test_coach_retries_incomplete_reply(self) -> None:
        first = json.dumps({"reply": "기준선은"}, ensure_ascii=False)
        second = json.dumps(
            {"reply": COACH_REPLY, "progress": {"baselineConfirmed": True}}, ensure_ascii=False
        )
        provider = FakeProvider(GEMINI, first, second)
        engine = EvaluationDraftEngine(_orchestrator(provider))
        request = CandidateCoachRequest.model_validate(
            {"mode": "kickoff", "candidate": {"kpiName": "응답속도 개선", "goalCategory": "시스템 개선"}}
        )

        result = engine.coach(request)
        self.assertEqual(result.reply, COACH_REPLY)
        self.assertTrue(result.progress.baseline_confirmed)
        self.assertTrue(provider.options[0].json_mode)
        self.assertIn("출력은 반드시 JSON 하나:", provider.prompts[1])

    def test_coach_keeps_first_reply_when_retry_is_also_incomplete(self) -> None:
        first = json.dumps({"reply": "기준선은"}, ensure_ascii=False)
        provider = FakeProvider(GEMINI, first, json.dumps({"reply": "목표치는"}, ensure_ascii=False))
        engine = EvaluationDraftEngine(_orchestrator(provider))
        request = CandidateCoachRequest.model_validate({"candidate": {"kpiName": "응답속도 개선"}})
        self.assertEqual(engine.coach(request).reply, "기준선은")

    def test_coach_requires_candidate(self) -> None:
        engine = EvaluationDraftEngine(_orchestrator(FakeProvider(GEMINI)))
        with self.assertRaises(ValueError):
            engine.coach(CandidateCoachRequest())

    def test_from_settings_requires_a_credential(self) -> None:
        with self.assertRaises(ConfigurationError):
            EvaluationDraftEngine.from_settings(ProviderSettings())
        engine = EvaluationDraftEngine.from_settings(ProviderSettings(openai_api_key="sk-test"))
        self.assertEqual(engine.orchestrator.default_order, [GEMINI, OPENAI])

    def test_refine_without_any_provider_text(self) -> None:
        engine = EvaluationDraftEngine(_orchestrator(FakeProvider(GEMINI), FakeProvider(OPENAI)))
        with self.assertRaises(EmptyResponseError):
            engine.refine(RefineItem(kpi_name="x"))


if __name__ == "__main__":
    unittest.main()
