"""Unittest suite for Stage A guardrails.

Requests are built from camelCase payloads, the same shape the browser
sends, and validated against injected ProviderSettings.
"""

from __future__ import annotations

import unittest

from schemas.input_schema import (
    CandidateCoachRequest,
    CandidatesRequest,
    OrganizeRequest,
    RefineRequest,
)
from functions.stage_a_guardrails import (
    CONFIGURATION_ERROR,
    MISSING_CREDENTIAL_COACH_MESSAGE,
    MISSING_CREDENTIAL_MESSAGE,
    VALIDATION_ERROR,
    RequestGuardrails,
    first_error,
)
from functions.utils.llm_client import ProviderSettings

CONFIGURED = ProviderSettings(openai_api_key="sk-test")
UNCONFIGURED = ProviderSettings()

ENTRY = {"id": "e1", "folderId": "f1", "title": "배포", "date": "2025-03-10"}
CANDIDATE = {"goalCategory": "시스템 개선", "kpiName": "배포 자동화"}


class TestRefineGuardrails(unittest.TestCase):
    def test_missing_credential_is_configuration_error(self) -> None:
        result = RequestGuardrails(UNCONFIGURED).validate_refine(RefineRequest.model_validate({"item": {}}))
        self.assertFalse(result.is_valid)
        self.assertEqual(result.error_code, CONFIGURATION_ERROR)
        self.assertEqual(first_error(result), MISSING_CREDENTIAL_MESSAGE)

    def test_missing_item(self) -> None:
        result = RequestGuardrails(CONFIGURED).validate_refine(RefineRequest())
        self.assertEqual(result.error_code, VALIDATION_ERROR)
        self.assertTrue(result.has_errors)

    def test_empty_result_only_warns(self) -> None:
        request = RefineRequest.model_validate({"item": {"kpiName": "처리 시간", "achievementResult": " "}})
        result = RequestGuardrails(CONFIGURED).validate_refine(request)
        self.assertTrue(result.is_valid)
        self.assertEqual(len(result.warnings), 1)


class TestOrganizeGuardrails(unittest.TestCase):
    def test_client_key_counts_as_credential(self) -> None:
        request = OrganizeRequest.model_validate({"entries": [ENTRY], "geminiApiKey": "client-key"})
        self.assertTrue(RequestGuardrails(UNCONFIGURED).validate_organize(request).is_valid)

    def test_blank_client_key_does_not(self) -> None:
        request = OrganizeRequest.model_validate({"entries": [ENTRY], "geminiApiKey": "  "})
        result = RequestGuardrails(UNCONFIGURED).validate_organize(request)
        self.assertEqual(result.error_code, CONFIGURATION_ERROR)

    def test_no_entries(self) -> None:
        result = RequestGuardrails(CONFIGURED).validate_organize(OrganizeRequest(year=2025))
        self.assertEqual(result.error_code, VALIDATION_ERROR)
        self.assertEqual(first_error(result), "정리할 기록이 없습니다.")


class TestCoachGuardrails(unittest.TestCase):
    def test_missing_credential_uses_coach_message(self) -> None:
        request = CandidateCoachRequest.model_validate({"candidate": CANDIDATE})
        result = RequestGuardrails(UNCONFIGURED).validate_coach(request)
        self.assertEqual(result.error_code, CONFIGURATION_ERROR)
        self.assertEqual(first_error(result), MISSING_CREDENTIAL_COACH_MESSAGE)

    def test_candidate_required(self) -> None:
        result = RequestGuardrails(CONFIGURED).validate_coach(CandidateCoachRequest())
        self.assertEqual(result.error_code, VALIDATION_ERROR)

    def test_chat_requires_message(self) -> None:
        request = CandidateCoachRequest.model_validate(
            {"mode": "chat", "userMessage": "   ", "candidate": CANDIDATE, "entries": [ENTRY]}
        )
        result = RequestGuardrails(CONFIGURED).validate_coach(request)
        self.assertEqual(result.error_code, VALIDATION_ERROR)
        self.assertIn("userMessage", first_error(result))

    def test_kickoff_without_entries_warns(self) -> None:
        request = CandidateCoachRequest.model_validate({"mode": "anything", "candidate": CANDIDATE})
        result = RequestGuardrails(CONFIGURED).validate_coach(request)
        self.assertTrue(result.is_valid)
        self.assertEqual(len(result.warnings), 1)


class TestCandidatesGuardrails(unittest.TestCase):
    def test_never_needs_credentials(self) -> None:
        request = CandidatesRequest.model_validate(
            {"year": 2025, "folders": [{"id": "f1", "name": "운영"}], "entries": [ENTRY]}
        )
        result = RequestGuardrails(UNCONFIGURED).validate_candidates(request)
        self.assertTrue(result.is_valid)
        self.assertEqual(result.warnings, [])

    def test_orphans_and_empty_lists_warn(self) -> None:
        request = CandidatesRequest.model_validate({"year": 2025, "entries": [ENTRY]})
        self.assertEqual(len(RequestGuardrails(UNCONFIGURED).validate_candidates(request).warnings), 1)
        empty = CandidatesRequest(year=2025)
        self.assertEqual(len(RequestGuardrails(UNCONFIGURED).validate_candidates(empty).warnings), 1)


if __name__ == "__main__":
    unittest.main()
