# functions/utils/llm_client.py
"""
Provider Gateway: two interchangeable text generators behind one contract.

    generate(prompt, options) -> str | None

- ``None`` means "no credential configured" and lets the orchestrator move
  on silently.
- A hard failure raises ``LLMProviderError``.

Backends
--------
GeminiProvider
    Raw REST calls (``requests``) to ``{base}/{version}/models/{model}:generateContent``.
    Iterates (model x api version) pairs; a 404 means "this pair does not
    exist here" and the loop continues; any other non-2xx status aborts.
    Optionally continues a truncated answer (finish reason ``MAX_TOKENS`` or
    text that looks cut off) with up to ``max_continuations`` follow-up calls.

OpenAIProvider
    Single ``responses.create`` call through the official ``openai`` SDK.

Credentials and model names are resolved once into an immutable
``ProviderSettings`` (env vars > parameters/credentials.yaml > defaults) and
passed explicitly; a client-supplied key/model produces a new settings value
via ``with_override``.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

import requests
import structlog
from openai import OpenAI, OpenAIError

from functions.utils.common import (
    CREDENTIALS_PATH,
    get_float_param,
    get_int_param,
    get_param,
    load_yaml_dict,
)
from functions.utils.text_quality import (
    REFINE_RULE,
    IncompletenessRule,
    collapse_whitespace,
    is_likely_incomplete,
)

logger = structlog.get_logger(__name__).bind(module="llm_client")

GEMINI = "gemini"
OPENAI = "openai"

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"
DEFAULT_GEMINI_FALLBACKS = ("gemini-2.0-flash", "gemini-2.0-flash-lite", "gemini-1.5-flash")
DEFAULT_API_VERSIONS = ("v1beta", "v1")
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"

CONTINUATION_PROMPT_HEADER = [
    "아래 문장에 자연스럽게 이어지는 다음 문장만 작성하세요.",
    "규칙:",
    "1) 기존 문장을 반복하지 말 것",
    "2) 새 문장만 출력할 것",
    "3) 마지막은 완결된 문장으로 끝낼 것",
    "",
    "기존 문장:",
]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LLMProviderError(RuntimeError):
    """Hard provider failure: non-404 HTTP status, transport error or timeout."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class ModelNotFoundError(LLMProviderError):
    """Every (model x version) pair answered 404."""

    def __init__(self, last_404: str) -> None:
        super().__init__(
            f"Gemini 모델을 찾지 못했습니다. GEMINI_MODEL을 확인하세요. 마지막 404: {last_404 or 'none'}",
            provider=GEMINI,
        )
        self.last_404 = last_404


class ConfigurationError(RuntimeError):
    """No provider credential is available."""


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_model_name(name: str) -> str:
    """``models/gemini-2.0-flash`` -> ``gemini-2.0-flash``."""
    name = name.strip()
    return name[len("models/"):].strip() if name.startswith("models/") else name


@dataclass(frozen=True)
class ProviderSettings:
    """Resolved provider credentials and model names (read-only per request)."""

    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_OPENAI_MODEL

    def with_override(
        self,
        *,
        gemini_api_key: Optional[str] = None,
        gemini_model: Optional[str] = None,
    ) -> "ProviderSettings":
        """Return a copy where non-blank client values replace the defaults."""
        key = _clean(gemini_api_key)
        model = _clean(gemini_model)
        if key is None and model is None:
            return self
        return replace(
            self,
            gemini_api_key=key or self.gemini_api_key,
            gemini_model=model or self.gemini_model,
        )

    def has_any_credential(self) -> bool:
        return bool(self.gemini_api_key or self.openai_api_key)

    def __repr__(self) -> str:  # keys never end up in logs
        return (
            f"ProviderSettings(gemini_api_key={'set' if self.gemini_api_key else None}, "
            f"gemini_model={self.gemini_model!r}, "
            f"openai_api_key={'set' if self.openai_api_key else None}, "
            f"openai_model={self.openai_model!r})"
        )


@lru_cache(maxsize=1)
def _load_credentials() -> Dict[str, Any]:
    return load_yaml_dict(CREDENTIALS_PATH)


def _credential(name: str) -> Optional[str]:
    env_value = _clean(os.environ.get(name))
    if env_value:
        return env_value
    creds = _load_credentials()
    return _clean(creds.get(name) or creds.get(name.lower()))


def load_provider_settings() -> ProviderSettings:
    """
    Resolve settings from the environment, then parameters/credentials.yaml,
    then parameters.yaml model defaults.
    """
    gemini_key = _credential("GOOGLE_GENERATIVE_AI_API_KEY") or _credential("GOOGLE_API_KEY")
    settings = ProviderSettings(
        gemini_api_key=gemini_key,
        gemini_model=_credential("GEMINI_MODEL")
        or str(get_param("providers.gemini.model_name", DEFAULT_GEMINI_MODEL)),
        openai_api_key=_credential("OPENAI_API_KEY"),
        openai_model=_credential("OPENAI_MODEL")
        or str(get_param("providers.openai.model_name", DEFAULT_OPENAI_MODEL)),
    )
    logger.info("provider_settings_loaded", settings=repr(settings))
    return settings


# ---------------------------------------------------------------------------
# Generation options
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationOptions:
    """Per-feature knobs forwarded to a provider call."""

    max_output_tokens: int = 1200
    temperature: float = 0.3
    json_mode: bool = False
    allow_continuation: bool = False
    completeness_rule: IncompletenessRule = field(default=REFINE_RULE)


def build_continuation_prompt(accumulated: str) -> str:
    return "\n".join([*CONTINUATION_PROMPT_HEADER, accumulated])


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class TextGenerator:
    """Common interface for a text-generation backend."""

    name: str = "base"

    def generate(self, prompt: str, options: GenerationOptions) -> Optional[str]:
        raise NotImplementedError


class GeminiProvider(TextGenerator):
    """Multi-model, multi-API-version REST backend with continuation support."""

    name = GEMINI

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_GEMINI_MODEL,
        *,
        fallback_models: tuple[str, ...] | list[str] = DEFAULT_GEMINI_FALLBACKS,
        api_versions: tuple[str, ...] | list[str] = DEFAULT_API_VERSIONS,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        timeout_seconds: float = 60,
        transient_retries: int = 1,
        retry_sleep_multiplier: float = 1.5,
        max_continuations: int = 2,
    ) -> None:
        self.api_key = api_key
        self.model = normalize_model_name(model or DEFAULT_GEMINI_MODEL)
        self.fallback_models = tuple(fallback_models)
        self.api_versions = tuple(api_versions)
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transient_retries = max(0, int(transient_retries))
        self.retry_sleep_multiplier = retry_sleep_multiplier
        self.max_continuations = max(0, int(max_continuations))

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "GeminiProvider":
        return cls(
            settings.gemini_api_key,
            settings.gemini_model,
            fallback_models=get_param("providers.gemini.fallback_models", list(DEFAULT_GEMINI_FALLBACKS)),
            api_versions=get_param("providers.gemini.api_versions", list(DEFAULT_API_VERSIONS)),
            base_url=str(get_param("providers.gemini.base_url", DEFAULT_GEMINI_BASE_URL)),
            timeout_seconds=get_float_param("generation.timeout_seconds", 60.0),
            transient_retries=get_int_param("generation.transient_retries", 1),
            retry_sleep_multiplier=get_float_param("generation.retry_sleep_multiplier", 1.5),
            max_continuations=get_int_param("providers.gemini.max_continuations", 2),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def model_candidates(self) -> list[str]:
        """Configured model first, then the fallback list, de-duplicated in order."""
        seen: list[str] = []
        for name in (self.model, *self.fallback_models):
            normalized = normalize_model_name(name)
            if normalized and normalized not in seen:
                seen.append(normalized)
        return seen

    def _endpoint(self, version: str, model: str) -> str:
        return f"{self.base_url}/{version}/models/{model}:generateContent"

    def _payload(self, prompt: str, options: GenerationOptions) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "temperature": options.temperature,
            "maxOutputTokens": options.max_output_tokens,
        }
        if options.json_mode:
            generation_config["responseMimeType"] = "application/json"
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }

    def _post(self, url: str, payload: Dict[str, Any], label: str) -> requests.Response:
        """POST with retry on connection-level failures; every other transport error is fatal."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return requests.post(
                    url,
                    params={"key": self.api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout_seconds,
                )
            except requests.Timeout as exc:
                logger.warning("provider_call_timeout", provider=self.name, target=label)
                raise LLMProviderError(
                    f"Gemini API 요청 시간 초과 ({label})", provider=self.name
                ) from exc
            except requests.ConnectionError as exc:
                if attempt > self.transient_retries:
                    raise LLMProviderError(
                        f"Gemini API 연결 실패 ({label}): {exc}", provider=self.name
                    ) from exc
                logger.warning(
                    "provider_transient_error_retry",
                    provider=self.name,
                    target=label,
                    attempt=attempt,
                    error=str(exc),
                )
                time.sleep(self.retry_sleep_multiplier * attempt)
            except requests.RequestException as exc:
                raise LLMProviderError(
                    f"Gemini API 전송 오류 ({label}): {exc}", provider=self.name
                ) from exc

    @staticmethod
    def _extract_text(data: Any) -> tuple[str, str]:
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates or not isinstance(candidates, list):
            return "", ""
        first = candidates[0] if isinstance(candidates[0], dict) else {}
        content = first.get("content")
        parts = (content.get("parts") or []) if isinstance(content, dict) else []
        text = "".join(
            str(part.get("text") or "") for part in parts if isinstance(part, dict)
        ).strip()
        return text, str(first.get("finishReason") or "")

    def _generate_with_fallback(self, prompt: str, options: GenerationOptions) -> tuple[str, str]:
        """First non-empty (text, finish_reason) across model x version pairs."""
        last_404 = ""
        payload = self._payload(prompt, options)

        for model in self.model_candidates():
            for version in self.api_versions:
                label = f"{version}/{model}"
                logger.info(
                    "provider_call_start",
                    provider=self.name,
                    target=label,
                    max_output_tokens=options.max_output_tokens,
                    json_mode=options.json_mode,
                )
                response = self._post(self._endpoint(version, model), payload, label)

                if response.status_code == 404:
                    last_404 = f"{label}: {response.text}"
                    logger.info("provider_model_not_found", provider=self.name, target=label)
                    continue
                if not response.ok:
                    logger.warning(
                        "provider_call_failed",
                        provider=self.name,
                        target=label,
                        status=response.status_code,
                    )
                    raise LLMProviderError(
                        f"Gemini API 요청 실패 ({label}): {response.status_code} {response.text}",
                        provider=self.name,
                    )

                try:
                    data = response.json()
                except ValueError as exc:
                    raise LLMProviderError(
                        f"Gemini API 응답 파싱 실패 ({label})", provider=self.name
                    ) from exc

                text, finish_reason = self._extract_text(data)
                if text:
                    logger.info(
                        "provider_call_success",
                        provider=self.name,
                        target=label,
                        finish_reason=finish_reason or None,
                        result_preview=text[:200],
                    )
                    return text, finish_reason
                logger.info("provider_empty_text", provider=self.name, target=label)

        raise ModelNotFoundError(last_404)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def generate(self, prompt: str, options: GenerationOptions) -> Optional[str]:
        if not self.api_key:
            logger.info("provider_skipped_no_credential", provider=self.name)
            return None

        combined, finish_reason = self._generate_with_fallback(prompt, options)
        if not options.allow_continuation:
            return combined or None

        for loop in range(self.max_continuations):
            if finish_reason != "MAX_TOKENS" and not is_likely_incomplete(
                combined, options.completeness_rule
            ):
                break
            logger.info(
                "provider_continuation_start",
                provider=self.name,
                loop=loop + 1,
                finish_reason=finish_reason or None,
                chars=len(combined),
            )
            try:
                addition, finish_reason = self._generate_with_fallback(
                    build_continuation_prompt(combined), options
                )
            except ModelNotFoundError:
                # no pair produced text for the continuation; keep what we have
                logger.info("provider_continuation_empty", provider=self.name, loop=loop + 1)
                break
            addition = addition.strip()
            if not addition:
                break
            combined = collapse_whitespace(f"{combined} {addition}")

        return combined or None


class OpenAIProvider(TextGenerator):
    """Single-endpoint backend using the OpenAI Responses API."""

    name = OPENAI

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_OPENAI_MODEL,
        *,
        timeout_seconds: float = 60,
        client_factory: Callable[..., Any] = OpenAI,
    ) -> None:
        self.api_key = api_key
        self.model = model or DEFAULT_OPENAI_MODEL
        self.timeout_seconds = timeout_seconds
        self._client_factory = client_factory

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "OpenAIProvider":
        return cls(
            settings.openai_api_key,
            settings.openai_model,
            timeout_seconds=get_float_param("generation.timeout_seconds", 60.0),
        )

    def generate(self, prompt: str, options: GenerationOptions) -> Optional[str]:
        if not self.api_key:
            logger.info("provider_skipped_no_credential", provider=self.name)
            return None

        logger.info("provider_call_start", provider=self.name, target=self.model)
        client = self._client_factory(api_key=self.api_key, timeout=self.timeout_seconds)
        try:
            response = client.responses.create(model=self.model, input=prompt)
        except OpenAIError as exc:
            logger.warning("provider_call_failed", provider=self.name, error=str(exc))
            raise LLMProviderError(f"OpenAI API 요청 실패: {exc}", provider=self.name) from exc

        text = (getattr(response, "output_text", None) or "").strip()
        logger.info(
            "provider_call_success" if text else "provider_empty_text",
            provider=self.name,
            target=self.model,
            result_preview=text[:200],
        )
        return text or None


def build_providers(settings: ProviderSettings) -> Dict[str, TextGenerator]:
    """Provider registry for one request, keyed by provider name."""
    return {
        GEMINI: GeminiProvider.from_settings(settings),
        OPENAI: OpenAIProvider.from_settings(settings),
    }


__all__ = [
    "GEMINI",
    "OPENAI",
    "LLMProviderError",
    "ModelNotFoundError",
    "ConfigurationError",
    "ProviderSettings",
    "load_provider_settings",
    "normalize_model_name",
    "GenerationOptions",
    "build_continuation_prompt",
    "TextGenerator",
    "GeminiProvider",
    "OpenAIProvider",
    "build_providers",
]
