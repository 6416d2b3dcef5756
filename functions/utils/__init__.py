"""
Utility helpers: provider gateway, work-log aggregation, coaching state, etc.
"""

from .llm_client import GenerationOptions, ProviderSettings, load_provider_settings
from .structured_output import parse_coach_result

__all__ = [
    "GenerationOptions",
    "ProviderSettings",
    "load_provider_settings",
    "parse_coach_result",
]
