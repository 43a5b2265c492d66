"""LLM providers, the provider fallback service and the screening client."""

from __future__ import annotations

from .client import ScreeningClient
from .provider import (
    CompletionOptions,
    LLMParseError,
    LLMProviderConfigurationError,
    LLMProviderError,
    LLMQuotaError,
)
from .response_parser import parse_evaluation
from .service import LLMService

__all__ = [
    "ScreeningClient",
    "CompletionOptions",
    "LLMParseError",
    "LLMProviderConfigurationError",
    "LLMProviderError",
    "LLMQuotaError",
    "parse_evaluation",
    "LLMService",
]
