from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Any, Callable

import openai
from dotenv import load_dotenv
from openai import OpenAI

from .provider import (
    CompletionOptions,
    LLMProviderConfigurationError,
    LLMProviderError,
    LLMQuotaError,
    resolve_model,
)


class OpenAILLM:
    """Wrapper around the OpenAI chat completions API.

    The system prompt is supplied per call because it comes from the stored
    AI settings rather than from a prompt file.
    """

    name = "openai"
    MODEL = "gpt-4o-mini"
    MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-")

    def __init__(
        self,
        *,
        client: OpenAI | None = None,
        dotenv_path: str | Path | None = None,
        max_retries: int | None = None,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if dotenv_path is not None:
            load_dotenv(dotenv_path=Path(dotenv_path))
        else:
            load_dotenv()

        if client is None:
            api_key = os.environ.get("OPENAI_API_KEY")
            if not api_key:
                raise LLMProviderConfigurationError(
                    "OPENAI_API_KEY environment variable is required but not set. "
                    "Please set it in your .env file or environment."
                )
            # Retries are handled below so rate limits follow our backoff policy.
            client = OpenAI(api_key=api_key, max_retries=0)
        self._client = client

        if max_retries is None:
            try:
                max_retries = int(os.environ.get("OPENAI_MAX_RETRIES", "2"))
            except ValueError:
                max_retries = 2
        self._max_retries = max(0, max_retries)
        self._backoff_seconds = max(0.0, backoff_seconds)
        self._sleep = sleep

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        options: CompletionOptions,
    ) -> str:
        if not user_prompt.strip():
            raise ValueError("user_prompt must not be empty.")

        request: dict[str, Any] = {
            "model": resolve_model(options.model, self.MODEL_PREFIXES, self.MODEL),
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if options.temperature is not None:
            request["temperature"] = options.temperature
        if options.max_tokens is not None:
            request["max_tokens"] = options.max_tokens
        if options.seed is not None:
            request["seed"] = options.seed

        for attempt in range(self._max_retries + 1):
            try:
                completion = self._client.chat.completions.create(**request)
            except openai.RateLimitError as exc:
                if attempt < self._max_retries:
                    # 1s, 2s, 4s, ...
                    self._sleep(self._backoff_seconds * (2**attempt))
                    continue
                raise LLMQuotaError(
                    "OpenAI provider: rate limited (exhausted retries)"
                ) from exc
            except openai.AuthenticationError as exc:
                raise LLMProviderConfigurationError(
                    f"OpenAI provider: authentication failed ({exc})"
                ) from exc
            except openai.OpenAIError as exc:
                raise LLMProviderError(f"OpenAI provider: request failed ({exc})") from exc

            return self._extract_text(completion)

        raise LLMProviderError("OpenAI provider: no response")  # pragma: no cover

    @staticmethod
    def _extract_text(completion: Any) -> str:
        choices = getattr(completion, "choices", None) or []
        if not choices:
            raise LLMProviderError("OpenAI provider: response contained no choices")
        content = getattr(choices[0].message, "content", None)
        if not content or not str(content).strip():
            raise LLMProviderError("OpenAI provider: no content in response")
        return str(content).strip()

    def health_check(self) -> bool:
        try:
            self._client.models.list()
        except Exception:
            return False
        return True
