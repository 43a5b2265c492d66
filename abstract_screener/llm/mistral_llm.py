from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Any, Callable

from dotenv import load_dotenv
from mistralai import Mistral

from .provider import (
    CompletionOptions,
    LLMProviderConfigurationError,
    LLMProviderError,
    LLMQuotaError,
    resolve_model,
)


class MistralLLM:
    """Wrapper around the Mistral chat completion API."""

    name = "mistral"
    MODEL = "mistral-medium-latest"
    MODEL_PREFIXES = (
        "mistral-",
        "magistral-",
        "ministral-",
        "open-mistral",
        "open-mixtral",
        "codestral",
    )

    def __init__(
        self,
        *,
        client: Mistral | None = None,
        dotenv_path: str | Path | None = None,
        max_retries: int | None = None,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if dotenv_path is not None:
            # Do not override existing environment variables; explicit
            # environment values take precedence.
            load_dotenv(dotenv_path=Path(dotenv_path))
        else:
            load_dotenv()

        # Mistral SDK does not automatically read MISTRAL_API_KEY from environment
        if client is None:
            api_key = os.environ.get("MISTRAL_API_KEY")
            if not api_key:
                raise LLMProviderConfigurationError(
                    "MISTRAL_API_KEY environment variable is required but not set. "
                    "Please set it in your .env file or environment."
                )
            client = Mistral(api_key=api_key)
        self._client = client

        if max_retries is None:
            try:
                max_retries = int(os.environ.get("MISTRAL_MAX_RETRIES", "2"))
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
            request["random_seed"] = options.seed

        for attempt in range(self._max_retries + 1):
            try:
                response = self._client.chat.complete(**request)
            except Exception as exc:
                # Translate Mistral SDK quota/rate-limit exceptions into the
                # project's LLMQuotaError so the service can fall back.
                if getattr(exc, "status_code", None) != 429:
                    raise LLMProviderError(
                        f"Mistral provider: request failed ({exc})"
                    ) from exc
                if attempt < self._max_retries:
                    self._sleep(self._backoff_seconds * (2**attempt))
                    continue
                raise LLMQuotaError(
                    "Mistral provider: quota exhausted or rate limited"
                ) from exc

            return self._extract_text(response)

        raise LLMProviderError("Mistral provider: no response")  # pragma: no cover

    @staticmethod
    def _extract_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise LLMProviderError("Mistral provider: response contained no choices")
        content = getattr(choices[0].message, "content", None)
        # Reasoning models return a list of chunks; keep the text parts.
        if isinstance(content, list):
            content = "".join(
                str(getattr(chunk, "text", "") or "") for chunk in content
            )
        if not content or not str(content).strip():
            raise LLMProviderError("Mistral provider: no content in response")
        return str(content).strip()

    def health_check(self) -> bool:
        return self._client is not None
