from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Any, Callable

from dotenv import load_dotenv
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .provider import (
    CompletionOptions,
    LLMProviderError,
    LLMQuotaError,
    resolve_model,
)


class GeminiLLM:
    """Wrapper around the Gemini SDK.

    The client reads ``GEMINI_API_KEY`` (or ``GOOGLE_API_KEY``) from the
    environment once the dotenv file has been loaded.
    """

    name = "gemini"
    MODEL = "gemini-2.5-flash"
    MODEL_PREFIXES = ("gemini-",)

    def __init__(
        self,
        *,
        client: genai.Client | None = None,
        dotenv_path: str | Path | None = None,
        min_request_interval: float | None = None,
        max_retries: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if dotenv_path is not None:
            load_dotenv(dotenv_path=Path(dotenv_path))
        else:
            load_dotenv()
        self._client = client or genai.Client()

        # Read rate limiting configuration from environment or parameters
        if min_request_interval is None:
            try:
                min_request_interval = float(
                    os.environ.get("GEMINI_MIN_REQUEST_INTERVAL", "0")
                )
            except ValueError:
                min_request_interval = 0.0
        self._min_request_interval = max(0.0, min_request_interval)

        if max_retries is None:
            try:
                max_retries = int(os.environ.get("GEMINI_MAX_RETRIES", "2"))
            except ValueError:
                max_retries = 2
        self._max_retries = max(0, max_retries)
        self._sleep = sleep

        # Initialize to 0 so first request is not rate limited
        self._last_request_time = 0.0

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        options: CompletionOptions,
    ) -> str:
        if not user_prompt.strip():
            raise ValueError("user_prompt must not be empty.")

        config_kwargs: dict[str, Any] = {"system_instruction": system_prompt}
        if options.temperature is not None:
            config_kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            config_kwargs["max_output_tokens"] = options.max_tokens
        if options.seed is not None:
            config_kwargs["seed"] = options.seed
        config = types.GenerateContentConfig(**config_kwargs)
        model = resolve_model(options.model, self.MODEL_PREFIXES, self.MODEL)

        for attempt in range(self._max_retries + 1):
            self._enforce_rate_limit()
            try:
                response = self._client.models.generate_content(
                    model=model,
                    contents=user_prompt,
                    config=config,
                )
            except Exception as exc:
                self._last_request_time = time.time()
                if not self._is_rate_limit(exc):
                    raise LLMProviderError(
                        f"Gemini provider: request failed ({exc})"
                    ) from exc
                if attempt < self._max_retries:
                    # Backoff: min_interval * 2^attempt, with a small floor
                    base = self._min_request_interval or 0.5
                    self._sleep(base * (2**attempt))
                    continue
                raise LLMQuotaError(
                    "Gemini provider: rate limited (exhausted retries)"
                ) from exc

            self._last_request_time = time.time()
            text = getattr(response, "text", None)
            if not text or not str(text).strip():
                raise LLMProviderError("Gemini provider: no content in response")
            return str(text).strip()

        raise LLMProviderError("Gemini provider: no response")  # pragma: no cover

    @staticmethod
    def _is_rate_limit(exc: Exception) -> bool:
        if isinstance(exc, genai_errors.APIError):
            return getattr(exc, "code", None) == 429
        return getattr(exc, "status_code", None) == 429

    def _enforce_rate_limit(self) -> None:
        if self._min_request_interval <= 0:
            return
        elapsed = time.time() - self._last_request_time
        if elapsed < self._min_request_interval:
            self._sleep(self._min_request_interval - elapsed)

    def health_check(self) -> bool:
        return self._client is not None
