from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from .gemini_llm import GeminiLLM
from .mistral_llm import MistralLLM
from .openai_llm import OpenAILLM
from .provider import LLMProvider, ProviderFactory

DEFAULT_PROVIDER = "openai"


def _openai_factory(*, dotenv_path: str | Path | None) -> LLMProvider:
    return OpenAILLM(dotenv_path=dotenv_path)


def _gemini_factory(*, dotenv_path: str | Path | None) -> LLMProvider:
    return GeminiLLM(dotenv_path=dotenv_path)


def _mistral_factory(*, dotenv_path: str | Path | None) -> LLMProvider:
    return MistralLLM(dotenv_path=dotenv_path)


_PROVIDER_FACTORIES: dict[str, ProviderFactory] = {
    "openai": _openai_factory,
    "gemini": _gemini_factory,
    "mistral": _mistral_factory,
}


def _split_names(value: str | None) -> list[str]:
    if not value:
        return []
    return [chunk.strip().lower() for chunk in value.split(",") if chunk.strip()]


def create_provider_chain(
    *,
    dotenv_path: str | Path | None = None,
    primary: str | None = None,
    fallbacks: Sequence[str] | None = None,
) -> list[LLMProvider]:
    """Return configured providers honoring environment/priority hints."""

    order: list[str] = []
    seen: set[str] = set()

    # Load the dotenv file early so that LLM_PRIMARY/LLM_FALLBACK are
    # available before we read them.
    if dotenv_path is not None:
        load_dotenv(dotenv_path=str(dotenv_path), override=True)

    candidates: list[str] = []
    if primary:
        candidates.extend(_split_names(primary))
    else:
        candidates.extend(_split_names(os.environ.get("LLM_PRIMARY")))

    if fallbacks:
        candidates.extend(name.lower() for name in fallbacks)
    else:
        candidates.extend(_split_names(os.environ.get("LLM_FALLBACK")))

    if not candidates:
        candidates = [DEFAULT_PROVIDER]

    for name in candidates:
        if name in seen:
            continue
        seen.add(name)
        if name not in _PROVIDER_FACTORIES:
            raise ValueError(f"Unknown LLM provider '{name}'")
        order.append(name)

    return [_PROVIDER_FACTORIES[name](dotenv_path=dotenv_path) for name in order]
