"""Tests for provider registry environment variable handling.

The registry reads LLM_PRIMARY and LLM_FALLBACK, which may live in a .env
file that has to be loaded before the registry reads them.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from abstract_screener.llm.provider import CompletionOptions
from abstract_screener.llm.provider_registry import (
    _PROVIDER_FACTORIES,
    _split_names,
    create_provider_chain,
)


class MockProvider:
    """Mock provider for testing."""

    def __init__(self, name: str, dotenv_path: str | Path | None = None):
        self.name = name
        self.dotenv_path = dotenv_path

    def complete(self, system_prompt: str, user_prompt: str, *, options: CompletionOptions) -> str:
        return "Decision: Include\nExplanation: mock"

    def health_check(self) -> bool:
        return True


def mock_provider_factory(name: str):
    """Factory that returns a mock provider factory function."""

    def factory(*, dotenv_path: str | Path | None):
        return MockProvider(name, dotenv_path)

    return factory


@pytest.fixture
def mock_factories(monkeypatch: pytest.MonkeyPatch):
    original = _PROVIDER_FACTORIES.copy()
    _PROVIDER_FACTORIES.clear()
    _PROVIDER_FACTORIES["mock1"] = mock_provider_factory("mock1")
    _PROVIDER_FACTORIES["mock2"] = mock_provider_factory("mock2")
    # Empty values count as unset; setenv restores the originals afterwards,
    # including values written by load_dotenv(override=True).
    monkeypatch.setenv("LLM_PRIMARY", "")
    monkeypatch.setenv("LLM_FALLBACK", "")
    try:
        yield
    finally:
        _PROVIDER_FACTORIES.clear()
        _PROVIDER_FACTORIES.update(original)


def test_split_names_with_comma_separated_values() -> None:
    assert _split_names("gemini,mistral") == ["gemini", "mistral"]
    assert _split_names("Gemini, Mistral") == ["gemini", "mistral"]
    assert _split_names("  openai  ,  mistral  ") == ["openai", "mistral"]


def test_split_names_with_empty_values() -> None:
    assert _split_names(None) == []
    assert _split_names("") == []
    assert _split_names("  ") == []
    assert _split_names(",,,") == []


def test_registry_knows_the_supported_providers() -> None:
    assert {"openai", "gemini", "mistral"} <= set(_PROVIDER_FACTORIES)


def test_explicit_primary_overrides_environment(
    mock_factories: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LLM_PRIMARY", "mock2")

    providers = create_provider_chain(primary="mock1")

    assert providers[0].name == "mock1"


def test_explicit_fallbacks_follow_primary(mock_factories: None) -> None:
    providers = create_provider_chain(primary="mock1", fallbacks=["mock2"])

    assert [p.name for p in providers] == ["mock1", "mock2"]


def test_duplicates_are_removed(mock_factories: None) -> None:
    providers = create_provider_chain(primary="mock1", fallbacks=["mock1", "mock2"])

    assert [p.name for p in providers] == ["mock1", "mock2"]


def test_reads_primary_and_fallback_from_environment(
    mock_factories: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("LLM_PRIMARY", "mock2")
    monkeypatch.setenv("LLM_FALLBACK", "mock1")

    providers = create_provider_chain()

    assert [p.name for p in providers] == ["mock2", "mock1"]


def test_defaults_to_openai_when_nothing_configured(
    mock_factories: None,
) -> None:
    _PROVIDER_FACTORIES["openai"] = mock_provider_factory("openai")

    providers = create_provider_chain()

    assert [p.name for p in providers] == ["openai"]


def test_dotenv_is_loaded_before_provider_order_is_decided(
    mock_factories: None, tmp_path: Path
) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("LLM_PRIMARY=mock2\nLLM_FALLBACK=mock1\n", encoding="utf-8")

    providers = create_provider_chain(dotenv_path=env_file)

    assert [p.name for p in providers] == ["mock2", "mock1"]
    assert providers[0].dotenv_path == env_file


def test_unknown_provider_raises(mock_factories: None, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_PRIMARY", "unknown_provider")

    with pytest.raises(ValueError, match="Unknown LLM provider 'unknown_provider'"):
        create_provider_chain()
