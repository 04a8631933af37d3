"""Tests for environment-driven pipeline configuration."""

from __future__ import annotations

import pytest

from claims.config import LlmProvider, PipelineConfig


@pytest.fixture
def no_dotenv(monkeypatch):
    monkeypatch.setattr("claims.config.load_dotenv", lambda *args, **kwargs: False)


def test_defaults(no_dotenv, monkeypatch):
    for name in ("LLM_PROVIDER", "HIGH_VALUE_THRESHOLD", "SCREEN_PROMPT_INJECTION"):
        monkeypatch.delenv(name, raising=False)
    config = PipelineConfig.from_env()
    assert config.llm_provider is LlmProvider.OPENAI
    assert config.thresholds.high_value_threshold == 5000
    assert config.thresholds.low_value_threshold == 500
    assert config.screen_prompt_injection is True


def test_overrides(no_dotenv, monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "Azure")
    monkeypatch.setenv("HIGH_VALUE_THRESHOLD", "10000")
    monkeypatch.setenv("CONFIDENCE_THRESHOLD", "0.9")
    monkeypatch.setenv("SCREEN_PROMPT_INJECTION", "false")
    config = PipelineConfig.from_env()
    assert config.llm_provider is LlmProvider.AZURE
    assert config.thresholds.high_value_threshold == 10000
    assert config.thresholds.confidence_threshold == 0.9
    assert config.screen_prompt_injection is False


def test_config_is_immutable():
    config = PipelineConfig()
    with pytest.raises(ValueError):
        config.llm_model = "other"
