"""
Tests for the capability registry and the SDK-backed capabilities.

The SDK clients are constructed for real (no network happens at construction)
and their request methods are replaced with fakes.
"""

from types import SimpleNamespace

import pytest

from revengo.core.errors import CapabilityError, UnknownCapabilityError
from revengo.models.anthropic_client import AnthropicCapability
from revengo.models.openai_client import OllamaCapability, OpenAICapability
from revengo.models.registry import (
    available_capabilities,
    available_providers,
    create_capability,
    get_cost_tracker,
)
from revengo.utils.cost_tracker import CostTracker

CONFIG = {
    "default_capability": "openai",
    "capabilities": {
        "openai": {
            "provider": "openai",
            "model": "gpt-4o-mini",
            "temperature": 0.2,
            "max_tokens": 512,
            "cost_per_1k_input_tokens": 0.00015,
            "cost_per_1k_output_tokens": 0.0006,
        },
        "deepseek:8b": {"provider": "ollama", "model": "deepseek-r1:8b", "temperature": 0.7},
        "gemma3": {"provider": "ollama", "model": "gemma3", "thread_safe": False},
        "mystery": {"provider": "carrier-pigeon"},
    },
    "analysis_options": {"task_timeout_seconds": 30},
}


# ==================== REGISTRY ====================

def test_available_providers():
    assert available_providers() == ["anthropic", "ollama", "openai"]
    assert "deepseek:8b" in available_capabilities(CONFIG)


def test_configured_ollama_capability():
    capability = create_capability("deepseek:8b", config=CONFIG)

    assert isinstance(capability, OllamaCapability)
    assert capability.name == "deepseek:8b"
    assert capability.model == "deepseek-r1:8b"
    assert capability.temperature == 0.7
    assert "11434" in str(capability.client.base_url)
    assert capability.thread_safe is True


def test_thread_safe_can_be_overridden_in_config():
    assert create_capability("gemma3", config=CONFIG).thread_safe is False


def test_default_capability_and_overrides():
    capability = create_capability(config=CONFIG, api_key="sk-test", max_tokens=64)

    assert isinstance(capability, OpenAICapability)
    assert capability.name == "openai"
    assert capability.max_tokens == 64
    assert capability.cost_tracker is get_cost_tracker()


def test_bare_provider_name_works_without_config_entry(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    capability = create_capability("anthropic", config=CONFIG)
    assert isinstance(capability, AnthropicCapability)


def test_unknown_name_is_rejected():
    with pytest.raises(UnknownCapabilityError):
        create_capability("gpt-17", config=CONFIG)


def test_unregistered_provider_is_rejected():
    with pytest.raises(UnknownCapabilityError):
        create_capability("mystery", config=CONFIG)


def test_missing_api_key_is_reported(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        create_capability("openai", config=CONFIG)


# ==================== CLIENTS ====================

def _openai_response(text, prompt_tokens=1000, completion_tokens=1000):
    return SimpleNamespace(
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
        choices=[SimpleNamespace(message=SimpleNamespace(content=text), finish_reason="stop")],
    )


def test_openai_generate_tracks_cost():
    tracker = CostTracker(config=CONFIG)
    capability = OpenAICapability(api_key="sk-test", cost_tracker=tracker, timeout=10)
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return _openai_response("[]")

    capability.client.chat.completions.create = fake_create

    assert capability.generate("hello") == "[]"
    assert calls[0]["messages"] == [{"role": "user", "content": "hello"}]
    assert calls[0]["model"] == "gpt-4o-mini"
    assert tracker.get_total_cost() == pytest.approx(0.00075)
    assert tracker.get_call_statistics()["successful_calls"] == 1


def test_openai_generate_raises_capability_error_after_failure():
    tracker = CostTracker(config=CONFIG)
    capability = OpenAICapability(api_key="sk-test", cost_tracker=tracker, max_retries=1)

    def broken_create(**kwargs):
        raise RuntimeError("connection reset")

    capability.client.chat.completions.create = broken_create

    with pytest.raises(CapabilityError, match="connection reset"):
        capability.generate("hello")
    assert tracker.get_call_statistics()["failed_calls"] == 1


def test_anthropic_generate_joins_text_blocks():
    capability = AnthropicCapability(api_key="test-key", timeout=10)

    def fake_create(**kwargs):
        return SimpleNamespace(
            usage=SimpleNamespace(input_tokens=10, output_tokens=5),
            content=[SimpleNamespace(text="Hello "), SimpleNamespace(type="tool_use"), SimpleNamespace(text="world")],
            stop_reason="end_turn",
        )

    capability.client.messages.create = fake_create
    assert capability.generate("hi") == "Hello world"


def test_ollama_uses_placeholder_key(monkeypatch):
    monkeypatch.delenv("OLLAMA_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    capability = OllamaCapability(base_url="http://ollama.local:11434/v1")
    assert capability.api_key == "ollama"
    assert "ollama.local" in str(capability.client.base_url)
