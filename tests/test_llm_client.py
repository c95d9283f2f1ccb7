"""Tests for the LLM client (OpenAI SDK mocked)."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from worksheets.llm.client import (
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMError,
    LLMResponseError,
    strip_reasoning,
)


def _completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model="test-model",
        usage=SimpleNamespace(prompt_tokens=5, completion_tokens=7, total_tokens=12),
    )


@pytest.fixture
def openai_mock():
    with patch("worksheets.llm.client.OpenAI") as mock_cls:
        yield mock_cls.return_value


class TestStripReasoning:
    def test_removes_think_blocks(self):
        text = "<think>let me see</think>Answer<reasoning>x</reasoning>"
        assert strip_reasoning(text) == "Answer"


class TestLLMConfig:
    def test_from_app_config_defaults(self):
        config = LLMConfig.from_app_config()
        assert config.provider == "lmstudio"
        assert config.base_url == "http://localhost:1234/v1"
        assert config.api_key == "lm-studio"
        assert config.max_tokens == 1024

    def test_from_app_config_openai(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        config = LLMConfig.from_app_config("openai")
        assert config.base_url == "https://api.openai.com/v1"
        assert config.model == "gpt-4o-mini"
        assert config.api_key == "sk-test"

    def test_unconfigured_provider(self):
        config = LLMConfig.from_app_config("mistral")
        assert config.provider == "mistral"
        assert config.model == "default"


class TestLLMClient:
    """Requests and error mapping."""

    def test_chat(self, openai_mock):
        openai_mock.chat.completions.create.return_value = _completion("<think>hm</think>Hi there")
        client = LLMClient(config=LLMConfig(model="m"))
        from worksheets.llm.client import Message

        response = client.chat([Message(role="user", content="hello")])
        assert response.content == "Hi there"
        assert response.usage["total_tokens"] == 12
        kwargs = openai_mock.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "m"
        assert kwargs["messages"] == [{"role": "user", "content": "hello"}]

    def test_simple_chat(self, openai_mock):
        openai_mock.chat.completions.create.return_value = _completion("ok")
        client = LLMClient(config=LLMConfig())
        assert client.simple_chat("system", "user") == "ok"
        messages = openai_mock.chat.completions.create.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user"]

    def test_describe_image_sends_data_url(self, openai_mock):
        openai_mock.chat.completions.create.return_value = _completion("A cat")
        client = LLMClient(config=LLMConfig())
        assert client.describe_image(b"abc", "image/png", "Describe") == "A cat"
        content = openai_mock.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "Describe"}
        assert content[1]["image_url"]["url"] == "data:image/png;base64,YWJj"

    def test_connection_error(self, openai_mock):
        openai_mock.chat.completions.create.side_effect = Exception("Connection refused")
        client = LLMClient(config=LLMConfig())
        with pytest.raises(LLMConnectionError):
            client.simple_chat("s", "u")

    def test_other_error(self, openai_mock):
        openai_mock.chat.completions.create.side_effect = Exception("bad request")
        client = LLMClient(config=LLMConfig())
        with pytest.raises(LLMError) as exc_info:
            client.simple_chat("s", "u")
        assert not isinstance(exc_info.value, LLMConnectionError)

    def test_empty_choices(self, openai_mock):
        openai_mock.chat.completions.create.return_value = SimpleNamespace(
            choices=[], model="m", usage=None
        )
        client = LLMClient(config=LLMConfig())
        with pytest.raises(LLMResponseError):
            client.simple_chat("s", "u")

    def test_provider_override(self, openai_mock, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        client = LLMClient(config=LLMConfig(), provider="openai", model="gpt-test")
        assert client.config.base_url == "https://api.openai.com/v1"
        assert client.config.api_key == "sk-test"
        assert client.config.model == "gpt-test"
