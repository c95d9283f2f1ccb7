"""Tests for the server-side conversation engine (mocked LLM)."""

from unittest.mock import MagicMock

import pytest

from worksheets.core.tools import ChatMessage, ResponseTool
from worksheets.db.asset_store import Asset
from worksheets.llm.client import LLMConnectionError, LLMResponse
from worksheets.llm.conversation import (
    ConversationEngine,
    NotAChatToolError,
    TurnLimitExceededError,
    UnknownKeywordError,
)


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.chat.return_value = LLMResponse(content="Hello! What is on your mind?", model="m", provider="lmstudio")
    client.simple_chat.return_value = "## Better **text**"
    client.describe_image.return_value = "A bar chart of weekly sales"
    return client


@pytest.fixture
def engine(mock_client) -> ConversationEngine:
    return ConversationEngine(client=mock_client)


def _chat_tool(messages=None, max_chat_count=None) -> ResponseTool:
    return ResponseTool(
        tool_type="CHAT_BOT",
        unique_name="chat_bot_1",
        placeholder_text="Type here",
        chat_bot_instructions="Help the respondent reflect on feedback",
        max_chat_count=max_chat_count,
        messages=messages or [],
        chat_initiated=True,
    )


class TestSystemPrompt:
    def test_includes_instructions_and_limit(self, engine):
        prompt = engine.system_prompt(_chat_tool(max_chat_count=3))
        assert "Help the respondent reflect on feedback" in prompt
        assert "at most 3 messages" in prompt
        assert "{" not in prompt

    def test_no_limit_note_without_limit(self, engine):
        assert "at most" not in engine.system_prompt(_chat_tool())


class TestRespond:
    """Chat turns."""

    def test_opening_turn(self, engine, mock_client):
        messages = engine.respond(_chat_tool())
        assert [m.role for m in messages] == ["system", "assistant"]
        assert messages[1].content == "Hello! What is on your mind?"
        sent = mock_client.chat.call_args[0][0]
        assert [m.role for m in sent] == ["system", "user"]

    def test_reply_appended(self, engine, mock_client):
        transcript = [
            ChatMessage("system", "sys"),
            ChatMessage("assistant", "hi"),
            ChatMessage("user", "I got harsh feedback"),
        ]
        messages = engine.respond(_chat_tool(transcript))
        assert [m.role for m in messages] == ["system", "assistant", "user", "assistant"]
        sent = mock_client.chat.call_args[0][0]
        assert len(sent) == 3

    def test_no_pending_user_message(self, engine, mock_client):
        transcript = [ChatMessage("system", "sys"), ChatMessage("assistant", "hi")]
        messages = engine.respond(_chat_tool(transcript))
        assert len(messages) == 2
        mock_client.chat.assert_not_called()

    def test_limit_enforced(self, engine):
        transcript = [ChatMessage("system", "sys")] + [ChatMessage("user", "u")] * 3
        with pytest.raises(TurnLimitExceededError):
            engine.respond(_chat_tool(transcript, max_chat_count=2))

    def test_last_allowed_turn_answered(self, engine):
        transcript = [ChatMessage("system", "sys"), ChatMessage("user", "a"), ChatMessage("assistant", "b"), ChatMessage("user", "c")]
        messages = engine.respond(_chat_tool(transcript, max_chat_count=2))
        assert messages[-1].role == "assistant"

    def test_not_a_chat_tool(self, engine):
        with pytest.raises(NotAChatToolError):
            engine.respond(ResponseTool(tool_type="TEXT", unique_name="text_1"))

    def test_llm_error_propagates(self, engine, mock_client):
        mock_client.chat.side_effect = LLMConnectionError("down")
        with pytest.raises(LLMConnectionError):
            engine.respond(_chat_tool())


class TestDescribeImage:
    """Best-effort descriptions."""

    def test_describes_images(self, engine, mock_client):
        asset = Asset("a1", "chart.png", "image/png", b"png")
        assert engine.describe_image(asset) == "A bar chart of weekly sales"
        data, content_type, _prompt = mock_client.describe_image.call_args[0]
        assert data == b"png"
        assert content_type == "image/png"

    def test_non_image_skipped(self, engine, mock_client):
        asset = Asset("a2", "notes.pdf", "application/pdf", b"pdf")
        assert engine.describe_image(asset) is None
        mock_client.describe_image.assert_not_called()

    def test_failure_returns_none(self, engine, mock_client):
        mock_client.describe_image.side_effect = LLMConnectionError("no vision")
        assert engine.describe_image(Asset("a3", "x.jpg", "image/jpeg", b"j")) is None

    def test_empty_description_is_none(self, engine, mock_client):
        mock_client.describe_image.return_value = ""
        assert engine.describe_image(Asset("a4", "x.jpg", "image/jpeg", b"j")) is None


class TestEnhanceText:
    """Template-driven rewrites."""

    def test_strips_markdown_noise(self, engine):
        assert engine.enhance_text("exercise_display_text", "", "draft") == "Better text"

    def test_keyword_case_insensitive(self, engine, mock_client):
        engine.enhance_text("Chat_Bot_Instructions", "Goal: listening", "be nice")
        system, user = mock_client.simple_chat.call_args[0]
        assert "be nice" in user
        assert "Goal: listening" in user

    def test_unknown_keyword(self, engine, mock_client):
        with pytest.raises(UnknownKeywordError, match="Invalid keyword: title"):
            engine.enhance_text("title", "", "x")
        mock_client.simple_chat.assert_not_called()

    def test_unknown_keyword_is_value_error(self, engine):
        with pytest.raises(ValueError):
            engine.enhance_text("nope", "", "x")
