"""Server-side AI services for exercises.

- ``respond(tool)``: one turn of a chat tool. A tool that has no system
  message yet is being opened; the engine builds the system prompt from the
  tool's configuration and returns ``[system, assistant]``. Later turns get
  the full transcript back with the assistant reply appended.
- ``describe_image(asset)``: best-effort accessibility description.
- ``enhance_text(keyword, context, current_text)``: rewrite authored text
  with the template selected by ``keyword``.
"""

from __future__ import annotations

import re

import structlog

from worksheets.core.chat import user_turns
from worksheets.core.tools import ChatMessage, ResponseTool, ToolType
from worksheets.db.asset_store import Asset
from worksheets.llm.client import LLMClient, Message
from worksheets.prompts.registry import get_prompt

logger = structlog.get_logger(__name__)

# Keywords accepted by enhance_text, one template each under prompts/enhance/
ENHANCE_KEYWORDS = frozenset(
    {
        "exercise_display_text",
        "exercise_extraction_prompt",
        "page_extraction_prompt",
        "chat_bot_instructions",
    }
)

# Markdown emphasis and heading runs removed from enhanced text
_MARKDOWN_NOISE = [re.compile(r"\*{2,}"), re.compile(r"#{2,}")]


class ConversationError(Exception):
    """Error producing an AI response."""

    pass


class NotAChatToolError(ConversationError):
    pass


class TurnLimitExceededError(ConversationError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Message limit of {limit} reached for this conversation")


class UnknownKeywordError(ConversationError, ValueError):
    def __init__(self, keyword: str):
        self.keyword = keyword
        super().__init__(f"Invalid keyword: {keyword}")


def _to_llm(messages: list[ChatMessage]) -> list[Message]:
    return [Message(role=m.role, content=m.content) for m in messages]


class ConversationEngine:
    """Uses an LLMClient to serve chat turns, descriptions and rewrites."""

    def __init__(self, client: LLMClient | None = None):
        self._client = client

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = LLMClient()
        return self._client

    # =========================================================================
    # CHAT
    # =========================================================================

    def system_prompt(self, tool: ResponseTool) -> str:
        turn_limit_note = ""
        if tool.max_chat_count is not None:
            turn_limit_note = get_prompt("chat/turn_limit", max_chat_count=str(tool.max_chat_count))
        return get_prompt(
            "chat/system",
            instructions=tool.chat_bot_instructions or "Have a helpful, reflective conversation.",
            placeholder=tool.placeholder_text,
            turn_limit_note=turn_limit_note,
        )

    def respond(self, tool: ResponseTool) -> list[ChatMessage]:
        """Return the canonical transcript after one turn.

        Raises:
            NotAChatToolError: If ``tool`` is not a chat tool
            TurnLimitExceededError: If the user turns exceed ``max_chat_count``
            LLMError: If the model call fails
        """
        if tool.kind != ToolType.CHAT_BOT:
            raise NotAChatToolError(f"{tool.tool_type} tools do not hold conversations")

        transcript = [ChatMessage(role=m.role, content=m.content) for m in tool.messages]

        if not any(m.role == "system" for m in transcript):
            system = ChatMessage(role="system", content=self.system_prompt(tool))
            opening = ChatMessage(role="user", content=get_prompt("chat/opening"))
            reply = self.client.chat(_to_llm([system, opening])).content
            logger.info("chat_opened", unique_name=tool.unique_name)
            return [system, *transcript, ChatMessage(role="assistant", content=reply)]

        turns = user_turns(transcript)
        if tool.max_chat_count is not None and turns > tool.max_chat_count:
            raise TurnLimitExceededError(tool.max_chat_count)
        if not transcript or transcript[-1].role != "user":
            logger.warning("chat_turn_without_user_message", unique_name=tool.unique_name)
            return transcript

        reply = self.client.chat(_to_llm(transcript)).content
        logger.info("chat_replied", unique_name=tool.unique_name, user_turns=turns)
        return [*transcript, ChatMessage(role="assistant", content=reply)]

    # =========================================================================
    # IMAGES
    # =========================================================================

    def describe_image(self, asset: Asset) -> str | None:
        """Describe an image asset, or None when it cannot be described."""
        if not asset.is_image:
            logger.info("describe_skipped_not_image", asset_id=asset.asset_id, content_type=asset.content_type)
            return None
        try:
            description = self.client.describe_image(
                asset.data, asset.content_type, get_prompt("image/describe")
            )
        except Exception as e:
            logger.warning("image_description_failed", asset_id=asset.asset_id, error=str(e))
            return None
        return description or None

    # =========================================================================
    # TEXT
    # =========================================================================

    def enhance_text(self, keyword: str, context: str, current_text: str) -> str:
        """Rewrite ``current_text`` using the template for ``keyword``.

        Raises:
            UnknownKeywordError: If ``keyword`` has no template
            LLMError: If the model call fails
        """
        key = keyword.lower()
        if key not in ENHANCE_KEYWORDS:
            raise UnknownKeywordError(keyword)

        user_message = get_prompt(
            f"enhance/{key}",
            context=context or "(no additional context)",
            current_text=current_text,
        )
        text = self.client.simple_chat(get_prompt("enhance/system"), user_message)
        for pattern in _MARKDOWN_NOISE:
            text = pattern.sub("", text)
        logger.info("text_enhanced", keyword=key, length=len(text))
        return text.strip()
