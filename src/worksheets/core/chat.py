"""Conversational tool sub-engine.

Per CHAT_BOT tool the response carries ``chat_initiated`` and ``messages``.
The flow is:

1. ``initiate()`` sends the tool configuration to the conversation service
   and adopts its opening transcript.
2. ``send(text)`` appends the user's message locally as *provisional*, sends
   the whole tool, then replaces the transcript with the service's canonical
   one (which includes the assistant reply).

``max_chat_count`` caps user turns locally, independent of whatever the
service enforces. System messages stay in the transcript for the service
but never count and are never shown.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable

import structlog

from worksheets.core.tools import ChatMessage, ResponseTool
from worksheets.services.base import ExerciseService

logger = structlog.get_logger(__name__)

# Keyword groups checked in order against the chat instructions
CHAT_TYPE_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("self-reflection", "awareness"), "Self-Reflection & Awareness"),
    (("bias", "belief"), "Bias/Belief Challenge"),
    (("emotion",), "Emotion Tracker"),
    (("role-play", "scenario"), "Role-Play & Scenario Simulation"),
    (("difficult conversation",), "Difficult Conversations Simulator"),
    (("conflict",), "Conflict Resolution Playground"),
    (("negotiation",), "Negotiation Practice"),
    (("decision", "problem-solving"), "Decision-Making & Problem-Solving"),
    (("ethics", "values"), "Ethics & Values Testing"),
]
DEFAULT_CHAT_TYPE = "Interactive Conversation"


class ChatError(Exception):
    """Error in a conversational tool interaction."""

    pass


class ChatNotInitiatedError(ChatError):
    def __init__(self) -> None:
        super().__init__("Start the conversation before sending messages")


class ChatAlreadyInitiatedError(ChatError):
    def __init__(self) -> None:
        super().__init__("Conversation has already been started")


class TurnLimitReachedError(ChatError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Message limit reached ({limit}/{limit})")


class ChatServiceError(ChatError):
    """The conversation service call failed."""

    pass


class ChatPhase(Enum):
    NOT_INITIATED = "not_initiated"
    READY = "ready"
    AWAITING_REPLY = "awaiting_reply"
    LIMIT_REACHED = "limit_reached"


# =============================================================================
# TRANSCRIPT HELPERS
# =============================================================================


def visible_messages(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Messages a respondent may see (system prompts removed)."""
    return [m for m in messages if m.role != "system"]


def message_counts(messages: list[ChatMessage]) -> dict[str, int]:
    counts = {"user": 0, "assistant": 0}
    for message in visible_messages(messages):
        if message.role in counts:
            counts[message.role] += 1
    return counts


def user_turns(messages: list[ChatMessage]) -> int:
    return message_counts(messages)["user"]


def has_reached_limit(tool: ResponseTool) -> bool:
    return tool.max_chat_count is not None and user_turns(tool.messages) >= tool.max_chat_count


def turns_remaining(tool: ResponseTool) -> int | None:
    """User turns left, None when the tool has no limit."""
    if tool.max_chat_count is None:
        return None
    return max(tool.max_chat_count - user_turns(tool.messages), 0)


def chat_type_description(instructions: str) -> str:
    """Short label for the kind of conversation the instructions set up."""
    if not instructions:
        return DEFAULT_CHAT_TYPE
    for keywords, label in CHAT_TYPE_KEYWORDS:
        if any(k in instructions for k in keywords):
            return label
    return DEFAULT_CHAT_TYPE


# =============================================================================
# CONTROLLER
# =============================================================================


class ChatController:
    """Drives one chat tool of a response through the conversation service.

    The controller never holds the tool: ``get_tool`` returns the current
    tool from the owning document (which may have been replaced by a save
    echo) and ``apply_messages`` writes a transcript back through the
    owner's normal mutation path.
    """

    def __init__(
        self,
        service: ExerciseService,
        get_tool: Callable[[], ResponseTool],
        apply_messages: Callable[[list[ChatMessage]], None],
    ):
        self._service = service
        self._get_tool = get_tool
        self._apply_messages = apply_messages
        # Serializes turns: a second send waits for the first reply
        self._turn_lock = asyncio.Lock()
        self._awaiting_reply = False

    @property
    def tool(self) -> ResponseTool:
        return self._get_tool()

    @property
    def phase(self) -> ChatPhase:
        tool = self.tool
        if not tool.chat_initiated:
            return ChatPhase.NOT_INITIATED
        if self._awaiting_reply:
            return ChatPhase.AWAITING_REPLY
        if has_reached_limit(tool):
            return ChatPhase.LIMIT_REACHED
        return ChatPhase.READY

    @property
    def can_send(self) -> bool:
        """Whether the input affordance should be enabled."""
        tool = self.tool
        return tool.chat_initiated and not has_reached_limit(tool)

    async def initiate(self) -> list[ChatMessage]:
        """Start the conversation and adopt the opening transcript."""
        async with self._turn_lock:
            tool = self.tool
            if tool.chat_initiated:
                raise ChatAlreadyInitiatedError()

            payload = ResponseTool.from_dict(tool.to_dict())
            payload.chat_initiated = True

            self._awaiting_reply = True
            try:
                turn = await self._service.send_chat_turn(payload)
            except Exception as e:
                logger.error("chat_initiate_failed", unique_name=tool.unique_name, error=str(e))
                raise ChatServiceError(f"Could not start the conversation: {e}") from e
            finally:
                self._awaiting_reply = False

            self._apply_messages(turn.messages)
            logger.info("chat_initiated", unique_name=tool.unique_name, messages=len(turn.messages))
            return turn.messages

    async def send(self, content: str) -> list[ChatMessage]:
        """Send one user turn.

        Raises:
            ValueError: If the message is blank
            ChatNotInitiatedError: If ``initiate()`` has not run
            TurnLimitReachedError: If the user turn cap is reached
            ChatServiceError: If the service call fails; the transcript is
                restored to what it was before the send
        """
        text = content.strip()
        if not text:
            raise ValueError("Message is empty")

        async with self._turn_lock:
            tool = self.tool
            if not tool.chat_initiated:
                raise ChatNotInitiatedError()
            if has_reached_limit(tool):
                raise TurnLimitReachedError(tool.max_chat_count or 0)

            # Phase 1: provisional local append
            provisional = ChatMessage(role="user", content=text, provisional=True)
            previous = list(tool.messages)
            self._apply_messages(previous + [provisional])

            payload = ResponseTool.from_dict(self.tool.to_dict())

            self._awaiting_reply = True
            try:
                turn = await self._service.send_chat_turn(payload)
            except Exception as e:
                self._apply_messages(previous)
                logger.error("chat_turn_failed", unique_name=tool.unique_name, error=str(e))
                raise ChatServiceError(f"Message could not be delivered: {e}") from e
            finally:
                self._awaiting_reply = False

            # Phase 2: authoritative replace
            self._apply_messages(turn.messages)
            if not turn.messages or turn.messages[-1].role != "assistant":
                logger.warning("chat_turn_without_reply", unique_name=tool.unique_name)
            logger.info(
                "chat_turn_sent",
                unique_name=tool.unique_name,
                user_turns=user_turns(turn.messages),
                limit=tool.max_chat_count,
            )
            return turn.messages
