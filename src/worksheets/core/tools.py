"""Tool variant contract.

A tool is one typed response-collecting unit on a page. Every tool shares
the same stored shape; what differs per ``tool_type`` is how a respondent's
interaction becomes a stored ``response`` string and when the tool counts as
answered. That per-type behaviour lives in a closed registry of contracts
keyed by ``ToolType``.

Response encoding:
- TEXT / JOURNAL: raw string
- RATING: string form of an integer 1-10
- MCQ_SINGLE: one of ``options``
- MCQ_MULTISELECT: JSON array of option strings
- CHAT_BOT: no scalar response, state is ``messages`` + ``chat_initiated``
- FILE_UPLOAD / AUDIO / VIDEO / unknown: unsupported, never raises on render
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Literal

import structlog

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

RATING_MIN = 1
RATING_MAX = 10

RATING_LABELS = [
    "",
    "Very Poor",
    "Poor",
    "Below Average",
    "Average",
    "Above Average",
    "Good",
    "Very Good",
    "Great",
    "Excellent",
    "Outstanding",
]

MIN_MCQ_OPTIONS = 2

ChatRole = Literal["system", "user", "assistant"]


class ToolType(str, Enum):
    """Every tool kind an exercise page can hold."""

    TEXT = "TEXT"
    JOURNAL = "JOURNAL"
    RATING = "RATING"
    MCQ_SINGLE = "MCQ_SINGLE"
    MCQ_MULTISELECT = "MCQ_MULTISELECT"
    CHAT_BOT = "CHAT_BOT"
    FILE_UPLOAD = "FILE_UPLOAD"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"

    @classmethod
    def parse(cls, value: str | ToolType) -> ToolType | None:
        """Resolve a stored type string, None if it names no known kind."""
        if isinstance(value, ToolType):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return None

    @property
    def is_mcq(self) -> bool:
        return self in (ToolType.MCQ_SINGLE, ToolType.MCQ_MULTISELECT)


class InvalidResponseError(ValueError):
    """A respondent interaction cannot be stored as a response."""

    pass


@dataclass
class ToolDefaults:
    """Values given to freshly added tools."""

    placeholder_text: str = "Enter your response here..."
    chat_bot_instructions: str = "Ask me anything about this topic..."
    mcq_options: tuple[str, ...] = ("Option 1", "Option 2")


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class ChatMessage:
    """One turn of a conversational tool transcript.

    ``provisional`` marks a user message appended locally that the
    conversation service has not echoed back yet. It is never serialized.
    """

    role: ChatRole
    content: str
    provisional: bool = False

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON serialization."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(role=data.get("role", "user"), content=data.get("content") or "")


@dataclass
class Tool:
    """An authored tool as configured on an exercise page."""

    tool_type: str
    unique_name: str
    index: int = 0
    placeholder_text: str = ""
    options: list[str] = field(default_factory=list)
    chat_bot_instructions: str = ""
    max_chat_count: int | None = None

    @property
    def kind(self) -> ToolType | None:
        """Parsed tool type, None for types this build does not know."""
        return ToolType.parse(self.tool_type)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "index": self.index,
            "tool_type": self.tool_type,
            "unique_name": self.unique_name,
            "placeholder_text": self.placeholder_text,
            "options": list(self.options),
            "chat_bot_instructions": self.chat_bot_instructions,
            "max_chat_count": self.max_chat_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tool:
        return cls(**_common_fields(data))

    def copy(self) -> Tool:
        return copy.deepcopy(self)


@dataclass
class ResponseTool(Tool):
    """A tool inside an ExerciseResponse, carrying the respondent's answer."""

    response: str | None = None
    messages: list[ChatMessage] = field(default_factory=list)
    chat_initiated: bool = False

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["response"] = self.response
        result["messages"] = [m.to_dict() for m in self.messages]
        result["chat_initiated"] = self.chat_initiated
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResponseTool:
        return cls(
            **_common_fields(data),
            response=data.get("response"),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages") or []],
            chat_initiated=bool(data.get("chat_initiated", False)),
        )

    @classmethod
    def from_tool(cls, tool: Tool) -> ResponseTool:
        """Build an empty answer slot mirroring an authored tool."""
        return cls(
            tool_type=tool.tool_type,
            unique_name=tool.unique_name,
            index=tool.index,
            placeholder_text=tool.placeholder_text,
            options=list(tool.options),
            chat_bot_instructions=tool.chat_bot_instructions,
            max_chat_count=tool.max_chat_count,
        )


def _common_fields(data: dict[str, Any]) -> dict[str, Any]:
    max_chat_count = data.get("max_chat_count")
    return {
        "tool_type": data["tool_type"],
        "unique_name": data["unique_name"],
        "index": int(data.get("index", 0)),
        "placeholder_text": data.get("placeholder_text") or "",
        "options": list(data.get("options") or []),
        "chat_bot_instructions": data.get("chat_bot_instructions") or "",
        "max_chat_count": int(max_chat_count) if max_chat_count is not None else None,
    }


# =============================================================================
# MULTISELECT CODEC
# =============================================================================


def encode_selection(selected: Iterable[str]) -> str:
    """Encode a multiselect choice as a JSON array, first occurrence wins."""
    return json.dumps(list(dict.fromkeys(selected)))


def decode_selection(raw: str | None) -> list[str]:
    """Decode a stored multiselect response.

    Malformed or non-list JSON is an empty selection, never an error.
    """
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("multiselect_decode_failed", raw=str(raw)[:100])
        return []
    if not isinstance(value, list):
        logger.warning("multiselect_not_a_list", raw=str(raw)[:100])
        return []
    return [item for item in value if isinstance(item, str)]


def rating_value(tool: ResponseTool) -> int:
    """Stored rating as an int, 0 when unanswered or unreadable."""
    try:
        return int(tool.response) if tool.response else 0
    except ValueError:
        return 0


def rating_label(value: int) -> str:
    if RATING_MIN <= value <= RATING_MAX:
        return RATING_LABELS[value]
    return ""


# =============================================================================
# CONTRACTS
# =============================================================================


class ToolContract:
    """Per-type behaviour of a tool. Subclasses override what differs."""

    supported = True
    label = "Tool"

    def __init__(self, tool_type: ToolType):
        self.tool_type = tool_type

    def to_response(self, tool: Tool, value: Any) -> str | None:
        """Map a raw interaction value to the stored response string.

        Raises:
            InvalidResponseError: If the value is not acceptable for this type
        """
        raise InvalidResponseError(f"{self.tool_type.value} tools take no scalar response")

    def is_answered(self, tool: ResponseTool) -> bool:
        return bool(tool.response)

    def default_options(self, defaults: ToolDefaults) -> list[str]:
        return []

    def summary(self, tool: ResponseTool) -> str:
        """Plain-text rendering of the current answer."""
        return tool.response or ""


class TextContract(ToolContract):
    label = "Text"

    def to_response(self, tool: Tool, value: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise InvalidResponseError(f"Text response must be a string, got {type(value).__name__}")
        return value


class JournalContract(TextContract):
    label = "Journal"


class RatingContract(ToolContract):
    label = "Rating"

    def to_response(self, tool: Tool, value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, bool):
            raise InvalidResponseError("Rating must be a number")
        if isinstance(value, float) and not value.is_integer():
            raise InvalidResponseError(f"Rating must be a whole number: {value!r}")
        try:
            number = int(value)
        except (TypeError, ValueError) as e:
            raise InvalidResponseError(f"Rating must be a number: {value!r}") from e
        if not RATING_MIN <= number <= RATING_MAX:
            raise InvalidResponseError(
                f"Rating must be between {RATING_MIN} and {RATING_MAX}, got {number}"
            )
        return str(number)

    def is_answered(self, tool: ResponseTool) -> bool:
        return RATING_MIN <= rating_value(tool) <= RATING_MAX

    def summary(self, tool: ResponseTool) -> str:
        value = rating_value(tool)
        if not value:
            return ""
        return f"{value}/{RATING_MAX} ({rating_label(value)})"


class McqSingleContract(ToolContract):
    label = "Single choice"

    def to_response(self, tool: Tool, value: Any) -> str | None:
        if value is None or value == "":
            return None
        if value not in tool.options:
            raise InvalidResponseError(f"'{value}' is not one of the options")
        return value

    def is_answered(self, tool: ResponseTool) -> bool:
        return bool(tool.response) and tool.response in tool.options

    def default_options(self, defaults: ToolDefaults) -> list[str]:
        return list(defaults.mcq_options)


class McqMultiSelectContract(ToolContract):
    label = "Multiple choice"

    def to_response(self, tool: Tool, value: Any) -> str | None:
        if value is None:
            return encode_selection([])
        if isinstance(value, str):
            value = decode_selection(value)
        selected = list(value)
        unknown = [s for s in selected if s not in tool.options]
        if unknown:
            raise InvalidResponseError(f"Not among the options: {', '.join(map(str, unknown))}")
        return encode_selection(selected)

    def is_answered(self, tool: ResponseTool) -> bool:
        return bool(self.selected(tool))

    def selected(self, tool: ResponseTool) -> list[str]:
        """Decoded selection restricted to the tool's current options."""
        return [s for s in decode_selection(tool.response) if s in tool.options]

    def toggle(self, tool: ResponseTool, option: str, checked: bool) -> str:
        """Response after checking or unchecking one option."""
        selected = self.selected(tool)
        if checked and option not in selected:
            selected.append(option)
        elif not checked:
            selected = [s for s in selected if s != option]
        return self.to_response(tool, selected) or encode_selection([])

    def default_options(self, defaults: ToolDefaults) -> list[str]:
        return list(defaults.mcq_options)

    def summary(self, tool: ResponseTool) -> str:
        return ", ".join(self.selected(tool))


class ChatBotContract(ToolContract):
    label = "Chat"

    def is_answered(self, tool: ResponseTool) -> bool:
        return any(m.role == "user" for m in tool.messages)

    def summary(self, tool: ResponseTool) -> str:
        turns = sum(1 for m in tool.messages if m.role == "user")
        return f"{turns} message(s) sent" if turns else ""


class UnsupportedContract(ToolContract):
    """Terminal case for kinds with no respondent interaction in this build."""

    supported = False
    label = "Unsupported"

    def __init__(self, tool_type: ToolType | None, raw_type: str = ""):
        self.tool_type = tool_type
        self.raw_type = raw_type or (tool_type.value if tool_type else "")

    def to_response(self, tool: Tool, value: Any) -> str | None:
        raise InvalidResponseError(f"Unsupported tool type: {self.raw_type}")

    def is_answered(self, tool: ResponseTool) -> bool:
        return False

    def summary(self, tool: ResponseTool) -> str:
        return f"Unsupported tool type: {self.raw_type}"


_CONTRACTS: dict[ToolType, ToolContract] = {
    ToolType.TEXT: TextContract(ToolType.TEXT),
    ToolType.JOURNAL: JournalContract(ToolType.JOURNAL),
    ToolType.RATING: RatingContract(ToolType.RATING),
    ToolType.MCQ_SINGLE: McqSingleContract(ToolType.MCQ_SINGLE),
    ToolType.MCQ_MULTISELECT: McqMultiSelectContract(ToolType.MCQ_MULTISELECT),
    ToolType.CHAT_BOT: ChatBotContract(ToolType.CHAT_BOT),
    ToolType.FILE_UPLOAD: UnsupportedContract(ToolType.FILE_UPLOAD),
    ToolType.AUDIO: UnsupportedContract(ToolType.AUDIO),
    ToolType.VIDEO: UnsupportedContract(ToolType.VIDEO),
}


def contract_for(tool_type: str | ToolType) -> ToolContract:
    """Look up the contract for a stored tool type string.

    Unknown strings resolve to an UnsupportedContract instead of raising.
    """
    kind = ToolType.parse(tool_type)
    if kind is None:
        return UnsupportedContract(None, str(tool_type))
    return _CONTRACTS[kind]


def registered_tool_types() -> set[ToolType]:
    return set(_CONTRACTS)
