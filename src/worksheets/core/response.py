"""Exercise response document.

A response mirrors its exercise page-for-page and tool-for-tool; each tool
slot additionally carries the respondent's answer. ``unique_name`` joins an
answer slot to its authored tool.

Lifecycle: PAUSED (editable) -> COMPLETED (terminal, read-only).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from worksheets.core.exercise import Exercise, reindex
from worksheets.core.tools import ChatMessage, ResponseTool, contract_for

logger = structlog.get_logger(__name__)


class ResponseStatus(str, Enum):
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class ResponseError(Exception):
    """Error mutating an exercise response."""

    pass


class ResponseCompletedError(ResponseError):
    """Mutation attempted on a submitted response."""

    def __init__(self, response_id: str | None = None):
        self.response_id = response_id
        super().__init__("This exercise has already been submitted")


class ResponseToolNotFoundError(ResponseError):
    def __init__(self, page_index: int, unique_name: str):
        self.page_index = page_index
        self.unique_name = unique_name
        super().__init__(f"Tool '{unique_name}' not found on page {page_index}")


@dataclass
class ResponsePage:
    """A page of a response: the authored page content plus answer slots."""

    index: int = 0
    tools: list[ResponseTool] = field(default_factory=list)
    display_images: list[str] = field(default_factory=list)
    display_image_descriptions: list[str | None] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    display_text: str = ""
    timer_seconds: int = 0

    def find_tool(self, unique_name: str) -> ResponseTool | None:
        for tool in self.tools:
            if tool.unique_name == unique_name:
                return tool
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "index": self.index,
            "tools": [t.to_dict() for t in self.tools],
            "display_images": list(self.display_images),
            "display_image_descriptions": list(self.display_image_descriptions),
            "files": list(self.files),
            "display_text": self.display_text,
            "timer_seconds": self.timer_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResponsePage:
        tools = [ResponseTool.from_dict(t) for t in data.get("tools") or []]
        reindex(tools)
        return cls(
            index=int(data.get("index", 0)),
            tools=tools,
            display_images=list(data.get("display_images") or []),
            display_image_descriptions=list(data.get("display_image_descriptions") or []),
            files=list(data.get("files") or []),
            display_text=data.get("display_text") or "",
            timer_seconds=int(data.get("timer_seconds") or 0),
        )


@dataclass
class ExerciseResponse:
    """A respondent's answers to one locked exercise."""

    id: str | None = None
    exercise_id: str | None = None
    milestone_tracker_id: str | None = None
    status: ResponseStatus = ResponseStatus.PAUSED
    details: str = ""
    evaluation_text: str = ""
    pages: list[ResponsePage] = field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.status == ResponseStatus.COMPLETED

    def page_at(self, page_index: int) -> ResponsePage:
        if not 0 <= page_index < len(self.pages):
            raise ResponseError(f"Page {page_index} does not exist")
        return self.pages[page_index]

    def set_tool_response(
        self,
        page_index: int,
        unique_name: str,
        value: Any,
        is_chat_messages: bool = False,
    ) -> ResponseTool:
        """Overwrite one tool's answer in place.

        For chat tools ``value`` is the full message list and the tool is
        marked as initiated; otherwise ``value`` becomes ``response``. This
        is a local update only.

        Raises:
            ResponseCompletedError: If the response was already submitted
            ResponseToolNotFoundError: If no tool on the page has that name
        """
        if self.is_completed:
            raise ResponseCompletedError(self.id)
        tool = self.page_at(page_index).find_tool(unique_name)
        if tool is None:
            raise ResponseToolNotFoundError(page_index, unique_name)

        if is_chat_messages:
            tool.messages = [
                m if isinstance(m, ChatMessage) else ChatMessage.from_dict(m) for m in value
            ]
            tool.chat_initiated = True
        else:
            tool.response = value
        return tool

    def answered_count(self) -> tuple[int, int]:
        """(answered, total) over tools with a supported contract."""
        answered = total = 0
        for page in self.pages:
            for tool in page.tools:
                contract = contract_for(tool.tool_type)
                if not contract.supported:
                    continue
                total += 1
                if contract.is_answered(tool):
                    answered += 1
        return answered, total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "exercise_id": self.exercise_id,
            "milestone_tracker_id": self.milestone_tracker_id,
            "status": self.status.value,
            "details": self.details,
            "evaluation_text": self.evaluation_text,
            "pages": [p.to_dict() for p in self.pages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExerciseResponse:
        pages = [ResponsePage.from_dict(p) for p in data.get("pages") or []]
        reindex(pages)
        return cls(
            id=data.get("id"),
            exercise_id=data.get("exercise_id"),
            milestone_tracker_id=data.get("milestone_tracker_id"),
            status=ResponseStatus(data.get("status") or ResponseStatus.PAUSED.value),
            details=data.get("details") or "",
            evaluation_text=data.get("evaluation_text") or "",
            pages=pages,
        )

    def copy(self) -> ExerciseResponse:
        return copy.deepcopy(self)


def build_response(
    exercise: Exercise,
    response_id: str | None = None,
    milestone_tracker_id: str | None = None,
) -> ExerciseResponse:
    """Create an empty PAUSED response mirroring ``exercise``."""
    pages = [
        ResponsePage(
            index=page.index,
            tools=[ResponseTool.from_tool(t) for t in page.tools],
            display_images=list(page.display_images),
            display_image_descriptions=list(page.display_image_descriptions),
            files=list(page.files),
            display_text=page.display_text,
            timer_seconds=page.timer_seconds,
        )
        for page in exercise.pages
    ]
    return ExerciseResponse(
        id=response_id,
        exercise_id=exercise.id,
        milestone_tracker_id=milestone_tracker_id,
        status=ResponseStatus.PAUSED,
        pages=pages,
    )
