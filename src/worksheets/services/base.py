"""Service contracts consumed by authoring and worksheet sessions.

Sessions talk to persistence, the asset store and the AI services only
through ``ExerciseService``. Two implementations ship:
``LocalExerciseService`` (in-process) and ``HttpExerciseService`` (web API).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from worksheets.core.exercise import Exercise
from worksheets.core.response import ExerciseResponse
from worksheets.core.tools import ChatMessage, ResponseTool


class ServiceError(Exception):
    """Error reported by a service call."""

    pass


class NotFoundError(ServiceError):
    """Requested document does not exist."""

    pass


class ConflictError(ServiceError):
    """Request is not valid in the document's current state."""

    pass


class ServiceUnavailableError(ServiceError):
    """Service could not be reached."""

    pass


@dataclass
class ChatTurn:
    """Canonical transcript returned by the conversation service."""

    messages: list[ChatMessage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"messages": [m.to_dict() for m in self.messages]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatTurn:
        return cls(messages=[ChatMessage.from_dict(m) for m in data.get("messages") or []])


@runtime_checkable
class ExerciseService(Protocol):
    """Operations the sessions need from the outside world."""

    async def create_exercise(self, activity_id: str) -> Exercise: ...

    async def get_exercise(self, exercise_id: str) -> Exercise: ...

    async def save_exercise(self, exercise: Exercise) -> Exercise: ...

    async def lock_exercise(self, exercise_id: str) -> bool: ...

    async def unlock_exercise(self, exercise_id: str) -> bool: ...

    async def get_response(self, response_id: str) -> ExerciseResponse: ...

    async def save_response(self, response: ExerciseResponse) -> ExerciseResponse: ...

    async def submit_response(self, response: ExerciseResponse) -> ExerciseResponse: ...

    async def send_chat_turn(self, tool: ResponseTool) -> ChatTurn: ...

    async def upload_asset(self, data: bytes, filename: str = "") -> str: ...

    async def describe_image(self, asset_id: str) -> str | None: ...

    async def enhance_text(self, keyword: str, context_id: str, current_text: str) -> str: ...
