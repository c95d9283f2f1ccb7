"""In-process ExerciseService backed by the SQLite repository.

Used by the CLI and by the web API itself. Repository errors are mapped to
the service error taxonomy so sessions see the same failures whether they
run locally or over HTTP.
"""

from __future__ import annotations

import asyncio

import structlog

from worksheets.core.exercise import Exercise, ExerciseLockedError
from worksheets.core.response import ExerciseResponse, ResponseCompletedError
from worksheets.core.tools import ResponseTool
from worksheets.db import asset_store, exercise_repository
from worksheets.db.exercise_repository import ExerciseNotLockedError, RecordNotFoundError
from worksheets.llm.conversation import ConversationEngine
from worksheets.services.base import ChatTurn, ConflictError, NotFoundError

logger = structlog.get_logger(__name__)


def exercise_context(exercise: Exercise | None) -> str:
    """Plain-text summary of an exercise used as context for text rewrites."""
    if exercise is None:
        return ""
    lines = []
    if exercise.extraction_prompt:
        lines.append(f"Exercise goal: {exercise.extraction_prompt}")
    for page in exercise.pages:
        if page.display_text:
            lines.append(f"Page {page.index + 1}: {page.display_text}")
        for tool in page.tools:
            if tool.chat_bot_instructions:
                lines.append(f"Conversation ({tool.unique_name}): {tool.chat_bot_instructions}")
    return "\n".join(lines)


class LocalExerciseService:
    """ExerciseService that calls the repository and AI engine directly."""

    def __init__(self, engine: ConversationEngine | None = None):
        self.engine = engine or ConversationEngine()

    # -------------------------------------------------------------------------
    # Exercises
    # -------------------------------------------------------------------------

    async def create_exercise(self, activity_id: str) -> Exercise:
        return exercise_repository.create_exercise(activity_id)

    async def get_exercise(self, exercise_id: str) -> Exercise:
        exercise = exercise_repository.get_exercise(exercise_id)
        if exercise is None:
            raise NotFoundError(f"Exercise not found: {exercise_id}")
        return exercise

    async def save_exercise(self, exercise: Exercise) -> Exercise:
        try:
            return exercise_repository.save_exercise(exercise)
        except RecordNotFoundError as e:
            raise NotFoundError(str(e)) from e
        except ExerciseLockedError as e:
            raise ConflictError(str(e)) from e

    async def lock_exercise(self, exercise_id: str) -> bool:
        try:
            exercise_repository.lock_exercise(exercise_id)
        except RecordNotFoundError:
            logger.warning("lock_unknown_exercise", exercise_id=exercise_id)
            return False
        return True

    async def unlock_exercise(self, exercise_id: str) -> bool:
        try:
            exercise_repository.unlock_exercise(exercise_id)
        except RecordNotFoundError:
            logger.warning("unlock_unknown_exercise", exercise_id=exercise_id)
            return False
        return True

    async def assign_response(
        self, exercise_id: str, milestone_tracker_id: str | None = None
    ) -> ExerciseResponse:
        try:
            return exercise_repository.assign_response(exercise_id, milestone_tracker_id)
        except RecordNotFoundError as e:
            raise NotFoundError(str(e)) from e
        except ExerciseNotLockedError as e:
            raise ConflictError(str(e)) from e

    # -------------------------------------------------------------------------
    # Responses
    # -------------------------------------------------------------------------

    async def get_response(self, response_id: str) -> ExerciseResponse:
        response = exercise_repository.get_response(response_id)
        if response is None:
            raise NotFoundError(f"Response not found: {response_id}")
        return response

    async def save_response(self, response: ExerciseResponse) -> ExerciseResponse:
        try:
            return exercise_repository.save_response(response)
        except RecordNotFoundError as e:
            raise NotFoundError(str(e)) from e
        except ResponseCompletedError as e:
            raise ConflictError(str(e)) from e

    async def submit_response(self, response: ExerciseResponse) -> ExerciseResponse:
        try:
            return exercise_repository.submit_response(response)
        except RecordNotFoundError as e:
            raise NotFoundError(str(e)) from e
        except ResponseCompletedError as e:
            raise ConflictError(str(e)) from e

    # -------------------------------------------------------------------------
    # AI and assets
    # -------------------------------------------------------------------------

    async def send_chat_turn(self, tool: ResponseTool) -> ChatTurn:
        messages = await asyncio.to_thread(self.engine.respond, tool)
        return ChatTurn(messages=messages)

    async def upload_asset(self, data: bytes, filename: str = "") -> str:
        return asset_store.store_asset(data, filename)

    async def describe_image(self, asset_id: str) -> str | None:
        asset = asset_store.get_asset(asset_id)
        if asset is None:
            logger.warning("describe_unknown_asset", asset_id=asset_id)
            return None
        return await asyncio.to_thread(self.engine.describe_image, asset)

    async def enhance_text(self, keyword: str, context_id: str, current_text: str) -> str:
        context = exercise_context(exercise_repository.get_exercise(context_id)) if context_id else ""
        return await asyncio.to_thread(self.engine.enhance_text, keyword, context, current_text)
