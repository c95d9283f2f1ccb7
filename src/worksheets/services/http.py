"""ExerciseService talking to the Worksheets Web API over HTTP."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from worksheets.config.app_config import load_app_config
from worksheets.core.exercise import Exercise
from worksheets.core.response import ExerciseResponse
from worksheets.core.tools import ResponseTool
from worksheets.services.base import (
    ChatTurn,
    ConflictError,
    NotFoundError,
    ServiceError,
    ServiceUnavailableError,
)

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=5.0)


class HttpExerciseService:
    """Async HTTP client for the web API.

    Use as an async context manager, or call ``aclose()`` when done.
    """

    def __init__(self, base_url: str | None = None, client: httpx.AsyncClient | None = None):
        self.base_url = (base_url or load_app_config().storage.api_base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=DEFAULT_TIMEOUT)

    async def __aenter__(self) -> HttpExerciseService:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("api_request_failed", method=method, path=path, error=str(e))
            raise ServiceUnavailableError(f"{method} {path} failed: {e}") from e

        if response.status_code < 400:
            return response

        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        logger.info("api_error_response", method=method, path=path, status=response.status_code)
        if response.status_code == 404:
            raise NotFoundError(str(detail))
        if response.status_code == 409:
            raise ConflictError(str(detail))
        raise ServiceError(f"{response.status_code}: {detail}")

    # -------------------------------------------------------------------------
    # Exercises
    # -------------------------------------------------------------------------

    async def create_exercise(self, activity_id: str) -> Exercise:
        response = await self._request("POST", "/api/exercises", json={"activity_id": activity_id})
        return Exercise.from_dict(response.json())

    async def get_exercise(self, exercise_id: str) -> Exercise:
        response = await self._request("GET", f"/api/exercises/{exercise_id}")
        return Exercise.from_dict(response.json())

    async def save_exercise(self, exercise: Exercise) -> Exercise:
        if not exercise.id:
            created = await self.create_exercise(exercise.activity_id or "")
            exercise = exercise.copy()
            exercise.id = created.id
        response = await self._request("PUT", f"/api/exercises/{exercise.id}", json=exercise.to_dict())
        return Exercise.from_dict(response.json())

    async def lock_exercise(self, exercise_id: str) -> bool:
        response = await self._request("POST", f"/api/exercises/{exercise_id}/lock")
        return bool(response.json().get("success"))

    async def unlock_exercise(self, exercise_id: str) -> bool:
        response = await self._request("POST", f"/api/exercises/{exercise_id}/unlock")
        return bool(response.json().get("success"))

    async def assign_response(
        self, exercise_id: str, milestone_tracker_id: str | None = None
    ) -> ExerciseResponse:
        response = await self._request(
            "POST",
            f"/api/exercises/{exercise_id}/responses",
            json={"milestone_tracker_id": milestone_tracker_id},
        )
        return ExerciseResponse.from_dict(response.json())

    # -------------------------------------------------------------------------
    # Responses
    # -------------------------------------------------------------------------

    async def get_response(self, response_id: str) -> ExerciseResponse:
        response = await self._request("GET", f"/api/responses/{response_id}")
        return ExerciseResponse.from_dict(response.json())

    async def save_response(self, response: ExerciseResponse) -> ExerciseResponse:
        reply = await self._request("PUT", f"/api/responses/{response.id}", json=response.to_dict())
        return ExerciseResponse.from_dict(reply.json())

    async def submit_response(self, response: ExerciseResponse) -> ExerciseResponse:
        reply = await self._request(
            "POST", f"/api/responses/{response.id}/submit", json=response.to_dict()
        )
        return ExerciseResponse.from_dict(reply.json())

    # -------------------------------------------------------------------------
    # AI and assets
    # -------------------------------------------------------------------------

    async def send_chat_turn(self, tool: ResponseTool) -> ChatTurn:
        response = await self._request("PUT", "/api/responses/chat", json=tool.to_dict())
        return ChatTurn.from_dict(response.json())

    async def upload_asset(self, data: bytes, filename: str = "") -> str:
        response = await self._request(
            "POST",
            "/api/assets",
            params={"filename": filename},
            content=data,
            headers={"content-type": "application/octet-stream"},
        )
        return response.json()["asset_id"]

    async def describe_image(self, asset_id: str) -> str | None:
        try:
            response = await self._request("POST", f"/api/assets/{asset_id}/describe")
        except ServiceError as e:
            logger.warning("describe_image_failed", asset_id=asset_id, error=str(e))
            return None
        return response.json().get("description")

    async def enhance_text(self, keyword: str, context_id: str, current_text: str) -> str:
        response = await self._request(
            "POST",
            "/api/ai/enhance",
            json={"keyword": keyword, "context_id": context_id, "current_text": current_text},
        )
        return response.json()["text"]
