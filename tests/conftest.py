"""Shared fixtures for worksheets tests."""

from __future__ import annotations

import asyncio
import copy
from pathlib import Path

import pytest

from worksheets.config.app_config import clear_config_cache
from worksheets.core.exercise import Exercise
from worksheets.core.response import ExerciseResponse, ResponseStatus, build_response
from worksheets.core.tools import ChatMessage, ResponseTool
from worksheets.db.database import init_db
from worksheets.prompts.registry import clear_cache
from worksheets.services.base import ChatTurn, ConflictError, NotFoundError


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Every test runs on built-in config defaults, never a local YAML file."""
    monkeypatch.setenv("WORKSHEETS_CONFIG", str(tmp_path / "missing_config.yaml"))
    clear_config_cache()
    clear_cache()
    yield
    clear_config_cache()


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Fresh SQLite database for the test."""
    path = tmp_path / "db" / "worksheets.db"
    init_db(path)
    return path


@pytest.fixture
def sample_exercise() -> Exercise:
    """Locked two-page exercise with one tool of each answerable kind."""
    exercise = Exercise(id="ex-1", activity_id="act-1")
    exercise.add_page()
    exercise.update_page(0, display_text="Warm up", timer_seconds=90)
    text = exercise.add_tool(0, "TEXT")
    text.unique_name = "text_a"
    rating = exercise.add_tool(0, "RATING")
    rating.unique_name = "rating_a"
    single = exercise.add_tool(1, "MCQ_SINGLE")
    single.unique_name = "single_a"
    multi = exercise.add_tool(1, "MCQ_MULTISELECT")
    multi.unique_name = "multi_a"
    multi.options = ["Red", "Green", "Blue"]
    chat = exercise.add_tool(1, "CHAT_BOT")
    chat.unique_name = "chat_a"
    chat.max_chat_count = 2
    exercise.is_locked = True
    return exercise


@pytest.fixture
def sample_response(sample_exercise) -> ExerciseResponse:
    return build_response(sample_exercise, response_id="resp-1", milestone_tracker_id="ms-1")


class FakeService:
    """In-memory ExerciseService with controllable latency and failures.

    ``gates`` maps an operation name to an asyncio.Event the call waits on,
    so tests can hold a request in flight while they make local edits.
    """

    def __init__(
        self,
        exercise: Exercise | None = None,
        response: ExerciseResponse | None = None,
    ):
        self.exercises: dict[str, Exercise] = {}
        self.responses: dict[str, ExerciseResponse] = {}
        if exercise is not None and exercise.id:
            self.exercises[exercise.id] = exercise.copy()
        if response is not None and response.id:
            self.responses[response.id] = response.copy()
        self.calls: list[str] = []
        self.fail: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.lock_result = True
        self.assets: dict[str, bytes] = {}
        self.descriptions: dict[str, str | None] = {}
        self.chat_replies: list[str] = []
        self.enhanced = "Enhanced text"

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.fail:
            raise RuntimeError(f"{name} failed")

    async def create_exercise(self, activity_id: str) -> Exercise:
        await self._enter("create_exercise")
        exercise = Exercise(id=f"ex-{len(self.exercises) + 1}", activity_id=activity_id)
        self.exercises[exercise.id] = exercise.copy()
        return exercise

    async def get_exercise(self, exercise_id: str) -> Exercise:
        await self._enter("get_exercise")
        if exercise_id not in self.exercises:
            raise NotFoundError(exercise_id)
        return self.exercises[exercise_id].copy()

    async def save_exercise(self, exercise: Exercise) -> Exercise:
        await self._enter("save_exercise")
        stored = self.exercises.get(exercise.id or "")
        if stored is not None and stored.is_locked:
            raise ConflictError("locked")
        saved = exercise.copy()
        saved.id = saved.id or f"ex-{len(self.exercises) + 1}"
        saved.is_locked = False
        self.exercises[saved.id] = saved.copy()
        return saved

    async def lock_exercise(self, exercise_id: str) -> bool:
        await self._enter("lock_exercise")
        if self.lock_result and exercise_id in self.exercises:
            self.exercises[exercise_id].is_locked = True
        return self.lock_result

    async def unlock_exercise(self, exercise_id: str) -> bool:
        await self._enter("unlock_exercise")
        if self.lock_result and exercise_id in self.exercises:
            self.exercises[exercise_id].is_locked = False
        return self.lock_result

    async def get_response(self, response_id: str) -> ExerciseResponse:
        await self._enter("get_response")
        if response_id not in self.responses:
            raise NotFoundError(response_id)
        return self.responses[response_id].copy()

    async def save_response(self, response: ExerciseResponse) -> ExerciseResponse:
        payload = response.copy()
        await self._enter("save_response")
        if self.responses[payload.id].is_completed:
            raise ConflictError("completed")
        payload.status = ResponseStatus.PAUSED
        self.responses[payload.id] = payload.copy()
        return payload

    async def submit_response(self, response: ExerciseResponse) -> ExerciseResponse:
        payload = response.copy()
        await self._enter("submit_response")
        if self.responses[payload.id].is_completed:
            raise ConflictError("completed")
        payload.status = ResponseStatus.COMPLETED
        self.responses[payload.id] = payload.copy()
        return payload

    async def send_chat_turn(self, tool: ResponseTool) -> ChatTurn:
        await self._enter("send_chat_turn")
        messages = [copy.copy(m) for m in tool.messages]
        for m in messages:
            m.provisional = False
        if not any(m.role == "system" for m in messages):
            messages.insert(0, ChatMessage(role="system", content="You are a coach."))
        reply = self.chat_replies.pop(0) if self.chat_replies else "Tell me more."
        messages.append(ChatMessage(role="assistant", content=reply))
        return ChatTurn(messages=messages)

    async def upload_asset(self, data: bytes, filename: str = "") -> str:
        await self._enter("upload_asset")
        asset_id = f"asset-{len(self.assets) + 1}"
        self.assets[asset_id] = data
        return asset_id

    async def describe_image(self, asset_id: str) -> str | None:
        await self._enter("describe_image")
        return self.descriptions.get(asset_id)

    async def enhance_text(self, keyword: str, context_id: str, current_text: str) -> str:
        await self._enter("enhance_text")
        return self.enhanced


@pytest.fixture
def fake_service(sample_exercise, sample_response) -> FakeService:
    return FakeService(exercise=sample_exercise, response=sample_response)
