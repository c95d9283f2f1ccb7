"""Tests for the HTTP-backed ExerciseService."""

import json

import httpx
import pytest

from worksheets.core.tools import ResponseTool, ToolType
from worksheets.services.base import (
    ConflictError,
    NotFoundError,
    ServiceError,
    ServiceUnavailableError,
)
from worksheets.services.http import HttpExerciseService
from worksheets.web.api import create_app


def _service(handler) -> HttpExerciseService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    return HttpExerciseService(base_url="http://test", client=client)


class TestErrorMapping:
    """HTTP status codes become service errors."""

    @pytest.mark.asyncio
    async def test_not_found(self):
        service = _service(lambda request: httpx.Response(404, json={"detail": "Exercise 'x' not found"}))
        with pytest.raises(NotFoundError, match="not found"):
            await service.get_exercise("x")
        await service.aclose()

    @pytest.mark.asyncio
    async def test_conflict(self):
        service = _service(lambda request: httpx.Response(409, json={"detail": "locked"}))
        with pytest.raises(ConflictError):
            await service.lock_exercise("x")
        await service.aclose()

    @pytest.mark.asyncio
    async def test_other_status(self):
        service = _service(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(ServiceError) as exc_info:
            await service.get_response("r")
        assert "500" in str(exc_info.value)
        assert not isinstance(exc_info.value, (NotFoundError, ConflictError))
        await service.aclose()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        service = _service(handler)
        with pytest.raises(ServiceUnavailableError):
            await service.get_exercise("x")
        await service.aclose()

    @pytest.mark.asyncio
    async def test_describe_image_failure_is_none(self):
        service = _service(lambda request: httpx.Response(404, json={"detail": "missing"}))
        assert await service.describe_image("a1") is None
        await service.aclose()


class TestRequests:
    """Request shapes."""

    @pytest.mark.asyncio
    async def test_chat_turn(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"messages": [{"role": "system", "content": "s"}, {"role": "assistant", "content": "Hi"}]},
            )

        service = _service(handler)
        tool = ResponseTool(tool_type="CHAT_BOT", unique_name="chat_bot_1")
        turn = await service.send_chat_turn(tool)
        await service.aclose()

        assert seen["method"] == "PUT"
        assert seen["path"] == "/api/responses/chat"
        assert seen["body"]["unique_name"] == "chat_bot_1"
        assert turn.messages[-1].content == "Hi"

    @pytest.mark.asyncio
    async def test_upload_sends_raw_body(self):
        seen = {}

        def handler(request):
            seen["content"] = request.content
            seen["filename"] = request.url.params["filename"]
            return httpx.Response(201, json={"asset_id": "a1", "filename": "x.png", "content_type": "image/png"})

        service = _service(handler)
        assert await service.upload_asset(b"png-bytes", "x.png") == "a1"
        await service.aclose()
        assert seen == {"content": b"png-bytes", "filename": "x.png"}


class TestAgainstApp:
    """End to end through the ASGI app."""

    @pytest.mark.asyncio
    async def test_exercise_lifecycle(self, db_path):
        transport = httpx.ASGITransport(app=create_app())
        async with HttpExerciseService(
            base_url="http://test",
            client=httpx.AsyncClient(transport=transport, base_url="http://test"),
        ) as service:
            exercise = await service.create_exercise("act-1")
            exercise.pages[0].display_text = "Hello"
            exercise.add_tool(0, ToolType.TEXT)
            saved = await service.save_exercise(exercise)
            assert saved.pages[0].display_text == "Hello"

            assert await service.lock_exercise(exercise.id)
            with pytest.raises(ConflictError):
                await service.save_exercise(saved)

            response = await service.assign_response(exercise.id, "ms-1")
            response.pages[0].tools[0].response = "Answer"
            stored = await service.save_response(response)
            assert stored.pages[0].tools[0].response == "Answer"

            submitted = await service.submit_response(stored)
            assert submitted.status.value == "COMPLETED"
            with pytest.raises(ConflictError):
                await service.save_response(submitted)

            assert await service.unlock_exercise(exercise.id)
            with pytest.raises(NotFoundError):
                await service.get_response(response.id)
