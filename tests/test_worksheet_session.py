"""Tests for the respondent worksheet session."""

import asyncio
import json

import pytest
import pytest_asyncio

from worksheets.core.alerts import AlertLog, Severity
from worksheets.core.response import ResponseStatus
from worksheets.core.worksheet import (
    MSG_ALREADY_SUBMITTED,
    MSG_LOAD_FAILED,
    MSG_SAVE_FAILED,
    MSG_SAVED,
    MSG_SUBMIT_FAILED,
    MSG_SUBMIT_IN_PROGRESS,
    MSG_SUBMITTED,
    WorksheetSession,
)


def _tool_response(session, page, name):
    return session.response.page_at(page).find_tool(name).response


@pytest.fixture
def alerts() -> AlertLog:
    return AlertLog()


@pytest_asyncio.fixture
async def session(fake_service, alerts):
    session = WorksheetSession(fake_service, "resp-1", alerts=alerts, autosave_enabled=False)
    assert await session.open()
    yield session
    await session.close()


class TestOpen:
    """Loading and navigation."""

    @pytest.mark.asyncio
    async def test_open_loads_response(self, session):
        assert session.loaded
        assert session.page_count == 2
        assert session.current_page == 0
        assert not session.is_completed

    @pytest.mark.asyncio
    async def test_open_unknown_alerts(self, fake_service, alerts):
        session = WorksheetSession(fake_service, "missing", alerts=alerts, autosave_enabled=False)
        assert not await session.open()
        assert alerts.last.message == MSG_LOAD_FAILED
        assert alerts.last.severity == Severity.ERROR
        assert not session.loaded

    @pytest.mark.asyncio
    async def test_navigation_clamped(self, session):
        assert session.previous_page() == 0
        assert session.next_page() == 1
        assert session.next_page() == 1
        assert session.go_to_page(-4) == 0
        assert session.go_to_page(99) == 1


class TestLocalEdits:
    """answer / toggle_option / set_tool_response."""

    @pytest.mark.asyncio
    async def test_answer_text(self, session):
        assert session.answer(0, "text_a", "My answer")
        assert _tool_response(session, 0, "text_a") == "My answer"

    @pytest.mark.asyncio
    async def test_invalid_rating_alerts(self, session, alerts):
        assert not session.answer(0, "rating_a", 11)
        assert _tool_response(session, 0, "rating_a") is None
        assert alerts.last.severity == Severity.WARNING

    @pytest.mark.asyncio
    async def test_unknown_tool_alerts(self, session, alerts):
        assert not session.answer(0, "nope", "x")
        assert alerts.last.severity == Severity.WARNING

    @pytest.mark.asyncio
    async def test_toggle_options(self, session):
        assert session.toggle_option(1, "multi_a", "Blue", True)
        assert session.toggle_option(1, "multi_a", "Red", True)
        assert session.toggle_option(1, "multi_a", "Blue", False)
        assert json.loads(_tool_response(session, 1, "multi_a")) == ["Red"]

    @pytest.mark.asyncio
    async def test_toggle_on_single_choice_rejected(self, session, alerts):
        assert not session.toggle_option(1, "single_a", "Option 1", True)
        assert alerts.last.severity == Severity.WARNING

    @pytest.mark.asyncio
    async def test_progress(self, session):
        session.answer(0, "text_a", "x")
        session.answer(1, "single_a", "Option 2")
        progress = session.progress()
        assert progress["answered"] == 2
        assert progress["total"] == 5
        assert progress["status"] == "PAUSED"


class TestSave:
    """Explicit save adopts the echo."""

    @pytest.mark.asyncio
    async def test_save_persists(self, session, fake_service, alerts):
        session.answer(0, "text_a", "saved text")
        assert await session.save()
        assert alerts.last.message == MSG_SAVED
        assert session.last_saved is not None
        stored = fake_service.responses["resp-1"]
        assert stored.page_at(0).find_tool("text_a").response == "saved text"

    @pytest.mark.asyncio
    async def test_save_failure_keeps_local_state(self, session, fake_service, alerts):
        session.answer(0, "text_a", "unsaved")
        fake_service.fail.add("save_response")
        assert not await session.save()
        assert alerts.last.message == MSG_SAVE_FAILED
        assert alerts.last.severity == Severity.ERROR
        assert _tool_response(session, 0, "text_a") == "unsaved"

    @pytest.mark.asyncio
    async def test_edits_during_save_are_not_lost(self, session, fake_service):
        gate = asyncio.Event()
        fake_service.gates["save_response"] = gate
        session.answer(0, "text_a", "first")

        save = asyncio.create_task(session.save())
        await asyncio.sleep(0)
        session.answer(0, "text_a", "second")
        session.answer(1, "single_a", "Option 1")
        gate.set()
        assert await save

        assert _tool_response(session, 0, "text_a") == "second"
        assert _tool_response(session, 1, "single_a") == "Option 1"

        # The newer edits are still pending and reach the server next time
        del fake_service.gates["save_response"]
        await session.save()
        stored = fake_service.responses["resp-1"]
        assert stored.page_at(0).find_tool("text_a").response == "second"

    @pytest.mark.asyncio
    async def test_overlapping_saves_keep_newest_edits(self, session, fake_service):
        first_gate = asyncio.Event()
        fake_service.gates["save_response"] = first_gate
        session.answer(0, "text_a", "v1")
        first = asyncio.create_task(session.save())
        await asyncio.sleep(0)

        session.answer(0, "text_a", "v2")
        second = asyncio.create_task(session.save())
        await asyncio.sleep(0)
        session.answer(0, "text_a", "v3")

        first_gate.set()
        await asyncio.gather(first, second)
        assert _tool_response(session, 0, "text_a") == "v3"

    @pytest.mark.asyncio
    async def test_late_echo_after_close_dropped(self, fake_service, alerts):
        session = WorksheetSession(fake_service, "resp-1", alerts=alerts, autosave_enabled=False)
        await session.open()
        gate = asyncio.Event()
        fake_service.gates["save_response"] = gate
        session.answer(0, "text_a", "before close")
        save = asyncio.create_task(session.save())
        await asyncio.sleep(0)

        await session.close()
        session.answer(0, "text_a", "local after close")
        gate.set()
        await save
        assert _tool_response(session, 0, "text_a") == "local after close"


class TestSubmit:
    """One-shot submit into COMPLETED."""

    @pytest.mark.asyncio
    async def test_submit_completes(self, session, fake_service, alerts):
        session.answer(0, "text_a", "final")
        assert await session.submit()
        assert session.is_completed
        assert session.finished
        assert session.response.status == ResponseStatus.COMPLETED
        assert alerts.last.message == MSG_SUBMITTED
        assert fake_service.responses["resp-1"].is_completed

    @pytest.mark.asyncio
    async def test_second_submit_refused(self, session, fake_service, alerts):
        await session.submit()
        calls = fake_service.calls.count("submit_response")
        assert not await session.submit()
        assert alerts.last.message == MSG_ALREADY_SUBMITTED
        assert fake_service.calls.count("submit_response") == calls

    @pytest.mark.asyncio
    async def test_concurrent_submit_refused(self, session, fake_service, alerts):
        gate = asyncio.Event()
        fake_service.gates["submit_response"] = gate
        first = asyncio.create_task(session.submit())
        await asyncio.sleep(0)

        assert not await session.submit()
        assert alerts.last.message == MSG_SUBMIT_IN_PROGRESS
        assert not session.answer(0, "text_a", "during submit")

        gate.set()
        assert await first
        assert fake_service.calls.count("submit_response") == 1

    @pytest.mark.asyncio
    async def test_submit_failure_stays_editable(self, session, fake_service, alerts):
        fake_service.fail.add("submit_response")
        assert not await session.submit()
        assert alerts.last.message == MSG_SUBMIT_FAILED
        assert not session.is_completed
        assert session.answer(0, "text_a", "still editable")

    @pytest.mark.asyncio
    async def test_completed_rejects_edits_and_saves(self, session, fake_service, alerts):
        await session.submit()
        assert not session.answer(0, "text_a", "too late")
        assert alerts.last.message == MSG_ALREADY_SUBMITTED
        assert not await session.save()
        assert "save_response" not in fake_service.calls

    @pytest.mark.asyncio
    async def test_save_echo_after_submit_dropped(self, session, fake_service):
        gate = asyncio.Event()

        async def slow_echo(response):
            echo = response.copy()
            await gate.wait()
            return echo

        fake_service.save_response = slow_echo
        session.answer(0, "text_a", "draft")
        save = asyncio.create_task(session.save())
        await asyncio.sleep(0)

        assert await session.submit()
        gate.set()
        await save
        assert session.is_completed
        assert session.response.status == ResponseStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_opening_completed_response_is_read_only(self, fake_service, alerts):
        fake_service.responses["resp-1"].status = ResponseStatus.COMPLETED
        session = WorksheetSession(fake_service, "resp-1", alerts=alerts, autosave_enabled=True)
        await session.open()
        assert session.finished
        assert not session.scheduler.running
        assert not session.answer(0, "text_a", "x")
        await session.close()


class TestAutosave:
    """Periodic flush and the on/off toggle."""

    @pytest.mark.asyncio
    async def test_autosave_flushes(self, fake_service, alerts):
        session = WorksheetSession(
            fake_service, "resp-1", alerts=alerts, autosave_period=0.01, autosave_enabled=True
        )
        await session.open()
        session.answer(0, "text_a", "autosaved")
        await asyncio.sleep(0.05)
        await session.close()

        assert "save_response" in fake_service.calls
        stored = fake_service.responses["resp-1"]
        assert stored.page_at(0).find_tool("text_a").response == "autosaved"
        # Autosave is silent
        assert MSG_SAVED not in alerts.messages()

    @pytest.mark.asyncio
    async def test_toggle_off_stops_ticks(self, fake_service, alerts):
        session = WorksheetSession(
            fake_service, "resp-1", alerts=alerts, autosave_period=0.01, autosave_enabled=True
        )
        await session.open()
        assert session.scheduler.running
        assert not await session.toggle_autosave()
        assert not session.scheduler.running
        fake_service.calls.clear()
        await asyncio.sleep(0.04)
        assert "save_response" not in fake_service.calls

        assert await session.toggle_autosave()
        assert session.scheduler.running
        await session.close()

    @pytest.mark.asyncio
    async def test_close_cancels_autosave(self, fake_service, alerts):
        session = WorksheetSession(
            fake_service, "resp-1", alerts=alerts, autosave_period=0.01, autosave_enabled=True
        )
        await session.open()
        await session.close()
        fake_service.calls.clear()
        await asyncio.sleep(0.04)
        assert fake_service.calls == []

    @pytest.mark.asyncio
    async def test_submit_stops_autosave(self, fake_service, alerts):
        session = WorksheetSession(
            fake_service, "resp-1", alerts=alerts, autosave_period=0.01, autosave_enabled=True
        )
        await session.open()
        await session.submit()
        assert not session.scheduler.running
        await session.close()

    @pytest.mark.asyncio
    async def test_autosave_failure_is_silent(self, fake_service, alerts):
        fake_service.fail.add("save_response")
        session = WorksheetSession(
            fake_service, "resp-1", alerts=alerts, autosave_period=0.01, autosave_enabled=True
        )
        await session.open()
        await asyncio.sleep(0.04)
        await session.close()
        assert session.scheduler.failure_count >= 1
        assert MSG_SAVE_FAILED not in alerts.messages()


class TestChat:
    """Chat tools through the session."""

    @pytest.mark.asyncio
    async def test_initiate_and_send(self, session):
        assert await session.initiate_chat(1, "chat_a")
        assert await session.send_chat_message(1, "chat_a", "Hello")
        status = session.chat_status(1, "chat_a")
        assert status["user"] == 1
        assert status["assistant"] == 2
        assert status["remaining"] == 1
        assert status["limit"] == 2
        assert status["chat_type"] == "Interactive Conversation"

    @pytest.mark.asyncio
    async def test_limit_reached_alerts(self, session, alerts):
        await session.initiate_chat(1, "chat_a")
        await session.send_chat_message(1, "chat_a", "one")
        await session.send_chat_message(1, "chat_a", "two")
        assert not await session.send_chat_message(1, "chat_a", "three")
        assert alerts.last.severity == Severity.WARNING
        assert session.chat_status(1, "chat_a")["remaining"] == 0

    @pytest.mark.asyncio
    async def test_blank_message_warns(self, session, alerts):
        await session.initiate_chat(1, "chat_a")
        assert not await session.send_chat_message(1, "chat_a", "  ")
        assert alerts.last.severity == Severity.WARNING

    @pytest.mark.asyncio
    async def test_send_before_initiate_warns(self, session, alerts):
        assert not await session.send_chat_message(1, "chat_a", "hi")
        assert alerts.last.severity == Severity.WARNING

    @pytest.mark.asyncio
    async def test_failed_send_does_not_use_a_turn(self, session, fake_service, alerts):
        session.response.page_at(1).find_tool("chat_a").max_chat_count = 1
        await session.initiate_chat(1, "chat_a")
        fake_service.fail.add("send_chat_turn")
        assert not await session.send_chat_message(1, "chat_a", "hello")
        assert alerts.last.severity == Severity.ERROR

        assert await session.save()
        saved = fake_service.responses["resp-1"].page_at(1).find_tool("chat_a")
        assert [m.role for m in saved.messages] == ["system", "assistant"]
        assert session.chat_status(1, "chat_a")["remaining"] == 1

        fake_service.fail.discard("send_chat_turn")
        assert await session.send_chat_message(1, "chat_a", "hello")
        assert session.chat_status(1, "chat_a")["remaining"] == 0

    @pytest.mark.asyncio
    async def test_transcript_survives_save_echo(self, session, fake_service):
        await session.initiate_chat(1, "chat_a")
        gate = asyncio.Event()
        fake_service.gates["save_response"] = gate
        save = asyncio.create_task(session.save())
        await asyncio.sleep(0)
        await session.send_chat_message(1, "chat_a", "during save")
        gate.set()
        await save
        messages = session.response.page_at(1).find_tool("chat_a").messages
        assert any(m.content == "during save" for m in messages)


class TestPageTimer:
    @pytest.mark.asyncio
    async def test_timer_only_on_timed_pages(self, session, alerts):
        timer = session.page_timer(0)
        assert timer is not None
        assert timer.seconds == 90
        assert session.page_timer(0) is timer
        assert session.page_timer(1) is None

        timer.toggle()
        timer.tick(90)
        assert alerts.last.severity == Severity.INFO
