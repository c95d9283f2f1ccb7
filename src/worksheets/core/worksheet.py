"""Respondent-side worksheet session.

Owns one ExerciseResponse while it is being filled in:

- local edits through ``set_tool_response`` / ``answer`` / ``toggle_option``
- explicit ``save()`` and periodic autosave, both adopting the server echo
- one-shot ``submit()`` into the terminal COMPLETED state
- chat tools driven through a ChatController per tool

Edits made while a save is in flight are recorded with a revision number
and replayed on top of the echo, so typing is never lost to a slow save.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

import structlog

from worksheets.config.app_config import load_app_config
from worksheets.core.alerts import Alert, AlertLog, AlertSink, Severity
from worksheets.core.autosave import AutosaveScheduler
from worksheets.core.chat import (
    ChatController,
    ChatError,
    ChatServiceError,
    chat_type_description,
    message_counts,
    turns_remaining,
)
from worksheets.core.response import (
    ExerciseResponse,
    ResponseError,
    ResponseStatus,
    ResponseToolNotFoundError,
)
from worksheets.core.timer import PageTimer
from worksheets.core.tools import (
    ChatMessage,
    InvalidResponseError,
    McqMultiSelectContract,
    ResponseTool,
    contract_for,
)
from worksheets.services.base import ExerciseService

logger = structlog.get_logger(__name__)

MSG_LOAD_FAILED = "Failed to load exercise data"
MSG_SAVED = "Progress saved successfully"
MSG_SAVE_FAILED = "Failed to save progress"
MSG_SUBMITTED = "Exercise submitted successfully"
MSG_SUBMIT_FAILED = "Failed to submit exercise"
MSG_ALREADY_SUBMITTED = "This exercise has already been submitted"
MSG_SUBMIT_IN_PROGRESS = "Submission in progress"

Edit = Callable[[ExerciseResponse], None]


def _chat_severity(error: ChatError) -> Severity:
    """Service failures are errors; local refusals are warnings."""
    return Severity.ERROR if isinstance(error, ChatServiceError) else Severity.WARNING


class WorksheetSession:
    """Editing context for one response, from ``open()`` to ``close()``."""

    def __init__(
        self,
        service: ExerciseService,
        response_id: str,
        alerts: AlertSink | None = None,
        autosave_period: float | None = None,
        autosave_enabled: bool | None = None,
    ):
        config = load_app_config().autosave
        self._service = service
        self.response_id = response_id
        self.alerts: AlertSink = alerts if alerts is not None else AlertLog()
        self.autosave_enabled = config.enabled if autosave_enabled is None else autosave_enabled
        self.scheduler = AutosaveScheduler(
            self._flush, autosave_period if autosave_period is not None else config.period_seconds
        )

        self._response: ExerciseResponse | None = None
        self.current_page = 0
        self.last_saved: datetime | None = None
        self.finished = False
        self._closed = False
        self._submitting = False

        # (revision, edit) pairs not yet known to be persisted
        self._revision = 0
        self._edits: list[tuple[int, Edit]] = []
        self._inflight_snapshots: list[int] = []

        self._chats: dict[tuple[int, str], ChatController] = {}
        self._timers: dict[int, PageTimer] = {}

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def open(self) -> bool:
        """Fetch the response and arm autosave if it is still editable."""
        try:
            self._response = await self._service.get_response(self.response_id)
        except Exception as e:
            logger.error("response_load_failed", response_id=self.response_id, error=str(e))
            self._alert(MSG_LOAD_FAILED, Severity.ERROR)
            return False

        self._closed = False
        self.current_page = 0
        self.finished = self._response.is_completed
        if self.autosave_enabled and not self._response.is_completed:
            self.scheduler.start()
        logger.info(
            "worksheet_opened",
            response_id=self.response_id,
            status=self._response.status.value,
            pages=len(self._response.pages),
        )
        return True

    async def close(self) -> None:
        """Leave the editing context. In-flight requests are not cancelled."""
        self._closed = True
        await self.scheduler.stop()
        logger.info("worksheet_closed", response_id=self.response_id)

    async def __aenter__(self) -> WorksheetSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def loaded(self) -> bool:
        return self._response is not None

    @property
    def response(self) -> ExerciseResponse:
        if self._response is None:
            raise ResponseError("Worksheet has not been loaded")
        return self._response

    @property
    def is_completed(self) -> bool:
        return self._response is not None and self._response.is_completed

    # =========================================================================
    # NAVIGATION
    # =========================================================================

    @property
    def page_count(self) -> int:
        return len(self.response.pages)

    def next_page(self) -> int:
        self.current_page = min(self.current_page + 1, self.page_count - 1)
        return self.current_page

    def previous_page(self) -> int:
        self.current_page = max(self.current_page - 1, 0)
        return self.current_page

    def go_to_page(self, page_index: int) -> int:
        self.current_page = max(0, min(page_index, self.page_count - 1))
        return self.current_page

    # =========================================================================
    # LOCAL EDITS
    # =========================================================================

    def set_tool_response(
        self,
        page_index: int,
        unique_name: str,
        value: Any,
        is_chat_messages: bool = False,
    ) -> bool:
        """Overwrite one tool's answer locally. Returns False when refused."""
        if not self._can_edit():
            return False

        def edit(doc: ExerciseResponse) -> None:
            doc.set_tool_response(page_index, unique_name, value, is_chat_messages)

        try:
            edit(self.response)
        except ResponseError as e:
            logger.warning("tool_response_rejected", unique_name=unique_name, error=str(e))
            self._alert(str(e), Severity.WARNING)
            return False

        self._revision += 1
        self._edits.append((self._revision, edit))
        return True

    def answer(self, page_index: int, unique_name: str, value: Any) -> bool:
        """Validate ``value`` against the tool's contract, then store it."""
        tool = self._find_tool(page_index, unique_name)
        if tool is None:
            return False
        try:
            stored = contract_for(tool.tool_type).to_response(tool, value)
        except InvalidResponseError as e:
            logger.info("invalid_response", unique_name=unique_name, error=str(e))
            self._alert(str(e), Severity.WARNING)
            return False
        return self.set_tool_response(page_index, unique_name, stored)

    def toggle_option(self, page_index: int, unique_name: str, option: str, checked: bool) -> bool:
        """Check or uncheck one option of a multi-select tool."""
        tool = self._find_tool(page_index, unique_name)
        if tool is None:
            return False
        contract = contract_for(tool.tool_type)
        if not isinstance(contract, McqMultiSelectContract):
            self._alert(f"'{unique_name}' is not a multiple choice tool", Severity.WARNING)
            return False
        try:
            stored = contract.toggle(tool, option, checked)
        except InvalidResponseError as e:
            self._alert(str(e), Severity.WARNING)
            return False
        return self.set_tool_response(page_index, unique_name, stored)

    def _find_tool(self, page_index: int, unique_name: str) -> ResponseTool | None:
        try:
            tool = self.response.page_at(page_index).find_tool(unique_name)
        except ResponseError as e:
            self._alert(str(e), Severity.WARNING)
            return None
        if tool is None:
            self._alert(str(ResponseToolNotFoundError(page_index, unique_name)), Severity.WARNING)
        return tool

    def _can_edit(self) -> bool:
        if self.response.is_completed:
            self._alert(MSG_ALREADY_SUBMITTED, Severity.WARNING)
            return False
        if self._submitting:
            self._alert(MSG_SUBMIT_IN_PROGRESS, Severity.INFO)
            return False
        return True

    # =========================================================================
    # SAVE / SUBMIT
    # =========================================================================

    async def save(self) -> bool:
        """Explicit save with user feedback."""
        if self.response.is_completed:
            self._alert(MSG_ALREADY_SUBMITTED, Severity.WARNING)
            return False
        try:
            await self._persist()
        except Exception as e:
            logger.error("response_save_failed", response_id=self.response_id, error=str(e))
            self._alert(MSG_SAVE_FAILED, Severity.ERROR)
            return False
        self._alert(MSG_SAVED, Severity.SUCCESS)
        return True

    async def submit(self) -> bool:
        """Move the response to COMPLETED. Succeeds at most once."""
        if self.response.is_completed:
            self._alert(MSG_ALREADY_SUBMITTED, Severity.WARNING)
            return False
        if self._submitting:
            self._alert(MSG_SUBMIT_IN_PROGRESS, Severity.INFO)
            return False

        self._submitting = True
        try:
            echo = await self._service.submit_response(self.response.copy())
        except Exception as e:
            logger.error("response_submit_failed", response_id=self.response_id, error=str(e))
            self._alert(MSG_SUBMIT_FAILED, Severity.ERROR)
            return False
        finally:
            self._submitting = False

        await self.scheduler.stop()
        self.finished = True
        if self._closed:
            logger.info("late_echo_dropped", response_id=self.response_id, operation="submit")
            return True

        echo.status = ResponseStatus.COMPLETED
        self._response = echo
        self._edits.clear()
        self.last_saved = datetime.now()
        logger.info("response_submitted", response_id=self.response_id)
        self._alert(MSG_SUBMITTED, Severity.SUCCESS)
        return True

    async def _flush(self) -> None:
        """Autosave tick: silent, failures propagate to the scheduler."""
        if self._closed or self._response is None or self._response.is_completed:
            return
        if self._submitting:
            return
        await self._persist()
        logger.debug("response_autosaved", response_id=self.response_id)

    async def _persist(self) -> None:
        snapshot = self._revision
        payload = self.response.copy()
        self._inflight_snapshots.append(snapshot)
        try:
            echo = await self._service.save_response(payload)
        finally:
            self._inflight_snapshots.remove(snapshot)

        if self._closed:
            logger.info("late_echo_dropped", response_id=self.response_id, operation="save")
            return
        if self.response.is_completed:
            logger.info("stale_save_echo_dropped", response_id=self.response_id)
            return
        self._adopt(echo, snapshot)
        self.last_saved = datetime.now()

    def _adopt(self, echo: ExerciseResponse, snapshot: int) -> None:
        """Replace local state with ``echo`` and replay edits newer than ``snapshot``."""
        replayed = 0
        for revision, edit in self._edits:
            if revision <= snapshot:
                continue
            try:
                edit(echo)
                replayed += 1
            except ResponseError as e:
                logger.warning("edit_replay_failed", revision=revision, error=str(e))
        self._response = echo

        # Edits stay until every save that could have missed them has returned
        threshold = min(self._inflight_snapshots + [snapshot])
        self._edits = [(r, e) for r, e in self._edits if r > threshold]
        if replayed:
            logger.debug("edits_replayed", response_id=self.response_id, count=replayed)

    # =========================================================================
    # AUTOSAVE
    # =========================================================================

    async def set_autosave(self, enabled: bool) -> None:
        """Turn autosave on (timer restarts from zero) or off (timer cancelled)."""
        self.autosave_enabled = enabled
        if enabled:
            if self.loaded and not self.response.is_completed and not self._closed:
                self.scheduler.start()
        else:
            await self.scheduler.stop()
        logger.info("autosave_toggled", response_id=self.response_id, enabled=enabled)

    async def toggle_autosave(self) -> bool:
        await self.set_autosave(not self.autosave_enabled)
        return self.autosave_enabled

    # =========================================================================
    # CHAT
    # =========================================================================

    def chat(self, page_index: int, unique_name: str) -> ChatController:
        """Controller for one chat tool, created on first use."""
        key = (page_index, unique_name)
        if key not in self._chats:

            def get_tool() -> ResponseTool:
                tool = self.response.page_at(page_index).find_tool(unique_name)
                if tool is None:
                    raise ResponseToolNotFoundError(page_index, unique_name)
                return tool

            def apply_messages(messages: list[ChatMessage]) -> None:
                self.set_tool_response(page_index, unique_name, list(messages), is_chat_messages=True)

            self._chats[key] = ChatController(self._service, get_tool, apply_messages)
        return self._chats[key]

    async def initiate_chat(self, page_index: int, unique_name: str) -> bool:
        if self._find_tool(page_index, unique_name) is None or not self._can_edit():
            return False
        try:
            await self.chat(page_index, unique_name).initiate()
        except ChatError as e:
            self._alert(str(e), _chat_severity(e))
            return False
        return True

    async def send_chat_message(self, page_index: int, unique_name: str, content: str) -> bool:
        if self._find_tool(page_index, unique_name) is None or not self._can_edit():
            return False
        try:
            await self.chat(page_index, unique_name).send(content)
        except ValueError as e:
            self._alert(str(e), Severity.WARNING)
            return False
        except ChatError as e:
            self._alert(str(e), _chat_severity(e))
            return False
        return True

    def chat_status(self, page_index: int, unique_name: str) -> dict[str, Any]:
        """Counts shown next to a chat tool."""
        tool = self.chat(page_index, unique_name).tool
        counts = message_counts(tool.messages)
        return {
            "user": counts["user"],
            "assistant": counts["assistant"],
            "remaining": turns_remaining(tool),
            "limit": tool.max_chat_count,
            "chat_type": chat_type_description(tool.chat_bot_instructions),
        }

    # =========================================================================
    # PAGE EXTRAS
    # =========================================================================

    def progress(self) -> dict[str, Any]:
        answered, total = self.response.answered_count()
        return {
            "answered": answered,
            "total": total,
            "current_page": self.current_page,
            "page_count": self.page_count,
            "status": self.response.status.value,
        }

    def page_timer(self, page_index: int) -> PageTimer | None:
        """Countdown for a timed page, None when the page has no timer."""
        seconds = self.response.page_at(page_index).timer_seconds
        if seconds <= 0:
            return None
        if page_index not in self._timers:
            self._timers[page_index] = PageTimer(
                seconds, on_complete=lambda: self._alert("Time is up for this page", Severity.INFO)
            )
        return self._timers[page_index]

    def _alert(self, message: str, severity: Severity) -> None:
        self.alerts(Alert(message, severity))
