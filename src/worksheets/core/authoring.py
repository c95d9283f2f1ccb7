"""Author-side editing session for one exercise.

Wraps an Exercise with the things an editor screen needs around the
document model: a current-page pointer, alerts instead of exceptions,
saving through the service, asset uploads and the confirmed lock/unlock
flow.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Sequence, TypeVar

import structlog

from worksheets.config.app_config import load_app_config
from worksheets.core.alerts import Alert, AlertLog, AlertSink, Severity
from worksheets.core.exercise import Exercise, ExerciseError, Page
from worksheets.core.locking import (
    ExerciseState,
    LockError,
    LockStateMachine,
    TransitionRequest,
)
from worksheets.core.tools import Tool, ToolDefaults, ToolType
from worksheets.services.base import ExerciseService

logger = structlog.get_logger(__name__)

R = TypeVar("R")

MSG_SAVED = "Exercise saved successfully"
MSG_SAVE_FAILED = "Failed to save exercise"
MSG_LOCKED = "Exercise locked and ready for respondents"
MSG_LOCK_FAILED = "Failed to lock exercise"
MSG_UNLOCKED = "Exercise unlocked. All respondent progress has been deleted"
MSG_UNLOCK_FAILED = "Failed to unlock exercise"
MSG_UPLOAD_FAILED = "Failed to upload {filename}"
MSG_ENHANCE_FAILED = "Failed to enhance text"
MSG_EDIT_LOCKED = "Exercise is locked. Unlock it to make changes"

Upload = tuple[bytes, str]


class AuthoringSession:
    """Editor state for one exercise."""

    def __init__(
        self,
        service: ExerciseService,
        exercise: Exercise,
        alerts: AlertSink | None = None,
        tool_defaults: ToolDefaults | None = None,
    ):
        self._service = service
        self._exercise = exercise
        self.alerts: AlertSink = alerts if alerts is not None else AlertLog()
        self.tool_defaults = tool_defaults or load_app_config().tool_defaults
        self.current_page = 0
        self._lock = LockStateMachine(exercise)
        self._revision = 0
        self._saved_revision = 0

    @classmethod
    async def load(
        cls,
        service: ExerciseService,
        exercise_id: str,
        alerts: AlertSink | None = None,
    ) -> AuthoringSession | None:
        """Open an existing exercise, alerting and returning None on failure."""
        sink = alerts if alerts is not None else AlertLog()
        try:
            exercise = await service.get_exercise(exercise_id)
        except Exception as e:
            logger.error("exercise_load_failed", exercise_id=exercise_id, error=str(e))
            sink(Alert("Failed to load exercise data", Severity.ERROR))
            return None
        return cls(service, exercise, alerts=sink)

    @classmethod
    async def create(
        cls,
        service: ExerciseService,
        activity_id: str,
        alerts: AlertSink | None = None,
    ) -> AuthoringSession | None:
        sink = alerts if alerts is not None else AlertLog()
        try:
            exercise = await service.create_exercise(activity_id)
        except Exception as e:
            logger.error("exercise_create_failed", activity_id=activity_id, error=str(e))
            sink(Alert("Failed to create exercise", Severity.ERROR))
            return None
        logger.info("exercise_created", exercise_id=exercise.id, activity_id=activity_id)
        return cls(service, exercise, alerts=sink)

    @property
    def exercise(self) -> Exercise:
        return self._exercise

    @property
    def state(self) -> ExerciseState:
        return self._lock.state

    @property
    def is_locked(self) -> bool:
        return self._exercise.is_locked

    @property
    def dirty(self) -> bool:
        """Whether there are local edits the server has not acknowledged."""
        return self._revision != self._saved_revision

    @property
    def page(self) -> Page:
        return self._exercise.pages[self.current_page]

    def go_to_page(self, page_index: int) -> int:
        self.current_page = max(0, min(page_index, len(self._exercise.pages) - 1))
        return self.current_page

    # =========================================================================
    # DOCUMENT EDITS
    # =========================================================================

    def _edit(self, operation: Callable[..., R], *args: Any, **kwargs: Any) -> tuple[bool, R | None]:
        """Run a document mutation, turning model errors into warnings."""
        try:
            result = operation(*args, **kwargs)
        except ExerciseError as e:
            logger.info("exercise_edit_rejected", operation=operation.__name__, error=str(e))
            self._alert(str(e), Severity.WARNING)
            return False, None
        self._revision += 1
        return True, result

    def add_page(self) -> Page | None:
        ok, page = self._edit(self._exercise.add_page)
        if ok and page is not None:
            self.current_page = page.index
        return page

    def delete_page(self, page_index: int) -> bool:
        ok, _ = self._edit(self._exercise.delete_page, page_index)
        self.go_to_page(self.current_page)
        return ok

    def update_page(self, page_index: int, **patch: Any) -> bool:
        return self._edit(self._exercise.update_page, page_index, **patch)[0]

    def add_tool(self, page_index: int, tool_type: str | ToolType) -> Tool | None:
        return self._edit(self._exercise.add_tool, page_index, tool_type, self.tool_defaults)[1]

    def delete_tool(self, page_index: int, tool_index: int) -> bool:
        return self._edit(self._exercise.delete_tool, page_index, tool_index)[0]

    def update_tool(self, page_index: int, tool_index: int, field_name: str, value: Any) -> bool:
        return self._edit(self._exercise.update_tool, page_index, tool_index, field_name, value)[0]

    def reorder_tools(self, page_index: int, source: int, destination: int) -> bool:
        return self._edit(self._exercise.reorder_tools, page_index, source, destination)[0]

    def add_option(self, page_index: int, tool_index: int, text: str = "") -> bool:
        return self._edit(self._exercise.add_option, page_index, tool_index, text)[0]

    def update_option(self, page_index: int, tool_index: int, option_index: int, text: str) -> bool:
        return self._edit(self._exercise.update_option, page_index, tool_index, option_index, text)[0]

    def remove_option(self, page_index: int, tool_index: int, option_index: int) -> bool:
        return self._edit(self._exercise.remove_option, page_index, tool_index, option_index)[0]

    def remove_display_image(self, page_index: int, image_index: int) -> bool:
        return self._edit(self._exercise.remove_display_image, page_index, image_index)[0]

    def remove_file(self, page_index: int, file_index: int) -> bool:
        return self._edit(self._exercise.remove_file, page_index, file_index)[0]

    # =========================================================================
    # ASSETS AND AI
    # =========================================================================

    async def _upload_all(self, uploads: Sequence[Upload]) -> list[str]:
        asset_ids = []
        for data, filename in uploads:
            try:
                asset_ids.append(await self._service.upload_asset(data, filename))
            except Exception as e:
                logger.error("asset_upload_failed", filename=filename, error=str(e))
                self._alert(MSG_UPLOAD_FAILED.format(filename=filename or "file"), Severity.ERROR)
        return asset_ids

    async def _describe(self, asset_id: str) -> str | None:
        try:
            return await self._service.describe_image(asset_id)
        except Exception as e:
            logger.warning("image_description_failed", asset_id=asset_id, error=str(e))
            return None

    async def upload_images(self, page_index: int, uploads: Sequence[Upload]) -> list[str]:
        """Upload display images and attach them with best-effort descriptions."""
        if self.is_locked:
            self._alert(MSG_EDIT_LOCKED, Severity.WARNING)
            return []
        asset_ids = await self._upload_all(uploads)
        if not asset_ids:
            return []
        descriptions = await asyncio.gather(*(self._describe(a) for a in asset_ids))
        ok, _ = self._edit(self._exercise.add_display_images, page_index, asset_ids, descriptions)
        if not ok:
            return []
        logger.info("display_images_added", page=page_index, count=len(asset_ids))
        return asset_ids

    async def upload_files(self, page_index: int, uploads: Sequence[Upload]) -> list[str]:
        """Upload resource files and attach them to a page."""
        if self.is_locked:
            self._alert(MSG_EDIT_LOCKED, Severity.WARNING)
            return []
        asset_ids = await self._upload_all(uploads)
        if not asset_ids:
            return []
        ok, _ = self._edit(self._exercise.add_files, page_index, asset_ids)
        if not ok:
            return []
        logger.info("files_added", page=page_index, count=len(asset_ids))
        return asset_ids

    async def enhance_text(
        self,
        keyword: str,
        current_text: str,
        context_id: str | None = None,
    ) -> str | None:
        """Ask the AI service to rewrite a piece of authored text."""
        try:
            return await self._service.enhance_text(
                keyword, context_id or self._exercise.id or "", current_text
            )
        except Exception as e:
            logger.error("enhance_text_failed", keyword=keyword, error=str(e))
            self._alert(MSG_ENHANCE_FAILED, Severity.ERROR)
            return None

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def save(self, quiet: bool = False) -> bool:
        """Persist the whole document and adopt the server echo."""
        if self.is_locked:
            self._alert(MSG_EDIT_LOCKED, Severity.WARNING)
            return False

        snapshot = self._revision
        try:
            echo = await self._service.save_exercise(self._exercise.copy())
        except Exception as e:
            logger.error("exercise_save_failed", exercise_id=self._exercise.id, error=str(e))
            self._alert(MSG_SAVE_FAILED, Severity.ERROR)
            return False

        if self._revision == snapshot:
            self._exercise = echo
            self._lock.exercise = echo
            self.go_to_page(self.current_page)
        else:
            # Newer local edits supersede the echo; keep the assigned id
            self._exercise.id = self._exercise.id or echo.id
            logger.info("save_echo_superseded", exercise_id=echo.id, edits=self._revision - snapshot)
        self._saved_revision = snapshot
        logger.info("exercise_saved", exercise_id=self._exercise.id, pages=len(self._exercise.pages))
        if not quiet:
            self._alert(MSG_SAVED, Severity.SUCCESS)
        return True

    # =========================================================================
    # LOCK / UNLOCK
    # =========================================================================

    def request_lock(self) -> TransitionRequest | None:
        """First step of locking: returns the confirmation to show."""
        try:
            return self._lock.request_lock()
        except LockError as e:
            self._alert(str(e), Severity.WARNING)
            return None

    def request_unlock(self) -> TransitionRequest | None:
        """First step of unlocking: returns the destructive confirmation to show."""
        try:
            return self._lock.request_unlock()
        except LockError as e:
            self._alert(str(e), Severity.WARNING)
            return None

    def cancel_transition(self) -> None:
        self._lock.cancel()

    async def confirm(self, request: TransitionRequest) -> bool:
        """Second step: the user confirmed ``request``; perform it on the server."""
        try:
            self._lock.check_confirmed(request)
        except LockError as e:
            self._alert(str(e), Severity.WARNING)
            return False

        locking = request.action == "lock"
        if locking and self.dirty and not await self.save(quiet=True):
            self._lock.cancel()
            return False

        call = self._service.lock_exercise if locking else self._service.unlock_exercise
        try:
            ok = await call(request.exercise_id)
        except Exception as e:
            logger.error(f"exercise_{request.action}_failed", exercise_id=request.exercise_id, error=str(e))
            ok = False

        if not ok:
            self._lock.cancel()
            self._alert(MSG_LOCK_FAILED if locking else MSG_UNLOCK_FAILED, Severity.ERROR)
            return False

        self._lock.apply(request)
        if locking:
            self._alert(MSG_LOCKED, Severity.SUCCESS)
        else:
            self._alert(MSG_UNLOCKED, Severity.WARNING)
        return True

    def _alert(self, message: str, severity: Severity) -> None:
        self.alerts(Alert(message, severity))
