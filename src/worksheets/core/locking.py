"""Lock/unlock state machine for exercises.

    DRAFT --lock (confirmed)--> LOCKED --unlock (confirmed)--> DRAFT

Locking makes the structure immutable and lets responses be assigned.
Unlocking discards every response tied to the exercise, so it carries its
own, higher-severity confirmation. A transition only takes effect through
the request object handed out for it, which is single-use.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

import structlog

from worksheets.core.alerts import Severity
from worksheets.core.exercise import Exercise

logger = structlog.get_logger(__name__)

LOCK_TITLE = "Lock exercise?"
LOCK_WARNING = (
    "Locking shares this exercise with respondents. "
    "Pages and tools can no longer be edited while it is locked."
)
UNLOCK_TITLE = "Unlock exercise and delete all progress?"
UNLOCK_WARNING = (
    "Unlocking permanently deletes every respondent's saved and submitted answers "
    "for this exercise. This cannot be undone."
)


class ExerciseState(str, Enum):
    DRAFT = "DRAFT"
    LOCKED = "LOCKED"


class LockError(Exception):
    """Error in a lock/unlock transition."""

    pass


class InvalidTransitionError(LockError):
    """Transition not valid from the current state."""

    pass


class UnconfirmedTransitionError(LockError):
    """Transition applied without its pending confirmation."""

    pass


@dataclass(frozen=True)
class TransitionRequest:
    """A transition awaiting explicit confirmation."""

    action: Literal["lock", "unlock"]
    exercise_id: str
    title: str
    warning: str
    severity: Severity
    irreversible: bool

    @property
    def target(self) -> ExerciseState:
        return ExerciseState.LOCKED if self.action == "lock" else ExerciseState.DRAFT


def state_of(exercise: Exercise) -> ExerciseState:
    return ExerciseState.LOCKED if exercise.is_locked else ExerciseState.DRAFT


class LockStateMachine:
    """Gates ``Exercise.is_locked`` behind confirmed transitions."""

    def __init__(self, exercise: Exercise):
        self.exercise = exercise
        self._pending: TransitionRequest | None = None

    @property
    def state(self) -> ExerciseState:
        return state_of(self.exercise)

    @property
    def pending(self) -> TransitionRequest | None:
        return self._pending

    def request_lock(self) -> TransitionRequest:
        """Ask to lock. Valid only from DRAFT on a persisted exercise."""
        if self.state != ExerciseState.DRAFT:
            raise InvalidTransitionError("Exercise is already locked")
        if not self.exercise.id:
            raise InvalidTransitionError("Save the exercise before locking it")
        self._pending = TransitionRequest(
            action="lock",
            exercise_id=self.exercise.id,
            title=LOCK_TITLE,
            warning=LOCK_WARNING,
            severity=Severity.WARNING,
            irreversible=False,
        )
        return self._pending

    def request_unlock(self) -> TransitionRequest:
        """Ask to unlock. Valid only from LOCKED."""
        if self.state != ExerciseState.LOCKED:
            raise InvalidTransitionError("Exercise is not locked")
        self._pending = TransitionRequest(
            action="unlock",
            exercise_id=self.exercise.id or "",
            title=UNLOCK_TITLE,
            warning=UNLOCK_WARNING,
            severity=Severity.ERROR,
            irreversible=True,
        )
        return self._pending

    def cancel(self) -> None:
        self._pending = None

    def check_confirmed(self, request: TransitionRequest) -> None:
        """Raise unless ``request`` is the live pending request for this state."""
        if request is not self._pending:
            raise UnconfirmedTransitionError(f"No pending {request.action} request to confirm")
        expected = ExerciseState.DRAFT if request.action == "lock" else ExerciseState.LOCKED
        if self.state != expected:
            self._pending = None
            raise InvalidTransitionError(f"Cannot {request.action} from {self.state.value}")

    def apply(self, request: TransitionRequest) -> ExerciseState:
        """Commit a confirmed transition. Content is left untouched."""
        self.check_confirmed(request)
        self.exercise.is_locked = request.action == "lock"
        self._pending = None
        logger.info("exercise_state_changed", exercise_id=request.exercise_id, state=self.state.value)
        return self.state
