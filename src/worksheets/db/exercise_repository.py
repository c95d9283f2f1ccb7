"""Repository functions for exercises and their responses.

The stored document is the source of truth for lifecycle checks: a save is
checked against the *stored* lock flag and response status, not against
whatever the client sends.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from dataclasses import dataclass

import structlog

from worksheets.core.exercise import Exercise, ExerciseLockedError
from worksheets.core.response import (
    ExerciseResponse,
    ResponseCompletedError,
    ResponseStatus,
    build_response,
)
from worksheets.db.database import get_db

logger = structlog.get_logger(__name__)


class RepositoryError(Exception):
    """Error reading or writing stored documents."""

    pass


class RecordNotFoundError(RepositoryError):
    def __init__(self, kind: str, record_id: str | None):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")


class ExerciseNotLockedError(RepositoryError):
    """Responses can only be handed out for locked exercises."""

    def __init__(self, exercise_id: str):
        self.exercise_id = exercise_id
        super().__init__(f"Exercise {exercise_id} must be locked before responses are assigned")


@dataclass
class ResponseSummary:
    """Listing row for a response."""

    response_id: str
    exercise_id: str
    milestone_tracker_id: str | None
    status: str
    updated_at: str


# =============================================================================
# EXERCISES
# =============================================================================


def create_exercise(activity_id: str | None) -> Exercise:
    """Insert a new one-page DRAFT exercise."""
    exercise = Exercise(id=str(uuid.uuid4()), activity_id=activity_id)
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO exercises (exercise_id, activity_id, is_locked, document)
            VALUES (?, ?, 0, ?)
            """,
            (exercise.id, activity_id, json.dumps(exercise.to_dict())),
        )

    logger.debug("exercises.created", exercise_id=exercise.id, activity_id=activity_id)
    return exercise


def get_exercise(exercise_id: str) -> Exercise | None:
    """Get exercise by ID.

    Returns:
        Exercise if found, None otherwise
    """
    with get_db() as conn:
        row = _exercise_row(conn, exercise_id)

    if row is None:
        return None
    return _row_to_exercise(row)


def list_exercises(activity_id: str | None = None) -> list[Exercise]:
    with get_db() as conn:
        if activity_id is None:
            rows = conn.execute("SELECT * FROM exercises ORDER BY created_at, rowid").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM exercises WHERE activity_id = ? ORDER BY created_at, rowid",
                (activity_id,),
            ).fetchall()
    return [_row_to_exercise(row) for row in rows]


def save_exercise(exercise: Exercise) -> Exercise:
    """Persist the full document and return the stored copy.

    An exercise without an id is inserted under a fresh one. The lock flag
    is never changed by a save.

    Raises:
        ExerciseLockedError: If the stored exercise is locked
        RecordNotFoundError: If the id is unknown
    """
    if not exercise.id:
        stored = create_exercise(exercise.activity_id)
        exercise = exercise.copy()
        exercise.id = stored.id

    with get_db() as conn:
        row = _exercise_row(conn, exercise.id)
        if row is None:
            raise RecordNotFoundError("Exercise", exercise.id)
        if row["is_locked"]:
            raise ExerciseLockedError(exercise.id)

        document = exercise.to_dict()
        document["is_locked"] = False
        conn.execute(
            """
            UPDATE exercises SET activity_id = ?, document = ?, updated_at = datetime('now')
            WHERE exercise_id = ?
            """,
            (exercise.activity_id, json.dumps(document), exercise.id),
        )

    logger.debug("exercises.saved", exercise_id=exercise.id, pages=len(exercise.pages))
    return Exercise.from_dict(document)


def lock_exercise(exercise_id: str) -> Exercise:
    """Mark a stored exercise locked. Locking a locked exercise is a no-op."""
    return _set_locked(exercise_id, True)


def unlock_exercise(exercise_id: str) -> int:
    """Unlock an exercise and delete every response tied to it.

    Returns:
        Number of responses deleted
    """
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM exercise_responses WHERE exercise_id = ?", (exercise_id,)
        )
        deleted = cursor.rowcount
        _update_lock_flag(conn, exercise_id, False)

    logger.info("exercises.unlocked", exercise_id=exercise_id, responses_deleted=deleted)
    return deleted


def _set_locked(exercise_id: str, locked: bool) -> Exercise:
    with get_db() as conn:
        exercise = _update_lock_flag(conn, exercise_id, locked)

    logger.info("exercises.lock_changed", exercise_id=exercise_id, is_locked=locked)
    return exercise


def _update_lock_flag(conn: sqlite3.Connection, exercise_id: str, locked: bool) -> Exercise:
    row = _exercise_row(conn, exercise_id)
    if row is None:
        raise RecordNotFoundError("Exercise", exercise_id)
    exercise = _row_to_exercise(row)
    exercise.is_locked = locked
    conn.execute(
        """
        UPDATE exercises SET is_locked = ?, document = ?, updated_at = datetime('now')
        WHERE exercise_id = ?
        """,
        (int(locked), json.dumps(exercise.to_dict()), exercise_id),
    )
    return exercise


def _exercise_row(conn: sqlite3.Connection, exercise_id: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM exercises WHERE exercise_id = ?", (exercise_id,)
    ).fetchone()


def _row_to_exercise(row: sqlite3.Row) -> Exercise:
    exercise = Exercise.from_dict(json.loads(row["document"]))
    exercise.id = row["exercise_id"]
    exercise.is_locked = bool(row["is_locked"])
    return exercise


# =============================================================================
# RESPONSES
# =============================================================================


def assign_response(exercise_id: str, milestone_tracker_id: str | None = None) -> ExerciseResponse:
    """Create an empty PAUSED response mirroring a locked exercise.

    Raises:
        RecordNotFoundError: If the exercise does not exist
        ExerciseNotLockedError: If the exercise is still a draft
    """
    exercise = get_exercise(exercise_id)
    if exercise is None:
        raise RecordNotFoundError("Exercise", exercise_id)
    if not exercise.is_locked:
        raise ExerciseNotLockedError(exercise_id)

    response = build_response(exercise, str(uuid.uuid4()), milestone_tracker_id)
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO exercise_responses (
                response_id, exercise_id, milestone_tracker_id, status, document
            ) VALUES (?, ?, ?, ?, ?)
            """,
            (
                response.id,
                exercise_id,
                milestone_tracker_id,
                response.status.value,
                json.dumps(response.to_dict()),
            ),
        )

    logger.debug("responses.assigned", response_id=response.id, exercise_id=exercise_id)
    return response


def get_response(response_id: str) -> ExerciseResponse | None:
    with get_db() as conn:
        row = _response_row(conn, response_id)
    if row is None:
        return None
    return _row_to_response(row)


def list_responses(exercise_id: str) -> list[ResponseSummary]:
    """Responses handed out for an exercise, oldest first."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT response_id, exercise_id, milestone_tracker_id, status, updated_at
            FROM exercise_responses WHERE exercise_id = ? ORDER BY created_at, rowid
            """,
            (exercise_id,),
        ).fetchall()

    return [
        ResponseSummary(
            response_id=row["response_id"],
            exercise_id=row["exercise_id"],
            milestone_tracker_id=row["milestone_tracker_id"],
            status=row["status"],
            updated_at=row["updated_at"],
        )
        for row in rows
    ]


def save_response(response: ExerciseResponse) -> ExerciseResponse:
    """Store a PAUSED response and return the stored copy.

    Raises:
        RecordNotFoundError: If the response does not exist
        ResponseCompletedError: If the stored response was already submitted
    """
    return _write_response(response, ResponseStatus.PAUSED)


def submit_response(response: ExerciseResponse) -> ExerciseResponse:
    """Store the final answers and move the response to COMPLETED."""
    stored = _write_response(response, ResponseStatus.COMPLETED)
    logger.info("responses.submitted", response_id=stored.id)
    return stored


def _write_response(response: ExerciseResponse, status: ResponseStatus) -> ExerciseResponse:
    with get_db() as conn:
        row = _response_row(conn, response.id or "")
        if row is None:
            raise RecordNotFoundError("Response", response.id)
        if row["status"] == ResponseStatus.COMPLETED.value:
            raise ResponseCompletedError(response.id)

        stored = response.copy()
        stored.exercise_id = row["exercise_id"]
        stored.milestone_tracker_id = row["milestone_tracker_id"]
        stored.status = status
        conn.execute(
            """
            UPDATE exercise_responses SET status = ?, document = ?, updated_at = datetime('now')
            WHERE response_id = ?
            """,
            (status.value, json.dumps(stored.to_dict()), stored.id),
        )

    logger.debug("responses.saved", response_id=stored.id, status=status.value)
    return stored


def _response_row(conn: sqlite3.Connection, response_id: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM exercise_responses WHERE response_id = ?", (response_id,)
    ).fetchone()


def _row_to_response(row: sqlite3.Row) -> ExerciseResponse:
    response = ExerciseResponse.from_dict(json.loads(row["document"]))
    response.id = row["response_id"]
    response.status = ResponseStatus(row["status"])
    return response
