"""Exercise endpoints: authoring documents, lock/unlock and response assignment."""

import structlog
from fastapi import APIRouter, HTTPException, status

from worksheets.core.exercise import Exercise, ExerciseLockedError
from worksheets.db import exercise_repository
from worksheets.db.exercise_repository import ExerciseNotLockedError, RecordNotFoundError
from worksheets.web.schemas import (
    ExerciseCreate,
    ExerciseListResponse,
    ExerciseResponseSchema,
    ExerciseSchema,
    LockResponse,
    ResponseAssign,
    ResponseListResponse,
    ResponseSummarySchema,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/exercises", tags=["exercises"])


def _not_found(exercise_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Exercise '{exercise_id}' not found",
    )


def _to_schema(exercise: Exercise) -> ExerciseSchema:
    return ExerciseSchema.model_validate(exercise.to_dict())


@router.post("", response_model=ExerciseSchema, status_code=status.HTTP_201_CREATED)
async def create_exercise(request: ExerciseCreate) -> ExerciseSchema:
    """Create a one-page draft exercise for an activity."""
    exercise = exercise_repository.create_exercise(request.activity_id)
    logger.info("exercise_created", exercise_id=exercise.id, activity_id=request.activity_id)
    return _to_schema(exercise)


@router.get("", response_model=ExerciseListResponse)
async def list_exercises(activity_id: str | None = None) -> ExerciseListResponse:
    exercises = [_to_schema(e) for e in exercise_repository.list_exercises(activity_id)]
    return ExerciseListResponse(exercises=exercises, count=len(exercises))


@router.get("/{exercise_id}", response_model=ExerciseSchema)
async def get_exercise(exercise_id: str) -> ExerciseSchema:
    exercise = exercise_repository.get_exercise(exercise_id)
    if exercise is None:
        raise _not_found(exercise_id)
    return _to_schema(exercise)


@router.put("/{exercise_id}", response_model=ExerciseSchema)
async def save_exercise(exercise_id: str, body: ExerciseSchema) -> ExerciseSchema:
    """Replace the stored document. Refused while the exercise is locked."""
    exercise = Exercise.from_dict(body.model_dump())
    exercise.id = exercise_id
    try:
        saved = exercise_repository.save_exercise(exercise)
    except RecordNotFoundError:
        raise _not_found(exercise_id)
    except ExerciseLockedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _to_schema(saved)


@router.post("/{exercise_id}/lock", response_model=LockResponse)
async def lock_exercise(exercise_id: str) -> LockResponse:
    try:
        exercise = exercise_repository.lock_exercise(exercise_id)
    except RecordNotFoundError:
        raise _not_found(exercise_id)
    return LockResponse(success=True, exercise_id=exercise_id, is_locked=exercise.is_locked)


@router.post("/{exercise_id}/unlock", response_model=LockResponse)
async def unlock_exercise(exercise_id: str) -> LockResponse:
    """Unlock and delete every response of the exercise."""
    try:
        deleted = exercise_repository.unlock_exercise(exercise_id)
    except RecordNotFoundError:
        raise _not_found(exercise_id)
    return LockResponse(
        success=True, exercise_id=exercise_id, is_locked=False, responses_deleted=deleted
    )


@router.post(
    "/{exercise_id}/responses",
    response_model=ExerciseResponseSchema,
    status_code=status.HTTP_201_CREATED,
)
async def assign_response(exercise_id: str, body: ResponseAssign) -> ExerciseResponseSchema:
    """Hand out a fresh response for a locked exercise."""
    try:
        response = exercise_repository.assign_response(exercise_id, body.milestone_tracker_id)
    except RecordNotFoundError:
        raise _not_found(exercise_id)
    except ExerciseNotLockedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ExerciseResponseSchema.model_validate(response.to_dict())


@router.get("/{exercise_id}/responses", response_model=ResponseListResponse)
async def list_responses(exercise_id: str) -> ResponseListResponse:
    if exercise_repository.get_exercise(exercise_id) is None:
        raise _not_found(exercise_id)
    responses = [
        ResponseSummarySchema.model_validate(r)
        for r in exercise_repository.list_responses(exercise_id)
    ]
    return ResponseListResponse(responses=responses, count=len(responses))
