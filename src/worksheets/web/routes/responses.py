"""Response endpoints: load, save, submit and chat turns."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from worksheets.core.response import ExerciseResponse, ResponseCompletedError
from worksheets.core.tools import ResponseTool
from worksheets.db import exercise_repository
from worksheets.db.exercise_repository import RecordNotFoundError
from worksheets.llm.client import LLMError
from worksheets.llm.conversation import (
    ConversationEngine,
    NotAChatToolError,
    TurnLimitExceededError,
)
from worksheets.web.engine import get_engine
from worksheets.web.schemas import (
    ChatMessageSchema,
    ChatTurnResponse,
    ExerciseResponseSchema,
    ResponseToolSchema,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/responses", tags=["responses"])


def _to_schema(response: ExerciseResponse) -> ExerciseResponseSchema:
    return ExerciseResponseSchema.model_validate(response.to_dict())


def _from_body(response_id: str, body: ExerciseResponseSchema) -> ExerciseResponse:
    response = ExerciseResponse.from_dict(body.model_dump())
    response.id = response_id
    return response


def _write(operation, response: ExerciseResponse) -> ExerciseResponseSchema:
    try:
        return _to_schema(operation(response))
    except RecordNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Response '{response.id}' not found",
        )
    except ResponseCompletedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


# Declared before "/{response_id}" so "chat" is not taken for an id
@router.put("/chat", response_model=ChatTurnResponse)
def chat_turn(
    tool: ResponseToolSchema,
    engine: ConversationEngine = Depends(get_engine),
) -> ChatTurnResponse:
    """Run one chat turn and return the canonical transcript."""
    try:
        messages = engine.respond(ResponseTool.from_dict(tool.model_dump()))
    except NotAChatToolError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except TurnLimitExceededError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except LLMError as e:
        logger.error("chat_turn_failed", unique_name=tool.unique_name, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return ChatTurnResponse(messages=[ChatMessageSchema(**m.to_dict()) for m in messages])


@router.get("/{response_id}", response_model=ExerciseResponseSchema)
async def get_response(response_id: str) -> ExerciseResponseSchema:
    response = exercise_repository.get_response(response_id)
    if response is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Response '{response_id}' not found",
        )
    return _to_schema(response)


@router.put("/{response_id}", response_model=ExerciseResponseSchema)
async def save_response(response_id: str, body: ExerciseResponseSchema) -> ExerciseResponseSchema:
    """Store progress. Refused once the response has been submitted."""
    return _write(exercise_repository.save_response, _from_body(response_id, body))


@router.post("/{response_id}/submit", response_model=ExerciseResponseSchema)
async def submit_response(
    response_id: str, body: ExerciseResponseSchema
) -> ExerciseResponseSchema:
    """Store final answers and mark the response COMPLETED."""
    return _write(exercise_repository.submit_response, _from_body(response_id, body))
