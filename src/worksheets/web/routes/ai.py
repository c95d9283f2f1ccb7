"""AI text enhancement endpoint."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from worksheets.db import exercise_repository
from worksheets.llm.client import LLMError
from worksheets.llm.conversation import ConversationEngine, UnknownKeywordError
from worksheets.services.local import exercise_context
from worksheets.web.engine import get_engine
from worksheets.web.schemas import EnhanceRequest, EnhanceResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])


@router.post("/enhance", response_model=EnhanceResponse)
def enhance_text(
    request: EnhanceRequest,
    engine: ConversationEngine = Depends(get_engine),
) -> EnhanceResponse:
    """Rewrite authored text with the template selected by ``keyword``."""
    context = ""
    if request.context_id:
        context = exercise_context(exercise_repository.get_exercise(request.context_id))
    try:
        text = engine.enhance_text(request.keyword, context, request.current_text)
    except UnknownKeywordError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except LLMError as e:
        logger.error("enhance_failed", keyword=request.keyword, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return EnhanceResponse(keyword=request.keyword, text=text)
