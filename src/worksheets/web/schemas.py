"""Pydantic schemas for the Web API.

Document schemas mirror the core dataclasses field for field, so
``Schema.model_validate(doc.to_dict())`` and ``Doc.from_dict(schema.model_dump())``
convert in both directions.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: str


# =============================================================================
# DOCUMENT SCHEMAS
# =============================================================================


class ChatMessageSchema(BaseModel):
    role: Literal["system", "user", "assistant"] = "user"
    content: str = ""


class ToolSchema(BaseModel):
    """Authored tool. ``tool_type`` stays a plain string so unknown kinds round-trip."""

    tool_type: str
    unique_name: str
    index: int = 0
    placeholder_text: str = ""
    options: list[str] = Field(default_factory=list)
    chat_bot_instructions: str = ""
    max_chat_count: int | None = Field(default=None, ge=1)


class ResponseToolSchema(ToolSchema):
    response: str | None = None
    messages: list[ChatMessageSchema] = Field(default_factory=list)
    chat_initiated: bool = False


class PageSchema(BaseModel):
    index: int = 0
    tools: list[ToolSchema] = Field(default_factory=list)
    display_images: list[str] = Field(default_factory=list)
    display_image_descriptions: list[str | None] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    display_text: str = ""
    timer_seconds: int = Field(default=0, ge=0)
    extraction_prompt: str = ""


class ExerciseSchema(BaseModel):
    id: str | None = None
    activity_id: str | None = None
    pages: list[PageSchema] = Field(default_factory=list)
    extraction_prompt: str = ""
    is_locked: bool = False


class ResponsePageSchema(BaseModel):
    index: int = 0
    tools: list[ResponseToolSchema] = Field(default_factory=list)
    display_images: list[str] = Field(default_factory=list)
    display_image_descriptions: list[str | None] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    display_text: str = ""
    timer_seconds: int = Field(default=0, ge=0)


class ExerciseResponseSchema(BaseModel):
    id: str | None = None
    exercise_id: str | None = None
    milestone_tracker_id: str | None = None
    status: Literal["PAUSED", "COMPLETED"] = "PAUSED"
    details: str = ""
    evaluation_text: str = ""
    pages: list[ResponsePageSchema] = Field(default_factory=list)


# =============================================================================
# REQUEST / RESPONSE BODIES
# =============================================================================


class ExerciseCreate(BaseModel):
    activity_id: str = Field(..., min_length=1)


class ExerciseListResponse(BaseModel):
    exercises: list[ExerciseSchema]
    count: int


class LockResponse(BaseModel):
    success: bool
    exercise_id: str
    is_locked: bool
    responses_deleted: int = 0


class ResponseAssign(BaseModel):
    milestone_tracker_id: str | None = None


class ResponseSummarySchema(BaseModel):
    response_id: str
    exercise_id: str
    milestone_tracker_id: str | None = None
    status: str
    updated_at: str

    model_config = {"from_attributes": True}


class ResponseListResponse(BaseModel):
    responses: list[ResponseSummarySchema]
    count: int


class ChatTurnResponse(BaseModel):
    messages: list[ChatMessageSchema]


class AssetCreated(BaseModel):
    asset_id: str
    filename: str = ""
    content_type: str = ""


class DescriptionResponse(BaseModel):
    asset_id: str
    description: str | None = None


class EnhanceRequest(BaseModel):
    keyword: str = Field(..., min_length=1)
    context_id: str = ""
    current_text: str = ""


class EnhanceResponse(BaseModel):
    keyword: str
    text: str
