"""Request / response contracts of the conversation controller (camelCase on the wire)."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Conversation ────────────────────────────────────────


class TimeRange(CamelModel):
    start: datetime
    end: datetime


class RequestContext(CamelModel):
    time_range: TimeRange | None = None
    filters: dict[str, Any] | None = None
    preferred_visualization: Literal["table", "chart", "summary"] | None = None


class RequestOptions(CamelModel):
    max_result_rows: int | None = Field(None, ge=1, le=1000, description="Rows returned in data.content")
    include_sql: bool = Field(False, description="Return the generated SQL in metadata.sql")
    timeout: int | None = Field(None, ge=1000, le=60000, description="Request timeout in milliseconds")


class ConversationRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=500, description="Natural-language question")
    conversation_id: str | None = None
    context: RequestContext | None = None
    options: RequestOptions | None = None


class ResponseMetadata(CamelModel):
    processing_time_ms: int
    source: Literal["cache", "query", "generated", "conversational", "error"]
    confidence: float
    tables: list[str] | None = None
    sql: str | None = None
    error_type: str | None = None


class ResponseData(CamelModel):
    type: Literal["table", "scalar", "chart"]
    content: Any


class FeedbackOptions(CamelModel):
    thumbs_up: bool = True
    thumbs_down: bool = True
    comment_enabled: bool = True


class ConversationResponse(CamelModel):
    id: str
    conversation_id: str
    message: str
    metadata: ResponseMetadata
    data: ResponseData | None = None
    suggestions: list[str] | None = None
    feedback_options: FeedbackOptions = Field(default_factory=FeedbackOptions)


# ── Feedback ────────────────────────────────────────────


class FeedbackRequest(CamelModel):
    conversation_id: str
    response_id: str
    type: Literal["positive", "negative"]
    helpful: bool
    comment: str | None = Field(None, max_length=1000)


class FeedbackResponse(CamelModel):
    id: str
    conversation_id: str
    response_id: str
    status: Literal["success", "error"]
    message: str
