"""Pydantic request/response models for the Policy Whisperer API.

These are the API contract, decoupled from the domain dataclasses in
policy_whisperer.core.types. Route handlers bridge the two with
dataclasses.asdict(). Request bodies use camelCase keys (snake_case is
accepted too) and reject unknown fields.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from policy_whisperer.ingestion.content import MAX_CONTENT_CHARS


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CamelRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ErrorResponse(BaseModel):
    error: str


# ---------------------------------------------------------------------------
# Documents and chat
# ---------------------------------------------------------------------------

class ProcessDocumentRequest(CamelRequest):
    """Request body for POST /process-policy-document."""

    content: str = Field(..., min_length=1, max_length=MAX_CONTENT_CHARS)
    title: str | None = Field(None, max_length=500)
    source_type: Literal["url", "file", "text"]
    source_reference: str | None = Field(None, max_length=2048)


class PolicySummaryResponse(CamelModel):
    key_summary: str
    key_points: list[str]
    local_impact: str
    demographic_impact: str
    is_fallback: bool = False


class PolicyDocumentResponse(BaseModel):
    id: str
    title: str
    content: str
    source_type: str
    source_reference: str | None = None
    key_summary: str
    key_points: list[str]
    local_impact: str
    demographic_impact: str
    created_at: datetime | None = None


class ConversationResponse(BaseModel):
    id: str
    policy_document_id: str
    title: str
    created_at: datetime | None = None


class ProcessDocumentResponse(BaseModel):
    document: PolicyDocumentResponse
    conversation: ConversationResponse
    summary: PolicySummaryResponse


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    content: str
    sender: str
    created_at: datetime


class ChatRequest(CamelRequest):
    """Request body for POST /generate-ai-response."""

    prompt: str = Field(..., min_length=1, max_length=10_000)
    policy_content: str | None = Field(None, max_length=MAX_CONTENT_CHARS)
    conversation_id: str | None = None
    format_as_html: bool = True


class ChatResponse(CamelModel):
    response: str
    conversation_id: str | None = None


class FetchUrlRequest(CamelRequest):
    url: str = Field(..., min_length=1, max_length=2048)


class FetchUrlResponse(BaseModel):
    content: str


class MapboxTokenResponse(BaseModel):
    token: str


# ---------------------------------------------------------------------------
# Legislation and impact
# ---------------------------------------------------------------------------

class AnalyzeImpactRequest(CamelRequest):
    """Request body for POST /analyze-legislation-impact."""

    legislation_id: str = Field(..., min_length=1)
    state_code: str | None = Field(None, min_length=2, max_length=2)
    store_results: bool = True

    @field_validator("state_code", mode="before")
    @classmethod
    def _blank_state_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ImpactResultResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state_code: str = Field(..., alias="stateCode")
    impact_level: str
    summary: str
    details: str
    is_fallback: bool = False


class AnalyzeImpactResponse(BaseModel):
    success: bool = True
    results: list[ImpactResultResponse]


class LegislationCreateRequest(CamelRequest):
    """Request body for POST /legislation."""

    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = Field(None, max_length=5000)
    level: Literal["federal", "state"]
    state: str | None = Field(None, max_length=100)
    source_url: str | None = Field(None, max_length=2048)
    content: str = Field(..., min_length=50, max_length=MAX_CONTENT_CHARS)

    @model_validator(mode="after")
    def _state_matches_level(self) -> "LegislationCreateRequest":
        if self.level == "state":
            if not self.state or not self.state.strip():
                raise ValueError("state is required for state-level legislation")
            self.state = self.state.strip()
        else:
            self.state = None
        return self


class LegislationResponse(BaseModel):
    id: str
    title: str
    level: str
    content: str
    description: str | None = None
    state: str | None = None
    source_url: str | None = None
    created_at: datetime | None = None


class LegislationImpactResponse(BaseModel):
    id: str
    legislation_id: str
    state_code: str
    impact_level: str
    summary: str
    details: str
    is_fallback: bool
    updated_at: datetime


class HealthResponse(BaseModel):
    status: str
    checks: dict[str, str]
