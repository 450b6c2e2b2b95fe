"""Pydantic models for the API layer.

Defines request/response schemas for all endpoints. Wire names are
camelCase; Python attributes are snake_case.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Severity = Literal["SEV1", "SEV2", "SEV3", "UNKNOWN"]
Priority = Literal["HIGH", "MEDIUM", "LOW"]
Tone = Literal["critical", "warning", "info", "success"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TimelineEvent(CamelModel):
    time: str = "Unknown"
    description: str
    severity: Tone | None = None


class ActionItem(CamelModel):
    task: str
    owner: str | None = None
    priority: Priority = "MEDIUM"


class IncidentImpact(CamelModel):
    estimated_users_affected: str | None = None
    duration: str | None = None
    peak_latency: str | None = None
    peak_error_rate: str | None = None


class ReferenceSource(CamelModel):
    title: str
    uri: str


class IncidentReport(CamelModel):
    """Structured post-incident report returned by /api/analyze."""
    title: str = "Untitled Incident"
    summary: str = "No summary available."
    severity: Severity = "UNKNOWN"
    root_causes: list[str] = Field(default_factory=list)
    reasoning: str = ""
    confidence_score: int = Field(50, ge=0, le=100)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    mitigation_steps: list[str] = Field(default_factory=list)
    impact: IncidentImpact = Field(default_factory=IncidentImpact)
    tags: list[str] = Field(default_factory=list)
    lessons_learned: str = ""
    prevention_recommendations: list[str] = Field(default_factory=list)
    references: list[ReferenceSource] = Field(default_factory=list)


class RequestOptions(CamelModel):
    enable_grounding: bool | None = None


class AnalyzeBody(CamelModel):
    """Incoming analyze payload. Images stay raw; the normalizer validates them."""
    logs: str | None = None
    images: list[dict[str, Any] | None] | None = None
    options: RequestOptions = Field(default_factory=RequestOptions)


class FollowUpBody(CamelModel):
    report: dict[str, Any] | None = None
    history: list[Any] | None = None
    question: str | None = None
    options: RequestOptions = Field(default_factory=RequestOptions)


class FollowUpResponse(CamelModel):
    answer: str


class TtsBody(CamelModel):
    text: str | None = None


class TtsResponse(CamelModel):
    audio_base64: str | None = None
    mime_type: str | None = None
    supported: bool = True


class ErrorDetail(CamelModel):
    kind: str
    message: str
    request_id: str


class ErrorResponse(CamelModel):
    error: ErrorDetail
