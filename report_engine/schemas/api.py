"""Request and response models for the HTTP API."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from report_engine.schemas.report import GenerationState


class ResponseMeta(BaseModel):
    timestamp: datetime = Field(..., description="Server time the response was built")
    request_id: str = Field(..., description="Correlation id of the request")
    api_version: str = Field(default="v1", description="API version")


class ApiResponse(BaseModel):
    """Envelope shared by all JSON endpoints."""

    status: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Human-readable outcome")
    data: Dict[str, Any] = Field(default_factory=dict, description="Operation payload")
    meta: ResponseMeta


class ErrorDetail(BaseModel):
    """Problem details (RFC 7807)."""

    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    request_id: str
    timestamp: datetime


class GenerateReportRequest(BaseModel):
    report_id: str = Field(..., description="Report to generate")
    streaming: bool = Field(default=False, description="Stream the narrative as server-sent events")


class RegenerateSectionRequest(BaseModel):
    section_id: str = Field(..., description="Section to regenerate")
    user_notes: str = Field(default="", description="Feedback for the rewrite")


class ReportStatusResponse(BaseModel):
    report_id: str
    status: str
    generation_status: GenerationState
    generation_run_id: Optional[str] = None
    generation_started_at: Optional[datetime] = None
    generation_completed_at: Optional[datetime] = None
    generation_error: Optional[str] = None
    version: int
