"""Pydantic request/response schemas for the FastAPI endpoints."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.submissions.models import Submission


class CamelModel(BaseModel):
    """Base schema serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubmissionCreateRequest(CamelModel):
    """Request body posted by the capture device."""

    captured_image: str | None = None
    target_form_id: str | None = None


class SubmissionCreatedResponse(CamelModel):
    """Response for an accepted submission."""

    success: bool = True
    submission_id: str


class SubmissionListResponse(CamelModel):
    """Response listing every queued submission."""

    submissions: list[Submission]


class SubmissionLookupResponse(CamelModel):
    """Response for a lookup; ``submission`` is absent when nothing matched."""

    success: bool = True
    submission: Submission | None = None
    removed: bool = False
    message: str | None = None


class HandoffResponse(CamelModel):
    """Capture link for a form session."""

    form_id: str
    url: str


class HealthResponse(CamelModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
    queue_size: int
