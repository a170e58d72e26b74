"""
Code Journal Backend — Shared Pydantic Schemas
===============================================

What:  Base model with the camelCase wire convention, plus the error and
       health response shapes shared by every router.
How:   Field names are snake_case in Python and camelCase on the wire
       (`base64_value` <-> `base64Value`); both spellings are accepted on
       input.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """
    What:  Standardized error body for all API errors.

    Example:
        {
            "error": "duplicate_file",
            "message": "Path main.c already exists in the submission",
            "details": {"path": "main.c", "submission_id": 1},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class MessageResponse(CamelModel):
    message: str = Field(default="ok")


class HealthResponse(BaseModel):
    """
    What:  Health check response showing service and dependency status.
    Who:   Returned by GET /health for monitoring and container health checks.
    """
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    storage: str = Field(description="Storage root: writable, unavailable")
    uptime_seconds: float = Field(description="Seconds since service started")
