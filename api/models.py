"""Pydantic schemas for the site backup API."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health response summarising server readiness."""

    ok: bool = Field(True, description="Indicates the API server is reachable.")
    version: str = Field(..., description="Application version string.")
    time_utc: str = Field(..., description="Current UTC timestamp in ISO8601 format.")


class ArtifactResult(BaseModel):
    """Outcome of exporting one backup target."""

    success: bool = Field(..., description="True when the artifact was written.")
    file: Optional[str] = Field(None, description="Download URL of the artifact, present on success.")
    error: Optional[str] = Field(None, description="Short failure message, present on failure.")
    details: Optional[str] = Field(None, description="Underlying error text when available.")


class AuthFailureResponse(BaseModel):
    """Body returned instead of a manifest when the API key does not match."""

    success: bool = Field(False, description="Always false.")
    error: str = Field(..., description="Reason the request was rejected.")
    details: Optional[str] = Field(None, description="Additional context for unexpected failures.")


class RestoreStepModel(BaseModel):
    """Status of one restore step."""

    name: str = Field(..., description="Step name: database, theme or plugins.")
    source: str = Field(..., description="Uploaded file the step consumed.")
    status: str = Field(..., description="ok, partial, failed, skipped or compensated.")
    errors: List[str] = Field(default_factory=list, description="Errors recorded while running the step.")
    details: Dict[str, Any] = Field(default_factory=dict, description="Step counters and activated entries.")


class RestoreResponse(BaseModel):
    """Composite result of a restore upload."""

    status: str = Field(..., description="ok, partial, failed, rolled_back or empty.")
    rolled_back: bool = Field(False, description="True when strict mode undid the completed steps.")
    steps: List[RestoreStepModel] = Field(default_factory=list, description="Steps in execution order.")
    ignored_files: List[str] = Field(
        default_factory=list,
        description="Uploaded files whose names matched no backup artifact.",
    )


__all__ = [
    "ArtifactResult",
    "AuthFailureResponse",
    "HealthResponse",
    "RestoreResponse",
    "RestoreStepModel",
]
