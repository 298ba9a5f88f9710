"""
PixelUpia SR API - Pydantic Schemas
====================================
Request/Response models for API endpoints.
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum

from core.pipeline import EnhanceMode


class JobState(str, Enum):
    """Job processing states."""
    UPLOADED = "uploaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# === Response Models ===

class UploadResponse(BaseModel):
    """Response after successful file upload."""
    job_id: str
    filename: str
    width: int
    height: int


class ProcessRequest(BaseModel):
    """Request to start processing a job."""
    job_id: str
    mode: EnhanceMode = EnhanceMode.FULL


class StatusResponse(BaseModel):
    """Job status response."""
    job_id: str
    state: JobState
    mode: Optional[EnhanceMode] = None
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error body returned with every 4xx response."""
    detail: str
