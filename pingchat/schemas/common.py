"""
Shared response schemas.
"""
from typing import Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Response schema for health endpoints."""
    status: str
    checks: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Standard error response schema."""
    detail: str
    retry_after_ms: Optional[int] = None


class QueuedResponse(BaseModel):
    """Returned with 202 when a send was parked in the offline queue."""
    status: str = "queued"
    queued_item_id: int
