"""
Pydantic schemas for ping requests and responses.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class PingCreateRequest(BaseModel):
    """Request schema for POST /pings."""

    listing_id: str = Field(..., min_length=1, max_length=64, description="Listing being pinged")
    receiver: str = Field(..., min_length=1, max_length=64, description="Username of the listing owner")
    message: str = Field(..., min_length=1, max_length=2000, description="Opening message to the seller")

    model_config = {
        "json_schema_extra": {
            "example": {
                "listing_id": "L42",
                "receiver": "bob",
                "message": "Is this available?",
            }
        }
    }


class PingStatusUpdateRequest(BaseModel):
    """Request schema for PATCH /pings/{ping_id}."""

    status: Literal["accepted", "declined"]
    response_message: Optional[str] = Field(default=None, max_length=2000)


class PingResponse(BaseModel):
    id: str
    listing_id: str
    sender_username: str
    receiver_username: str
    message: str
    status: str
    created_at: datetime
    responded_at: Optional[datetime] = None
    response_time_minutes: Optional[int] = None
    response_message: Optional[str] = None
    ping_count: int
    last_ping_at: datetime

    model_config = {"from_attributes": True}


class PingListResponse(BaseModel):
    data: List[PingResponse]
    total: int


class PingExistsResponse(BaseModel):
    exists: bool


class PingStatsResponse(BaseModel):
    """Response schema for GET /pings/stats."""
    sent: int
    received: int
    pending: int
    accepted: int
    declined: int
    average_response_minutes: Optional[float] = None
    remaining_pings: int
