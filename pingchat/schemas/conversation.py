"""
Pydantic schemas for conversations and messages.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ConversationResponse(BaseModel):
    id: str
    listing_id: str
    participants: List[str]
    status: str
    last_message: Optional[str] = None
    last_sender: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ConversationListResponse(BaseModel):
    data: List[ConversationResponse]
    total: int


class ConversationStatusUpdateRequest(BaseModel):
    status: Literal["completed", "closed"]


class MessageSendRequest(BaseModel):
    """Request schema for POST /chats/{chat_id}/messages."""
    text: str = Field(..., min_length=1, max_length=2000)
    client_id: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=64,
        description="Client-chosen id; resending with the same id returns the stored message",
    )


class MessageResponse(BaseModel):
    id: str
    chat_id: str
    sender_username: str
    text: str
    status: str
    client_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MessagesPageResponse(BaseModel):
    """Response schema for GET /chats/{chat_id}/messages."""
    data: List[MessageResponse]
    limit: int
    unread: int


class ReadReceiptResponse(BaseModel):
    updated: int
