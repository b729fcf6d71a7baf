"""
Pydantic schemas for phone disclosure.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel


class PhoneVisibilityResponse(BaseModel):
    phone: Optional[str] = None
    can_share: bool


class PhonePreferenceRequest(BaseModel):
    preference: Literal["everyone", "ping_confirmation"]


class PhonePreferenceResponse(BaseModel):
    user_id: str
    preference: str


class PhoneGrantResponse(BaseModel):
    owner_id: str
    unlocked_by_id: str
    unlocked_at: datetime

    model_config = {"from_attributes": True}


class PhoneGrantListResponse(BaseModel):
    data: List[PhoneGrantResponse]
    total: int


class RevokeResponse(BaseModel):
    removed: int
