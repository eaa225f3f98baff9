"""Modelos Pydantic para canje de tickets"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID


class TicketRedemptionRequest(BaseModel):
    code: str = Field(..., min_length=1)
    event_id: UUID


class TicketRedemptionResponse(BaseModel):
    valid: bool
    transitioned: bool
    already_used: bool
    code: str
    event_id: UUID
    used_at: Optional[datetime] = None
    owner_ref: Optional[str] = None
    message: Optional[str] = None
