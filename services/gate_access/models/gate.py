"""Modelos Pydantic para habilitar terminales de escaneo"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID


class CredentialRequest(BaseModel):
    recipient: Optional[str] = None  # email o teléfono; por defecto el organizador


class CredentialRequestResponse(BaseModel):
    credential_id: UUID
    recipients: List[str]
    expires_in_seconds: int


class CredentialVerifyRequest(BaseModel):
    code: str = Field(..., min_length=1)


class PasswordVerifyRequest(BaseModel):
    password: str = Field(..., min_length=1)


class GateAuthorizationResponse(BaseModel):
    authorized: bool = True
    event_id: UUID
    method: str
    identity: str
    expires_at: datetime
    token: str
    session_id: Optional[UUID] = None


class ScanSessionCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    authorized_identity: Optional[str] = None


class ScanSessionResponse(BaseModel):
    id: UUID
    event_id: UUID
    start_time: datetime
    end_time: datetime
    authorized_identity: str
