"""Rutas para habilitar terminales de escaneo"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Optional
from uuid import UUID
from datetime import datetime
import logging

from shared.database.session import get_db
from shared.auth.dependencies import get_clock, get_current_staff, get_gate_claims
from shared.auth.jwt_handler import revoke_gate_token
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.gate_access.models.gate import (
    CredentialRequest,
    CredentialRequestResponse,
    CredentialVerifyRequest,
    PasswordVerifyRequest,
    GateAuthorizationResponse,
    ScanSessionCreate,
    ScanSessionResponse,
)
from services.gate_access.services.access_gate import AccessGate, GateAuthorization, authorize_terminal
from services.gate_access.services.scan_session_service import ScanSessionService
from services.notifications.services.dispatcher import CeleryCredentialDispatcher, CredentialDispatcher
from shared.utils.clock import as_utc

logger = logging.getLogger(__name__)

router = APIRouter()


def get_dispatcher() -> CredentialDispatcher:
    return CeleryCredentialDispatcher()


def _authorization_response(authorization: GateAuthorization) -> GateAuthorizationResponse:
    return GateAuthorizationResponse(
        event_id=authorization.event_id,
        method=authorization.method,
        identity=authorization.identity,
        expires_at=authorization.expires_at,
        token=authorization.token,
        session_id=authorization.session_id,
    )


@router.post("/{event_id}/credentials", response_model=CredentialRequestResponse)
@limiter.limit(RATE_LIMITS["otp_request"])
async def request_credential(
    request: Request,  # Necesario para rate limiter
    event_id: UUID,
    body: Optional[CredentialRequest] = None,
    db: AsyncSession = Depends(get_db),
    dispatcher: CredentialDispatcher = Depends(get_dispatcher),
    clock=Depends(get_clock),
):
    """
    Emitir un OTP para habilitar un escáner.

    Sin destinatario explícito se envía al organizador del evento y al admin.
    """
    gate = AccessGate(db, dispatcher=dispatcher, clock=clock)
    event = await gate.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento no encontrado")

    if body is not None and body.recipient:
        recipients = [body.recipient.strip()]
    else:
        recipients = gate.default_recipients(event)
    if not recipients:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="El evento no tiene contacto para recibir el código"
        )

    credential_id = await gate.request_credential(event_id, recipients[0], also_notify=recipients[1:])
    return CredentialRequestResponse(
        credential_id=credential_id,
        recipients=recipients,
        expires_in_seconds=gate.otp_ttl_seconds,
    )


@router.post("/{event_id}/credentials/verify", response_model=GateAuthorizationResponse)
@limiter.limit(RATE_LIMITS["credential_verify"])
async def verify_credential(
    request: Request,
    event_id: UUID,
    body: CredentialVerifyRequest,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    """Verificar OTP; CredentialExpired/CredentialInvalid se mapean en main.py"""
    gate = AccessGate(db, clock=clock)
    authorization = await gate.verify_credential(event_id, body.code)
    return _authorization_response(authorization)


@router.post("/{event_id}/password", response_model=GateAuthorizationResponse)
@limiter.limit(RATE_LIMITS["credential_verify"])
async def verify_password(
    request: Request,
    event_id: UUID,
    body: PasswordVerifyRequest,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    gate = AccessGate(db, clock=clock)
    authorization = await gate.verify_password(event_id, body.password)
    return _authorization_response(authorization)


@router.post("/{event_id}/staff", response_model=GateAuthorizationResponse)
async def authorize_staff(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_staff),
    clock=Depends(get_clock),
):
    """Dueño del evento o admin: acceso directo sin OTP"""
    gate = AccessGate(db, clock=clock)
    try:
        authorization = await gate.authorize_staff(event_id, current_user)
    except LookupError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento no encontrado")
    return _authorization_response(authorization)


@router.get("/{event_id}/session", response_model=GateAuthorizationResponse)
async def get_active_session(
    event_id: UUID,
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
):
    """
    Habilitar el terminal con la sesión de escaneo vigente, si existe.

    El token expira al terminar la sesión.
    """
    service = ScanSessionService(db, clock=clock)
    session = await service.get_active_session(event_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No hay sesión de escaneo activa")

    authorization = authorize_terminal(
        event_id,
        "session",
        session.authorized_identity,
        as_utc(session.end_time),
        session_id=session.id,
    )
    return _authorization_response(authorization)


@router.post("/{event_id}/sessions", response_model=ScanSessionResponse, status_code=status.HTTP_201_CREATED)
async def open_session(
    event_id: UUID,
    body: ScanSessionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_staff),
    clock=Depends(get_clock),
):
    """Abrir una ventana de escaneo para personal sin cuenta"""
    gate = AccessGate(db, clock=clock)
    if await gate.get_event(event_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evento no encontrado")

    service = ScanSessionService(db, clock=clock)
    try:
        session = await service.open_session(
            event_id,
            body.start_time,
            body.end_time,
            body.authorized_identity or f"user:{current_user['user_id']}",
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return ScanSessionResponse(
        id=session.id,
        event_id=session.event_id,
        start_time=as_utc(session.start_time),
        end_time=as_utc(session.end_time),
        authorized_identity=session.authorized_identity,
    )


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Dict = Depends(get_current_staff),
    clock=Depends(get_clock),
):
    """Cerrar una ventana de escaneo antes de tiempo (afecta a todos sus terminales)"""
    closed = await ScanSessionService(db, clock=clock).close_session(session_id)
    if not closed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sesión no encontrada o ya cerrada")


@router.post("/sign-out", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(
    claims: Dict = Depends(get_gate_claims),
    clock=Depends(get_clock),
):
    """Revocar el token del terminal que cierra sesión"""
    now: datetime = clock()
    await revoke_gate_token(claims, now)
