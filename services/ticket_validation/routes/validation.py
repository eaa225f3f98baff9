"""Rutas de canje de tickets"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict
from uuid import UUID
from shared.database.session import get_db
from shared.auth.dependencies import get_clock, get_current_terminal
from shared.utils.rate_limiter import limiter, RATE_LIMITS
from services.ticket_validation.models.ticket import (
    TicketRedemptionRequest,
    TicketRedemptionResponse
)
from services.ticket_validation.services.redeemer import (
    Redeemer,
    TicketCancelled,
    TicketNotFound,
    TicketUsed,
)
from services.ticket_validation.services.ticket_store import SqlTicketStore


router = APIRouter()


@router.post("/redeem", response_model=TicketRedemptionResponse)
@limiter.limit(RATE_LIMITS["redemption"])
async def redeem_ticket(
    request: Request,  # Necesario para rate limiter
    body: TicketRedemptionRequest,
    db: AsyncSession = Depends(get_db),
    terminal: Dict = Depends(get_current_terminal),
    clock=Depends(get_clock),
):
    """
    Canjear un ticket (issued -> used) una sola vez.

    Un ticket ya usado es una respuesta exitosa con already_used=true.
    Requiere token de terminal habilitado para el mismo evento.
    """
    if UUID(terminal["event_id"]) != body.event_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="El terminal no está habilitado para este evento"
        )

    redeemer = Redeemer(SqlTicketStore(db), clock=clock)
    outcome = await redeemer.redeem(body.code.strip(), body.event_id, scanned_by=terminal.get("sub"))

    if isinstance(outcome, TicketNotFound):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "ticket_not_found", "detail": "Ticket no encontrado para este evento"},
        )

    if isinstance(outcome, TicketCancelled):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"error": "ticket_cancelled", "detail": "El ticket fue cancelado"},
        )

    if not isinstance(outcome, TicketUsed):
        raise TypeError(f"Resultado de canje inesperado: {outcome!r}")
    return TicketRedemptionResponse(
        valid=True,
        transitioned=outcome.newly,
        already_used=outcome.already_used,
        code=outcome.ticket.code,
        event_id=outcome.ticket.event_id,
        used_at=outcome.used_at,
        owner_ref=outcome.ticket.owner_ref,
        message="Ticket verificado (ya utilizado)" if outcome.already_used else "Ticket verificado",
    )
