"""Canje de tickets: transición issued -> used exactamente una vez"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union
from uuid import UUID
import logging

from shared.database.models import TicketStatus
from shared.utils.clock import Clock, utcnow
from services.ticket_validation.services.ticket_store import TicketStore, TicketRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketNotFound:
    code: str


@dataclass(frozen=True)
class TicketCancelled:
    ticket: TicketRecord


@dataclass(frozen=True)
class TicketUsed:
    """
    Canje exitoso.

    newly=False significa que el ticket ya estaba usado (por este u otro
    terminal); used_at es siempre el del primer canje.
    """
    ticket: TicketRecord
    newly: bool
    used_at: datetime

    @property
    def already_used(self) -> bool:
        return not self.newly


RedemptionOutcome = Union[TicketNotFound, TicketCancelled, TicketUsed]


class Redeemer:
    """Ejecuta el canje contra el TicketStore y devuelve un resultado determinista"""

    def __init__(self, store: TicketStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock

    async def redeem(
        self,
        code: str,
        event_id: UUID,
        scanned_by: Optional[str] = None
    ) -> RedemptionOutcome:
        result = await self.store.compare_and_set_used(
            code, event_id, used_at=self.clock(), scanned_by=scanned_by
        )
        ticket = result.ticket

        if ticket is None:
            logger.info(f"Canje rechazado: ticket {code} no existe para evento {event_id}")
            return TicketNotFound(code=code)

        if result.transitioned:
            return TicketUsed(ticket=ticket, newly=True, used_at=ticket.used_at)

        if ticket.status == TicketStatus.CANCELLED:
            logger.info(f"Canje rechazado: ticket {code} cancelado")
            return TicketCancelled(ticket=ticket)

        if ticket.status == TicketStatus.USED:
            logger.info(f"Ticket {code} ya había sido usado el {ticket.used_at.isoformat()}")
            return TicketUsed(ticket=ticket, newly=False, used_at=ticket.used_at)

        # El CAS solo falla si el estado no es issued
        raise RuntimeError(f"Estado inconsistente del ticket {code}: {ticket.status}")
