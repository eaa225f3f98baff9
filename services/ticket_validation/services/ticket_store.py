"""Acceso atómico a los tickets para el canje"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol
from uuid import UUID
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.models import Ticket, TicketStatus
from shared.utils.clock import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketRecord:
    """Snapshot inmutable de un ticket leído del store"""
    code: str
    event_id: UUID
    status: str
    used_at: Optional[datetime]
    owner_ref: Optional[str] = None
    scanned_by: Optional[str] = None


@dataclass(frozen=True)
class CasResult:
    transitioned: bool
    ticket: Optional[TicketRecord]


class TicketStore(Protocol):
    """Contrato que el Redeemer necesita del almacenamiento de tickets"""

    async def lookup(self, code: str, event_id: UUID) -> Optional[TicketRecord]:
        ...

    async def compare_and_set_used(
        self,
        code: str,
        event_id: UUID,
        used_at: datetime,
        scanned_by: Optional[str] = None
    ) -> CasResult:
        ...


def _to_record(ticket: Ticket) -> TicketRecord:
    return TicketRecord(
        code=ticket.code,
        event_id=ticket.event_id,
        status=ticket.status,
        used_at=as_utc(ticket.used_at),
        owner_ref=ticket.owner_ref,
        scanned_by=ticket.scanned_by,
    )


class SqlTicketStore:
    """TicketStore sobre SQLAlchemy async"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lookup(self, code: str, event_id: UUID) -> Optional[TicketRecord]:
        # populate_existing: leer el estado persistido, no el de la identity map
        stmt = (
            select(Ticket)
            .where(Ticket.code == code, Ticket.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        ticket = result.scalar_one_or_none()
        if ticket is None:
            return None
        return _to_record(ticket)

    async def compare_and_set_used(
        self,
        code: str,
        event_id: UUID,
        used_at: datetime,
        scanned_by: Optional[str] = None
    ) -> CasResult:
        """
        Transición issued -> used en un único UPDATE condicional.

        Solo la llamada cuyo UPDATE afecta una fila ve transitioned=True;
        el resto recibe el ticket tal como quedó (con el used_at del primer canje).
        """
        stmt = (
            update(Ticket)
            .where(
                Ticket.code == code,
                Ticket.event_id == event_id,
                Ticket.status == TicketStatus.ISSUED,
            )
            .values(status=TicketStatus.USED, used_at=used_at, scanned_by=scanned_by)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        transitioned = result.rowcount == 1
        ticket = await self.lookup(code, event_id)
        # Liberar el snapshot de lectura
        await self.db.commit()

        if transitioned:
            logger.info(f"Ticket {code} marcado como usado (evento {event_id})")
        return CasResult(transitioned=transitioned, ticket=ticket)
