"""Ventanas de escaneo con hora de inicio y fin"""
from datetime import datetime
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.models import ScanSession
from shared.utils.clock import Clock, as_utc, utcnow

logger = logging.getLogger(__name__)


def is_active(session: ScanSession, now: datetime) -> bool:
    """Activa si start_time <= now < end_time y no se cerró"""
    if session.closed_at is not None:
        return False
    return as_utc(session.start_time) <= now < as_utc(session.end_time)


class ScanSessionService:

    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    async def get_active_session(self, event_id: UUID) -> Optional[ScanSession]:
        now = self.clock()
        stmt = select(ScanSession).where(
            ScanSession.event_id == event_id,
            ScanSession.closed_at.is_(None),
            ScanSession.start_time <= now,
            ScanSession.end_time > now,
        ).order_by(ScanSession.end_time.desc())
        result = await self.db.execute(stmt)
        # Re-evaluar en Python: SQLite compara fechas como texto
        for session in result.scalars().all():
            if is_active(session, now):
                return session
        return None

    async def get_session(self, session_id: UUID) -> Optional[ScanSession]:
        result = await self.db.execute(
            select(ScanSession)
            .where(ScanSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def open_session(
        self,
        event_id: UUID,
        start_time: datetime,
        end_time: datetime,
        authorized_identity: str
    ) -> ScanSession:
        start_time, end_time = as_utc(start_time), as_utc(end_time)
        if end_time <= start_time:
            raise ValueError("end_time debe ser posterior a start_time")

        session = ScanSession(
            event_id=event_id,
            start_time=start_time,
            end_time=end_time,
            authorized_identity=authorized_identity,
        )
        self.db.add(session)
        await self.db.commit()
        await self.db.refresh(session)
        logger.info(
            f"Sesión de escaneo {session.id} abierta para evento {event_id} "
            f"({start_time.isoformat()} - {end_time.isoformat()}) por {authorized_identity}"
        )
        return session

    async def close_session(self, session_id: UUID) -> bool:
        session = await self.get_session(session_id)
        if session is None or session.closed_at is not None:
            return False
        session.closed_at = self.clock()
        await self.db.commit()
        logger.info(f"Sesión de escaneo {session_id} cerrada")
        return True
