"""Dependencies de autenticación para FastAPI"""
from datetime import datetime
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict
from uuid import UUID
import logging

from shared.auth.jwt_handler import verify_token, decode_gate_token, is_gate_token_revoked
from shared.database.connection import get_db
from shared.database.models import ScanSession
from shared.exceptions import SessionExpired
from shared.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_clock():
    '''Reloj del servidor (sobrescribible en tests)'''
    return utcnow


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Dict:
    '''Obtener usuario actual desde token JWT'''
    payload = await verify_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido o expirado',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    user_id = payload.get('sub') or payload.get('user_id')
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token inválido: falta user_id',
        )

    return {
        'user_id': user_id,
        'email': payload.get('email'),
        'role': payload.get('app_metadata', {}).get('role', 'user')
    }


async def get_current_staff(
    current_user: Dict = Depends(get_current_user)
) -> Dict:
    '''Verificar que el usuario sea vendor o admin'''
    role = current_user.get('role')
    if role not in ['vendor', 'admin']:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Se requieren permisos de vendor o administrador'
        )
    return current_user


async def get_gate_claims(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    clock=Depends(get_clock),
) -> Dict:
    '''
    Validar el token del terminal contra la hora del servidor.

    La cuenta regresiva del terminal es solo informativa: aquí se decide.
    '''
    claims = decode_gate_token(credentials.credentials)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Token de terminal inválido',
            headers={'WWW-Authenticate': 'Bearer'},
        )

    now: datetime = clock()
    if now.timestamp() >= claims['exp']:
        raise SessionExpired('La autorización del escáner expiró')

    if await is_gate_token_revoked(claims):
        raise SessionExpired('La autorización del escáner fue revocada')

    claims['_token'] = credentials.credentials
    return claims


async def get_current_terminal(
    claims: Dict = Depends(get_gate_claims),
    db: AsyncSession = Depends(get_db),
    clock=Depends(get_clock),
) -> Dict:
    '''Terminal autorizado; las sesiones se re-validan contra la base de datos'''
    session_id = claims.get('sid')
    if session_id:
        result = await db.execute(
            select(ScanSession).where(ScanSession.id == UUID(session_id))
        )
        session = result.scalar_one_or_none()
        now = clock()
        if (
            session is None
            or session.closed_at is not None
            or not (as_utc(session.start_time) <= now < as_utc(session.end_time))
        ):
            logger.info(f"Sesión de escaneo {session_id} ya no está activa")
            raise SessionExpired('La sesión de escaneo terminó')

    return claims
