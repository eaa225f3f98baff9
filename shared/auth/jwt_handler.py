"""Manejo de JWT tokens (usuarios staff y tokens de terminal)"""
from datetime import datetime, timedelta
from typing import Optional, Dict
from uuid import UUID
from jose import JWTError, jwt
import logging
import uuid

from app.core.config import settings
from shared.cache.redis_client import cache_get, cache_set

logger = logging.getLogger(__name__)


GATE_TOKEN_TYPE = 'gate'


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    '''Crear token de acceso JWT para usuarios staff'''
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({'exp': expire, 'type': 'access'})
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> Optional[Dict]:
    '''Decodificar y validar token JWT'''
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except JWTError:
        return None


async def verify_token(token: str) -> Optional[Dict]:
    '''Verificar token de usuario staff (solo tokens de acceso)'''
    payload = decode_token(token)
    if payload is None or payload.get('type') != 'access':
        return None
    return payload


def create_gate_token(
    event_id: UUID,
    method: str,
    identity: str,
    expires_at: datetime,
    session_id: Optional[UUID] = None
) -> str:
    '''
    Crear token de terminal para un evento.

    La expiración se re-valida contra la hora del servidor en cada canje.
    '''
    claims = {
        'type': GATE_TOKEN_TYPE,
        'sub': identity,
        'event_id': str(event_id),
        'method': method,
        'jti': uuid.uuid4().hex,
        'exp': int(expires_at.timestamp()),
    }
    if session_id is not None:
        claims['sid'] = str(session_id)
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_gate_token(token: str) -> Optional[Dict]:
    '''
    Decodificar token de terminal sin validar exp.

    La expiración la valida quien llama contra su reloj.
    '''
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={'verify_exp': False},
        )
    except JWTError:
        return None
    if payload.get('type') != GATE_TOKEN_TYPE:
        return None
    return payload


def _revocation_key(jti: str) -> str:
    return f'gate:revoked:{jti}'


async def revoke_gate_token(claims: Dict, now: datetime) -> None:
    '''Revocar token (sign-out) hasta que expire naturalmente'''
    remaining = int(claims['exp'] - now.timestamp())
    if remaining <= 0:
        return
    await cache_set(_revocation_key(claims['jti']), '1', expire=remaining)
    logger.info(f"Token de terminal revocado para evento {claims.get('event_id')}")


async def is_gate_token_revoked(claims: Dict) -> bool:
    return await cache_get(_revocation_key(claims['jti'])) is not None
