"""Autorización del terminal: desbloqueo, cuenta regresiva y expiración"""
import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from app.core.config import settings
from shared.exceptions import CredentialExpired, CredentialInvalid, NetworkFailure, SessionExpired
from shared.utils.clock import Clock, utcnow
from scanner.client import GateApiClient, TerminalAuthorization

logger = logging.getLogger(__name__)


class AuthState(Enum):
    UNAUTHORIZED = "unauthorized"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"


class TerminalSession:
    """
    Unauthorized -> Authorized -> Expired -> Unauthorized

    La cuenta regresiva es solo para la UI; el servidor vuelve a validar la
    expiración en cada canje. Aun así, con la autorización vencida el canje
    falla aquí sin llamar a la red.
    """

    def __init__(
        self,
        event_id: str,
        client: GateApiClient,
        clock: Clock = utcnow,
        countdown_interval: Optional[float] = None,
        on_tick: Optional[Callable[[timedelta], None]] = None,
        on_expired: Optional[Callable[[], None]] = None,
    ):
        self.event_id = event_id
        self.client = client
        self.clock = clock
        self.countdown_interval = countdown_interval or settings.COUNTDOWN_INTERVAL_SECONDS
        self.on_tick = on_tick
        self.on_expired = on_expired

        self.state = AuthState.UNAUTHORIZED
        self.authorization: Optional[TerminalAuthorization] = None
        # Tras un OTP fallido hay que pedir un código nuevo antes de reintentar
        self.needs_new_credential = True
        self._countdown: Optional[asyncio.Task] = None

    # ============ DESBLOQUEO ============

    async def unlock_with_session(self) -> bool:
        """Usar la sesión de escaneo activa del evento, si hay una"""
        authorization = await self.client.get_active_session(self.event_id)
        if authorization is None:
            return False
        self._authorize(authorization)
        return True

    async def request_credential(self, recipient: Optional[str] = None) -> str:
        credential_id = await self.client.request_credential(self.event_id, recipient)
        self.needs_new_credential = False
        return credential_id

    async def unlock_with_otp(self, code: str) -> TerminalAuthorization:
        if self.needs_new_credential:
            raise CredentialInvalid("Solicita un código nuevo antes de reintentar")
        try:
            authorization = await self.client.verify_credential(self.event_id, code.strip())
        except (CredentialInvalid, CredentialExpired):
            self.needs_new_credential = True
            raise
        self._authorize(authorization)
        return authorization

    async def unlock_with_password(self, password: str) -> TerminalAuthorization:
        authorization = await self.client.verify_password(self.event_id, password)
        self._authorize(authorization)
        return authorization

    def _authorize(self, authorization: TerminalAuthorization) -> None:
        self._cancel_countdown()
        self.authorization = authorization
        self.state = AuthState.AUTHORIZED
        self.needs_new_credential = True
        logger.info(
            f"Terminal autorizado ({authorization.method}) para evento {self.event_id} "
            f"hasta {authorization.expires_at.isoformat()}"
        )
        self._countdown = asyncio.get_running_loop().create_task(self._run_countdown())

    # ============ EXPIRACIÓN ============

    def remaining(self) -> timedelta:
        if self.authorization is None:
            return timedelta(0)
        return max(self.authorization.expires_at - self.clock(), timedelta(0))

    def require_active(self) -> TerminalAuthorization:
        """Autorización vigente o SessionExpired, sin tocar la red"""
        if self.state is AuthState.AUTHORIZED and self.remaining() <= timedelta(0):
            self.expire()
        if self.state is not AuthState.AUTHORIZED or self.authorization is None:
            raise SessionExpired("El escáner no está autorizado")
        return self.authorization

    def acknowledge_expiry(self) -> None:
        if self.state is AuthState.EXPIRED:
            self.state = AuthState.UNAUTHORIZED
            self.authorization = None

    async def _run_countdown(self) -> None:
        try:
            while True:
                remaining = self.remaining()
                if self.on_tick is not None:
                    self.on_tick(remaining)
                if remaining <= timedelta(0):
                    self._countdown = None
                    self.expire()
                    return
                await asyncio.sleep(min(self.countdown_interval, remaining.total_seconds()))
        except asyncio.CancelledError:
            pass

    def expire(self) -> None:
        if self.state is not AuthState.AUTHORIZED:
            return
        self._cancel_countdown()
        self.state = AuthState.EXPIRED
        logger.info(f"Autorización del terminal expiró para evento {self.event_id}")
        if self.on_expired is not None:
            self.on_expired()

    def _cancel_countdown(self) -> None:
        if self._countdown is not None:
            task, self._countdown = self._countdown, None
            if task is not asyncio.current_task():
                task.cancel()

    # ============ CIERRE ============

    async def sign_out(self) -> None:
        """Cerrar sesión: revocar token en el servidor y bloquear el terminal"""
        authorization = self.authorization
        self._cancel_countdown()
        self.state = AuthState.UNAUTHORIZED
        self.authorization = None
        if authorization is not None:
            try:
                await self.client.sign_out(authorization.token)
            except NetworkFailure as e:
                # El token expira solo; el terminal ya quedó bloqueado
                logger.warning(f"No se pudo revocar el token en el servidor: {e}")

    def close(self) -> None:
        """El operador sale de la pantalla de escaneo"""
        self._cancel_countdown()

    @property
    def countdown_running(self) -> bool:
        return self._countdown is not None and not self._countdown.done()

    @property
    def expires_at(self) -> Optional[datetime]:
        return self.authorization.expires_at if self.authorization else None
