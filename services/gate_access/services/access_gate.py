"""Emisión y verificación de credenciales que habilitan un terminal de escaneo"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from uuid import UUID
import hmac
import logging
import secrets

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from shared.auth.jwt_handler import create_gate_token
from shared.database.models import CredentialKind, Event, GateCredential
from shared.exceptions import CredentialExpired, CredentialInvalid
from shared.utils.clock import Clock, as_utc, utcnow
from services.notifications.services.dispatcher import CredentialDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateAuthorization:
    """Autorización concedida a un terminal para un evento"""
    event_id: UUID
    method: str  # otp, password, staff, session
    identity: str
    expires_at: datetime
    token: str
    session_id: Optional[UUID] = None


def authorize_terminal(
    event_id: UUID,
    method: str,
    identity: str,
    expires_at: datetime,
    session_id: Optional[UUID] = None
) -> GateAuthorization:
    token = create_gate_token(event_id, method, identity, expires_at, session_id=session_id)
    return GateAuthorization(
        event_id=event_id,
        method=method,
        identity=identity,
        expires_at=expires_at,
        token=token,
        session_id=session_id,
    )


def generate_otp(length: int) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


class AccessGate:
    """
    Habilita terminales sin exigir una cuenta a cada operador.

    - OTP: un solo uso, por evento, con TTL.
    - Password: secreto compartido vendor/admin, reutilizable.
    - Staff: el dueño del evento o un admin con sesión iniciada.

    Toda autorización resultante expira (GATE_AUTHORIZATION_TTL_MINUTES).
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[CredentialDispatcher] = None,
        clock: Clock = utcnow,
        otp_ttl_seconds: Optional[int] = None,
        authorization_ttl: Optional[timedelta] = None
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock
        self.otp_ttl_seconds = otp_ttl_seconds or settings.OTP_TTL_SECONDS
        self.authorization_ttl = authorization_ttl or timedelta(minutes=settings.GATE_AUTHORIZATION_TTL_MINUTES)

    async def get_event(self, event_id: UUID) -> Optional[Event]:
        result = await self.db.execute(select(Event).where(Event.id == event_id))
        return result.scalar_one_or_none()

    def default_recipients(self, event: Event) -> List[str]:
        """El OTP va al organizador del evento y a un admin"""
        recipients = [r for r in (event.organizer_email, event.organizer_phone) if r]
        if settings.GATE_ADMIN_EMAIL:
            recipients.append(settings.GATE_ADMIN_EMAIL)
        return recipients

    async def request_credential(
        self,
        event_id: UUID,
        recipient_identity: str,
        also_notify: Sequence[str] = ()
    ) -> UUID:
        """
        Emitir un OTP nuevo y entregarlo fuera de banda.

        also_notify recibe el mismo código (p. ej. el admin además del organizador).

        Cada llamada emite un código distinto; los códigos anteriores siguen
        siendo válidos hasta que expiren o se usen.
        """
        event = await self.get_event(event_id)
        if event is None:
            raise LookupError(f"Evento {event_id} no encontrado")

        code = generate_otp(settings.OTP_LENGTH)
        credential = GateCredential(
            event_id=event_id,
            kind=CredentialKind.OTP,
            code=code,
            recipient=recipient_identity,
            issued_at=self.clock(),
            ttl_seconds=self.otp_ttl_seconds,
            consumed=False,
        )
        self.db.add(credential)
        await self.db.commit()
        await self.db.refresh(credential)

        logger.info(f"OTP {credential.id} emitido para evento {event_id} (destinatario: {recipient_identity})")

        if self.dispatcher is not None:
            for identity in [recipient_identity, *also_notify]:
                self.dispatcher.send(identity, code, event_id, event_name=event.name)

        return credential.id

    async def verify_credential(self, event_id: UUID, submitted_code: str) -> GateAuthorization:
        """
        Verificar un OTP y consumirlo.

        Raises:
            CredentialInvalid: el código no existe para el evento o ya fue usado
            CredentialExpired: el código existe pero su TTL venció
        """
        submitted_code = (submitted_code or "").strip()
        now = self.clock()

        stmt = select(GateCredential).where(
            GateCredential.event_id == event_id,
            GateCredential.kind == CredentialKind.OTP,
            GateCredential.code == submitted_code,
        ).order_by(GateCredential.issued_at.desc())
        result = await self.db.execute(stmt)
        candidates = result.scalars().all()

        if not submitted_code or not candidates:
            logger.warning(f"OTP inválido para evento {event_id}")
            raise CredentialInvalid("Código inválido")

        live = [c for c in candidates if not c.consumed]
        if not live:
            logger.warning(f"OTP ya utilizado para evento {event_id}")
            raise CredentialInvalid("El código ya fue utilizado")

        unexpired = [c for c in live if now < as_utc(c.issued_at) + timedelta(seconds=c.ttl_seconds)]
        if not unexpired:
            logger.info(f"OTP expirado para evento {event_id}")
            raise CredentialExpired("El código expiró, solicita uno nuevo")

        credential = unexpired[0]

        # Consumo atómico: dos terminales con el mismo código no pueden ganar ambos
        consume = (
            update(GateCredential)
            .where(GateCredential.id == credential.id, GateCredential.consumed.is_(False))
            .values(consumed=True, consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        outcome = await self.db.execute(consume)
        await self.db.commit()
        if outcome.rowcount != 1:
            raise CredentialInvalid("El código ya fue utilizado")

        logger.info(f"OTP {credential.id} verificado para evento {event_id}")
        return authorize_terminal(
            event_id, "otp", f"otp:{credential.id}", now + self.authorization_ttl
        )

    def _match_shared_password(self, secret: str) -> Optional[str]:
        shared: Dict[str, str] = {
            "vendor": settings.GATE_VENDOR_PASSWORD,
            "admin": settings.GATE_ADMIN_PASSWORD,
        }
        matched = None
        for role, expected in shared.items():
            # Comparar contra todos para no filtrar cuál coincide por tiempo
            if expected and hmac.compare_digest(secret.encode("utf-8"), expected.encode("utf-8")):
                matched = matched or role
        return matched

    async def verify_password(self, event_id: UUID, secret: str) -> GateAuthorization:
        """Verificar el secreto compartido vendor/admin (sin consumo ni TTL)"""
        role = self._match_shared_password(secret or "")
        if role is None:
            logger.warning(f"Password de escáner inválida para evento {event_id}")
            raise CredentialInvalid("Contraseña inválida")

        logger.info(f"Terminal habilitado con password ({role}) para evento {event_id}")
        return authorize_terminal(
            event_id, "password", f"password:{role}", self.clock() + self.authorization_ttl
        )

    async def authorize_staff(self, event_id: UUID, user: Dict) -> GateAuthorization:
        """El dueño del evento o un admin no necesitan OTP si el escaneo está habilitado"""
        event = await self.get_event(event_id)
        if event is None:
            raise LookupError(f"Evento {event_id} no encontrado")

        is_owner = event.vendor_user_id is not None and str(event.vendor_user_id) == str(user.get("user_id"))
        is_admin = user.get("role") == "admin"
        if not event.scan_enabled or not (is_owner or is_admin):
            raise CredentialInvalid("El usuario no puede habilitar el escáner de este evento")

        return authorize_terminal(
            event_id, "staff", f"user:{user['user_id']}", self.clock() + self.authorization_ttl
        )
