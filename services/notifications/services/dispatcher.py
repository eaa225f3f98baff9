"""Entrega de credenciales de un solo uso fuera de banda"""
from typing import Protocol
from uuid import UUID
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


class CredentialDispatcher(Protocol):
    """Fire-and-forget: los errores de entrega no se propagan a quien pide el código"""

    def send(self, identity: str, code: str, event_id: UUID, event_name: str = "") -> None:
        ...


class CeleryCredentialDispatcher:
    """Encola el envío del OTP en Celery"""

    def send(self, identity: str, code: str, event_id: UUID, event_name: str = "") -> None:
        from services.notifications.tasks.otp_tasks import send_gate_otp_task

        try:
            send_gate_otp_task.delay(
                identity,
                code,
                str(event_id),
                event_name or str(event_id),
                max(1, settings.OTP_TTL_SECONDS // 60),
            )
        except Exception as e:
            # Broker caído: el OTP queda emitido, el operador puede pedir otro
            logger.error(f"No se pudo encolar OTP para {identity} (evento {event_id}): {e}")
