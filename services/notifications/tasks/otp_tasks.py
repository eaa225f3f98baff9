"""Tareas asíncronas para envío de códigos de verificación de escáner"""
import logging
import asyncio
from shared.cache.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper para ejecutar coroutines en contexto síncrono de Celery"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def is_email(identity: str) -> bool:
    return "@" in identity


@celery_app.task(
    name="send_gate_otp",
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=60,
    retry_kwargs={"max_retries": 3},
)
def send_gate_otp_task(self, identity: str, code: str, event_id: str,
                       event_name: str, ttl_minutes: int):
    """
    Entregar un OTP por email o SMS según el identificador del destinatario.

    Los fallos de entrega no llegan a quien pidió el código; se reintentan aquí.
    """
    from services.notifications.services.email_service import EmailService
    from services.notifications.services.sms_service import SmsService

    logger.info(f"[CELERY] Enviando OTP de escáner a {identity} para evento {event_id}")

    if is_email(identity):
        sent = run_async(EmailService().send_gate_otp_email(identity, code, event_name, ttl_minutes))
    else:
        sent = run_async(SmsService().send_gate_otp_sms(identity, code, event_name, ttl_minutes))

    if not sent:
        raise Exception(f"Error enviando OTP a {identity}")

    return {"status": "sent", "identity": identity, "event_id": event_id}
