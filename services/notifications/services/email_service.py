"""Servicio de envío de emails usando Resend"""
import html
import os
import asyncio
import logging
from typing import Optional, List, Union
import resend
from app.core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Servicio para enviar emails usando Resend (desarrollo y producción)"""

    def __init__(self):
        self.resend_api_key = os.getenv("RESEND_API_KEY", settings.RESEND_API_KEY)
        self.from_email = os.getenv("RESEND_FROM_EMAIL", settings.RESEND_FROM_EMAIL)

        if not self.resend_api_key:
            logger.warning("RESEND_API_KEY no configurado. Los emails no se enviarán.")
            self.resend_configured = False
        else:
            resend.api_key = self.resend_api_key
            self.resend_configured = True
            logger.info(f"EmailService (Resend) inicializado con from: {self.from_email}")

    async def send_email(
        self,
        to_email: Union[str, List[str]],
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Enviar email usando Resend

        Returns:
            True si se envió correctamente, False en caso contrario
        """
        if not self.resend_configured:
            logger.warning(f"Resend no configurado. Email simulado a {to_email}: {subject}")
            return True

        to_emails = [to_email] if isinstance(to_email, str) else to_email

        params = {
            "from": self.from_email,
            "to": to_emails,
            "subject": subject,
            "html": html_content,
        }
        if text_content:
            params["text"] = text_content

        # Resend SDK es síncrono, se ejecuta en un thread pool
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, resend.Emails.send, params)
        except Exception as e:
            logger.error(f"Error enviando email a {to_emails}: {e}", exc_info=True)
            return False

        logger.info(f"Email enviado exitosamente a {to_emails}: {subject} (ID: {result.get('id', 'N/A')})")
        return True

    async def send_gate_otp_email(
        self,
        to_email: str,
        code: str,
        event_name: str,
        ttl_minutes: int
    ) -> bool:
        """Enviar código de verificación para habilitar un escáner"""
        subject = f"Código de verificación para escanear: {event_name}"
        text_content = (
            f"Tu código de verificación para escanear tickets de {event_name} es: {code}\n"
            f"El código expira en {ttl_minutes} minutos y solo puede usarse una vez."
        )
        safe_event_name = html.escape(event_name)
        html_content = f"""
        <div style="font-family: Arial, sans-serif; max-width: 480px; margin: 0 auto;">
            <h2 style="color: #1f2937;">Verificación de escáner</h2>
            <p>Alguien solicitó acceso al escáner de tickets de <strong>{safe_event_name}</strong>.</p>
            <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px; font-family: monospace;">{code}</p>
            <p style="color: #6b7280;">El código expira en {ttl_minutes} minutos y solo puede usarse una vez.</p>
        </div>
        """
        return await self.send_email(to_email, subject, html_content, text_content)
