"""Envío de SMS usando la API REST de Twilio"""
import logging
import httpx
from app.core.config import settings

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class SmsService:
    """Servicio para enviar SMS con Twilio"""

    def __init__(self, timeout: float = 10.0):
        self.account_sid = settings.TWILIO_ACCOUNT_SID
        self.auth_token = settings.TWILIO_AUTH_TOKEN
        self.from_number = settings.TWILIO_PHONE_NUMBER
        self.timeout = timeout
        self.configured = bool(self.account_sid and self.auth_token and self.from_number)

        if not self.configured:
            logger.warning("Twilio no configurado. Los SMS no se enviarán.")

    async def send_sms(self, to_number: str, body: str) -> bool:
        if not self.configured:
            logger.warning(f"Twilio no configurado. SMS simulado a {to_number}")
            return True

        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    auth=(self.account_sid, self.auth_token),
                    data={"From": self.from_number, "To": to_number, "Body": body},
                )
        except httpx.HTTPError as e:
            logger.error(f"Error de red enviando SMS a {to_number}: {e}")
            return False

        if response.status_code >= 400:
            logger.error(f"Twilio respondió {response.status_code}: {response.text}")
            return False

        logger.info(f"SMS enviado a {to_number} (SID: {response.json().get('sid', 'N/A')})")
        return True

    async def send_gate_otp_sms(self, to_number: str, code: str, event_name: str, ttl_minutes: int) -> bool:
        body = f"Código para escanear {event_name}: {code}. Expira en {ttl_minutes} min."
        return await self.send_sms(to_number, body)
