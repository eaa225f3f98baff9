"""Normalización de payloads QR / entrada manual a un código de ticket"""
import re
from typing import Optional
from urllib.parse import parse_qs, unquote, urlsplit

from app.core.config import settings

# https://<host>[/prefijo]/service/{slug}?ticket=TKT-XXXXXX
SERVICE_PATH = re.compile(r"/service/[^/]+/?$")
# https://<host>/verify-ticket/TKT-XXXXXX (formato anterior)
LEGACY_PATH = re.compile(r"/verify-ticket/([^/?#]+)/?$")


def extract_ticket_code(payload: Optional[str]) -> Optional[str]:
    """
    Extraer el código de ticket de un payload decodificado.

    Reglas, en orden:
      1. URL de detalle de servicio con parámetro ?ticket=
      2. URL antigua /verify-ticket/{code}
      3. El payload mismo
    """
    if payload is None:
        return None
    payload = payload.strip()
    if not payload:
        return None

    parts = urlsplit(payload)

    if SERVICE_PATH.search(parts.path):
        ticket = parse_qs(parts.query).get("ticket")
        if ticket and ticket[0].strip():
            return ticket[0].strip()

    legacy = LEGACY_PATH.search(parts.path)
    if legacy:
        return unquote(legacy.group(1))

    return payload


def manual_entry_code(suffix: str, prefix: Optional[str] = None) -> Optional[str]:
    """El operador tipea solo el sufijo; se re-arma como TKT- + sufijo en mayúsculas"""
    prefix = prefix if prefix is not None else settings.TICKET_CODE_PREFIX
    suffix = (suffix or "").strip().upper()
    if suffix.startswith(prefix.upper()):
        suffix = suffix[len(prefix):]
    if not suffix:
        return None
    return f"{prefix}{suffix}"
