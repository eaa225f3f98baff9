"""Supresión de escaneos repetidos del mismo código"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional
import logging
import time

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ScanAttempt:
    normalized_code: str
    timestamp: float


class ScanDeduplicator:
    """
    Rechaza el mismo código dentro de la ventana de enfriamiento.

    Absorbe el jitter de la cámara y los dobles toques del operador; no es
    una garantía del servidor (eso lo hace el canje atómico). Solo memoria.
    """

    def __init__(self, cooldown_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.cooldown_seconds = settings.SCAN_COOLDOWN_SECONDS if cooldown_seconds is None else cooldown_seconds
        self.clock = clock
        self._attempts: Dict[str, ScanAttempt] = {}

    def _prune(self, now: float) -> None:
        stale = [code for code, attempt in self._attempts.items()
                 if now - attempt.timestamp >= self.cooldown_seconds]
        for code in stale:
            del self._attempts[code]

    def should_submit(self, code: str) -> bool:
        """True y registra el intento si el código no se envió en la ventana"""
        now = self.clock()
        self._prune(now)
        if code in self._attempts:
            logger.debug(f"Escaneo repetido ignorado: {code}")
            return False
        self._attempts[code] = ScanAttempt(normalized_code=code, timestamp=now)
        return True

    def clear(self) -> None:
        self._attempts.clear()
