"""Terminal de escaneo: orquesta normalización, de-dup, canje y diálogo de resultado"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Optional

from app.core.config import settings
from shared.exceptions import GateError, NetworkFailure, SessionExpired
from scanner.client import Cancelled, GateApiClient, NotFound, Redeemed
from scanner.dedup import ScanDeduplicator
from scanner.normalize import extract_ticket_code, manual_entry_code
from scanner.session import TerminalSession
from scanner.state import (
    CodeDecoded,
    RedemptionFailed,
    RedemptionSucceeded,
    ResultDismissed,
    ScanMachine,
    ScanningStarted,
    ScanPhase,
    SessionExpired as SessionExpiredEvent,
)

logger = logging.getLogger(__name__)

SUCCESS = "success"
ALREADY_USED = "already_used"
NOT_FOUND = "not_found"
CANCELLED = "cancelled"
ERROR = "error"


@dataclass(frozen=True)
class ScanResult:
    """Lo que ve el operador en el diálogo de resultado"""
    code: str
    kind: str
    detail: str = ""
    used_at: Optional[datetime] = None
    retryable: bool = False

    @property
    def admitted(self) -> bool:
        return self.kind == SUCCESS


Presenter = Callable[[ScanResult], Awaitable[None]]


class ScanTerminal:
    """
    Un terminal = una máquina de estados.

    Mientras hay un resultado en pantalla no se consume el siguiente payload:
    se espera a dismiss() o al timeout del diálogo.
    """

    def __init__(
        self,
        event_id: str,
        client: GateApiClient,
        session: TerminalSession,
        machine: Optional[ScanMachine] = None,
        dedup: Optional[ScanDeduplicator] = None,
        presenter: Optional[Presenter] = None,
        dismiss_timeout: Optional[float] = None,
    ):
        self.event_id = event_id
        self.client = client
        self.session = session
        self.machine = machine or ScanMachine()
        self.dedup = dedup or ScanDeduplicator()
        self.presenter = presenter
        self.dismiss_timeout = (
            settings.RESULT_DISMISS_TIMEOUT_SECONDS if dismiss_timeout is None else dismiss_timeout
        )
        self._dismissed = asyncio.Event()

        previous = session.on_expired

        def on_expired():
            self.machine.dispatch(SessionExpiredEvent())
            self._dismissed.set()
            if previous is not None:
                previous()

        session.on_expired = on_expired

    @property
    def phase(self) -> ScanPhase:
        return self.machine.phase

    def start(self) -> None:
        self.session.require_active()
        self.machine.dispatch(ScanningStarted())

    async def submit(self, raw: Optional[str]) -> Optional[ScanResult]:
        """
        Procesar un payload decodificado.

        Devuelve None si el payload se ignoró (vacío, repetido o el terminal
        no está escaneando). Lanza SessionExpired sin llamar a la red si la
        autorización venció.
        """
        code = extract_ticket_code(raw)
        if code is None:
            return None

        try:
            authorization = self.session.require_active()
        except SessionExpired:
            self.machine.dispatch(SessionExpiredEvent())
            raise

        if self.machine.phase is ScanPhase.IDLE:
            self.machine.dispatch(ScanningStarted())
        if self.machine.phase is not ScanPhase.SCANNING:
            logger.debug(f"Código {code} ignorado: terminal en estado {self.machine.phase.value}")
            return None

        if not self.dedup.should_submit(code):
            return None

        self.machine.dispatch(CodeDecoded(code))
        result = await self._redeem(authorization.token, code)
        if self.machine.phase is not ScanPhase.PROCESSING:
            # La sesión expiró durante el canje
            return result

        if result.kind in (SUCCESS, ALREADY_USED):
            self.machine.dispatch(RedemptionSucceeded(result))
        else:
            self.machine.dispatch(RedemptionFailed(result))

        await self._present(result)
        return result

    async def submit_manual(self, suffix: str) -> Optional[ScanResult]:
        code = manual_entry_code(suffix)
        if code is None:
            return None
        return await self.submit(code)

    async def _redeem(self, token: str, code: str) -> ScanResult:
        try:
            outcome = await self.client.redeem(token, code, self.event_id)
        except NetworkFailure as e:
            return ScanResult(code=code, kind=ERROR, detail=e.detail, retryable=True)
        except SessionExpired:
            # El servidor es la autoridad sobre la expiración
            self.session.expire()
            raise
        except GateError as e:
            logger.warning(f"Canje de {code} rechazado: {e.detail}")
            return ScanResult(code=code, kind=ERROR, detail=e.detail)

        if isinstance(outcome, Redeemed):
            if outcome.already_used:
                return ScanResult(
                    code=code,
                    kind=ALREADY_USED,
                    detail=f"Ticket ya utilizado el {outcome.used_at.isoformat()}",
                    used_at=outcome.used_at,
                )
            return ScanResult(code=code, kind=SUCCESS, detail="Ticket válido", used_at=outcome.used_at)
        if isinstance(outcome, NotFound):
            return ScanResult(code=code, kind=NOT_FOUND, detail="Ticket no encontrado para este evento")
        if isinstance(outcome, Cancelled):
            return ScanResult(code=code, kind=CANCELLED, detail="Ticket cancelado")
        raise TypeError(f"Resultado de canje inesperado: {outcome!r}")

    async def _present(self, result: ScanResult) -> None:
        self._dismissed.clear()
        if self.presenter is not None:
            await self.presenter(result)
        try:
            await asyncio.wait_for(self._dismissed.wait(), timeout=self.dismiss_timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Resultado de {result.code} cerrado por timeout")
        self.machine.dispatch(ResultDismissed())

    def dismiss(self) -> None:
        """El operador cerró el diálogo de resultado"""
        self._dismissed.set()

    async def run(self, payloads: AsyncIterator[str]) -> None:
        """Loop de captura; termina cuando expira la sesión o se acaba el stream"""
        self.start()
        async for payload in payloads:
            try:
                await self.submit(payload)
            except SessionExpired:
                logger.info(f"Escaneo detenido para evento {self.event_id}: sesión expirada")
                break
            if self.machine.phase is ScanPhase.IDLE:
                break

    def close(self) -> None:
        self.session.close()
        self.dedup.clear()
        self._dismissed.set()
