"""Máquina de estados del ciclo de escaneo de un terminal"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Union
import logging

logger = logging.getLogger(__name__)


class ScanPhase(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    RESULT = "result"


@dataclass(frozen=True)
class ScanState:
    phase: ScanPhase = ScanPhase.IDLE
    code: Optional[str] = None
    result: Any = None


# ============ EVENTOS ============

@dataclass(frozen=True)
class ScanningStarted:
    pass


@dataclass(frozen=True)
class CodeDecoded:
    code: str


@dataclass(frozen=True)
class RedemptionSucceeded:
    result: Any


@dataclass(frozen=True)
class RedemptionFailed:
    result: Any


@dataclass(frozen=True)
class ResultDismissed:
    pass


@dataclass(frozen=True)
class SessionExpired:
    pass


ScanEvent = Union[ScanningStarted, CodeDecoded, RedemptionSucceeded, RedemptionFailed, ResultDismissed, SessionExpired]


def reduce(state: ScanState, event: ScanEvent) -> ScanState:
    """
    Transición pura. Los eventos que no aplican al estado actual se ignoran
    (devuelve el mismo estado), p. ej. un CodeDecoded mientras se procesa.
    """
    if isinstance(event, SessionExpired):
        if state.phase is ScanPhase.IDLE:
            return state
        return ScanState(ScanPhase.IDLE)

    if state.phase is ScanPhase.IDLE and isinstance(event, ScanningStarted):
        return ScanState(ScanPhase.SCANNING)

    if state.phase is ScanPhase.SCANNING and isinstance(event, CodeDecoded):
        return ScanState(ScanPhase.PROCESSING, code=event.code)

    if state.phase is ScanPhase.PROCESSING and isinstance(event, (RedemptionSucceeded, RedemptionFailed)):
        return ScanState(ScanPhase.RESULT, code=state.code, result=event.result)

    if state.phase is ScanPhase.RESULT and isinstance(event, ResultDismissed):
        return ScanState(ScanPhase.SCANNING)

    return state


@dataclass
class ScanMachine:
    """Único estado autoritativo del terminal"""
    state: ScanState = field(default_factory=ScanState)
    listeners: List[Callable[[ScanState], None]] = field(default_factory=list)

    @property
    def phase(self) -> ScanPhase:
        return self.state.phase

    def dispatch(self, event: ScanEvent) -> bool:
        """Aplicar evento; False si el estado actual lo ignora"""
        new_state = reduce(self.state, event)
        if new_state is self.state:
            logger.debug(f"Evento {type(event).__name__} ignorado en estado {self.state.phase.value}")
            return False
        self.state = new_state
        for listener in self.listeners:
            listener(new_state)
        return True
