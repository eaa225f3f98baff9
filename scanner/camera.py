"""Captura de cámara: clasificación de fallos y stream de payloads decodificados"""
import errno
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from shared.exceptions import (
    CameraBusy,
    CameraUnavailable,
    DecodeError,
    NoCameraFound,
    PermissionDenied,
)

logger = logging.getLogger(__name__)

# Nombres de error que reportan los navegadores / drivers de cámara
PERMISSION_MARKERS = ("notallowederror", "permission", "not allowed", "securityerror")
NOT_FOUND_MARKERS = ("notfounderror", "no camera", "devicesnotfound", "overconstrainederror")
BUSY_MARKERS = ("notreadableerror", "trackstarterror", "busy", "in use")


def classify_camera_error(exc: BaseException) -> CameraUnavailable:
    """Traducir un error al obtener la cámara a un CameraUnavailable concreto"""
    if isinstance(exc, CameraUnavailable):
        return exc

    if isinstance(exc, PermissionError):
        return PermissionDenied(str(exc))
    if isinstance(exc, (FileNotFoundError, LookupError)):
        return NoCameraFound(str(exc))
    if isinstance(exc, OSError) and exc.errno == errno.EBUSY:
        return CameraBusy(str(exc))

    text = f"{type(exc).__name__} {exc}".lower()
    if any(marker in text for marker in PERMISSION_MARKERS):
        return PermissionDenied(str(exc))
    if any(marker in text for marker in NOT_FOUND_MARKERS):
        return NoCameraFound(str(exc))
    if any(marker in text for marker in BUSY_MARKERS):
        return CameraBusy(str(exc))

    return CameraUnavailable(str(exc))


class CameraSource:
    """
    Stream perezoso, infinito y no reiniciable de payloads decodificados.

    open_camera devuelve el iterador de frames de la cámara; decoder extrae
    el texto del QR de un frame (None si el frame no tiene código).
    """

    def __init__(
        self,
        open_camera: Callable[[], Awaitable[AsyncIterator[Any]]],
        decoder: Callable[[Any], Optional[str]],
    ):
        self.open_camera = open_camera
        self.decoder = decoder
        self._consumed = False

    async def payloads(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("El stream de la cámara no se puede reiniciar")
        self._consumed = True

        try:
            frames = await self.open_camera()
        except Exception as e:
            error = classify_camera_error(e)
            logger.error(f"Cámara no disponible ({error.error_code}): {e}")
            raise error from e

        async for frame in frames:
            try:
                payload = self.decoder(frame)
            except DecodeError as e:
                # Frames ilegibles son normales: no se interrumpe la captura
                logger.debug(f"Frame no decodificable: {e}")
                continue
            except Exception as e:
                logger.debug(f"Decoder falló con el frame ({type(e).__name__}): {e}")
                continue
            if payload:
                yield payload
