"""Taxonomía de errores del control de acceso y canje de tickets"""


class GateError(Exception):
    """Error base del subsistema de acceso/canje"""

    error_code = "gate_error"
    status_code = 400

    def __init__(self, detail: str = ""):
        self.detail = detail or self.__doc__ or self.error_code
        super().__init__(self.detail)


class CredentialExpired(GateError):
    """El código de verificación expiró"""

    error_code = "credential_expired"
    status_code = 410


class CredentialInvalid(GateError):
    """Código o contraseña inválidos"""

    error_code = "credential_invalid"
    status_code = 401


class SessionExpired(GateError):
    """La autorización del escáner expiró"""

    error_code = "session_expired"
    status_code = 401


class NetworkFailure(GateError):
    """
    Error transitorio de red hablando con el backend.

    Es reintentable: no cambia el estado de la sesión ni del ticket.
    """

    error_code = "network_failure"
    status_code = 503


class CameraUnavailable(GateError):
    """No se pudo obtener la cámara"""

    error_code = "camera_unavailable"
    hint = "Revisa la cámara o ingresa el código manualmente."


class PermissionDenied(CameraUnavailable):
    """Permiso de cámara denegado"""

    error_code = "camera_permission_denied"
    hint = "Permite el acceso a la cámara en la configuración del dispositivo o ingresa el código manualmente."


class NoCameraFound(CameraUnavailable):
    """No se encontró ninguna cámara"""

    error_code = "camera_not_found"
    hint = "Conecta una cámara o ingresa el código manualmente."


class CameraBusy(CameraUnavailable):
    """La cámara está en uso por otra aplicación"""

    error_code = "camera_busy"
    hint = "Cierra otras aplicaciones que usen la cámara o ingresa el código manualmente."


class DecodeError(GateError):
    """Frame ilegible; se registra y se ignora"""

    error_code = "decode_error"
