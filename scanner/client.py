"""Cliente HTTP del terminal hacia la API de acceso y canje"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union
import logging

import httpx

from shared.exceptions import (
    CredentialExpired,
    CredentialInvalid,
    GateError,
    NetworkFailure,
    SessionExpired,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TerminalAuthorization:
    event_id: str
    method: str
    identity: str
    expires_at: datetime
    token: str
    session_id: Optional[str] = None


@dataclass(frozen=True)
class Redeemed:
    code: str
    already_used: bool
    used_at: datetime
    owner_ref: Optional[str] = None


@dataclass(frozen=True)
class NotFound:
    code: str


@dataclass(frozen=True)
class Cancelled:
    code: str


RedemptionResult = Union[Redeemed, NotFound, Cancelled]

ERRORS_BY_CODE = {
    "credential_expired": CredentialExpired,
    "credential_invalid": CredentialInvalid,
    "session_expired": SessionExpired,
}


def _parse_datetime(value: str) -> datetime:
    # Pydantic serializa UTC con sufijo Z
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse_authorization(data: Dict[str, Any]) -> TerminalAuthorization:
    return TerminalAuthorization(
        event_id=str(data["event_id"]),
        method=data["method"],
        identity=data["identity"],
        expires_at=_parse_datetime(data["expires_at"]),
        token=data["token"],
        session_id=data.get("session_id"),
    )


class GateApiClient:
    """
    Envuelve httpx.AsyncClient.

    Errores de transporte, 5xx y 429 se reportan como NetworkFailure
    (reintentables); los errores de credencial/sesión con su excepción propia.
    """

    def __init__(self, base_url: str, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self):
        await self.http.aclose()

    async def _request(self, method: str, url: str, token: Optional[str] = None, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self.http.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"Error de red en {method} {url}: {e}")
            raise NetworkFailure(f"Sin conexión con el servidor: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            logger.warning(f"{method} {url} respondió {response.status_code}")
            raise NetworkFailure(f"El servidor respondió {response.status_code}, intenta nuevamente")
        return response

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        error_cls = ERRORS_BY_CODE.get(body.get("error"))
        detail = body.get("detail") or response.text
        if error_cls is not None:
            raise error_cls(detail)
        raise GateError(f"{response.status_code}: {detail}")

    async def request_credential(self, event_id: str, recipient: Optional[str] = None) -> str:
        payload = {"recipient": recipient} if recipient else None
        response = await self._request("POST", f"/api/v1/gate/{event_id}/credentials", json=payload)
        self._raise_for_error(response)
        return response.json()["credential_id"]

    async def verify_credential(self, event_id: str, code: str) -> TerminalAuthorization:
        response = await self._request("POST", f"/api/v1/gate/{event_id}/credentials/verify", json={"code": code})
        self._raise_for_error(response)
        return _parse_authorization(response.json())

    async def verify_password(self, event_id: str, password: str) -> TerminalAuthorization:
        response = await self._request("POST", f"/api/v1/gate/{event_id}/password", json={"password": password})
        self._raise_for_error(response)
        return _parse_authorization(response.json())

    async def get_active_session(self, event_id: str) -> Optional[TerminalAuthorization]:
        response = await self._request("GET", f"/api/v1/gate/{event_id}/session")
        if response.status_code == 404:
            return None
        self._raise_for_error(response)
        return _parse_authorization(response.json())

    async def sign_out(self, token: str) -> None:
        response = await self._request("POST", "/api/v1/gate/sign-out", token=token)
        if response.status_code == 401:
            # Ya expirado o revocado
            return
        self._raise_for_error(response)

    async def redeem(self, token: str, code: str, event_id: str) -> RedemptionResult:
        response = await self._request(
            "POST",
            "/api/v1/tickets/redeem",
            token=token,
            json={"code": code, "event_id": event_id},
        )
        if response.status_code == 404:
            return NotFound(code=code)
        if response.status_code == 409:
            return Cancelled(code=code)
        self._raise_for_error(response)

        data = response.json()
        return Redeemed(
            code=data["code"],
            already_used=data["already_used"],
            used_at=_parse_datetime(data["used_at"]),
            owner_ref=data.get("owner_ref"),
        )
