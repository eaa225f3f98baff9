from datetime import datetime, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from main import app
from shared.exceptions import CredentialExpired, CredentialInvalid, GateError, NetworkFailure, SessionExpired
from scanner.client import Cancelled, GateApiClient, NotFound, Redeemed
from scanner.session import AuthState, TerminalSession
from scanner.terminal import ScanTerminal

EVENT_ID = "0b0e4f0e-4d1c-4d8e-9a4f-3f1f2f7c9a10"


def client_for(handler) -> GateApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://gate")
    return GateApiClient("http://gate", http_client=http)


async def test_transport_error_is_network_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkFailure):
        await client_for(handler).redeem("token", "TKT-ABC123", EVENT_ID)


@pytest.mark.parametrize("status", [500, 502, 503, 429])
async def test_server_errors_are_network_failures(status):
    with pytest.raises(NetworkFailure):
        await client_for(lambda request: httpx.Response(status)).redeem("token", "TKT-ABC123", EVENT_ID)


@pytest.mark.parametrize("code, exc", [
    ("credential_invalid", CredentialInvalid),
    ("credential_expired", CredentialExpired),
    ("session_expired", SessionExpired),
])
async def test_error_codes_map_to_exceptions(code, exc):
    def handler(request):
        return httpx.Response(401, json={"error": code, "detail": "nope"})

    with pytest.raises(exc) as info:
        await client_for(handler).verify_credential(EVENT_ID, "123456")
    assert info.value.detail == "nope"


async def test_unexpected_error_is_gate_error():
    def handler(request):
        return httpx.Response(403, json={"detail": "El terminal no está habilitado para este evento"})

    with pytest.raises(GateError):
        await client_for(handler).redeem("token", "TKT-ABC123", EVENT_ID)


async def test_redeem_outcomes():
    def handler(request):
        code = request.read().decode()
        if "TKT-NONE00" in code:
            return httpx.Response(404, json={"error": "ticket_not_found"})
        if "TKT-GONE01" in code:
            return httpx.Response(409, json={"error": "ticket_cancelled"})
        assert request.headers["Authorization"] == "Bearer token"
        return httpx.Response(200, json={
            "valid": True,
            "transitioned": False,
            "already_used": True,
            "code": "TKT-ABC123",
            "event_id": EVENT_ID,
            "used_at": "2026-03-14T20:00:00Z",
            "owner_ref": "order-1",
        })

    api = client_for(handler)

    assert await api.redeem("token", "TKT-NONE00", EVENT_ID) == NotFound("TKT-NONE00")
    assert await api.redeem("token", "TKT-GONE01", EVENT_ID) == Cancelled("TKT-GONE01")
    assert await api.redeem("token", "TKT-ABC123", EVENT_ID) == Redeemed(
        code="TKT-ABC123",
        already_used=True,
        used_at=datetime(2026, 3, 14, 20, 0, tzinfo=timezone.utc),
        owner_ref="order-1",
    )


async def test_no_active_session_is_none():
    api = client_for(lambda request: httpx.Response(404, json={"detail": "No hay sesión de escaneo activa"}))
    assert await api.get_active_session(EVENT_ID) is None


async def test_sign_out_of_expired_token_is_ignored():
    api = client_for(lambda request: httpx.Response(401, json={"error": "session_expired"}))
    await api.sign_out("token")


async def test_terminal_against_api(client, event, make_ticket, clock):
    """Terminal completo contra la app real: password, canje, repetido, expiración"""
    await make_ticket(event.id, "TKT-ABC123")
    api = GateApiClient(
        "http://test",
        http_client=AsyncClient(transport=ASGITransport(app=app), base_url="http://test"),
    )
    session = TerminalSession(str(event.id), api, clock=clock)
    terminal = ScanTerminal(str(event.id), api, session, dismiss_timeout=0)

    try:
        await session.unlock_with_password("vendor-secret")
        first = await terminal.submit("https://host/service/festival?ticket=TKT-ABC123")
        terminal.dedup.clear()
        second = await terminal.submit_manual("abc123")
        missing = await terminal.submit("TKT-NONE00")

        assert first.kind == "success"
        assert second.kind == "already_used"
        assert second.used_at == first.used_at
        assert missing.kind == "not_found"

        await session.sign_out()
        assert session.state is AuthState.UNAUTHORIZED
    finally:
        terminal.close()
        await api.close()
