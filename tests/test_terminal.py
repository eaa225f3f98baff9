import asyncio
from datetime import timedelta

import pytest

from shared.exceptions import CredentialInvalid, NetworkFailure, SessionExpired
from scanner.client import Cancelled, NotFound, Redeemed, TerminalAuthorization
from scanner.dedup import ScanDeduplicator
from scanner.session import AuthState, TerminalSession
from scanner.state import ScanPhase
from scanner.terminal import ScanTerminal
from tests.helpers import FrozenClock, T0

EVENT_ID = "0b0e4f0e-4d1c-4d8e-9a4f-3f1f2f7c9a10"


class FakeGateClient:
    """Cliente de la API en memoria; registra cada llamada"""

    def __init__(self, expires_at=T0 + timedelta(hours=1)):
        self.expires_at = expires_at
        self.redeemed = []
        self.signed_out = []
        self.verify_calls = 0
        self.outcomes = {}
        self.otp_error = None

    def _authorization(self, method):
        return TerminalAuthorization(
            event_id=EVENT_ID,
            method=method,
            identity=f"{method}:test",
            expires_at=self.expires_at,
            token=f"token-{method}",
        )

    async def get_active_session(self, event_id):
        return None

    async def request_credential(self, event_id, recipient=None):
        return "credential-1"

    async def verify_credential(self, event_id, code):
        self.verify_calls += 1
        if self.otp_error is not None:
            raise self.otp_error
        return self._authorization("otp")

    async def verify_password(self, event_id, password):
        return self._authorization("password")

    async def sign_out(self, token):
        self.signed_out.append(token)

    async def redeem(self, token, code, event_id):
        self.redeemed.append(code)
        outcome = self.outcomes.get(code)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        return Redeemed(code=code, already_used=False, used_at=T0)


@pytest.fixture
def api():
    return FakeGateClient()


@pytest.fixture
async def session(api, clock):
    session = TerminalSession(EVENT_ID, api, clock=clock, countdown_interval=0.01)
    yield session
    session.close()


@pytest.fixture
def terminal(api, session):
    return ScanTerminal(EVENT_ID, api, session, dismiss_timeout=0)


# ============ TerminalSession ============

async def test_password_unlock_authorizes_and_starts_countdown(session):
    ticks = []
    session.on_tick = ticks.append

    await session.unlock_with_password("vendor-secret")
    await asyncio.sleep(0.03)

    assert session.state is AuthState.AUTHORIZED
    assert session.remaining() == timedelta(hours=1)
    assert ticks and ticks[-1] == timedelta(hours=1)


async def test_otp_requires_fresh_request_after_failure(session, api):
    with pytest.raises(CredentialInvalid):
        await session.unlock_with_otp("123456")
    assert api.verify_calls == 0

    await session.request_credential()
    api.otp_error = CredentialInvalid()
    with pytest.raises(CredentialInvalid):
        await session.unlock_with_otp("123456")
    assert api.verify_calls == 1

    # Sin pedir otro código no se vuelve a intentar
    with pytest.raises(CredentialInvalid):
        await session.unlock_with_otp("123456")
    assert api.verify_calls == 1

    api.otp_error = None
    await session.request_credential()
    await session.unlock_with_otp(" 654321 ")
    assert session.state is AuthState.AUTHORIZED


async def test_countdown_expires_session(session, clock):
    expired = []
    session.on_expired = lambda: expired.append(True)
    await session.unlock_with_password("vendor-secret")

    clock.advance(hours=1)
    await asyncio.sleep(0.05)

    assert session.state is AuthState.EXPIRED
    assert expired == [True]
    assert not session.countdown_running
    with pytest.raises(SessionExpired):
        session.require_active()

    session.acknowledge_expiry()
    assert session.state is AuthState.UNAUTHORIZED


async def test_countdown_stops_after_close(session):
    ticks = []
    session.on_tick = ticks.append
    await session.unlock_with_password("vendor-secret")
    await asyncio.sleep(0.03)

    session.close()
    count = len(ticks)
    await asyncio.sleep(0.05)

    assert len(ticks) == count
    assert not session.countdown_running


async def test_sign_out_revokes_and_locks(session, api):
    await session.unlock_with_password("vendor-secret")

    await session.sign_out()

    assert api.signed_out == ["token-password"]
    assert session.state is AuthState.UNAUTHORIZED
    assert not session.countdown_running
    with pytest.raises(SessionExpired):
        session.require_active()


async def test_sign_out_survives_network_failure(session, api):
    async def unreachable(token):
        raise NetworkFailure("sin red")

    api.sign_out = unreachable
    await session.unlock_with_password("vendor-secret")

    await session.sign_out()

    assert session.state is AuthState.UNAUTHORIZED


# ============ ScanTerminal ============

async def test_same_code_twice_within_cooldown_redeems_once(terminal, session, api):
    await session.unlock_with_password("vendor-secret")

    first = await terminal.submit("TKT-ABC123")
    second = await terminal.submit("https://host/verify-ticket/TKT-ABC123")

    assert first.kind == "success"
    assert second is None
    assert api.redeemed == ["TKT-ABC123"]
    assert terminal.phase is ScanPhase.SCANNING


async def test_payload_is_normalized_before_redeeming(terminal, session, api):
    await session.unlock_with_password("vendor-secret")

    await terminal.submit("https://host/service/tour?ticket=TKT-XYZ1")
    await terminal.submit_manual("def456")

    assert api.redeemed == ["TKT-XYZ1", "TKT-DEF456"]


async def test_outcomes_are_mapped_for_the_operator(terminal, session, api):
    await session.unlock_with_password("vendor-secret")
    api.outcomes = {
        "TKT-USED01": Redeemed(code="TKT-USED01", already_used=True, used_at=T0),
        "TKT-NONE00": NotFound(code="TKT-NONE00"),
        "TKT-GONE01": Cancelled(code="TKT-GONE01"),
    }

    used = await terminal.submit("TKT-USED01")
    missing = await terminal.submit("TKT-NONE00")
    cancelled = await terminal.submit("TKT-GONE01")

    assert (used.kind, used.used_at) == ("already_used", T0)
    assert missing.kind == "not_found"
    assert cancelled.kind == "cancelled"
    assert not any(r.admitted for r in (used, missing, cancelled))


async def test_network_failure_is_retryable_and_keeps_scanning(terminal, session, api):
    await session.unlock_with_password("vendor-secret")
    api.outcomes = {"TKT-NET001": NetworkFailure("timeout")}

    result = await terminal.submit("TKT-NET001")

    assert result.kind == "error"
    assert result.retryable is True
    assert terminal.phase is ScanPhase.SCANNING
    assert session.state is AuthState.AUTHORIZED


async def test_expired_authorization_fails_fast_without_network(terminal, session, api, clock):
    await session.unlock_with_password("vendor-secret")
    clock.advance(hours=1)

    with pytest.raises(SessionExpired):
        await terminal.submit("TKT-ABC123")

    assert api.redeemed == []
    assert terminal.phase is ScanPhase.IDLE
    assert session.state is AuthState.EXPIRED


async def test_server_side_expiry_locks_terminal(terminal, session, api):
    await session.unlock_with_password("vendor-secret")
    api.outcomes = {"TKT-ABC123": SessionExpired()}

    with pytest.raises(SessionExpired):
        await terminal.submit("TKT-ABC123")

    assert session.state is AuthState.EXPIRED
    assert terminal.phase is ScanPhase.IDLE


async def test_result_waits_for_operator_dismissal(api, session):
    shown = []

    async def presenter(result):
        shown.append(result)

    terminal = ScanTerminal(EVENT_ID, api, session, presenter=presenter, dismiss_timeout=5)
    await session.unlock_with_password("vendor-secret")

    task = asyncio.create_task(terminal.submit("TKT-ABC123"))
    await asyncio.sleep(0.01)
    assert terminal.phase is ScanPhase.RESULT
    assert [r.code for r in shown] == ["TKT-ABC123"]

    terminal.dismiss()
    result = await asyncio.wait_for(task, timeout=1)

    assert result.kind == "success"
    assert terminal.phase is ScanPhase.SCANNING


async def test_run_consumes_stream_until_session_expires(api, session, clock):
    terminal = ScanTerminal(EVENT_ID, api, session, dedup=ScanDeduplicator(cooldown_seconds=0), dismiss_timeout=0)
    await session.unlock_with_password("vendor-secret")

    async def payloads():
        yield "TKT-AAA111"
        yield "TKT-BBB222"
        clock.advance(hours=1)
        yield "TKT-CCC333"
        yield "TKT-DDD444"

    await terminal.run(payloads())

    assert api.redeemed == ["TKT-AAA111", "TKT-BBB222"]
    assert terminal.phase is ScanPhase.IDLE


async def test_run_requires_authorization(terminal):
    async def payloads():
        yield "TKT-AAA111"

    with pytest.raises(SessionExpired):
        await terminal.run(payloads())
