import asyncio
import uuid
from datetime import timedelta

import pytest
from jose import jwt

from app.core.config import settings
from shared.auth.jwt_handler import decode_gate_token
from shared.database import connection
from shared.exceptions import CredentialExpired, CredentialInvalid
from services.gate_access.services.access_gate import AccessGate, generate_otp


@pytest.fixture
def gate(db_session, dispatcher, clock):
    return AccessGate(db_session, dispatcher=dispatcher, clock=clock, otp_ttl_seconds=600)


def test_generate_otp_is_numeric_with_requested_length():
    code = generate_otp(6)
    assert len(code) == 6
    assert code.isdigit()


async def test_request_credential_stores_and_dispatches(gate, event, dispatcher):
    credential_id = await gate.request_credential(
        event.id, "organizer@example.com", also_notify=["admin@example.com"]
    )

    assert isinstance(credential_id, uuid.UUID)
    assert [s["identity"] for s in dispatcher.sent] == ["organizer@example.com", "admin@example.com"]
    assert dispatcher.sent[0]["code"] == dispatcher.sent[1]["code"]
    assert dispatcher.sent[0]["event_name"] == "Festival de Verano"


async def test_request_credential_for_unknown_event(gate):
    with pytest.raises(LookupError):
        await gate.request_credential(uuid.uuid4(), "organizer@example.com")


async def test_verified_otp_cannot_be_reused(gate, event, dispatcher, clock):
    await gate.request_credential(event.id, "organizer@example.com")
    code = dispatcher.last_code()

    authorization = await gate.verify_credential(event.id, code)

    assert authorization.method == "otp"
    assert authorization.event_id == event.id
    assert authorization.expires_at == clock() + gate.authorization_ttl
    claims = decode_gate_token(authorization.token)
    assert claims["event_id"] == str(event.id)
    assert "sid" not in claims

    with pytest.raises(CredentialInvalid):
        await gate.verify_credential(event.id, code)


async def test_otp_expires_after_ttl(gate, event, dispatcher, clock):
    await gate.request_credential(event.id, "organizer@example.com")
    code = dispatcher.last_code()

    clock.advance(seconds=600)

    with pytest.raises(CredentialExpired):
        await gate.verify_credential(event.id, code)


async def test_otp_still_valid_just_before_ttl(gate, event, dispatcher, clock):
    await gate.request_credential(event.id, "organizer@example.com")
    code = dispatcher.last_code()

    clock.advance(seconds=599)

    authorization = await gate.verify_credential(event.id, code)
    assert authorization.method == "otp"


async def test_wrong_code_is_invalid(gate, event, dispatcher):
    await gate.request_credential(event.id, "organizer@example.com")
    wrong = "000000" if dispatcher.last_code() != "000000" else "111111"

    with pytest.raises(CredentialInvalid):
        await gate.verify_credential(event.id, wrong)


async def test_otp_is_scoped_to_its_event(gate, event, dispatcher):
    await gate.request_credential(event.id, "organizer@example.com")

    with pytest.raises(CredentialInvalid):
        await gate.verify_credential(uuid.uuid4(), dispatcher.last_code())


async def test_new_request_does_not_invalidate_previous_code(gate, event, dispatcher):
    await gate.request_credential(event.id, "organizer@example.com")
    first_code = dispatcher.last_code()
    await gate.request_credential(event.id, "organizer@example.com")

    authorization = await gate.verify_credential(event.id, first_code)
    assert authorization.method == "otp"


async def test_concurrent_verifications_of_one_code_authorize_once(gate, event, dispatcher, clock):
    await gate.request_credential(event.id, "organizer@example.com")
    code = dispatcher.last_code()

    async def one():
        async with connection.async_session_maker() as session:
            terminal_gate = AccessGate(session, dispatcher=dispatcher, clock=clock, otp_ttl_seconds=600)
            try:
                return await terminal_gate.verify_credential(event.id, code)
            except CredentialInvalid:
                return None

    results = await asyncio.gather(*[one() for _ in range(8)])

    winners = [r for r in results if r is not None]
    assert len(winners) == 1, f"Se esperaba una sola autorización, hubo {len(winners)}"
    assert winners[0].method == "otp"


def test_default_recipients_include_organizer_and_admin(gate, event):
    assert gate.default_recipients(event) == ["organizer@example.com", "admin@example.com"]


async def test_shared_passwords(gate, event, clock):
    vendor = await gate.verify_password(event.id, "vendor-secret")
    admin = await gate.verify_password(event.id, "admin-secret")

    assert vendor.identity == "password:vendor"
    assert admin.identity == "password:admin"
    assert vendor.expires_at == clock() + timedelta(minutes=720)

    # Reutilizable
    again = await gate.verify_password(event.id, "vendor-secret")
    assert again.method == "password"

    with pytest.raises(CredentialInvalid):
        await gate.verify_password(event.id, "nope")


async def test_staff_owner_and_admin_can_unlock(gate, event):
    owner = await gate.authorize_staff(event.id, {"user_id": "vendor-1", "role": "vendor"})
    admin = await gate.authorize_staff(event.id, {"user_id": "someone", "role": "admin"})

    assert owner.identity == "user:vendor-1"
    assert admin.method == "staff"


async def test_staff_of_another_vendor_is_rejected(gate, event):
    with pytest.raises(CredentialInvalid):
        await gate.authorize_staff(event.id, {"user_id": "vendor-2", "role": "vendor"})


async def test_staff_cannot_unlock_when_scanning_disabled(gate, event, db_session):
    event.scan_enabled = False
    await db_session.commit()

    with pytest.raises(CredentialInvalid):
        await gate.authorize_staff(event.id, {"user_id": "vendor-1", "role": "vendor"})


async def test_gate_tokens_are_signed_with_configured_secret(gate, event, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "prod-secret-from-dotenv")

    authorization = await gate.verify_password(event.id, "vendor-secret")

    claims = jwt.decode(
        authorization.token, "prod-secret-from-dotenv", algorithms=["HS256"], options={"verify_exp": False}
    )
    assert claims["event_id"] == str(event.id)
    assert decode_gate_token(authorization.token)["jti"] == claims["jti"]

    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "dev-secret-key-change-in-production")
    assert decode_gate_token(authorization.token) is None
