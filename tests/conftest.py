"""Fixtures compartidas: SQLite temporal, reloj controlable, cache y dispatcher en memoria"""
import os

# Antes de importar la app: settings y el limiter leen el entorno al importar
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("GATE_VENDOR_PASSWORD", "vendor-secret")
os.environ.setdefault("GATE_ADMIN_PASSWORD", "admin-secret")
os.environ.setdefault("GATE_ADMIN_EMAIL", "admin@example.com")

from typing import Dict, List, Optional
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient

from shared.auth import jwt_handler
from shared.auth.dependencies import get_clock
from shared.database import connection
from shared.database.models import Event, Ticket, TicketStatus
from shared.utils.rate_limiter import limiter
from services.gate_access.routes.gate import get_dispatcher
from main import app
from tests.helpers import FrozenClock


class FakeCache:
    def __init__(self):
        self.values: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def set(self, key: str, value, expire: int = 3600):
        self.values[key] = value


class RecordingDispatcher:
    def __init__(self):
        self.sent: List[dict] = []

    def send(self, identity: str, code: str, event_id: UUID, event_name: str = "") -> None:
        self.sent.append({"identity": identity, "code": code, "event_id": event_id, "event_name": event_name})

    def last_code(self) -> str:
        return self.sent[-1]["code"]


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture(autouse=True)
def fake_cache(monkeypatch):
    cache = FakeCache()
    monkeypatch.setattr(jwt_handler, "cache_get", cache.get)
    monkeypatch.setattr(jwt_handler, "cache_set", cache.set)
    return cache


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
async def database(tmp_path):
    await connection.init_db(f"sqlite+aiosqlite:///{tmp_path / 'gate.db'}")
    await connection.create_tables()
    yield
    await connection.close_db()


@pytest.fixture
async def db_session(database):
    async with connection.async_session_maker() as session:
        yield session


@pytest.fixture
async def event(db_session):
    event = Event(
        name="Festival de Verano",
        scan_enabled=True,
        vendor_user_id="vendor-1",
        organizer_email="organizer@example.com",
    )
    db_session.add(event)
    await db_session.commit()
    await db_session.refresh(event)
    return event


@pytest.fixture
def make_ticket(db_session):
    async def _make(event_id: UUID, code: str, status: str = TicketStatus.ISSUED, owner_ref: str = "order-1"):
        ticket = Ticket(code=code, event_id=event_id, status=status, owner_ref=owner_ref)
        db_session.add(ticket)
        await db_session.commit()
        return ticket
    return _make


@pytest.fixture
async def client(database, clock, dispatcher):
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    limiter.enabled = True
