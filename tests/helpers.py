"""Utilidades compartidas por los tests"""
from datetime import datetime, timedelta, timezone
from typing import Dict

from shared.auth.jwt_handler import create_access_token

T0 = datetime(2026, 3, 14, 20, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Reloj que solo avanza cuando el test lo pide"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def staff_headers(user_id: str = "admin-1", role: str = "admin") -> Dict[str, str]:
    token = create_access_token({"sub": user_id, "app_metadata": {"role": role}})
    return {"Authorization": f"Bearer {token}"}


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
