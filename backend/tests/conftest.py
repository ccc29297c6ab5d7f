"""
Configuration partagée pour tous les tests.
- client : override de get_db pour éviter toute connexion réelle à PostgreSQL
- fake_store : store de fiches sécurité en mémoire, substitué aux fonctions
  de app.services.security_store (et au journal d'audit) pour les scénarios
  multi-tentatives
"""

import uuid
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.database import get_db
from app.exceptions import UserNotFoundError
from app.main import app
from app.schemas.security import UserSecurityRecord
from app.services import audit_service, security_store


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class FakeSecurityStore:
    """Même contrat que security_store, état conservé dans des dicts."""

    def __init__(self):
        self.users = {}
        self.settings = {}
        self.audit = []

    def add_user(self, **fields) -> uuid.UUID:
        user_id = uuid.uuid4()
        self.users[user_id] = {
            "id": user_id,
            "totp_secret": None,
            "totp_enabled": False,
            "totp_verified": False,
            "totp_last_step": None,
            "device_fingerprint": None,
            "last_login_device": None,
            "last_login_ip": None,
            "login_attempts": 0,
            "locked_until": None,
            "last_login": None,
            **fields,
        }
        return user_id

    def get_security_record(self, db, user_id):
        if user_id not in self.users:
            raise UserNotFoundError(user_id)
        return UserSecurityRecord(**self.users[user_id])

    def update_security_fields(self, db, user_id, **fields):
        if user_id not in self.users:
            raise UserNotFoundError(user_id)
        self.users[user_id].update(fields)

    def increment_login_attempts(self, db, user_id, policy, now):
        user = self.users.get(user_id)
        if user is None:
            return None
        locked_until = user["locked_until"]
        if locked_until is not None and locked_until > now:
            return None
        attempts = 1 if locked_until is not None else user["login_attempts"] + 1
        user["login_attempts"] = attempts
        user["locked_until"] = (
            now + timedelta(minutes=policy.lockout_minutes)
            if attempts >= policy.max_attempts else None
        )
        return attempts, user["locked_until"]

    def claim_totp_step(self, db, user_id, step):
        user = self.users[user_id]
        if user["totp_last_step"] is not None and user["totp_last_step"] >= step:
            return False
        user["totp_last_step"] = step
        return True

    def reset_login_attempts(self, db, user_id, now):
        self.update_security_fields(db, user_id, login_attempts=0, locked_until=None, last_login=now)

    def get_settings_row(self, db, user_id):
        return self.settings.get(user_id)

    def save_settings_row(self, db, user_id, **fields):
        row = SimpleNamespace(user_id=user_id, **fields)
        self.settings[user_id] = row
        return row

    def append_audit_entry(self, db, entry):
        self.audit.append(entry)


STORE_FUNCTIONS = (
    "get_security_record",
    "update_security_fields",
    "increment_login_attempts",
    "reset_login_attempts",
    "claim_totp_step",
    "get_settings_row",
    "save_settings_row",
)


@pytest.fixture
def fake_store(monkeypatch):
    """Remplace le store SQL et le journal d'audit par leur version en mémoire."""
    store = FakeSecurityStore()
    for name in STORE_FUNCTIONS:
        monkeypatch.setattr(security_store, name, getattr(store, name))
    monkeypatch.setattr(audit_service, "append_audit_entry", store.append_audit_entry)
    return store
