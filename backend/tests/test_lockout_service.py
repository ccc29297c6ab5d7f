"""
Tests unitaires pour la politique de verrouillage.
Couverture : check_lock (expiration paresseuse), record_failure (seuil,
pas d'incrément sous verrou), record_success, resolve_policy, remaining_minutes.
"""

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app.config import settings
from app.exceptions import UserNotFoundError
from app.schemas.security import LockoutPolicy
from app.services.lockout_service import (
    check_lock,
    record_failure,
    record_success,
    remaining_minutes,
    resolve_policy,
)

NOW = datetime(2026, 5, 25, 8, 0, tzinfo=timezone.utc)
POLICY = LockoutPolicy(max_attempts=5, lockout_minutes=30)


# ----------------------------------------------------------------
# check_lock
# ----------------------------------------------------------------

class TestCheckLock:
    def test_sans_verrou_ouvert(self, fake_store):
        user_id = fake_store.add_user()
        status = check_lock(None, user_id, NOW)
        assert status.locked is False
        assert status.remaining_minutes == 0

    def test_verrou_futur_actif(self, fake_store):
        user_id = fake_store.add_user(login_attempts=5, locked_until=NOW + timedelta(minutes=12, seconds=5))
        status = check_lock(None, user_id, NOW)
        assert status.locked is True
        assert status.remaining_minutes == 13

    def test_verrou_expire_traite_comme_absent(self, fake_store):
        """Expiration paresseuse : aucun appel de déverrouillage nécessaire."""
        user_id = fake_store.add_user(login_attempts=5, locked_until=NOW - timedelta(seconds=1))
        assert check_lock(None, user_id, NOW).locked is False

    def test_verrou_naif_considere_utc(self, fake_store):
        user_id = fake_store.add_user(locked_until=(NOW + timedelta(minutes=5)).replace(tzinfo=None))
        assert check_lock(None, user_id, NOW).locked is True

    def test_utilisateur_introuvable(self, fake_store):
        with pytest.raises(UserNotFoundError):
            check_lock(None, uuid.uuid4(), NOW)


def test_remaining_minutes_arrondi_superieur():
    assert remaining_minutes(NOW + timedelta(seconds=1), NOW) == 1
    assert remaining_minutes(NOW + timedelta(minutes=30), NOW) == 30
    assert remaining_minutes(NOW, NOW) == 0
    assert remaining_minutes(None, NOW) == 0


# ----------------------------------------------------------------
# record_failure / record_success
# ----------------------------------------------------------------

class TestRecordFailure:
    def test_incremente_sous_le_seuil(self, fake_store):
        user_id = fake_store.add_user(login_attempts=2)

        result = record_failure(None, user_id, POLICY, NOW)

        assert result.attempts == 3
        assert result.locked is False
        assert fake_store.users[user_id]["locked_until"] is None

    def test_seuil_atteint_pose_le_verrou(self, fake_store):
        user_id = fake_store.add_user()

        results = [record_failure(None, user_id, POLICY, NOW) for _ in range(5)]

        assert [r.attempts for r in results] == [1, 2, 3, 4, 5]
        assert [r.locked for r in results] == [False, False, False, False, True]
        assert fake_store.users[user_id]["locked_until"] == NOW + timedelta(minutes=30)

    def test_pas_d_increment_sous_verrou(self, fake_store):
        """La (max+1)-ième tentative pendant le verrou ne touche pas le compteur."""
        user_id = fake_store.add_user()
        for _ in range(5):
            record_failure(None, user_id, POLICY, NOW)
        locked_until = fake_store.users[user_id]["locked_until"]

        result = record_failure(None, user_id, POLICY, NOW + timedelta(minutes=1))

        assert result.attempts == 5
        assert result.locked is True
        assert fake_store.users[user_id]["login_attempts"] == 5
        assert fake_store.users[user_id]["locked_until"] == locked_until

    def test_repart_a_un_apres_expiration(self, fake_store):
        user_id = fake_store.add_user(login_attempts=5, locked_until=NOW - timedelta(minutes=1))

        result = record_failure(None, user_id, POLICY, NOW)

        assert result.attempts == 1
        assert result.locked is False
        assert fake_store.users[user_id]["locked_until"] is None

    def test_politique_par_defaut_depuis_la_configuration(self, fake_store, monkeypatch):
        monkeypatch.setattr(settings, "MAX_LOGIN_ATTEMPTS", 2)
        monkeypatch.setattr(settings, "LOCKOUT_MINUTES", 10)
        user_id = fake_store.add_user(login_attempts=1)

        result = record_failure(None, user_id, now=NOW)

        assert result.locked is True
        assert fake_store.users[user_id]["locked_until"] == NOW + timedelta(minutes=10)

    def test_utilisateur_introuvable(self, fake_store):
        with pytest.raises(UserNotFoundError):
            record_failure(None, uuid.uuid4(), POLICY, NOW)


def test_record_success_remet_a_zero(fake_store):
    user_id = fake_store.add_user(login_attempts=5, locked_until=NOW + timedelta(minutes=20))

    record_success(None, user_id, NOW)

    user = fake_store.users[user_id]
    assert user["login_attempts"] == 0
    assert user["locked_until"] is None
    assert user["last_login"] == NOW


# ----------------------------------------------------------------
# resolve_policy
# ----------------------------------------------------------------

class TestResolvePolicy:
    def test_sans_reglages_valeurs_globales(self, fake_store, monkeypatch):
        monkeypatch.setattr(settings, "MAX_LOGIN_ATTEMPTS", 5)
        monkeypatch.setattr(settings, "LOCKOUT_MINUTES", 30)
        monkeypatch.setattr(settings, "DEVICE_VERIFICATION_REQUIRED", False)
        user_id = fake_store.add_user()

        policy = resolve_policy(None, user_id)

        assert policy.lockout == LockoutPolicy(max_attempts=5, lockout_minutes=30)
        assert policy.device_verification_required is False

    def test_reglages_utilisateur_prioritaires(self, fake_store, monkeypatch):
        monkeypatch.setattr(settings, "LOCKOUT_MINUTES", 30)
        user_id = fake_store.add_user()
        fake_store.settings[user_id] = SimpleNamespace(
            totp_required=True,
            device_verification_required=True,
            max_login_attempts=3,
            lockout_duration_minutes=None,
        )

        policy = resolve_policy(None, user_id)

        assert policy.totp_required is True
        assert policy.device_verification_required is True
        assert policy.lockout.max_attempts == 3
        assert policy.lockout.lockout_minutes == 30

    def test_false_explicite_prioritaire(self, fake_store, monkeypatch):
        monkeypatch.setattr(settings, "TOTP_REQUIRED", True)
        user_id = fake_store.add_user()
        fake_store.settings[user_id] = SimpleNamespace(
            totp_required=False,
            device_verification_required=None,
            max_login_attempts=None,
            lockout_duration_minutes=None,
        )

        assert resolve_policy(None, user_id).totp_required is False
