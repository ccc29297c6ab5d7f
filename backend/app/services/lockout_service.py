"""
Politique de verrouillage après échecs consécutifs.

États : Open (sous le seuil, pas de verrou actif) / Locked (locked_until futur).
Un verrou expiré est traité comme absent dès la lecture suivante, sans
étape de nettoyage.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.schemas.auth import FailureResult, LockStatus
from app.schemas.security import LockoutPolicy, SecurityPolicy
from app.services import security_store

logger = logging.getLogger(__name__)


def _pick(override, default):
    return default if override is None else override


def resolve_policy(db: Session, user_id: uuid.UUID) -> SecurityPolicy:
    """Réglages admin_security de l'utilisateur, complétés par les valeurs globales."""
    row = security_store.get_settings_row(db, user_id)
    if row is None:
        return SecurityPolicy(
            lockout=LockoutPolicy(
                max_attempts=settings.MAX_LOGIN_ATTEMPTS,
                lockout_minutes=settings.LOCKOUT_MINUTES,
            ),
            totp_required=settings.TOTP_REQUIRED,
            device_verification_required=settings.DEVICE_VERIFICATION_REQUIRED,
            device_retrust_on_success=settings.DEVICE_RETRUST_ON_SUCCESS,
        )
    return SecurityPolicy(
        lockout=LockoutPolicy(
            max_attempts=_pick(row.max_login_attempts, settings.MAX_LOGIN_ATTEMPTS),
            lockout_minutes=_pick(row.lockout_duration_minutes, settings.LOCKOUT_MINUTES),
        ),
        totp_required=_pick(row.totp_required, settings.TOTP_REQUIRED),
        device_verification_required=_pick(
            row.device_verification_required, settings.DEVICE_VERIFICATION_REQUIRED
        ),
        device_retrust_on_success=settings.DEVICE_RETRUST_ON_SUCCESS,
    )


def remaining_minutes(locked_until: Optional[datetime], now: datetime) -> int:
    """Minutes restantes arrondies au supérieur, 0 si pas de verrou actif."""
    locked_until = security_store.as_utc(locked_until)
    if locked_until is None or locked_until <= now:
        return 0
    return math.ceil((locked_until - now).total_seconds() / 60)


def check_lock(db: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> LockStatus:
    """À appeler AVANT toute vérification de facteur."""
    now = now or datetime.now(timezone.utc)
    record = security_store.get_security_record(db, user_id)
    minutes = remaining_minutes(record.locked_until, now)
    return LockStatus(locked=minutes > 0, remaining_minutes=minutes)


def record_failure(
    db: Session,
    user_id: uuid.UUID,
    policy: Optional[LockoutPolicy] = None,
    now: Optional[datetime] = None,
) -> FailureResult:
    """
    Compte un échec et verrouille le compte quand le seuil est atteint.
    Sur un compte déjà verrouillé, le compteur n'est pas modifié.
    """
    now = now or datetime.now(timezone.utc)
    policy = policy or LockoutPolicy(
        max_attempts=settings.MAX_LOGIN_ATTEMPTS,
        lockout_minutes=settings.LOCKOUT_MINUTES,
    )

    row = security_store.increment_login_attempts(db, user_id, policy, now)
    if row is None:
        # Verrou actif (ou utilisateur inconnu → UserNotFoundError)
        record = security_store.get_security_record(db, user_id)
        return FailureResult(attempts=record.login_attempts, locked=True)

    attempts, locked_until = row
    locked = locked_until is not None and locked_until > now
    if locked:
        logger.warning(
            "Compte %s verrouillé %d min après %d échecs",
            user_id, policy.lockout_minutes, attempts,
        )
    return FailureResult(attempts=attempts, locked=locked)


def record_success(db: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> None:
    """Remet le compteur à 0 et efface le verrou."""
    now = now or datetime.now(timezone.utc)
    security_store.reset_login_attempts(db, user_id, now)
