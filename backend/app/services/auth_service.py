"""
Orchestrateur de l'authentification 3FA.

Machine d'états d'une tentative (mot de passe déjà validé en amont) :
  LockCheck → FingerprintCheck → FactorCheck → Decision{Admit | Deny} → Audit

Règles :
- Le verrou est vérifié avant tout facteur ; une tentative refusée pour
  verrou ne consomme pas d'essai
- Tout échec de facteur compte un échec ; un succès complet remet à zéro
- L'appareil de la première connexion n'est enregistré qu'après succès de
  tous les facteurs
- StorageFailure → refus (fail-closed)
- Exactement une entrée d'audit par appel, quel que soit le résultat ;
  un audit en échec est signalé mais ne change pas la décision
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import (
    AccountLocked,
    AuditFailure,
    FactorNotConfigured,
    InvalidCode,
    StorageFailure,
    UntrustedDevice,
    UserNotFoundError,
)
from app.schemas.auth import AuthenticationResult, DeviceFingerprint, DeviceSignals
from app.schemas.security import (
    AuditLogEntry,
    DeviceRetrustResponse,
    SecurityPolicy,
    SecurityStatus,
)
from app.services import (
    audit_service,
    device_trust_service,
    fingerprint_service,
    lockout_service,
    security_settings_service,
    security_store,
    totp_service,
)

logger = logging.getLogger(__name__)


def authenticate(
    db: Session,
    user_id: uuid.UUID,
    totp_code: Optional[str] = None,
    signals: Optional[DeviceSignals] = None,
    client_ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AuthenticationResult:
    """
    Décide de l'admission d'une tentative de connexion.

    Lève UserNotFoundError si l'utilisateur est inconnu (après audit).
    Les autres issues sont renvoyées dans AuthenticationResult.reason.
    """
    now = now or datetime.now(timezone.utc)
    fingerprint = fingerprint_service.generate_fingerprint(signals)
    factors = {"is_first_device": False, "totp_used": False, "device_verified": False}

    try:
        result = _run_checks(db, user_id, totp_code, fingerprint, client_ip, now, factors)
    except StorageFailure:
        logger.error("Tentative de %s refusée : store indisponible", user_id)
        result = AuthenticationResult(admitted=False, reason=StorageFailure.reason, **factors)
    except UserNotFoundError:
        _write_audit(
            db, user_id, fingerprint, client_ip, now,
            AuthenticationResult(admitted=False, reason=UserNotFoundError.reason),
        )
        raise

    _write_audit(db, user_id, fingerprint, client_ip, now, result)
    return result


def _run_checks(
    db: Session,
    user_id: uuid.UUID,
    totp_code: Optional[str],
    fingerprint: DeviceFingerprint,
    client_ip: Optional[str],
    now: datetime,
    factors: dict,
) -> AuthenticationResult:
    # 1. LockCheck
    lock = lockout_service.check_lock(db, user_id, now)
    if lock.locked:
        logger.warning("Tentative sur compte verrouillé %s (%d min restantes)", user_id, lock.remaining_minutes)
        return AuthenticationResult(
            admitted=False,
            reason=AccountLocked.reason,
            locked_remaining_minutes=lock.remaining_minutes,
            **factors,
        )

    policy = lockout_service.resolve_policy(db, user_id)

    # 2. FingerprintCheck
    trust = device_trust_service.check_trust(db, user_id, fingerprint)
    factors["is_first_device"] = trust.is_first_device
    factors["device_verified"] = trust.trusted
    if not trust.trusted and policy.device_verification_required:
        return _deny(db, user_id, policy, now, UntrustedDevice.reason, factors)

    # 3. FactorCheck
    record = security_store.get_security_record(db, user_id)
    if record.totp_verified:
        factors["totp_used"] = True
        try:
            totp_ok = bool(totp_code) and totp_service.verify_user_totp(db, user_id, totp_code, now)
        except FactorNotConfigured:
            return _deny(db, user_id, policy, now, FactorNotConfigured.reason, factors)
        if not totp_ok:
            return _deny(db, user_id, policy, now, InvalidCode.reason, factors)
    elif policy.totp_required:
        return _deny(db, user_id, policy, now, FactorNotConfigured.reason, factors)

    # 4. Decision : Admit
    retrust = (
        not trust.trusted
        and policy.device_retrust_on_success
        and factors["totp_used"]
    )
    if trust.is_first_device or retrust:
        device_trust_service.store_trust(db, user_id, fingerprint, client_ip)
    lockout_service.record_success(db, user_id, now)

    logger.info(
        "Connexion admise pour %s (totp=%s, appareil=%s, premier appareil=%s)",
        user_id, factors["totp_used"], factors["device_verified"], factors["is_first_device"],
    )
    return AuthenticationResult(admitted=True, **factors)


def _deny(
    db: Session,
    user_id: uuid.UUID,
    policy: SecurityPolicy,
    now: datetime,
    reason: str,
    factors: dict,
) -> AuthenticationResult:
    failure = lockout_service.record_failure(db, user_id, policy.lockout, now)
    logger.warning(
        "Connexion refusée pour %s : %s (%d/%d échecs)",
        user_id, reason, failure.attempts, policy.lockout.max_attempts,
    )
    return AuthenticationResult(
        admitted=False,
        reason=reason,
        locked_remaining_minutes=policy.lockout.lockout_minutes if failure.locked else None,
        **factors,
    )


def _write_audit(
    db: Session,
    user_id: uuid.UUID,
    fingerprint: DeviceFingerprint,
    client_ip: Optional[str],
    now: datetime,
    result: AuthenticationResult,
) -> None:
    entry = AuditLogEntry(
        user_id=user_id,
        timestamp=now,
        ip_address=client_ip,
        user_agent=fingerprint.user_agent,
        device_fingerprint=fingerprint.hash,
        success=result.admitted,
        failure_reason=result.reason,
        totp_used=result.totp_used,
        device_verified=result.device_verified,
    )
    try:
        audit_service.append_audit_entry(db, entry)
    except AuditFailure as exc:
        logger.error("Audit non écrit pour la tentative de %s (mode dégradé) : %s", user_id, exc)


# ----------------------------------------------------------------
# Gestion du compte (page sécurité admin)
# ----------------------------------------------------------------

def get_security_status(
    db: Session,
    user_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> SecurityStatus:
    now = now or datetime.now(timezone.utc)
    record = security_store.get_security_record(db, user_id)
    minutes = lockout_service.remaining_minutes(record.locked_until, now)
    return SecurityStatus(
        user_id=user_id,
        totp_enabled=record.totp_enabled,
        totp_verified=record.totp_verified,
        device_trusted=bool(record.device_fingerprint),
        last_login_device=record.last_login_device,
        login_attempts=record.login_attempts,
        locked=minutes > 0,
        locked_until=record.locked_until if minutes > 0 else None,
        remaining_minutes=minutes,
        last_login=record.last_login,
        settings=security_settings_service.get_security_settings(db, user_id),
    )


def reset_security(
    db: Session,
    user_id: uuid.UUID,
    totp_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SecurityStatus:
    """
    Réinitialise le TOTP (secret compris) et le compteur d'échecs.
    L'appareil de confiance est conservé.

    Mêmes garde-fous que retrust_device :
    - AccountLocked tant que le verrou est actif (le reset ne lève pas un verrou)
    - InvalidCode si le TOTP est actif et que le code est absent ou faux
      (compté comme échec)
    """
    now = now or datetime.now(timezone.utc)
    lock = lockout_service.check_lock(db, user_id, now)
    if lock.locked:
        raise AccountLocked(lock.remaining_minutes)

    record = security_store.get_security_record(db, user_id)
    if record.totp_verified:
        if not totp_code or not totp_service.verify_user_totp(db, user_id, totp_code, now):
            policy = lockout_service.resolve_policy(db, user_id)
            lockout_service.record_failure(db, user_id, policy.lockout, now)
            logger.warning("Réinitialisation refusée pour %s : code TOTP invalide", user_id)
            raise InvalidCode("Code TOTP invalide.")

    security_store.update_security_fields(
        db, user_id,
        totp_secret=None,
        totp_enabled=False,
        totp_verified=False,
        totp_last_step=None,
        login_attempts=0,
        locked_until=None,
    )
    logger.info("Sécurité réinitialisée pour l'utilisateur %s", user_id)
    return get_security_status(db, user_id, now)


def retrust_device(
    db: Session,
    user_id: uuid.UUID,
    signals: Optional[DeviceSignals] = None,
    totp_code: Optional[str] = None,
    client_ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DeviceRetrustResponse:
    """
    Remplace explicitement l'appareil de confiance par l'appareil courant.

    Lève :
    - PermissionError si la ré-approbation est désactivée
    - AccountLocked si le compte est verrouillé
    - FactorNotConfigured si l'appareil est obligatoire mais le TOTP inactif
    - InvalidCode si le code TOTP est absent ou faux (compté comme échec)
    """
    if not settings.ALLOW_DEVICE_RETRUST:
        raise PermissionError("La ré-approbation d'appareil est désactivée.")

    now = now or datetime.now(timezone.utc)
    lock = lockout_service.check_lock(db, user_id, now)
    if lock.locked:
        raise AccountLocked(lock.remaining_minutes)

    policy = lockout_service.resolve_policy(db, user_id)
    record = security_store.get_security_record(db, user_id)
    if record.totp_verified:
        if not totp_code or not totp_service.verify_user_totp(db, user_id, totp_code, now):
            lockout_service.record_failure(db, user_id, policy.lockout, now)
            raise InvalidCode("Code TOTP invalide.")
    elif policy.device_verification_required:
        raise FactorNotConfigured(
            "Un TOTP actif est nécessaire pour changer d'appareil de confiance."
        )

    fingerprint = fingerprint_service.generate_fingerprint(signals)
    device_trust_service.store_trust(db, user_id, fingerprint, client_ip)
    return DeviceRetrustResponse(user_id=user_id, device_fingerprint=fingerprint.hash)
