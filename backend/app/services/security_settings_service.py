"""
Réglages de sécurité par utilisateur (table admin_security).
"""

import uuid

from sqlalchemy.orm import Session

from app.schemas.security import SecurityPolicy, SecuritySettingsResponse, SecuritySettingsUpdate
from app.services import lockout_service, security_store


def security_level(policy: SecurityPolicy) -> str:
    if policy.totp_required and policy.device_verification_required:
        return "3fa"
    if policy.totp_required:
        return "2fa"
    return "basic"


def _to_response(user_id: uuid.UUID, policy: SecurityPolicy) -> SecuritySettingsResponse:
    return SecuritySettingsResponse(
        user_id=user_id,
        security_level=security_level(policy),
        totp_required=policy.totp_required,
        device_verification_required=policy.device_verification_required,
        max_login_attempts=policy.lockout.max_attempts,
        lockout_duration_minutes=policy.lockout.lockout_minutes,
    )


def get_security_settings(db: Session, user_id: uuid.UUID) -> SecuritySettingsResponse:
    """Réglages effectifs. Lève UserNotFoundError si l'utilisateur n'existe pas."""
    security_store.get_security_record(db, user_id)
    return _to_response(user_id, lockout_service.resolve_policy(db, user_id))


def update_security_settings(
    db: Session,
    user_id: uuid.UUID,
    data: SecuritySettingsUpdate,
) -> SecuritySettingsResponse:
    """Remplace les réglages de l'utilisateur ; un champ null revient à la valeur globale."""
    security_store.get_security_record(db, user_id)
    security_store.save_settings_row(db, user_id, **data.model_dump())
    return _to_response(user_id, lockout_service.resolve_policy(db, user_id))
