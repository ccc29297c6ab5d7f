"""
Store des fiches sécurité utilisateur (table users + admin_security).

Toutes les écritures de compteurs sont des UPDATE uniques avec expression
arithmétique côté SQL : deux tentatives concurrentes ne peuvent pas perdre
un incrément. Toute SQLAlchemyError (timeout compris) est convertie en
StorageFailure après rollback.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.exceptions import StorageFailure, UserNotFoundError
from app.models.admin_security import AdminSecurity
from app.models.user import User
from app.schemas.security import LockoutPolicy, UserSecurityRecord

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Les DateTime lus sans tzinfo sont considérés UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _storage_failure(db: Session, operation: str, exc: Exception) -> StorageFailure:
    db.rollback()
    logger.error("Échec du store pendant %s : %s", operation, exc)
    return StorageFailure(f"Échec du store pendant {operation}.")


def get_security_record(db: Session, user_id: uuid.UUID) -> UserSecurityRecord:
    """
    Lit les champs de sécurité d'un utilisateur.
    Lève UserNotFoundError si l'utilisateur n'existe pas.
    """
    try:
        user = db.execute(select(User).where(User.id == user_id)).scalar()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "la lecture de la fiche sécurité", exc) from exc
    if user is None:
        raise UserNotFoundError(user_id)
    return UserSecurityRecord.model_validate(user)


def update_security_fields(db: Session, user_id: uuid.UUID, **fields) -> None:
    """Mise à jour partielle des champs de sécurité (un seul UPDATE)."""
    try:
        result = db.execute(
            update(User)
            .where(User.id == user_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            raise UserNotFoundError(user_id)
        db.commit()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "la mise à jour de la fiche sécurité", exc) from exc


def increment_login_attempts(
    db: Session,
    user_id: uuid.UUID,
    policy: LockoutPolicy,
    now: datetime,
) -> Optional[Tuple[int, Optional[datetime]]]:
    """
    Incrémente atomiquement login_attempts et pose le verrou au seuil.

    Un seul UPDATE conditionnel :
    - ne touche pas un compte verrouillé (locked_until > now) → None
    - repart à 1 si le verrou précédent a expiré (échecs consécutifs depuis l'expiration)
    - pose locked_until = now + durée quand le nouveau compteur atteint le seuil

    Retourne (login_attempts, locked_until) après mise à jour, ou None si
    aucune ligne n'a été modifiée (compte verrouillé ou inexistant).
    """
    expired = and_(User.locked_until.is_not(None), User.locked_until <= now)
    new_attempts = case((expired, 1), else_=func.coalesce(User.login_attempts, 0) + 1)
    lock_deadline = now + timedelta(minutes=policy.lockout_minutes)

    stmt = (
        update(User)
        .where(
            User.id == user_id,
            or_(User.locked_until.is_(None), User.locked_until <= now),
        )
        .values(
            login_attempts=new_attempts,
            locked_until=case((new_attempts >= policy.max_attempts, lock_deadline), else_=None),
        )
        .returning(User.login_attempts, User.locked_until)
        .execution_options(synchronize_session=False)
    )
    try:
        row = db.execute(stmt).first()
        db.commit()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "l'incrément des tentatives", exc) from exc

    if row is None:
        return None
    return row[0], as_utc(row[1])


def claim_totp_step(db: Session, user_id: uuid.UUID, step: int) -> bool:
    """
    Consomme un pas TOTP : UPDATE conditionnel sur totp_last_step < step.
    Retourne False si ce pas (ou un plus récent) a déjà été accepté.
    """
    stmt = (
        update(User)
        .where(
            User.id == user_id,
            or_(User.totp_last_step.is_(None), User.totp_last_step < step),
        )
        .values(totp_last_step=step)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "l'enregistrement du pas TOTP", exc) from exc
    return result.rowcount == 1


def reset_login_attempts(db: Session, user_id: uuid.UUID, now: datetime) -> None:
    """Remet le compteur à 0 et lève le verrou, sans condition."""
    update_security_fields(
        db, user_id,
        login_attempts=0,
        locked_until=None,
        last_login=now,
    )


def get_settings_row(db: Session, user_id: uuid.UUID) -> Optional[AdminSecurity]:
    try:
        return db.execute(
            select(AdminSecurity).where(AdminSecurity.user_id == user_id)
        ).scalar()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "la lecture des réglages de sécurité", exc) from exc


def save_settings_row(db: Session, user_id: uuid.UUID, **fields) -> AdminSecurity:
    """Crée ou met à jour la ligne admin_security de l'utilisateur."""
    try:
        row = db.execute(
            select(AdminSecurity).where(AdminSecurity.user_id == user_id)
        ).scalar()
        if row is None:
            row = AdminSecurity(user_id=user_id, **fields)
            db.add(row)
        else:
            for name, value in fields.items():
                setattr(row, name, value)
        db.commit()
        db.refresh(row)
        return row
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "l'enregistrement des réglages de sécurité", exc) from exc


def clear_expired_lockouts(db: Session, now: datetime) -> int:
    """Efface les verrous expirés et leurs compteurs. Retourne le nombre de comptes nettoyés."""
    try:
        result = db.execute(
            update(User)
            .where(User.locked_until.is_not(None), User.locked_until <= now)
            .values(locked_until=None, login_attempts=0)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        raise _storage_failure(db, "le nettoyage des verrous expirés", exc) from exc
    return result.rowcount
