"""
Journal d'audit des tentatives de connexion (append-only).
Un échec d'écriture lève AuditFailure : l'appelant le signale mais ne
revient jamais sur sa décision d'admission.
"""

import logging
import uuid
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.exceptions import AuditFailure, StorageFailure
from app.models.login_audit import LoginAudit
from app.schemas.security import AuditLogEntry, LoginAuditResponse

logger = logging.getLogger(__name__)


def append_audit_entry(db: Session, entry: AuditLogEntry) -> None:
    """Insère une entrée d'audit. Lève AuditFailure en cas d'échec."""
    row = LoginAudit(
        user_id=entry.user_id,
        login_time=entry.timestamp,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        device_fingerprint=entry.device_fingerprint,
        success=entry.success,
        failure_reason=entry.failure_reason,
        totp_used=entry.totp_used,
        device_verified=entry.device_verified,
    )
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise AuditFailure(f"Écriture du journal d'audit impossible : {exc}") from exc


def list_audit_entries(db: Session, user_id: uuid.UUID, limit: int = 50) -> List[LoginAuditResponse]:
    """Dernières tentatives d'un utilisateur, de la plus récente à la plus ancienne."""
    try:
        rows = db.execute(
            select(LoginAudit)
            .where(LoginAudit.user_id == user_id)
            .order_by(LoginAudit.login_time.desc())
            .limit(limit)
        ).scalars().all()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Lecture du journal d'audit impossible : %s", exc)
        raise StorageFailure("Lecture du journal d'audit impossible.") from exc
    return [LoginAuditResponse.model_validate(r) for r in rows]
