"""
Store de confiance des appareils (facteur 3).
Trust-on-first-use : sans hash stocké, l'appareil courant est considéré de
confiance, mais la persistance reste une étape explicite (store_trust).
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from app.schemas.auth import DeviceFingerprint, TrustCheck
from app.services import security_store

logger = logging.getLogger(__name__)


def check_trust(db: Session, user_id: uuid.UUID, fingerprint: DeviceFingerprint) -> TrustCheck:
    """Compare l'empreinte courante au hash de confiance, sans rien écrire."""
    record = security_store.get_security_record(db, user_id)
    if not record.device_fingerprint:
        return TrustCheck(trusted=True, is_first_device=True)
    return TrustCheck(
        trusted=record.device_fingerprint == fingerprint.hash,
        is_first_device=False,
    )


def store_trust(
    db: Session,
    user_id: uuid.UUID,
    fingerprint: DeviceFingerprint,
    client_ip: Optional[str] = None,
) -> bool:
    """
    Enregistre l'empreinte comme appareil de confiance (écrase la précédente).
    Lève StorageFailure si l'écriture échoue.
    """
    fields = {
        "device_fingerprint": fingerprint.hash,
        "last_login_device": fingerprint.user_agent,
    }
    if client_ip:
        fields["last_login_ip"] = client_ip
    security_store.update_security_fields(db, user_id, **fields)
    logger.info("Appareil de confiance enregistré pour l'utilisateur %s", user_id)
    return True
