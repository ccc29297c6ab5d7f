"""
Router de la page sécurité admin : état du compte, réinitialisation,
réglages par utilisateur, ré-approbation d'appareil et journal d'audit.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.exceptions import (
    AccountLocked,
    FactorNotConfigured,
    InvalidCode,
    StorageFailure,
    UserNotFoundError,
)
from app.routers.auth import get_client_ip
from app.schemas.security import (
    AuditListResponse,
    DeviceRetrustRequest,
    DeviceRetrustResponse,
    SecurityResetRequest,
    SecuritySettingsResponse,
    SecuritySettingsUpdate,
    SecurityStatus,
)
from app.services import audit_service, auth_service, security_settings_service

router = APIRouter(prefix="/api/v1/users", tags=["Sécurité du compte"])


@router.get("/{user_id}/security", response_model=SecurityStatus, summary="État de sécurité du compte")
def get_security_status(user_id: uuid.UUID, db: Session = Depends(get_db)):
    """TOTP, appareil de confiance, compteur d'échecs, verrou et réglages effectifs."""
    try:
        return auth_service.get_security_status(db, user_id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/{user_id}/security/reset", response_model=SecurityStatus, summary="Réinitialiser la sécurité")
def reset_security(user_id: uuid.UUID, data: SecurityResetRequest, db: Session = Depends(get_db)):
    """
    Désactive le TOTP (secret supprimé) et remet le compteur à 0.
    L'appareil de confiance est conservé.

    Retourne 423 si le compte est verrouillé, 401 si le TOTP est actif et
    que le code est absent ou faux.
    """
    try:
        return auth_service.reset_security(db, user_id, data.totp_code)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AccountLocked as e:
        raise HTTPException(status_code=423, detail=str(e))
    except InvalidCode as e:
        raise HTTPException(status_code=401, detail=str(e))
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get(
    "/{user_id}/security/settings",
    response_model=SecuritySettingsResponse,
    summary="Réglages de sécurité effectifs",
)
def get_security_settings(user_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        return security_settings_service.get_security_settings(db, user_id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.put(
    "/{user_id}/security/settings",
    response_model=SecuritySettingsResponse,
    summary="Modifier les réglages de sécurité",
)
def update_security_settings(
    user_id: uuid.UUID,
    data: SecuritySettingsUpdate,
    db: Session = Depends(get_db),
):
    """Un champ absent ou null reprend la valeur globale de la configuration."""
    try:
        return security_settings_service.update_security_settings(db, user_id, data)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post(
    "/{user_id}/security/device/trust",
    response_model=DeviceRetrustResponse,
    summary="Approuver l'appareil courant",
)
def retrust_device(
    user_id: uuid.UUID,
    data: DeviceRetrustRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Remplace l'appareil de confiance par l'appareil courant.
    Exige un code TOTP valide si le TOTP est actif.

    Retourne 401 si le code est faux, 403 si la fonction est désactivée ou
    si un TOTP actif est requis, 423 si le compte est verrouillé.
    """
    signals = data.device
    if not signals.user_agent:
        signals = signals.model_copy(update={"user_agent": request.headers.get("user-agent")})

    try:
        return auth_service.retrust_device(
            db, user_id, signals, data.totp_code, get_client_ip(request)
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AccountLocked as e:
        raise HTTPException(status_code=423, detail=str(e))
    except InvalidCode as e:
        raise HTTPException(status_code=401, detail=str(e))
    except (PermissionError, FactorNotConfigured) as e:
        raise HTTPException(status_code=403, detail=str(e))
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get(
    "/{user_id}/security/audit",
    response_model=AuditListResponse,
    summary="Dernières tentatives de connexion",
)
def list_audit_entries(
    user_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    try:
        entries = audit_service.list_audit_entries(db, user_id, limit)
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail=str(e))
    return AuditListResponse(user_id=user_id, entries=entries)
