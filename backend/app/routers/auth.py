"""
Router de l'authentification 3FA.
Appelé par la page de connexion admin une fois le mot de passe validé par
le fournisseur d'identité.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.database import get_db
from app.exceptions import AccountLocked, FactorNotConfigured, StorageFailure, UserNotFoundError
from app.schemas.auth import (
    AuthenticateRequest,
    AuthenticationResult,
    TotpSetupRequest,
    TotpSetupResponse,
    TotpVerifyRequest,
    TotpVerifyResponse,
)
from app.services import auth_service, totp_service

router = APIRouter(prefix="/api/v1/auth", tags=["Authentification 3FA"])

# Code HTTP par motif de refus (401 par défaut)
DENIAL_STATUS = {
    AccountLocked.reason: 423,
    StorageFailure.reason: 503,
}


def get_client_ip(request: Request) -> Optional[str]:
    """IP client best-effort : premier saut de X-Forwarded-For, sinon l'adresse du socket."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post(
    "/totp/setup",
    response_model=TotpSetupResponse,
    status_code=201,
    summary="Générer le secret TOTP et son QR code",
)
def setup_totp(data: TotpSetupRequest, db: Session = Depends(get_db)):
    """
    Génère un nouveau secret TOTP pour l'utilisateur et renvoie l'URI
    otpauth:// ainsi que le QR code à scanner. Le facteur n'est actif
    qu'après POST /totp/verify avec un code correct.

    Retourne 404 si l'utilisateur est introuvable, 409 si le TOTP est déjà actif.
    """
    try:
        return totp_service.setup_totp(db, data.user_id, data.account_label)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post(
    "/totp/verify",
    response_model=TotpVerifyResponse,
    summary="Activer le TOTP après preuve de possession",
)
def verify_totp(data: TotpVerifyRequest, db: Session = Depends(get_db)):
    """
    Vérifie le code saisi depuis l'app d'authentification et active le facteur.

    Retourne 400 si le code est faux, 409 si aucun secret n'a été généré.
    """
    try:
        verified = totp_service.verify_and_enable_totp(db, data.user_id, data.code)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except FactorNotConfigured as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not verified:
        raise HTTPException(status_code=400, detail="Code TOTP invalide.")
    return TotpVerifyResponse(user_id=data.user_id, totp_verified=True)


@router.post(
    "/authenticate",
    response_model=AuthenticationResult,
    summary="Décision d'admission (verrou + appareil + TOTP)",
)
def authenticate(data: AuthenticateRequest, request: Request, db: Session = Depends(get_db)):
    """
    Vérifie le verrou, l'appareil et le code TOTP, puis renvoie la décision.

    - 200 : admis, l'appelant peut émettre la session
    - 401 : refusé (InvalidCode, UntrustedDevice, FactorNotConfigured)
    - 423 : compte verrouillé, `locked_remaining_minutes` renseigné
    - 503 : store indisponible (refus fail-closed)
    - 404 : utilisateur introuvable
    """
    signals = data.device
    if not signals.user_agent:
        signals = signals.model_copy(update={"user_agent": request.headers.get("user-agent")})

    try:
        result = auth_service.authenticate(
            db, data.user_id, data.totp_code, signals, get_client_ip(request)
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if result.admitted:
        return result
    return JSONResponse(
        status_code=DENIAL_STATUS.get(result.reason, 401),
        content=result.model_dump(mode="json"),
    )
