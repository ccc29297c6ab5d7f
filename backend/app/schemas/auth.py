"""
Schémas Pydantic pour l'authentification 3FA.
Endpoints : POST /api/v1/auth/totp/setup, /totp/verify, /authenticate
"""

import uuid
from typing import Optional

from pydantic import BaseModel, field_validator


class DeviceSignals(BaseModel):
    """
    Signaux d'environnement collectés côté client (navigateur ou CLI).
    Tous optionnels : un signal indisponible est remplacé par "unknown".
    """
    user_agent: Optional[str] = None
    screen_resolution: Optional[str] = None   # Ex: "1920x1080"
    timezone: Optional[str] = None            # Ex: "Europe/Brussels"
    language: Optional[str] = None
    platform: Optional[str] = None
    cookie_enabled: Optional[bool] = None
    do_not_track: Optional[str] = None
    canvas_fingerprint: Optional[str] = None  # Signature de rendu canvas
    webgl_fingerprint: Optional[str] = None   # Renderer GPU/WebGL


class DeviceFingerprint(BaseModel):
    """Empreinte calculée par requête. Seul `hash` est persisté."""
    user_agent: str
    screen_resolution: str
    timezone: str
    language: str
    platform: str
    cookie_enabled: str
    do_not_track: str
    canvas_fingerprint: str
    webgl_fingerprint: str
    hash: str


class TotpSecret(BaseModel):
    secret: str
    provisioning_uri: str


class TotpSetupRequest(BaseModel):
    user_id: uuid.UUID
    account_label: str   # Libellé affiché dans l'app d'authentification (email en général)

    @field_validator("account_label")
    @classmethod
    def label_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le libellé du compte ne peut pas être vide.")
        return v.strip()


class TotpSetupResponse(BaseModel):
    """Secret + URI otpauth:// + QR code (data URL PNG) à afficher une seule fois."""
    user_id: uuid.UUID
    secret: str
    provisioning_uri: str
    qr_code: str


class TotpVerifyRequest(BaseModel):
    user_id: uuid.UUID
    code: str


class TotpVerifyResponse(BaseModel):
    user_id: uuid.UUID
    totp_verified: bool


class AuthenticateRequest(BaseModel):
    """Tentative de connexion déjà validée par mot de passe côté fournisseur d'identité."""
    user_id: uuid.UUID
    totp_code: Optional[str] = None
    device: DeviceSignals = DeviceSignals()


class AuthenticationResult(BaseModel):
    """Décision d'admission renvoyée à l'appelant."""
    admitted: bool
    reason: Optional[str] = None                  # AccountLocked, InvalidCode, UntrustedDevice, ...
    locked_remaining_minutes: Optional[int] = None
    is_first_device: bool = False
    totp_used: bool = False
    device_verified: bool = False


class TrustCheck(BaseModel):
    trusted: bool
    is_first_device: bool


class LockStatus(BaseModel):
    locked: bool
    remaining_minutes: int = 0


class FailureResult(BaseModel):
    attempts: int
    locked: bool
